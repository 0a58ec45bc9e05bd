"""
Validation and sanitization of (possibly user-edited) invoice data.

Runs before any ERP write. The input may come straight from the extraction
agent or from the browser's edit form, so every field is re-checked and
coerced: numbers may arrive as strings with a comma decimal separator, dates
in Spanish formats, optional fields as null.

validate_and_sanitize_extracted_data() never mutates its input and is
idempotent: sanitizing an already sanitized payload returns an equal payload.
"""

import copy
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from dolibarr_ocr.agents.invoice.types import EditableExtractedData, EditableProduct
from dolibarr_ocr.agents.invoice.validation import generate_auto_invoice_number, invoice_number_text
from dolibarr_ocr.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_VAT_RATE = 21.0

GENERIC_DESCRIPTIONS = [
    "producto", "servicio", "artículo", "item", "producto según factura",
    "servicio según factura", "producto/servicio según factura",
]

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ACCEPTED_DATE_FORMATS = ["%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d"]

SUPPLIER_TEXT_FIELDS = ["email", "phone", "address", "city", "zip", "vatNumber", "country"]


def sanitize_number(value: Any, default: float) -> float:
    """
    Coerce a JSON value to float.

    Strings accept a comma as decimal separator ("14,48"). None, empty strings,
    NaN and unparseable values give the default.
    """
    if value is None or value == "" or isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", ".", 1))
        except ValueError:
            return default
    if isinstance(value, (int, float)):
        return default if value != value else float(value)
    return default


def compute_line_total(
    quantity: float,
    unit_price: float,
    discount_percent: float = 0,
    discount_amount: float = 0,
) -> float:
    """quantity * unit_price, minus the percentage then the fixed discount, floored at 0."""
    base_total = quantity * unit_price
    total_discount = 0.0
    if discount_percent > 0:
        total_discount += base_total * discount_percent / 100
    if discount_amount > 0:
        total_discount += discount_amount
    return max(0.0, base_total - total_discount)


def normalize_invoice_date(value: Any, today: Optional[date] = None) -> str:
    """
    Return the date as YYYY-MM-DD.

    Accepts ISO dates, DD/MM/YYYY, DD-MM-YYYY, YYYY/MM/DD and ISO datetimes.
    Anything else (including missing values) becomes today.
    """
    today = today or date.today()
    if not isinstance(value, str) or not value.strip() or value.strip() == "null":
        logger.info(f"Invoice date missing, using today ({today.isoformat()})")
        return today.isoformat()

    text = value.strip()
    if ISO_DATE_PATTERN.match(text):
        return text

    for date_format in ACCEPTED_DATE_FORMATS:
        try:
            return datetime.strptime(text, date_format).date().isoformat()
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        logger.info(f"Invalid invoice date '{text}', using today ({today.isoformat()})")
        return today.isoformat()


def _is_generic(description: str) -> bool:
    lowered = description.lower().strip()
    return any(generic in lowered for generic in GENERIC_DESCRIPTIONS)


def _sanitize_product(product: Dict[str, Any], index: int) -> EditableProduct:
    description = product.get("description")
    if not isinstance(description, str) or not description.strip() or description.strip() == "null":
        raise ValidationError(
            f"El producto {index} debe tener una descripción válida",
            field=f"products[{index - 1}].description",
        )

    if _is_generic(description):
        raise ValidationError(
            f"El producto {index} tiene una descripción genérica. "
            "Se requiere descripción específica del producto.",
            field=f"products[{index - 1}].description",
        )

    product_code = product.get("productCode")
    if isinstance(product_code, str):
        product_code = product_code.strip() or None
    else:
        product_code = None

    sanitized: EditableProduct = {
        "description": description.strip(),
        "quantity": sanitize_number(product.get("quantity"), 1),
        "unitPrice": sanitize_number(product.get("unitPrice"), 0),
        "totalPrice": sanitize_number(product.get("totalPrice"), 0),
        "vatRate": sanitize_number(product.get("vatRate"), DEFAULT_VAT_RATE),
        "discountPercent": sanitize_number(product.get("discountPercent"), 0),
        "discountAmount": sanitize_number(product.get("discountAmount"), 0),
        "productCode": product_code,
    }
    if product.get("ref"):
        sanitized["ref"] = str(product["ref"]).strip()
    if product.get("type") in ("product", "service"):
        sanitized["type"] = product["type"]

    if sanitized["totalPrice"] == 0 and sanitized["quantity"] > 0 and sanitized["unitPrice"] > 0:
        sanitized["totalPrice"] = compute_line_total(
            sanitized["quantity"],
            sanitized["unitPrice"],
            sanitized["discountPercent"],
            sanitized["discountAmount"],
        )
        logger.debug(f"Recomputed total for product {index}: {sanitized['totalPrice']}")

    if sanitized["unitPrice"] < 0:
        raise ValidationError(
            f'El precio unitario del producto "{sanitized["description"]}" no puede ser negativo',
            field=f"products[{index - 1}].unitPrice",
        )

    if sanitized["quantity"] <= 0:
        raise ValidationError(
            f'La cantidad del producto "{sanitized["description"]}" debe ser mayor a 0',
            field=f"products[{index - 1}].quantity",
        )

    if not 0 <= sanitized["vatRate"] <= 100:
        logger.info(f"Invalid VAT rate for product {index}, using {DEFAULT_VAT_RATE}%")
        sanitized["vatRate"] = DEFAULT_VAT_RATE

    return sanitized


def validate_and_sanitize_extracted_data(data: Dict[str, Any]) -> EditableExtractedData:
    """
    Validate invoice data before it is written to Dolibarr.

    Returns:
        A sanitized copy of the data

    Raises:
        ValidationError: Missing supplier name, missing invoice block, no
            products, or an invalid product (see _sanitize_product)
    """
    data = copy.deepcopy(data)

    supplier = data.get("supplier")
    if not isinstance(supplier, dict) or not isinstance(supplier.get("name"), str) or not supplier["name"].strip():
        raise ValidationError(
            "El nombre del proveedor es obligatorio y no puede estar vacío",
            field="supplier.name",
        )

    supplier["name"] = supplier["name"].strip()
    for field in SUPPLIER_TEXT_FIELDS:
        supplier[field] = supplier.get(field) or ""

    invoice = data.get("invoice")
    if not isinstance(invoice, dict):
        raise ValidationError("Los datos de la factura son obligatorios", field="invoice")

    number = invoice_number_text(invoice.get("number"))
    if not isinstance(number, str) or not number.strip() or number.strip() == "null":
        invoice["number"] = generate_auto_invoice_number()
        logger.info(f"Invoice number generated: {invoice['number']}")
    else:
        invoice["number"] = number.strip()

    invoice["date"] = normalize_invoice_date(invoice.get("date"))
    invoice["dueDate"] = invoice.get("dueDate") or None
    invoice["totalHT"] = sanitize_number(invoice.get("totalHT"), 0)
    invoice["totalTTC"] = sanitize_number(invoice.get("totalTTC"), 0)
    invoice["totalVAT"] = sanitize_number(invoice.get("totalVAT"), 0)

    products = data.get("products")
    if not isinstance(products, list) or not products:
        raise ValidationError("Debe haber al menos un producto en la factura", field="products")

    sanitized_products: List[EditableProduct] = [
        _sanitize_product(product, index) for index, product in enumerate(products, start=1)
    ]
    data["products"] = sanitized_products

    logger.info(
        f"Invoice data sanitized: supplier='{supplier['name']}', number={invoice['number']}, "
        f"{len(sanitized_products)} products"
    )
    return data  # type: ignore
