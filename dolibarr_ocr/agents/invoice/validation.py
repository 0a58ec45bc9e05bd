"""
Plausibility checks and defaults for model-extracted invoice data.

The model occasionally hallucinates demo companies, generic product names or
zero prices. validate_extracted_data() rejects those results so the caller can
retry with another model; post_process_extracted_data() fills the defaults a
valid result still lacks.
"""

import logging
import random
import string
from datetime import date
from typing import Any, Dict, Optional

from dolibarr_ocr.agents.invoice.types import ExtractedInvoiceData, ExtractedProduct

logger = logging.getLogger(__name__)

PLACEHOLDER_DESCRIPTION = "Servicio/Producto según factura"
DEFAULT_VAT_RATE = 21

TEST_COMPANY_NAMES = [
    "test", "prueba", "demo", "ejemplo", "sample", "acme", "company", "empresa",
    "distribuciones fresca vida", "fresca vida", "test company", "demo company",
    "ejemplo empresa", "prueba empresa", "company ltd", "empresa s.l.",
]

TEST_PRODUCT_NAMES = [
    "producto de prueba", "test product", "demo product", "ejemplo producto",
    "producto ejemplo", "sample product", "producto genérico", "test item",
]

TEST_PRODUCT_CODES = [
    "test-001", "test-1", "demo-001", "prueba-001", "ejemplo-001",
    "test001", "demo001", "sample001",
]

GENERIC_DESCRIPTION_TERMS = ["producto", "servicio", "artículo", "item", "según factura"]

# Zero-priced lines with these words are notes, not products
INFORMATIONAL_KEYWORDS = [
    "problema", "buscar", "revisar", "diagnóstico", "análisis",
    "consulta", "nota", "observación", "comentario",
]

MIN_DESCRIPTION_LENGTH = 5


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip() or value.strip().lower() == "null"


def invoice_number_text(value: Any) -> Any:
    """Digit-only invoice numbers often come back as JSON numbers; keep them as text."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Coerce a model value (number or numeric string) to float, None if invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return number


def is_generic_description(description: str) -> bool:
    lowered = description.lower()
    return any(term in lowered for term in GENERIC_DESCRIPTION_TERMS)


def is_informational(description: str) -> bool:
    lowered = description.lower()
    return any(keyword in lowered for keyword in INFORMATIONAL_KEYWORDS)


def invoice_total(invoice: Dict[str, Any]) -> float:
    """Invoice total used for placeholder lines: HT, else TTC, else 0."""
    return to_number(invoice.get("totalHT")) or to_number(invoice.get("totalTTC")) or 0.0


def placeholder_product(invoice: Dict[str, Any]) -> ExtractedProduct:
    """Single line standing for the whole invoice when no products were read."""
    total = invoice_total(invoice)
    return {
        "description": PLACEHOLDER_DESCRIPTION,
        "quantity": 1,
        "unitPrice": total,
        "totalPrice": total,
        "vatRate": DEFAULT_VAT_RATE,
        "discountPercent": 0,
        "discountAmount": 0,
        "productCode": "",
    }


def validate_extracted_data(data: Dict[str, Any]) -> bool:
    """
    Check that extracted data looks like a real invoice.

    On success the data is normalized in place: a placeholder product is added
    when none were read, invalid quantities become 1 and invalid or negative
    unit prices become 0.

    Rejected when:
    - The supplier name is missing, empty, "null" or a test/demo name
    - The invoice block is missing
    - A product description is missing, shorter than 5 characters, generic or a
      test name, or a product code is a test code
    - Every product is priced 0, none is informational, and the invoice total
      cannot stand in for a single product
    - Some product is priced but the invoice total with VAT is not positive

    Returns:
        True when the data can be returned to the user
    """
    supplier = data.get("supplier")
    if not isinstance(supplier, dict) or _is_blank(supplier.get("name")):
        logger.info("Extraction rejected: no valid supplier name")
        return False

    supplier_name = supplier["name"].lower()
    if any(test_name in supplier_name for test_name in TEST_COMPANY_NAMES):
        logger.info(f"Extraction rejected: supplier name looks like test data: {supplier['name']}")
        return False

    invoice = data.get("invoice")
    if not isinstance(invoice, dict):
        logger.info("Extraction rejected: no invoice block")
        return False

    products = data.get("products")
    if products and not isinstance(products, list):
        logger.info("Extraction rejected: products is not a list")
        return False
    if not products:
        logger.info("No products extracted, adding a placeholder line from invoice totals")
        products = [placeholder_product(invoice)]
        data["products"] = products

    has_priced_product = False
    informational_count = 0

    for index, product in enumerate(products, start=1):
        if not isinstance(product, dict):
            logger.info(f"Extraction rejected: product {index} is not an object")
            return False

        description = product.get("description")
        if _is_blank(description) or len(description.strip()) < MIN_DESCRIPTION_LENGTH:
            logger.info(f"Extraction rejected: product {index} has no valid description")
            return False

        # The placeholder is generic on purpose; the user edits it before processing
        if description != PLACEHOLDER_DESCRIPTION and is_generic_description(description):
            logger.info(f"Extraction rejected: generic description for product {index}: {description}")
            return False

        description_lower = description.lower()
        if any(test_name in description_lower for test_name in TEST_PRODUCT_NAMES):
            logger.info(f"Extraction rejected: product {index} looks like test data: {description}")
            return False

        product_code = product.get("productCode")
        if isinstance(product_code, str) and product_code:
            code_lower = product_code.lower()
            if any(test_code in code_lower for test_code in TEST_PRODUCT_CODES):
                logger.info(f"Extraction rejected: product code looks like test data: {product_code}")
                return False

        quantity = to_number(product.get("quantity"))
        if quantity is None or quantity <= 0:
            logger.debug(f"Invalid quantity for product {index}, using 1: {product.get('quantity')!r}")
            quantity = 1
        product["quantity"] = quantity

        unit_price = to_number(product.get("unitPrice"))
        if unit_price is None or unit_price < 0:
            logger.debug(f"Invalid unit price for product {index}, using 0: {product.get('unitPrice')!r}")
            unit_price = 0.0
        product["unitPrice"] = unit_price

        if unit_price == 0:
            if is_informational(description):
                informational_count += 1
            else:
                logger.info(f"Product {index} priced 0 without informational wording: {description}")
        else:
            has_priced_product = True

    if not has_priced_product and informational_count == 0:
        total = invoice_total(invoice)
        if len(products) == 1 and total > 0:
            product = products[0]
            product["unitPrice"] = total / product["quantity"]
            product["totalPrice"] = total
            has_priced_product = True
            logger.info("Single zero-priced product, using invoice total as its price")
        else:
            logger.info("Extraction rejected: every product is priced 0")
            return False

    if has_priced_product:
        total_ttc = to_number(invoice.get("totalTTC"))
        if total_ttc is None or total_ttc <= 0:
            logger.info("Extraction rejected: priced products but no positive invoice total")
            return False

    logger.info(
        f"Extraction validated: {len(products)} products, "
        f"{sum(1 for p in products if p['unitPrice'] == 0)} priced 0"
    )
    return True


def generate_auto_invoice_number(today: Optional[date] = None) -> str:
    """Invoice number for documents without one: AUTO-YYYYMMDD-XXXX."""
    today = today or date.today()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"AUTO-{today:%Y%m%d}-{suffix}"


def post_process_extracted_data(data: ExtractedInvoiceData) -> ExtractedInvoiceData:
    """Fill defaults on validated data (in place) and return it."""
    invoice = data["invoice"]

    invoice["number"] = invoice_number_text(invoice.get("number"))
    if _is_blank(invoice.get("number")):
        invoice["number"] = generate_auto_invoice_number()
        logger.info(f"No invoice number found, generated {invoice['number']}")

    if _is_blank(invoice.get("date")):
        invoice["date"] = date.today().isoformat()

    for product in data["products"]:
        product["discountPercent"] = to_number(product.get("discountPercent")) or 0
        product["discountAmount"] = to_number(product.get("discountAmount")) or 0
        product["totalPrice"] = (
            to_number(product.get("totalPrice"))
            or product["quantity"] * product["unitPrice"]
            or 0
        )

    if not data["supplier"].get("country"):
        data["supplier"]["country"] = ""

    return data
