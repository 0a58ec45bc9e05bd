"""
Invoice reconciliation and creation service.

Reconciles extracted invoice data with the records of the selected Dolibarr
entity and, after user confirmation, writes the supplier, products and
supplier invoice.

Flow:
1. verify_data_before_processing(): read-only check of what exists, what must
   be created and whether the invoice looks like a duplicate
2. process_extracted_data(): sanitize, then reuse-or-create supplier and
   products, create the invoice header and lines, validate the invoice

There is no cross-step transaction. When a run aborts after writing to
Dolibarr, the raised error carries created_records listing what now exists
(supplierId, productIds, invoiceId) so it can be reported to the user.
"""

import copy
import logging
import random
import re
import string
import time
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from dolibarr_ocr.agents.invoice.validation import invoice_number_text
from dolibarr_ocr.errors import InvoiceIngestError, ValidationError
from dolibarr_ocr.services.dolibarr_client import DolibarrClient, format_amount
from dolibarr_ocr.services.matching import normalize
from dolibarr_ocr.services.sanitizer import (
    DEFAULT_VAT_RATE,
    compute_line_total,
    sanitize_number,
    validate_and_sanitize_extracted_data,
)

logger = logging.getLogger(__name__)

REF_COMMON_WORDS = frozenset(["de", "del", "la", "el", "en", "con", "para", "por", "un", "una", "y", "o"])


# =============================================================================
# REFERENCE HELPERS
# =============================================================================

def _random_suffix(length: int) -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def clean_description(description: str) -> str:
    """Product label from a raw description: single spaces, no symbols, max 100 chars."""
    cleaned = re.sub(r"\s+", " ", description)
    cleaned = re.sub(r"[^\w\s.,()/\-]", "", cleaned).strip()[:100]
    return cleaned[:1].upper() + cleaned[1:]


def generate_product_ref(description: str, today: Optional[date] = None) -> str:
    """
    Product reference from the description's significant words.

    Example: "Cargador universal de portátil" -> "CARG-UNIV-PORT-20240315"
    """
    date_str = f"{today or date.today():%Y%m%d}"
    cleaned = clean_description(description)
    words = [
        word for word in cleaned.split(" ")
        if len(word) > 2 and word.lower() not in REF_COMMON_WORDS
    ][:3]

    if words:
        prefix = "-".join(word[:4].upper() for word in words)
        return f"{prefix}-{date_str}"

    short = re.sub(r"\s+", "", cleaned)[:8].upper()
    return f"PROD-{short or 'ITEM'}-{date_str}-{_random_suffix(2)}"


def generate_supplier_ref(name: str) -> str:
    """Supplier reference: SUP-<first 3 letters of up to 3 words>-<ms>-<RAND4>."""
    cleaned = re.sub(r"[^a-zA-Z0-9\s]", "", name).strip()
    initials = "".join(word[:3].upper() for word in cleaned.split(" ")[:3])
    return f"SUP-{initials or 'GEN'}-{_timestamp_ms()}-{_random_suffix(4)}"


def generate_invoice_supplier_ref(invoice_number: str) -> str:
    """Unique ref_supplier for a new supplier invoice; Dolibarr rejects repeats."""
    return f"SUP-{invoice_number}-{_timestamp_ms()}-{_random_suffix(6)}"


def find_conflicting_entity(supplier_name: str, entities: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the entity whose label equals, contains or is contained in the supplier name."""
    name = normalize(supplier_name)
    if not name:
        return None
    for entity in entities:
        label = normalize(entity.get("label"))
        if not label:
            continue
        if label == name or name in label or label in name:
            return entity
    return None


def _format_quantity(quantity: float) -> str:
    return str(int(quantity)) if float(quantity).is_integer() else str(quantity)


# =============================================================================
# PROCESSOR
# =============================================================================

class InvoiceProcessor:
    """
    Verifies and processes invoice data against one Dolibarr client.

    The client carries the selected entity, so a processor is as
    request-scoped as its client.
    """

    def __init__(self, client: DolibarrClient):
        self.client = client

    async def _find_existing_product(self, product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Look a product up by its refs (user ref, then product code), then by description."""
        refs = []
        for ref in (product.get("ref"), product.get("productCode")):
            if ref and ref not in refs:
                refs.append(ref)

        for ref in refs:
            existing = await self.client.get_product_by_ref(ref)
            if existing:
                return existing

        description = product.get("description")
        if not isinstance(description, str) or not description.strip():
            return None
        return await self.client.get_product_by_description(description)

    # =========================================================================
    # VERIFICATION
    # =========================================================================

    async def verify_data_before_processing(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check which records exist in the current entity before processing.

        Never writes to Dolibarr.

        Returns:
            Verification result dict:
            - supplier: {exists, id, needs_creation, data}
            - products: [{exists, id, needs_creation, data}]
            - invoice: {is_duplicate, existing_invoice, duplicate_details}
            - can_process: True only when everything exists and no duplicate was found
            - missing_items: {suppliers, products}
            - warnings: Spanish messages for the user

        Raises:
            ValidationError: No supplier name, or a malformed supplier, invoice or product
            UpstreamError: Dolibarr failed
        """
        supplier = data.get("supplier") or {}
        if not isinstance(supplier, dict):
            raise ValidationError("Los datos del proveedor no son válidos", field="supplier")
        supplier_name = supplier.get("name")
        if not isinstance(supplier_name, str) or not supplier_name.strip():
            raise ValidationError("El nombre del proveedor es obligatorio", field="supplier.name")

        invoice = data.get("invoice") or {}
        if not isinstance(invoice, dict):
            raise ValidationError("Los datos de la factura no son válidos", field="invoice")

        products = data.get("products") or []
        if not isinstance(products, list):
            raise ValidationError("La lista de productos no es válida", field="products")
        for index, product in enumerate(products):
            description = product.get("description") if isinstance(product, dict) else None
            if not isinstance(description, str) or not description.strip():
                raise ValidationError(
                    f"El producto {index + 1} debe tener una descripción",
                    field=f"products[{index}].description",
                )

        current_entity = self.client.get_current_entity()
        logger.info(f"Verifying invoice data in entity {current_entity or 'default'}")

        result: Dict[str, Any] = {
            "supplier": {"exists": False, "id": None, "needs_creation": False, "data": supplier},
            "products": [],
            "invoice": {"is_duplicate": False, "existing_invoice": None, "duplicate_details": None},
            "can_process": True,
            "missing_items": {"suppliers": [], "products": []},
            "warnings": [],
        }

        entities = await self.client.get_entities()
        conflicting_entity = find_conflicting_entity(supplier_name, entities)
        if conflicting_entity:
            logger.warning(
                f"Supplier '{supplier_name}' matches system entity "
                f"{conflicting_entity.get('id')} ('{conflicting_entity.get('label')}')"
            )
            result["warnings"].append(
                f'ATENCIÓN: El proveedor "{supplier_name}" parece ser una de las entidades del sistema '
                f'("{conflicting_entity.get("label")}"). Esto podría indicar un error en el OCR o que el '
                "documento no es una factura de proveedor válida."
            )
            result["can_process"] = False
            return result

        existing_supplier = await self.client.get_third_party_by_name(supplier_name)
        if existing_supplier:
            result["supplier"]["exists"] = True
            result["supplier"]["id"] = str(existing_supplier.get("id"))
        else:
            result["supplier"]["needs_creation"] = True
            result["missing_items"]["suppliers"].append(supplier_name)
            result["warnings"].append(f'El proveedor "{supplier_name}" no existe y debe crearse antes de procesar.')
            result["can_process"] = False

        for product in products:
            existing_product = await self._find_existing_product(product)
            if existing_product:
                result["products"].append({
                    "exists": True,
                    "id": str(existing_product.get("id")),
                    "needs_creation": False,
                    "data": product,
                })
            else:
                result["products"].append({
                    "exists": False,
                    "id": None,
                    "needs_creation": True,
                    "data": product,
                })
                result["missing_items"]["products"].append(product.get("description"))
                result["warnings"].append(
                    f'El producto "{product.get("description")}" no existe y debe crearse antes de procesar.'
                )
                result["can_process"] = False

        invoice_number = str(invoice_number_text(invoice.get("number")) or "")
        supplier_id = existing_supplier.get("id") if existing_supplier else None
        existing_invoice = await self.client.check_invoice_exists(
            generate_invoice_supplier_ref(invoice_number),
            invoice_number,
            int(supplier_id) if supplier_id else None,
            current_entity,
        )

        if existing_invoice:
            result["invoice"] = {
                "is_duplicate": True,
                "existing_invoice": existing_invoice,
                "duplicate_details": {
                    "ref": existing_invoice.get("ref") or "",
                    "ref_supplier": existing_invoice.get("ref_supplier") or "",
                    "id": str(existing_invoice.get("id") or ""),
                    "socid": int(existing_invoice.get("socid") or 0),
                },
            }
            result["warnings"].append(
                f"Posible factura duplicada encontrada en esta entidad: {existing_invoice.get('ref_supplier')}"
            )
            result["can_process"] = False

        logger.info(
            f"Verification done: can_process={result['can_process']}, "
            f"missing suppliers={len(result['missing_items']['suppliers'])}, "
            f"missing products={len(result['missing_items']['products'])}, "
            f"duplicate={result['invoice']['is_duplicate']}"
        )
        return result

    # =========================================================================
    # PROCESSING
    # =========================================================================

    async def process_extracted_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create or reuse the supplier and products, then create and validate the invoice.

        Per-product failures are collected in errors and do not stop the run;
        the affected line is still added to the invoice, without a product link.

        Returns:
            Dict with supplier_id, invoice_id, created_products (new product ids),
            updated_products (reused product ids) and errors

        Raises:
            ValidationError: Invalid data, or a line total computed as 0 with a
                nonzero unit price
            UpstreamError: Dolibarr failed on the supplier or the invoice
            Both carry created_records when something was already written.
        """
        sanitized = validate_and_sanitize_extracted_data(data)
        logger.info(
            f"Processing invoice {sanitized['invoice']['number']} from '{sanitized['supplier']['name']}' "
            f"({len(sanitized['products'])} products) in entity {self.client.get_current_entity() or 'default'}"
        )

        created_records: Dict[str, Any] = {"supplierId": None, "productIds": [], "invoiceId": None}
        errors: List[str] = []
        created_products: List[str] = []
        updated_products: List[str] = []

        try:
            supplier_id, supplier_is_new = await self.ensure_supplier(sanitized["supplier"])
            if supplier_is_new:
                created_records["supplierId"] = supplier_id

            line_product_ids: List[Optional[str]] = []
            for index, product in enumerate(sanitized["products"], start=1):
                try:
                    product_id, product_is_new = await self._process_product(product, supplier_id)
                except InvoiceIngestError as e:
                    logger.error(f"Product {index} ('{product['description']}') failed: {e.message}")
                    errors.append(f'Error procesando producto "{product["description"]}": {e.message}')
                    line_product_ids.append(None)
                    continue

                line_product_ids.append(product_id)
                if product_is_new:
                    created_products.append(product_id)
                    created_records["productIds"].append(product_id)
                else:
                    updated_products.append(product_id)

            invoice_id = await self._create_supplier_invoice(
                sanitized, supplier_id, line_product_ids, created_records
            )
        except InvoiceIngestError as e:
            e.created_records = copy.deepcopy(created_records)
            logger.error(f"Invoice processing aborted: {e.message} (created so far: {created_records})")
            raise

        logger.info(
            f"Invoice processed: supplier={supplier_id}, invoice={invoice_id}, "
            f"created products={len(created_products)}, reused products={len(updated_products)}, "
            f"errors={len(errors)}"
        )
        return {
            "supplier_id": supplier_id,
            "invoice_id": invoice_id,
            "created_products": created_products,
            "updated_products": updated_products,
            "errors": errors,
        }

    async def ensure_supplier(self, supplier: Dict[str, Any]) -> Tuple[str, bool]:
        """Return (supplier id, created) reusing an existing supplier when one matches."""
        existing = await self.client.get_third_party_by_name(supplier["name"])
        if existing:
            logger.info(f"Reusing supplier {existing.get('id')} for '{supplier['name']}'")
            return str(existing.get("id")), False

        supplier_ref = supplier.get("ref") or generate_supplier_ref(supplier["name"])
        supplier_id = await self.client.create_third_party({
            "name": supplier["name"],
            "name_alias": supplier["name"],
            "email": supplier.get("email"),
            "phone": supplier.get("phone"),
            "address": supplier.get("address"),
            "zip": supplier.get("zip"),
            "town": supplier.get("city"),
            "tva_intra": supplier.get("vatNumber"),
            "note_public": f"Proveedor creado automáticamente via OCR. Ref: {supplier_ref}",
        })
        logger.info(f"Created supplier {supplier_id} for '{supplier['name']}'")
        return supplier_id, True

    async def _process_product(self, product: Dict[str, Any], supplier_id: str) -> Tuple[str, bool]:
        """Return (product id, created) and record the supplier's purchase price."""
        existing = await self._find_existing_product(product)
        if existing:
            product_id = str(existing.get("id"))
            await self.client.add_purchase_price(
                product_id,
                supplier_id,
                product["unitPrice"],
                product["vatRate"],
                product.get("productCode") or existing.get("ref"),
            )
            logger.info(f"Reusing product {product_id} (ref={existing.get('ref')})")
            return product_id, False

        ref = product.get("ref") or product.get("productCode") or generate_product_ref(product["description"])
        product_id = await self.client.create_product({
            "ref": ref,
            "label": clean_description(product["description"]),
            "description": product["description"],
            "type": "1" if product.get("type") == "service" else "0",
            "price": format_amount(product["unitPrice"]),
            "tva_tx": format_amount(product["vatRate"]),
            "note_public": "Producto creado automáticamente desde factura de proveedor",
        })
        await self.client.add_purchase_price(
            product_id, supplier_id, product["unitPrice"], product["vatRate"], ref
        )
        logger.info(f"Created product {product_id} (ref={ref})")
        return product_id, True

    async def create_product_record(
        self,
        product: Dict[str, Any],
        supplier_id: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """
        Create a product edited by the user, or reuse the matching one.

        Unlike processing, the user must have chosen a reference for a new
        product. A purchase price is recorded only when supplier_id is given.

        Returns:
            (product id, created)

        Raises:
            ValidationError: New product without a reference
        """
        description = product.get("description") or ""
        unit_price = sanitize_number(product.get("unitPrice"), 0)
        vat_rate = sanitize_number(product.get("vatRate"), DEFAULT_VAT_RATE)

        existing = await self._find_existing_product(product)
        if existing:
            product_id = str(existing.get("id"))
            if supplier_id:
                await self.client.add_purchase_price(
                    product_id, supplier_id, unit_price, vat_rate, product.get("ref") or existing.get("ref")
                )
            logger.info(f"Product already exists: {product_id} (ref={existing.get('ref')})")
            return product_id, False

        ref = product.get("ref")
        if not ref:
            raise ValidationError("La referencia del producto es obligatoria", field="productData.ref")

        product_id = await self.client.create_product({
            "ref": ref,
            "label": description[:100],
            "description": description,
            "type": "1" if product.get("type") == "service" else "0",
            "price": format_amount(unit_price),
            "tva_tx": format_amount(vat_rate),
            "note_public": f"Producto creado vía OCR. Ref original: {product.get('productCode') or 'N/A'}",
        })
        if supplier_id:
            await self.client.add_purchase_price(product_id, supplier_id, unit_price, vat_rate, ref)

        logger.info(f"Created product {product_id} (ref={ref})")
        return product_id, True

    async def _create_supplier_invoice(
        self,
        data: Dict[str, Any],
        supplier_id: str,
        line_product_ids: List[Optional[str]],
        created_records: Dict[str, Any],
    ) -> str:
        """Create the invoice header and lines, then validate the invoice."""
        try:
            socid = int(supplier_id)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f'ID del proveedor no es un número válido: "{supplier_id}"', field="supplierId"
            ) from e

        invoice = data["invoice"]
        invoice_id = await self.client.create_supplier_invoice({
            "socid": socid,
            "ref_supplier": generate_invoice_supplier_ref(invoice["number"]),
            "date": invoice["date"],
            "type": 0,
        })
        created_records["invoiceId"] = invoice_id
        logger.info(f"Created supplier invoice {invoice_id} for invoice number {invoice['number']}")

        for index, product in enumerate(data["products"]):
            quantity = product["quantity"]
            unit_price = product["unitPrice"]
            vat_rate = product["vatRate"]
            discount_percent = product.get("discountPercent") or 0
            discount_amount = product.get("discountAmount") or 0

            total_ht = product["totalPrice"]
            if total_ht == 0 and quantity > 0 and unit_price > 0:
                total_ht = compute_line_total(quantity, unit_price, discount_percent, discount_amount)

            if total_ht == 0 and unit_price > 0:
                raise ValidationError(
                    f'Error en el cálculo del total para el producto "{product["description"]}": '
                    "el total no puede ser 0 cuando hay precio unitario",
                    field=f"products[{index}].totalPrice",
                )

            total_vat = total_ht * vat_rate / 100
            total_ttc = total_ht + total_vat

            # Dolibarr lines only take a percentage discount
            line_discount_percent = discount_percent
            if discount_amount > 0 and quantity > 0 and unit_price > 0:
                equivalent_percent = discount_amount / (quantity * unit_price) * 100
                line_discount_percent = min(100, discount_percent + equivalent_percent)

            line_id = await self.client.add_invoice_line(invoice_id, {
                "desc": product["description"],
                "qty": _format_quantity(quantity),
                "subprice": format_amount(unit_price),
                "tva_tx": format_amount(vat_rate),
                "remise_percent": format_amount(line_discount_percent),
                "total_ht": format_amount(total_ht),
                "total_tva": format_amount(total_vat),
                "total_ttc": format_amount(total_ttc),
                "fk_product": line_product_ids[index] if index < len(line_product_ids) else None,
            })
            logger.debug(f"Added line {line_id} to invoice {invoice_id}")

        await self.client.validate_supplier_invoice(invoice_id)
        return invoice_id
