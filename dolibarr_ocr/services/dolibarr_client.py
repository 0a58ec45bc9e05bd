"""
Dolibarr REST API client.

Wraps the Dolibarr endpoints used by the ingestion flow (third parties,
products, supplier invoices, multicompany entities) and applies the
client-side search heuristics that Dolibarr's own sqlfilters do not reliably
support.

Multicompany scoping:
- A client instance is request-scoped. The active entity lives on the instance
  and is sent as the DOLENTITY header on every call it makes.
- Entity "1" is Dolibarr's implicit default and is never sent explicitly.
- Never share one instance across concurrent requests for different entities.

Numbers sent to Dolibarr are always fixed 3-decimal strings with a '.'
separator (see format_amount).
"""

import logging
import random
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from dolibarr_ocr.config import settings
from dolibarr_ocr.errors import ConfigurationError, UpstreamError
from dolibarr_ocr.services.matching import (
    PRODUCT_DESCRIPTION_STRATEGIES,
    PRODUCT_REF_STRATEGIES,
    SUPPLIER_STRATEGIES,
    find_first_match,
    normalize,
)
from dolibarr_ocr.utils.logging import mask_secret

logger = logging.getLogger(__name__)

DEFAULT_ENTITY_ID = "1"
DEFAULT_ENTITY_LABEL = "Entidad Principal"
SUPPLIERS_ONLY_MODE = 4
SEARCH_LIMIT = 1000
INVOICE_SEARCH_LIMIT = 10


def default_entity() -> Dict[str, Any]:
    """Entity used when the multicompany module is not installed."""
    return {
        "id": DEFAULT_ENTITY_ID,
        "label": DEFAULT_ENTITY_LABEL,
        "active": "1",
        "visible": "1",
    }


def format_amount(value: Any) -> str:
    """
    Format a number for the Dolibarr API: 3 decimals, '.' separator.

    Invalid values (None, NaN, non-numeric) are sent as "0.000".
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid amount for Dolibarr, using 0.000: {value!r}")
        return "0.000"
    if number != number:  # NaN
        logger.warning("NaN amount for Dolibarr, using 0.000")
        return "0.000"
    return f"{number:.3f}"


def price_with_vat(price: float, vat_rate: float) -> float:
    """Unit price including VAT."""
    if vat_rate == 0:
        return price
    return price * (1 + vat_rate / 100)


def generate_supplier_code() -> str:
    """Generate a Dolibarr-style supplier code: SU<yy><mm>-<nnnn>."""
    now = datetime.now()
    return f"SU{now:%y%m}-{random.randint(0, 9998):04d}"


class DolibarrClient:
    """
    Async client for the Dolibarr REST API.

    Usage:
        >>> async with DolibarrClient.from_settings(entity_id="2") as client:
        ...     supplier = await client.get_third_party_by_name("Infortisa S.L.")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        entity_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or not api_key:
            raise ConfigurationError(
                "Dolibarr configuration is missing: set DOLIBARR_BASE_URL and DOLIBARR_API_KEY"
            )
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._current_entity: Optional[str] = entity_id
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        entity_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "DolibarrClient":
        """Build a client from environment settings."""
        return cls(
            base_url=settings.DOLIBARR_BASE_URL,
            api_key=settings.DOLIBARR_API_KEY,
            entity_id=entity_id,
            timeout=settings.DOLIBARR_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "DolibarrClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # =========================================================================
    # ENTITY SCOPING
    # =========================================================================

    def set_current_entity(self, entity_id: Optional[str]) -> None:
        """Select the multicompany entity for subsequent calls on this client."""
        self._current_entity = str(entity_id) if entity_id else None
        logger.info(f"Dolibarr entity selected: {self._current_entity}")

    def get_current_entity(self) -> Optional[str]:
        return self._current_entity

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "DOLAPIKEY": self._api_key,
        }
        if self._current_entity and self._current_entity != DEFAULT_ENTITY_ID:
            headers["DOLENTITY"] = self._current_entity
        return headers

    async def _request(
        self,
        endpoint: str,
        method: str = "GET",
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform a Dolibarr API call and return the decoded JSON body.

        Raises:
            UpstreamError: On any non-2xx response or transport failure
        """
        url = f"{self.base_url}{endpoint}"
        query = {k: v for k, v in (params or {}).items() if v not in (None, "")}

        logger.debug(
            f"Dolibarr {method} {endpoint} params={query} "
            f"entity={self._current_entity or 'default'} key={mask_secret(self._api_key)}"
        )

        try:
            response = await self._http.request(
                method,
                url,
                headers=self._headers(),
                params=query or None,
                json=data if method in ("POST", "PUT") else None,
            )
        except httpx.HTTPError as e:
            logger.error(f"Dolibarr request to {endpoint} failed: {e}")
            raise UpstreamError(
                f"Dolibarr API unreachable: {e}",
                service="dolibarr",
            ) from e

        if not response.is_success:
            logger.warning(
                f"Dolibarr API error on {method} {endpoint}: "
                f"{response.status_code} - {response.text[:300]}"
            )
            raise UpstreamError(
                f"Dolibarr API Error: {response.status_code} - {response.text}",
                service="dolibarr",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return None
        return response.json()

    async def _list(self, endpoint: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """GET a Dolibarr list endpoint. A 404 means 'no rows'."""
        try:
            result = await self._request(endpoint, params=params)
        except UpstreamError as e:
            if e.status_code == 404:
                return []
            raise
        return result if isinstance(result, list) else []

    # =========================================================================
    # MULTICOMPANY ENTITIES
    # =========================================================================

    async def get_entities(self) -> List[Dict[str, Any]]:
        """
        List active, visible multicompany entities.

        Falls back to a single default entity when the multicompany module
        is not installed (its endpoint is missing or errors).
        """
        try:
            entities = await self._request("/multicompany")
        except UpstreamError as e:
            logger.info(
                f"Multicompany endpoint unavailable ({e.status_code}), assuming single entity"
            )
            return [default_entity()]

        active = [
            entity for entity in (entities or [])
            if str(entity.get("active")) == "1" and str(entity.get("visible")) == "1"
        ]
        logger.info(f"Fetched {len(active)} active entities (of {len(entities or [])})")
        return active

    async def get_entity_by_id(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one entity; the default entity '1' always exists."""
        try:
            return await self._request(f"/multicompany/{entity_id}")
        except UpstreamError:
            if str(entity_id) == DEFAULT_ENTITY_ID:
                return default_entity()
            return None

    # =========================================================================
    # THIRD PARTIES (SUPPLIERS)
    # =========================================================================

    async def get_third_parties(
        self,
        mode: Optional[int] = None,
        sqlfilters: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/thirdparties",
            {"mode": mode, "sqlfilters": sqlfilters, "limit": limit},
        )

    async def get_third_party_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Find an existing supplier by name.

        Fetches every supplier of the current entity and runs the ordered
        supplier strategies (exact, whitespace-insensitive, substring both ways,
        similarity > 0.9, similarity > 0.8, legal-suffix-insensitive).

        Returns:
            The first matching supplier record, or None
        """
        suppliers = await self.get_third_parties(mode=SUPPLIERS_ONLY_MODE, limit=SEARCH_LIMIT)
        logger.info(f"Searching supplier '{name}' among {len(suppliers)} suppliers")

        match = find_first_match(normalize(name), suppliers, SUPPLIER_STRATEGIES, required_field="name")
        if match is None:
            logger.info(f"Supplier '{name}' not found in entity {self._current_entity or 'default'}")
            return None

        supplier, strategy = match
        logger.info(f"Supplier '{name}' matched '{supplier.get('name')}' (id={supplier.get('id')}) via '{strategy}'")
        return supplier

    async def create_third_party(self, third_party: Dict[str, Any]) -> str:
        """
        Create a supplier third party and return its id.

        Missing fields get Dolibarr defaults: supplier only, VAT liable,
        Spanish language, bank transfer, due upon receipt.
        """
        supplier_code = third_party.get("code") or generate_supplier_code()
        payload = {
            "code": supplier_code,
            "code_fournisseur": supplier_code,
            "name": third_party["name"],
            "name_alias": third_party.get("name_alias") or third_party["name"],
            "client": third_party.get("client") or "0",
            "prospect": third_party.get("prospect") or "0",
            "fournisseur": third_party.get("fournisseur") or "1",
            "email": third_party.get("email") or "",
            "phone": third_party.get("phone") or "",
            "address": third_party.get("address") or "",
            "zip": third_party.get("zip") or "",
            "town": third_party.get("town") or "",
            "country_id": third_party.get("country_id") or "1",
            "tva_assuj": third_party.get("tva_assuj") or "1",
            "tva_intra": third_party.get("tva_intra") or "",
            "status": third_party.get("status") or "1",
            "note_public": third_party.get("note_public") or "Proveedor creado automáticamente via OCR",
            "default_lang": third_party.get("default_lang") or "es_ES",
            "mode_reglement_supplier_id": third_party.get("mode_reglement_supplier_id") or 2,
            "cond_reglement_supplier_id": third_party.get("cond_reglement_supplier_id") or 1,
            "fk_user_creat": third_party.get("fk_user_creat") or 1,
        }

        logger.info(f"Creating supplier '{payload['name']}' with code {supplier_code}")
        result = await self._request("/thirdparties", "POST", payload)
        return str(result)

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    async def get_products(
        self,
        sqlfilters: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list("/products", {"sqlfilters": sqlfilters, "limit": limit})

    async def get_product_by_ref(self, ref: str) -> Optional[Dict[str, Any]]:
        """
        Find a product by reference.

        Tries Dolibarr's direct ref endpoint first, then falls back to a
        client-side scan with the ordered reference strategies.
        """
        try:
            product = await self._request(f"/products/ref/{ref}")
            if product:
                logger.info(f"Product ref '{ref}' found via direct lookup (id={product.get('id')})")
                return product
        except UpstreamError:
            logger.debug(f"Direct lookup for product ref '{ref}' failed, scanning products")

        products = await self.get_products(limit=SEARCH_LIMIT)
        match = find_first_match(normalize(ref), products, PRODUCT_REF_STRATEGIES, required_field="ref")
        if match is None:
            logger.info(f"Product ref '{ref}' not found among {len(products)} products")
            return None

        product, strategy = match
        logger.info(f"Product ref '{ref}' matched '{product.get('ref')}' via '{strategy}'")
        return product

    async def get_product_by_description(self, description: str) -> Optional[Dict[str, Any]]:
        """Find a product whose label or description matches the extracted text."""
        products = await self.get_products(limit=SEARCH_LIMIT)
        match = find_first_match(normalize(description), products, PRODUCT_DESCRIPTION_STRATEGIES)
        if match is None:
            logger.info(f"Product '{description}' not found among {len(products)} products")
            return None

        product, strategy = match
        logger.info(
            f"Product '{description}' matched '{product.get('label')}' "
            f"(ref={product.get('ref')}) via '{strategy}'"
        )
        return product

    async def create_product(self, product: Dict[str, Any]) -> str:
        """Create a purchasable and sellable product and return its id."""
        payload = {
            "ref": product["ref"],
            "label": product["label"],
            "description": product.get("description") or product["label"],
            "type": product.get("type") or "0",
            "price": product.get("price") or "0",
            "tva_tx": product.get("tva_tx") or "0",
            "status": product.get("status") or "1",
            "status_buy": product.get("status_buy") or "1",
            "tobuy": product.get("tobuy") or "1",
            "tosell": product.get("tosell") or "1",
            "note_public": product.get("note_public") or "Producto creado automáticamente via OCR",
            "seuil_stock_alerte": product.get("seuil_stock_alerte") or "5",
            "desiredstock": product.get("desiredstock") or "20",
            "default_lang": product.get("default_lang") or "es_ES",
        }

        logger.info(f"Creating product ref={payload['ref']}")
        result = await self._request("/products", "POST", payload)
        return str(result)

    async def add_purchase_price(
        self,
        product_id: str,
        supplier_id: str,
        price: float,
        vat_rate: float,
        product_ref: Optional[str] = None,
    ) -> None:
        """
        Register the supplier's purchase price for a product.

        Failures are logged and swallowed: a missing purchase price must not
        block invoice creation.
        """
        payload = {
            "qty": 1,
            "buyprice": format_amount(price),
            "price_base_type": "HT",
            "fourn_id": int(supplier_id),
            "availability": 1,
            "ref_fourn": product_ref or f"SUP-{product_id}-{supplier_id}",
            "tva_tx": format_amount(vat_rate),
        }
        try:
            await self._request(f"/products/{product_id}/purchase_prices", "POST", payload)
            logger.info(f"Purchase price set for product {product_id} / supplier {supplier_id}")
        except UpstreamError as e:
            logger.warning(f"Could not set purchase price for product {product_id}: {e.message}")

    # =========================================================================
    # SUPPLIER INVOICES
    # =========================================================================

    async def create_supplier_invoice(self, invoice: Dict[str, Any]) -> str:
        """Create a draft supplier invoice header and return its id."""
        payload = {
            "socid": invoice["socid"],
            "ref": invoice.get("ref") or "auto",
            "ref_supplier": invoice["ref_supplier"],
            "date": invoice["date"],
            "date_echeance": invoice.get("date_echeance") or "",
            "note_public": invoice.get("note_public") or "Factura creada automáticamente via OCR",
            "note_private": invoice.get("note_private") or "",
            "cond_reglement_id": invoice.get("cond_reglement_id") or 1,
            "mode_reglement_id": invoice.get("mode_reglement_id") or 2,
            "type": invoice.get("type") or 0,
            "order_supplier": invoice.get("order_supplier") or 0,
            "multicurrency_code": invoice.get("multicurrency_code") or "EUR",
            "multicurrency_tx": invoice.get("multicurrency_tx") or "1.00000000",
            "fk_account": invoice.get("fk_account") or 0,
        }

        logger.info(
            f"Creating supplier invoice ref_supplier={payload['ref_supplier']} for socid={payload['socid']}"
        )
        result = await self._request("/supplierinvoices", "POST", payload)
        return str(result)

    async def add_invoice_line(self, invoice_id: str, line: Dict[str, Any]) -> str:
        """Append a line to a draft supplier invoice and return the line id."""
        payload = {
            "desc": line["desc"],
            "qty": line["qty"],
            "subprice": line["subprice"],
            "pu_ht": line["subprice"],
            "pu_ttc": format_amount(price_with_vat(float(line["subprice"]), float(line["tva_tx"]))),
            "tva_tx": line["tva_tx"],
            "remise_percent": line.get("remise_percent") or "0.000",
            "total_ht": line["total_ht"],
            "total_tva": line["total_tva"],
            "total_ttc": line["total_ttc"],
            "fk_product": line.get("fk_product"),
            "product_type": "0",
            "info_bits": "0",
            "rang": "1",
        }

        result = await self._request(f"/supplierinvoices/{invoice_id}/lines", "POST", payload)
        return str(result)

    async def validate_supplier_invoice(self, invoice_id: str) -> None:
        """Validate (finalize) a draft supplier invoice."""
        await self._request(f"/supplierinvoices/{invoice_id}/validate", "POST", {"notrigger": 0})
        logger.info(f"Supplier invoice {invoice_id} validated")

    async def get_supplier_invoice_by_ref(self, ref: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._request(f"/supplierinvoices/ref/{ref}")
        except UpstreamError:
            logger.debug(f"No supplier invoice with ref {ref}")
            return None

    async def search_supplier_invoices(
        self,
        socid: Optional[int] = None,
        ref_supplier: Optional[str] = None,
        sqlfilters: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/supplierinvoices",
            {
                "socid": socid,
                "ref_supplier": ref_supplier,
                "sqlfilters": sqlfilters,
                "limit": limit,
            },
        )

    async def check_invoice_exists(
        self,
        supplier_ref: str,
        invoice_number: str,
        supplier_id: Optional[int] = None,
        entity_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Look for an already-registered supplier invoice.

        Up to three searches are run in order: by supplier reference, by
        invoice number inside ref_supplier, and by invoice number for the known
        supplier. Each is restricted to entity_id when it is not the default
        entity. The first invoice whose ref_supplier equals supplier_ref or
        contains invoice_number is returned.
        """
        entity_filter = ""
        if entity_id and str(entity_id) != DEFAULT_ENTITY_ID:
            entity_filter = f"(t.entity:=:'{_escape_sql_value(str(entity_id))}')"

        number_filter = f"(t.ref_supplier:like:'%{_escape_sql_value(invoice_number)}%')"
        scoped_number_filter = f"{number_filter} and {entity_filter}" if entity_filter else number_filter

        searches = [
            {"ref_supplier": supplier_ref, "sqlfilters": entity_filter or None},
            {"sqlfilters": scoped_number_filter},
        ]
        if supplier_id:
            searches.append({"socid": supplier_id, "sqlfilters": scoped_number_filter})

        for search in searches:
            invoices = await self.search_supplier_invoices(limit=INVOICE_SEARCH_LIMIT, **search)
            for invoice in invoices:
                ref_supplier = invoice.get("ref_supplier") or ""
                if ref_supplier == supplier_ref or (invoice_number and invoice_number in ref_supplier):
                    logger.warning(
                        f"Possible duplicate invoice in entity {entity_id or 'default'}: "
                        f"id={invoice.get('id')} ref_supplier={ref_supplier}"
                    )
                    return invoice

        logger.info(f"No duplicate invoice for number {invoice_number} in entity {entity_id or 'default'}")
        return None


def _escape_sql_value(value: str) -> str:
    """Escape a value embedded in a Dolibarr sqlfilters string."""
    return re.sub(r"'", "\\'", value)
