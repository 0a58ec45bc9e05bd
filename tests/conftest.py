"""
Pytest configuration for the Dolibarr OCR backend tests.

Sets up the test environment and an in-memory Dolibarr served through
httpx.MockTransport, so the real DolibarrClient is exercised end to end
without a network.
"""
import json
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

# Disable config validation during tests
# This allows tests to run without requiring real environment variables
os.environ["VALIDATE_CONFIG"] = "false"

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DOLIBARR_BASE_URL", "http://dolibarr.test/api/index.php")
os.environ.setdefault("DOLIBARR_API_KEY", "test-dolibarr-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-api-key")

from dolibarr_ocr.services.dolibarr_client import DolibarrClient  # noqa: E402

BASE_URL = "http://dolibarr.test/api/index.php"
API_PREFIX = "/api/index.php"

ENTITY_FILTER_PATTERN = re.compile(r"t\.entity:=:'([^']*)'")
REF_LIKE_PATTERN = re.compile(r"t\.ref_supplier:like:'%(.*?)%'")


class FakeDolibarr:
    """
    Minimal in-memory Dolibarr REST API.

    List endpoints answer 404 when there are no rows, like the real API.
    Set fail_on[(method, path)] = status to make an endpoint fail.
    """

    def __init__(self):
        self.multicompany_enabled = True
        self.entities: List[Dict[str, Any]] = [
            {"id": "1", "label": "Entidad Principal", "active": "1", "visible": "1"},
            {"id": "2", "label": "Sucursal Norte", "active": "1", "visible": "1"},
            {"id": "3", "label": "Antigua Filial", "active": "0", "visible": "1"},
        ]
        self.third_parties: List[Dict[str, Any]] = []
        self.products: List[Dict[str, Any]] = []
        self.purchase_prices: List[Dict[str, Any]] = []
        self.invoices: List[Dict[str, Any]] = []
        self.invoice_lines: Dict[str, List[Dict[str, Any]]] = {}
        self.validated_invoices: List[str] = []
        self.requests: List[httpx.Request] = []
        self.fail_on: Dict[Tuple[str, str], int] = {}
        self._next_id = 1

    def _new_id(self) -> int:
        new_id = self._next_id
        self._next_id += 1
        return new_id

    def add_third_party(self, name: str, **fields: Any) -> Dict[str, Any]:
        record = {"id": str(self._new_id()), "name": name, "fournisseur": "1", **fields}
        self.third_parties.append(record)
        return record

    def add_product(self, ref: str, label: str, **fields: Any) -> Dict[str, Any]:
        record = {"id": str(self._new_id()), "ref": ref, "label": label, **fields}
        self.products.append(record)
        return record

    def add_invoice(self, ref_supplier: str, socid: str, entity: str = "1") -> Dict[str, Any]:
        invoice_id = str(self._new_id())
        record = {
            "id": invoice_id,
            "ref": f"SI{invoice_id.zfill(4)}",
            "ref_supplier": ref_supplier,
            "socid": socid,
            "entity": entity,
        }
        self.invoices.append(record)
        return record

    @staticmethod
    def _rows(rows: List[Dict[str, Any]]) -> httpx.Response:
        if not rows:
            return httpx.Response(404, json={"error": {"code": 404, "message": "Not found"}})
        return httpx.Response(200, json=rows)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method = request.method
        path = request.url.path[len(API_PREFIX):]
        params = request.url.params
        body = json.loads(request.content) if request.content else None
        entity = request.headers.get("DOLENTITY", "1")

        if (method, path) in self.fail_on:
            status = self.fail_on[(method, path)]
            return httpx.Response(status, text=f"Simulated Dolibarr failure {status}")

        if path == "/multicompany" and method == "GET":
            if not self.multicompany_enabled:
                return httpx.Response(501, text="Module multicompany not enabled")
            return httpx.Response(200, json=self.entities)

        match = re.fullmatch(r"/multicompany/(\w+)", path)
        if match and method == "GET":
            for item in self.entities:
                if item["id"] == match.group(1) and self.multicompany_enabled:
                    return httpx.Response(200, json=item)
            return httpx.Response(404, json={"error": "Entity not found"})

        if path == "/thirdparties":
            if method == "GET":
                return self._rows(self.third_parties)
            record = {"id": str(self._new_id()), **body}
            self.third_parties.append(record)
            return httpx.Response(200, json=int(record["id"]))

        match = re.fullmatch(r"/products/ref/(.+)", path)
        if match and method == "GET":
            for product in self.products:
                if product["ref"] == match.group(1):
                    return httpx.Response(200, json=product)
            return httpx.Response(404, json={"error": "Product not found"})

        match = re.fullmatch(r"/products/(\w+)/purchase_prices", path)
        if match and method == "POST":
            self.purchase_prices.append({"product_id": match.group(1), **body})
            return httpx.Response(200, json=1)

        if path == "/products":
            if method == "GET":
                return self._rows(self.products)
            record = {"id": str(self._new_id()), **body}
            self.products.append(record)
            return httpx.Response(200, json=int(record["id"]))

        if path == "/supplierinvoices":
            if method == "GET":
                return self._rows(self._search_invoices(params))
            invoice_id = str(self._new_id())
            self.invoices.append({"id": invoice_id, "entity": entity, **body})
            self.invoice_lines[invoice_id] = []
            return httpx.Response(200, json=int(invoice_id))

        match = re.fullmatch(r"/supplierinvoices/(\w+)/lines", path)
        if match and method == "POST":
            self.invoice_lines.setdefault(match.group(1), []).append(body)
            return httpx.Response(200, json=len(self.invoice_lines[match.group(1)]))

        match = re.fullmatch(r"/supplierinvoices/(\w+)/validate", path)
        if match and method == "POST":
            self.validated_invoices.append(match.group(1))
            return httpx.Response(200, json={"success": {"code": 200}})

        return httpx.Response(404, json={"error": f"No route for {method} {path}"})

    def _search_invoices(self, params: httpx.QueryParams) -> List[Dict[str, Any]]:
        rows = list(self.invoices)
        if params.get("ref_supplier"):
            rows = [row for row in rows if row.get("ref_supplier") == params["ref_supplier"]]
        if params.get("socid"):
            rows = [row for row in rows if str(row.get("socid")) == params["socid"]]

        sqlfilters = params.get("sqlfilters") or ""
        entity_match = ENTITY_FILTER_PATTERN.search(sqlfilters)
        if entity_match:
            rows = [row for row in rows if row.get("entity") == entity_match.group(1)]
        like_match = REF_LIKE_PATTERN.search(sqlfilters)
        if like_match:
            rows = [row for row in rows if like_match.group(1) in (row.get("ref_supplier") or "")]

        limit = int(params.get("limit") or 100)
        return rows[:limit]

    def last_request(self, method: str, path: str) -> Optional[httpx.Request]:
        for request in reversed(self.requests):
            if request.method == method and request.url.path == f"{API_PREFIX}{path}":
                return request
        return None


@pytest.fixture
def fake_dolibarr() -> FakeDolibarr:
    return FakeDolibarr()


def make_dolibarr_client(fake: FakeDolibarr, entity_id: Optional[str] = None) -> DolibarrClient:
    return DolibarrClient(
        BASE_URL,
        "test-dolibarr-key",
        entity_id=entity_id,
        transport=httpx.MockTransport(fake.handler),
    )


@pytest.fixture
def dolibarr_client_factory(fake_dolibarr):
    """Build clients bound to the fake, for code that opens its own client."""
    return lambda entity_id=None: make_dolibarr_client(fake_dolibarr, entity_id)


@pytest_asyncio.fixture
async def dolibarr_client(fake_dolibarr):
    """Real DolibarrClient wired to the in-memory Dolibarr."""
    client = make_dolibarr_client(fake_dolibarr)
    yield client
    await client.aclose()


@pytest.fixture
def extracted_invoice() -> Dict[str, Any]:
    """Extracted data for a two-unit HDMI cable invoice."""
    return {
        "supplier": {
            "name": "Infortisa S.L.",
            "email": "facturas@infortisa.com",
            "phone": "963 000 000",
            "address": "Calle Mayor 1",
            "city": "Valencia",
            "zip": "46001",
            "vatNumber": "B12345678",
            "country": "España",
        },
        "invoice": {
            "number": "F-2024-001",
            "date": "2024-03-15",
            "totalHT": 28.96,
            "totalTTC": 35.04,
            "totalVAT": 6.08,
        },
        "products": [
            {
                "description": "Cable HDMI 2m alta velocidad",
                "quantity": 2,
                "unitPrice": 14.48,
                "totalPrice": 0,
                "vatRate": 21,
                "discountPercent": 0,
                "discountAmount": 0,
                "productCode": "HDMI-2M",
            }
        ],
    }
