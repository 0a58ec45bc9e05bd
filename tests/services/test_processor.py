"""
Tests for InvoiceProcessor against the in-memory Dolibarr.
"""

import re
from datetime import date

import pytest

from dolibarr_ocr.errors import UpstreamError, ValidationError
from dolibarr_ocr.services.processor import (
    InvoiceProcessor,
    clean_description,
    find_conflicting_entity,
    generate_invoice_supplier_ref,
    generate_product_ref,
    generate_supplier_ref,
)


@pytest.fixture
def processor(dolibarr_client):
    return InvoiceProcessor(dolibarr_client)


class TestReferenceHelpers:

    def test_generate_product_ref_from_keywords(self):
        ref = generate_product_ref("Cargador universal de portátil", today=date(2024, 3, 15))

        assert ref == "CARG-UNIV-PORT-20240315"

    def test_generate_product_ref_without_keywords(self):
        ref = generate_product_ref("A 1", today=date(2024, 3, 15))

        assert re.fullmatch(r"PROD-A1-20240315-[A-Z0-9]{2}", ref)

    def test_generate_supplier_ref(self):
        assert re.fullmatch(r"SUP-INFSL-\d{13}-[A-Z0-9]{4}", generate_supplier_ref("Infortisa S.L."))

    def test_generate_invoice_supplier_ref(self):
        assert re.fullmatch(r"SUP-F-2024-001-\d{13}-[A-Z0-9]{6}", generate_invoice_supplier_ref("F-2024-001"))

    def test_clean_description(self):
        assert clean_description("  cable   HDMI® 2m  ") == "Cable HDMI 2m"

    def test_find_conflicting_entity(self):
        entities = [{"id": "1", "label": ""}, {"id": "2", "label": "Sucursal Norte"}]

        assert find_conflicting_entity("Sucursal Norte S.L.", entities)["id"] == "2"
        assert find_conflicting_entity("Infortisa", entities) is None


class TestVerify:

    @pytest.mark.asyncio
    async def test_reports_missing_supplier_and_products(self, processor, extracted_invoice):
        result = await processor.verify_data_before_processing(extracted_invoice)

        assert result["can_process"] is False
        assert result["supplier"]["needs_creation"] is True
        assert result["products"][0]["needs_creation"] is True
        assert result["missing_items"] == {
            "suppliers": ["Infortisa S.L."],
            "products": ["Cable HDMI 2m alta velocidad"],
        }
        assert result["invoice"]["is_duplicate"] is False
        assert len(result["warnings"]) == 2

    @pytest.mark.asyncio
    async def test_everything_exists(self, processor, fake_dolibarr, extracted_invoice):
        supplier = fake_dolibarr.add_third_party("Infortisa")
        product = fake_dolibarr.add_product("HDMI-2M", "Cable HDMI")

        result = await processor.verify_data_before_processing(extracted_invoice)

        assert result["can_process"] is True
        assert result["supplier"]["id"] == supplier["id"]
        assert result["products"][0]["id"] == product["id"]
        assert result["warnings"] == []

    @pytest.mark.asyncio
    async def test_detects_duplicate(self, processor, fake_dolibarr, extracted_invoice):
        supplier = fake_dolibarr.add_third_party("Infortisa S.L.")
        fake_dolibarr.add_product("HDMI-2M", "Cable HDMI")
        existing = fake_dolibarr.add_invoice("SUP-F-2024-001-1700000000000-ABCDEF", socid=supplier["id"])

        result = await processor.verify_data_before_processing(extracted_invoice)

        assert result["can_process"] is False
        assert result["invoice"]["is_duplicate"] is True
        assert result["invoice"]["duplicate_details"]["id"] == existing["id"]
        assert result["invoice"]["duplicate_details"]["socid"] == int(supplier["id"])

    @pytest.mark.asyncio
    async def test_supplier_matching_an_entity_stops_verification(self, processor, extracted_invoice):
        extracted_invoice["supplier"]["name"] = "Sucursal Norte"

        result = await processor.verify_data_before_processing(extracted_invoice)

        assert result["can_process"] is False
        assert result["products"] == []
        assert "entidades del sistema" in result["warnings"][0]

    @pytest.mark.asyncio
    async def test_missing_supplier_name(self, processor, extracted_invoice):
        extracted_invoice["supplier"]["name"] = " "

        with pytest.raises(ValidationError):
            await processor.verify_data_before_processing(extracted_invoice)

    @pytest.mark.asyncio
    async def test_product_without_description(self, processor, fake_dolibarr, extracted_invoice):
        extracted_invoice["products"].append({"quantity": 1, "unitPrice": 3})

        with pytest.raises(ValidationError) as exc_info:
            await processor.verify_data_before_processing(extracted_invoice)

        assert exc_info.value.field == "products[1].description"
        assert fake_dolibarr.requests == []

    @pytest.mark.asyncio
    async def test_numeric_invoice_number_is_checked_as_text(self, processor, fake_dolibarr, extracted_invoice):
        supplier = fake_dolibarr.add_third_party("Infortisa S.L.")
        fake_dolibarr.add_product("HDMI-2M", "Cable HDMI")
        fake_dolibarr.add_invoice("SUP-2024001-1700000000000-ABCDEF", socid=supplier["id"])
        extracted_invoice["invoice"]["number"] = 2024001

        result = await processor.verify_data_before_processing(extracted_invoice)

        assert result["invoice"]["is_duplicate"] is True

    @pytest.mark.asyncio
    async def test_never_writes(self, processor, fake_dolibarr, extracted_invoice):
        await processor.verify_data_before_processing(extracted_invoice)

        assert all(request.method == "GET" for request in fake_dolibarr.requests)


class TestProcess:

    @pytest.mark.asyncio
    async def test_creates_supplier_product_and_invoice(self, processor, fake_dolibarr, extracted_invoice):
        result = await processor.process_extracted_data(extracted_invoice)

        supplier = fake_dolibarr.third_parties[0]
        product = fake_dolibarr.products[0]
        assert result["supplier_id"] == supplier["id"]
        assert result["created_products"] == [product["id"]]
        assert result["updated_products"] == []
        assert result["errors"] == []
        assert product["ref"] == "HDMI-2M"

        invoice = fake_dolibarr.invoices[0]
        assert invoice["id"] == result["invoice_id"]
        assert invoice["socid"] == int(supplier["id"])
        assert invoice["ref_supplier"].startswith("SUP-F-2024-001-")
        assert invoice["date"] == "2024-03-15"

        line = fake_dolibarr.invoice_lines[result["invoice_id"]][0]
        assert line["qty"] == "2"
        assert line["subprice"] == "14.480"
        assert line["total_ht"] == "28.960"
        assert line["total_tva"] == "6.082"
        assert line["total_ttc"] == "35.042"
        assert line["fk_product"] == product["id"]

        assert fake_dolibarr.validated_invoices == [result["invoice_id"]]
        assert fake_dolibarr.purchase_prices[0]["buyprice"] == "14.480"

    @pytest.mark.asyncio
    async def test_reuses_existing_records(self, processor, fake_dolibarr, extracted_invoice):
        supplier = fake_dolibarr.add_third_party("Infortisa S.L.")
        product = fake_dolibarr.add_product("HDMI-2M", "Cable HDMI")

        result = await processor.process_extracted_data(extracted_invoice)

        assert result["supplier_id"] == supplier["id"]
        assert result["created_products"] == []
        assert result["updated_products"] == [product["id"]]
        assert len(fake_dolibarr.third_parties) == 1

    @pytest.mark.asyncio
    async def test_fixed_discount_becomes_capped_percentage(self, processor, fake_dolibarr, extracted_invoice):
        extracted_invoice["products"][0].update(
            {"quantity": 1, "unitPrice": 10, "totalPrice": 5, "discountAmount": 50}
        )

        result = await processor.process_extracted_data(extracted_invoice)

        line = fake_dolibarr.invoice_lines[result["invoice_id"]][0]
        assert line["remise_percent"] == "100.000"

    @pytest.mark.asyncio
    async def test_product_failure_is_collected(self, processor, fake_dolibarr, extracted_invoice):
        fake_dolibarr.fail_on[("POST", "/products")] = 500

        result = await processor.process_extracted_data(extracted_invoice)

        assert len(result["errors"]) == 1
        assert "Cable HDMI 2m alta velocidad" in result["errors"][0]
        assert result["created_products"] == []
        assert fake_dolibarr.invoice_lines[result["invoice_id"]][0]["fk_product"] is None

    @pytest.mark.asyncio
    async def test_zero_total_with_price_is_fatal(self, processor, fake_dolibarr, extracted_invoice):
        extracted_invoice["products"][0].update({"quantity": 1, "unitPrice": 10, "discountPercent": 100})

        with pytest.raises(ValidationError) as exc_info:
            await processor.process_extracted_data(extracted_invoice)

        assert exc_info.value.field == "products[0].totalPrice"
        assert exc_info.value.created_records["invoiceId"] == fake_dolibarr.invoices[0]["id"]

    @pytest.mark.asyncio
    async def test_failure_reports_created_records(self, processor, fake_dolibarr, extracted_invoice):
        fake_dolibarr.fail_on[("POST", "/supplierinvoices")] = 500

        with pytest.raises(UpstreamError) as exc_info:
            await processor.process_extracted_data(extracted_invoice)

        assert exc_info.value.created_records == {
            "supplierId": fake_dolibarr.third_parties[0]["id"],
            "productIds": [fake_dolibarr.products[0]["id"]],
            "invoiceId": None,
        }

    @pytest.mark.asyncio
    async def test_invalid_data_writes_nothing(self, processor, fake_dolibarr, extracted_invoice):
        extracted_invoice["products"] = []

        with pytest.raises(ValidationError):
            await processor.process_extracted_data(extracted_invoice)

        assert fake_dolibarr.requests == []


class TestCreationHelpers:

    @pytest.mark.asyncio
    async def test_ensure_supplier_is_idempotent(self, processor, fake_dolibarr):
        first_id, first_new = await processor.ensure_supplier({"name": "Infortisa S.L."})
        second_id, second_new = await processor.ensure_supplier({"name": "Infortisa S.L."})

        assert (first_new, second_new) == (True, False)
        assert first_id == second_id
        assert len(fake_dolibarr.third_parties) == 1

    @pytest.mark.asyncio
    async def test_create_product_record_requires_ref(self, processor):
        with pytest.raises(ValidationError) as exc_info:
            await processor.create_product_record({"description": "Cable HDMI 2m", "unitPrice": 5})

        assert exc_info.value.field == "productData.ref"

    @pytest.mark.asyncio
    async def test_create_product_record_with_supplier(self, processor, fake_dolibarr):
        product_id, is_new = await processor.create_product_record(
            {"description": "Cable HDMI 2m", "ref": "CAB-HDMI", "unitPrice": "5,5", "type": "service"},
            supplier_id="3",
        )

        assert is_new is True
        created = fake_dolibarr.products[0]
        assert created["id"] == product_id
        assert created["type"] == "1"
        assert created["price"] == "5.500"
        assert fake_dolibarr.purchase_prices[0]["fourn_id"] == 3
