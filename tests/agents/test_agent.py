"""
Tests for extract_invoice_data.

The Gemini REST API is served by httpx.MockTransport; the SDK fallback is
patched. Keys are not shuffled so the call order is deterministic.
"""

import json
from typing import Dict, List, Tuple
from unittest.mock import MagicMock, patch

import httpx
import pytest

from dolibarr_ocr.agents.invoice.agent import (
    EXTRACTION_UNAVAILABLE_MESSAGE,
    NO_INVOICE_DATA_MESSAGE,
    extract_invoice_data,
    is_supported_mime_type,
    models_for_key,
    parse_model_response,
    strip_code_fences,
)
from dolibarr_ocr.config import GeminiKeyConfig
from dolibarr_ocr.errors import (
    ConfigurationError,
    ExtractionUnavailableError,
    UnsupportedDocumentError,
    ValidationError,
)

KEYS = [
    GeminiKeyConfig(api_key="key-one", model="gemini-2.5-flash", slot=1),
    GeminiKeyConfig(api_key="key-two", model="gemini-2.5-flash", slot=2),
]
FALLBACKS = ["gemini-2.5-pro"]


def gemini_response(payload: Dict) -> httpx.Response:
    text = "```json\n" + json.dumps(payload) + "\n```"
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def gemini_error(status_code: int, api_status: str) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"error": {"code": status_code, "status": api_status, "message": "error"}},
    )


class ScriptedGemini:
    """REST fake answering from a queue of responses per (key, model)."""

    def __init__(self, script: Dict[Tuple[str, str], List[httpx.Response]]):
        self.script = script
        self.calls: List[Tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = request.url.params["key"]
        model = request.url.path.rsplit("/", 1)[-1].split(":")[0]
        self.calls.append((key, model))
        responses = self.script.get((key, model)) or [gemini_error(500, "INTERNAL")]
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        # fresh copy, a Response can only be sent once
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)


@pytest.fixture(autouse=True)
def no_shuffle():
    with patch("dolibarr_ocr.agents.invoice.agent.random.shuffle"):
        yield


def run_extraction(gemini: ScriptedGemini, sleep=None, **kwargs):
    return extract_invoice_data(
        b"%PDF-1.4 fake",
        "application/pdf",
        key_configs=list(KEYS),
        fallback_models=FALLBACKS,
        max_attempts_per_model=2,
        retry_delay_seconds=0.5,
        sleep=sleep or MagicMock(),
        transport=httpx.MockTransport(gemini.handler),
        **kwargs,
    )


class TestHelpers:

    @pytest.mark.parametrize(
        "mime_type, expected",
        [("application/pdf", True), ("image/png", True), ("image/jpeg", True), ("text/plain", False), (None, False)],
    )
    def test_is_supported_mime_type(self, mime_type, expected):
        assert is_supported_mime_type(mime_type) is expected

    def test_models_for_key_deduplicates(self):
        assert models_for_key(KEYS[0], ["gemini-2.5-pro", "gemini-2.5-flash"]) == [
            "gemini-2.5-flash",
            "gemini-2.5-pro",
        ]

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_parse_model_response_rejects_non_objects(self):
        with pytest.raises(ValueError):
            parse_model_response("[1, 2]")

    def test_parse_model_response_rejects_invalid_data(self, extracted_invoice):
        extracted_invoice["supplier"]["name"] = "Demo Company"

        with pytest.raises(ValidationError) as exc_info:
            parse_model_response(json.dumps(extracted_invoice))

        assert exc_info.value.message == NO_INVOICE_DATA_MESSAGE


class TestExtractInvoiceData:

    def test_success_on_first_attempt(self, extracted_invoice):
        gemini = ScriptedGemini({("key-one", "gemini-2.5-flash"): [gemini_response(extracted_invoice)]})

        data = run_extraction(gemini)

        assert data["supplier"]["name"] == "Infortisa S.L."
        assert data["products"][0]["totalPrice"] == pytest.approx(28.96)
        assert gemini.calls == [("key-one", "gemini-2.5-flash")]

    def test_rate_limit_moves_to_next_key_without_waiting(self, extracted_invoice):
        gemini = ScriptedGemini({
            ("key-one", "gemini-2.5-flash"): [gemini_error(429, "RESOURCE_EXHAUSTED")],
            ("key-two", "gemini-2.5-flash"): [gemini_response(extracted_invoice)],
        })
        sleep = MagicMock()

        run_extraction(gemini, sleep=sleep)

        assert gemini.calls == [("key-one", "gemini-2.5-flash"), ("key-two", "gemini-2.5-flash")]
        sleep.assert_not_called()

    def test_overloaded_model_is_retried_after_delay(self, extracted_invoice):
        gemini = ScriptedGemini({
            ("key-one", "gemini-2.5-flash"): [
                gemini_error(503, "UNAVAILABLE"),
                gemini_response(extracted_invoice),
            ],
        })
        sleep = MagicMock()

        run_extraction(gemini, sleep=sleep)

        assert gemini.calls == [("key-one", "gemini-2.5-flash"), ("key-one", "gemini-2.5-flash")]
        sleep.assert_called_once_with(0.5)

    def test_persistently_overloaded_model_falls_back_to_next_model(self, extracted_invoice):
        gemini = ScriptedGemini({
            ("key-one", "gemini-2.5-flash"): [gemini_error(503, "UNAVAILABLE")],
            ("key-one", "gemini-2.5-pro"): [gemini_response(extracted_invoice)],
        })

        run_extraction(gemini)

        assert gemini.calls == [
            ("key-one", "gemini-2.5-flash"),
            ("key-one", "gemini-2.5-flash"),
            ("key-one", "gemini-2.5-pro"),
        ]

    def test_exhaustion_raises_extraction_unavailable(self):
        gemini = ScriptedGemini({})

        with pytest.raises(ExtractionUnavailableError) as exc_info:
            run_extraction(gemini)

        assert exc_info.value.message == EXTRACTION_UNAVAILABLE_MESSAGE
        assert len(gemini.calls) == 4

    def test_rejected_data_everywhere_raises_validation_error(self, extracted_invoice):
        extracted_invoice["supplier"]["name"] = "Empresa Ejemplo"
        rejected = gemini_response(extracted_invoice)
        gemini = ScriptedGemini({
            (key.api_key, model): [rejected] for key in KEYS for model in ["gemini-2.5-flash", "gemini-2.5-pro"]
        })

        with pytest.raises(ValidationError) as exc_info:
            run_extraction(gemini)

        assert exc_info.value.message == NO_INVOICE_DATA_MESSAGE

    def test_malformed_products_move_on_to_next_key(self, extracted_invoice):
        malformed = gemini_response(dict(extracted_invoice, products=["Cable HDMI 2m alta velocidad"]))
        gemini = ScriptedGemini({
            ("key-one", "gemini-2.5-flash"): [malformed],
            ("key-one", "gemini-2.5-pro"): [malformed],
            ("key-two", "gemini-2.5-flash"): [gemini_response(extracted_invoice)],
        })

        data = run_extraction(gemini)

        assert data["products"][0]["description"] == "Cable HDMI 2m alta velocidad"
        assert gemini.calls[0] == ("key-one", "gemini-2.5-flash")
        assert gemini.calls[-1] == ("key-two", "gemini-2.5-flash")

    def test_unexpected_shape_error_moves_on_to_next_key(self, extracted_invoice):
        gemini = ScriptedGemini({
            ("key-one", "gemini-2.5-flash"): [gemini_response(extracted_invoice)],
            ("key-one", "gemini-2.5-pro"): [gemini_response(extracted_invoice)],
            ("key-two", "gemini-2.5-flash"): [gemini_response(extracted_invoice)],
        })
        real_parse = parse_model_response
        outcomes = [AttributeError("'str' object has no attribute 'get'"), KeyError("products")]

        def flaky_parse(text):
            if outcomes:
                raise outcomes.pop(0)
            return real_parse(text)

        with patch("dolibarr_ocr.agents.invoice.agent.parse_model_response", side_effect=flaky_parse):
            data = run_extraction(gemini)

        assert data["supplier"]["name"] == "Infortisa S.L."
        assert len(gemini.calls) == 3

    def test_transport_error_falls_back_to_sdk(self, extracted_invoice):
        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gemini = ScriptedGemini({})
        gemini.handler = unreachable

        with patch(
            "dolibarr_ocr.agents.invoice.agent.call_gemini_sdk",
            return_value=json.dumps(extracted_invoice),
        ) as sdk:
            data = run_extraction(gemini)

        assert data["invoice"]["number"] == "F-2024-001"
        sdk.assert_called_once()
        assert sdk.call_args.args[:2] == ("key-one", "gemini-2.5-flash")

    def test_empty_candidates_fall_back_to_sdk(self, extracted_invoice):
        gemini = ScriptedGemini({
            ("key-one", "gemini-2.5-flash"): [httpx.Response(200, json={"candidates": []})],
        })

        with patch(
            "dolibarr_ocr.agents.invoice.agent.call_gemini_sdk",
            return_value=json.dumps(extracted_invoice),
        ) as sdk:
            run_extraction(gemini)

        sdk.assert_called_once()

    def test_unsupported_document(self):
        with pytest.raises(UnsupportedDocumentError):
            extract_invoice_data(b"hello", "text/plain", key_configs=list(KEYS))

    def test_no_keys_configured(self):
        with pytest.raises(ConfigurationError):
            extract_invoice_data(b"%PDF", "application/pdf", key_configs=[])
