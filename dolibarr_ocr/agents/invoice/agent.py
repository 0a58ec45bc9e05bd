"""
Invoice extraction runner.

Single-shot multimodal extraction: the document is sent inline with the
extraction prompt and Gemini answers with one JSON object. Each call goes
through the configured API keys (shuffled to spread quota) and, per key,
through the key's model followed by the fallback models. Failover follows the
policy in retry.py.

Transport per attempt:
1. Direct REST call to the Generative Language API (httpx)
2. google-genai SDK for the same request when the REST call cannot reach the
   API or returns no candidates
"""

import base64
import json
import logging
import random
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from dolibarr_ocr.agents.invoice.prompts import INVOICE_EXTRACTION_PROMPT
from dolibarr_ocr.agents.invoice.retry import (
    FailureKind,
    RetryPolicy,
    classify_failure,
    initial_state,
    next_state,
)
from dolibarr_ocr.agents.invoice.types import ExtractedInvoiceData
from dolibarr_ocr.agents.invoice.validation import (
    post_process_extracted_data,
    validate_extracted_data,
)
from dolibarr_ocr.config import GeminiKeyConfig, settings
from dolibarr_ocr.errors import (
    ConfigurationError,
    ExtractionUnavailableError,
    UnsupportedDocumentError,
    UpstreamError,
    ValidationError,
)
from dolibarr_ocr.utils.logging import mask_secret

logger = logging.getLogger(__name__)

GEMINI_REST_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

GENERATION_CONFIG = {
    "temperature": 0.05,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 8192,
}

EXTRACTION_UNAVAILABLE_MESSAGE = (
    "Lo sentimos, el sistema de lectura automática está saturado en este momento. "
    "Por favor, espera unos segundos y vuelve a intentarlo."
)
NO_INVOICE_DATA_MESSAGE = (
    "No hemos podido encontrar los datos de la factura. "
    "Por favor, suba una imagen más clara o un PDF de mejor calidad."
)

CODE_FENCE_PATTERN = re.compile(r"```json\s*|\s*```")


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    """PDFs and any image type are accepted."""
    if not mime_type:
        return False
    return mime_type == "application/pdf" or mime_type.startswith("image/")


def models_for_key(key_config: GeminiKeyConfig, fallback_models: Sequence[str]) -> List[str]:
    """The key's own model first, then the fallbacks, without duplicates."""
    models: List[str] = []
    for model in [key_config.model, *fallback_models]:
        if model and model not in models:
            models.append(model)
    return models


def strip_code_fences(text: str) -> str:
    return CODE_FENCE_PATTERN.sub("", text).strip()


def call_gemini_rest(
    api_key: str,
    model: str,
    document_base64: str,
    mime_type: str,
    http_client: httpx.Client,
) -> Optional[str]:
    """
    Call generateContent over REST.

    Returns:
        The first candidate's text, or None when the response has no candidates

    Raises:
        UpstreamError: On a non-2xx response
        httpx.TransportError: When the API cannot be reached
    """
    payload = {
        "contents": [
            {
                "parts": [
                    {"inlineData": {"mimeType": mime_type, "data": document_base64}},
                    {"text": INVOICE_EXTRACTION_PROMPT},
                ]
            }
        ],
        "generationConfig": GENERATION_CONFIG,
    }

    response = http_client.post(
        GEMINI_REST_URL.format(model=model),
        params={"key": api_key},
        json=payload,
    )

    if not response.is_success:
        raise UpstreamError(
            f"Gemini REST API Error: {response.status_code}",
            service="gemini",
            status_code=response.status_code,
            body=response.text,
        )

    data = response.json()
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        return None
    return parts[0].get("text")


def call_gemini_sdk(
    api_key: str,
    model: str,
    document_bytes: bytes,
    mime_type: str,
    timeout_seconds: float,
) -> str:
    """
    Call generateContent through the google-genai SDK.

    Raises:
        UpstreamError: On any API error, or when the model returns no text
    """
    client = genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
    )

    contents = [
        types.Part(inline_data=types.Blob(mime_type=mime_type, data=document_bytes)),
        types.Part(text=INVOICE_EXTRACTION_PROMPT),
    ]
    config = types.GenerateContentConfig(
        temperature=GENERATION_CONFIG["temperature"],
        top_k=GENERATION_CONFIG["topK"],
        top_p=GENERATION_CONFIG["topP"],
        max_output_tokens=GENERATION_CONFIG["maxOutputTokens"],
    )

    try:
        response = client.models.generate_content(
            model=model,
            contents=contents,  # type: ignore
            config=config,
        )
    except genai_errors.APIError as e:
        body = json.dumps({"error": {"code": e.code, "status": e.status, "message": e.message}})
        raise UpstreamError(
            f"Gemini SDK Error: {e.code} {e.status}",
            service="gemini",
            status_code=e.code,
            body=body,
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamError(f"Gemini SDK transport error: {e}", service="gemini") from e

    if not response.candidates or not response.text:
        raise UpstreamError("Gemini SDK returned no content", service="gemini")
    return response.text


def parse_model_response(text: str) -> ExtractedInvoiceData:
    """
    Decode, validate and complete the model's JSON answer.

    Raises:
        ValueError: When the text is not a JSON object
        ValidationError: When the data does not look like a real invoice
    """
    result = json.loads(strip_code_fences(text))
    if not isinstance(result, dict):
        raise ValueError("Model response is not a JSON object")

    if not validate_extracted_data(result):
        raise ValidationError(NO_INVOICE_DATA_MESSAGE, field="supplier.name")

    return post_process_extracted_data(result)  # type: ignore


def extract_invoice_data(
    document_bytes: bytes,
    mime_type: str,
    key_configs: Optional[List[GeminiKeyConfig]] = None,
    fallback_models: Optional[Sequence[str]] = None,
    max_attempts_per_model: Optional[int] = None,
    retry_delay_seconds: Optional[float] = None,
    sleep: Callable[[float], Any] = time.sleep,
    transport: Optional[httpx.BaseTransport] = None,
) -> ExtractedInvoiceData:
    """
    Extract structured invoice data from a PDF or image.

    Args:
        document_bytes: Raw file content
        mime_type: "application/pdf" or an "image/*" type
        key_configs: Gemini keys to use (defaults to the configured keys)
        fallback_models: Models tried after each key's own model
        max_attempts_per_model: Attempts on an overloaded model
        retry_delay_seconds: Fixed wait before retrying an overloaded model
        sleep: Wait function (injectable for tests)
        transport: httpx transport for the REST calls (injectable for tests)

    Returns:
        Validated ExtractedInvoiceData with defaults filled in

    Raises:
        UnsupportedDocumentError: mime_type is neither PDF nor image
        ConfigurationError: No Gemini key is configured
        ValidationError: A model answered but the data never passed validation
        ExtractionUnavailableError: Every key/model combination failed

    Security:
        - Never logs the document content or API keys
    """
    if not is_supported_mime_type(mime_type):
        raise UnsupportedDocumentError(f"Unsupported document type: {mime_type}", field="file")

    configs = list(key_configs if key_configs is not None else settings.gemini_key_configs())
    if not configs:
        raise ConfigurationError(
            "No Gemini API keys configured. Please set GOOGLE_API_KEY in your .env file."
        )

    if fallback_models is None:
        fallback_models = settings.GEMINI_FALLBACK_MODELS
    if max_attempts_per_model is None:
        max_attempts_per_model = settings.GEMINI_MAX_ATTEMPTS_PER_MODEL
    if retry_delay_seconds is None:
        retry_delay_seconds = settings.GEMINI_RETRY_DELAY_SECONDS

    random.shuffle(configs)
    model_plan = [models_for_key(config, fallback_models) for config in configs]
    policy = RetryPolicy(
        model_counts=[len(models) for models in model_plan],
        max_attempts_per_model=max(1, max_attempts_per_model),
    )
    logger.info(
        f"Extraction started: {len(document_bytes)} bytes ({mime_type}), "
        f"{len(configs)} keys in order {[config.slot for config in configs]}"
    )

    document_base64 = base64.b64encode(document_bytes).decode("ascii")
    rejected_by_validation = False

    with httpx.Client(timeout=settings.GEMINI_TIMEOUT_SECONDS, transport=transport) as http_client:
        state = initial_state(policy)
        while state is not None:
            config = configs[state.key_index]
            model = model_plan[state.key_index][state.model_index]
            logger.info(
                f"Gemini key #{config.slot} ({mask_secret(config.api_key)}) | model {model} | "
                f"attempt {state.attempt}/{policy.max_attempts_per_model}"
            )

            try:
                try:
                    text = call_gemini_rest(config.api_key, model, document_base64, mime_type, http_client)
                except httpx.TransportError as e:
                    logger.warning(f"Gemini REST unreachable ({type(e).__name__}), falling back to SDK")
                    text = None
                if text is None:
                    text = call_gemini_sdk(
                        config.api_key, model, document_bytes, mime_type, settings.GEMINI_TIMEOUT_SECONDS
                    )

                data = parse_model_response(text)
                logger.info(
                    f"Extraction succeeded with key #{config.slot} and {model}: "
                    f"supplier='{data['supplier'].get('name')}', {len(data['products'])} products"
                )
                return data

            except ValidationError:
                rejected_by_validation = True
                failure = FailureKind.OTHER
                logger.warning(f"Key #{config.slot} / {model}: extracted data rejected")
            except UpstreamError as e:
                failure = classify_failure(e)
                logger.warning(
                    f"Key #{config.slot} / {model} failed ({failure.value}): {e.message}"
                )
            except ValueError as e:
                failure = FailureKind.OTHER
                logger.warning(f"Key #{config.slot} / {model}: unparseable response: {e}")
            except (TypeError, AttributeError, KeyError) as e:
                failure = FailureKind.OTHER
                logger.warning(
                    f"Key #{config.slot} / {model}: unexpected response shape ({type(e).__name__}: {e})"
                )

            transition = next_state(state, failure, policy)
            if transition is None:
                break
            if transition.wait:
                sleep(retry_delay_seconds)
            state = transition.state

    if rejected_by_validation:
        logger.error("Extraction failed: no model produced valid invoice data")
        raise ValidationError(NO_INVOICE_DATA_MESSAGE, field="supplier.name")

    logger.error("Extraction failed: every Gemini key/model combination failed")
    raise ExtractionUnavailableError(EXTRACTION_UNAVAILABLE_MESSAGE)
