"""
Error taxonomy for the invoice ingestion backend.

Every failure that crosses a layer boundary is one of these types. Routes and
exception handlers branch on the class, never on the message text.

- ValidationError: extracted/edited data is structurally invalid (HTTP 422)
- UpstreamError: Dolibarr or Gemini answered with an error or was unreachable (HTTP 503)
- NotFoundError: a requested ERP record does not exist (HTTP 404)
- ConfigurationError: the backend is missing required settings (HTTP 500)
"""

from typing import Any, Dict, Optional


class InvoiceIngestError(Exception):
    """Base class for all domain errors raised by this service."""

    def __init__(self, message: str, created_records: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        # Records already written to Dolibarr when a multi-step run aborted
        self.created_records: Dict[str, Any] = created_records or {}


class ValidationError(InvoiceIngestError):
    """Invalid or missing required field in invoice data."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field


class UpstreamError(InvoiceIngestError):
    """
    An external service (Dolibarr, Gemini) failed.

    Attributes:
        service: "dolibarr" or "gemini"
        status_code: HTTP status returned by the service, None on transport errors
        body: Raw response body, kept for diagnosis
    """

    def __init__(
        self,
        message: str,
        service: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.service = service
        self.status_code = status_code
        self.body = body


class ExtractionUnavailableError(UpstreamError):
    """Every Gemini key/model combination failed for a document."""

    def __init__(self, message: str):
        super().__init__(message, service="gemini")


class UnsupportedDocumentError(ValidationError):
    """Uploaded file is neither a PDF nor an image."""


class NotFoundError(InvoiceIngestError):
    """Requested record does not exist in Dolibarr."""


class ConfigurationError(InvoiceIngestError):
    """Required configuration (API keys, base URLs) is missing."""
