"""
Invoice extraction package.

Extracts structured supplier/invoice/product data from PDF or image invoices
with Google Gemini, failing over across API keys and models.

Main Components:
- types: TypedDict definitions for extracted and user-edited data
- prompts: The Spanish extraction prompt
- retry: Key/model failover state machine
- validation: Plausibility checks and defaults for extracted data
- agent: Main runner that talks to Gemini

Usage:
    from dolibarr_ocr.agents.invoice import extract_invoice_data

    data = extract_invoice_data(pdf_bytes, "application/pdf")
"""

from dolibarr_ocr.agents.invoice.agent import extract_invoice_data
from dolibarr_ocr.agents.invoice.prompts import INVOICE_EXTRACTION_PROMPT
from dolibarr_ocr.agents.invoice.retry import (
    AttemptState,
    FailureKind,
    RetryPolicy,
    classify_failure,
    next_state,
)
from dolibarr_ocr.agents.invoice.types import (
    EditableExtractedData,
    EditableProduct,
    EditableSupplier,
    ExtractedInvoice,
    ExtractedInvoiceData,
    ExtractedProduct,
    ExtractedSupplier,
)
from dolibarr_ocr.agents.invoice.validation import validate_extracted_data

__all__ = [
    # Main runner
    "extract_invoice_data",
    # Types
    "ExtractedSupplier",
    "ExtractedInvoice",
    "ExtractedProduct",
    "ExtractedInvoiceData",
    "EditableSupplier",
    "EditableProduct",
    "EditableExtractedData",
    # Retry policy
    "AttemptState",
    "FailureKind",
    "RetryPolicy",
    "classify_failure",
    "next_state",
    # Validation
    "validate_extracted_data",
    # Prompts
    "INVOICE_EXTRACTION_PROMPT",
]
