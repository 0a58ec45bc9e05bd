"""
Service layer for the Dolibarr OCR backend.

Contains the business logic between routes (HTTP layer) and external systems:
- dolibarr_client: Dolibarr REST adapter (request-scoped entity)
- matching: Ordered fuzzy matching strategies for ERP lookups
- sanitizer: Validation/coercion of user-edited invoice data
- processor: Verification and creation of supplier, products and invoice
"""

from .dolibarr_client import DolibarrClient, format_amount
from .processor import InvoiceProcessor
from .sanitizer import (
    compute_line_total,
    sanitize_number,
    validate_and_sanitize_extracted_data,
)

__all__ = [
    "DolibarrClient",
    "format_amount",
    "InvoiceProcessor",
    "compute_line_total",
    "sanitize_number",
    "validate_and_sanitize_extracted_data",
]
