"""
AI Components for the Dolibarr OCR backend.

1. Invoice extraction (Single-Shot Multimodal Workflow)
   - Uses Gemini vision to read PDF/image invoices into structured JSON
   - Direct REST call with google-genai SDK fallback, multi-key/model failover
   - Located in: dolibarr_ocr/agents/invoice/
"""

from dolibarr_ocr.agents.invoice import (
    ExtractedInvoiceData,
    extract_invoice_data,
)

__all__ = [
    "extract_invoice_data",
    "ExtractedInvoiceData",
]
