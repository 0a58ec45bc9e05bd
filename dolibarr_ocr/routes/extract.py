"""
Invoice extraction endpoint.

Flow:
1. POST /extract - Upload a PDF or image, get the extracted data back
   (PREVIEW ONLY, nothing is written to Dolibarr)

Errors:
- 415: not a PDF or image
- 422: the document was read but no invoice data could be found
- 503: every Gemini key/model is busy
- 500: the document could not be processed
"""

import logging
from typing import Annotated

from fastapi import APIRouter, File, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from dolibarr_ocr.agents.invoice import extract_invoice_data
from dolibarr_ocr.config import settings
from dolibarr_ocr.errors import InvoiceIngestError
from dolibarr_ocr.schemas.invoices import ExtractedInvoiceDataResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["extraction"])

UNREADABLE_DOCUMENT_MESSAGE = (
    "No hemos podido procesar este documento. "
    "Por favor, asegúrese de que el archivo sea legible e inténtelo de nuevo."
)


@router.post(
    "/extract",
    response_model=ExtractedInvoiceDataResponse,
    status_code=status.HTTP_200_OK,
    summary="Extract invoice data from a PDF or image",
    description="""
    Upload an invoice (PDF or image) for AI extraction.

    This endpoint:
    - Sends the document to Gemini (failing over across keys and models)
    - Validates that the result looks like a real invoice
    - Returns supplier, invoice and product data for the user to review
    - NEVER writes to Dolibarr
    """,
)
async def extract_invoice(
    file: Annotated[UploadFile, File(description="Invoice PDF or image")],
) -> ExtractedInvoiceDataResponse:
    """Extract structured data from an uploaded invoice."""
    try:
        document_bytes = await file.read()
    except Exception as e:
        logger.error(f"Failed to read uploaded file: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "file_read_error",
                "details": "Could not read uploaded file",
            },
        )

    max_size_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(document_bytes) > max_size_bytes:
        logger.warning(f"Document too large: {len(document_bytes)} bytes")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "file_too_large",
                "details": f"File must be smaller than {settings.MAX_UPLOAD_SIZE_MB}MB",
            },
        )

    logger.info(
        f"Extracting invoice: filename={file.filename}, type={file.content_type}, "
        f"size={len(document_bytes)} bytes"
    )

    try:
        data = await run_in_threadpool(extract_invoice_data, document_bytes, file.content_type or "")
        response = ExtractedInvoiceDataResponse.model_validate(data)
    except InvoiceIngestError:
        raise
    except Exception as e:
        logger.error(f"Extraction error for {file.filename}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": UNREADABLE_DOCUMENT_MESSAGE,
                "details": "Failed to process document",
            },
        )

    logger.info(
        f"Extraction done for {file.filename}: supplier='{response.supplier.name}', "
        f"invoice={response.invoice.number}, {len(response.products)} products"
    )
    return response
