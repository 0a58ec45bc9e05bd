"""
Invoice processing endpoint.

POST /process writes the confirmed invoice to Dolibarr: supplier, products,
supplier invoice with its lines, then validates the invoice.
"""

import logging

from fastapi import APIRouter, Depends, status

from dolibarr_ocr.routes.dependencies import get_invoice_processor
from dolibarr_ocr.schemas.invoices import ProcessRequest, ProcessResponse
from dolibarr_ocr.services.processor import InvoiceProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["processing"])


@router.post(
    "/process",
    response_model=ProcessResponse,
    status_code=status.HTTP_200_OK,
    summary="Create the supplier invoice in Dolibarr",
    description="""
    Process confirmed invoice data.

    This endpoint:
    - Validates and sanitizes the (possibly edited) data
    - Reuses or creates the supplier and each product
    - Creates the supplier invoice with one line per product and validates it
    - Collects per-product failures in `errors` without aborting

    When the run aborts after writing to Dolibarr, the error response lists
    the records already created in `createdRecords`.
    """,
)
async def process_extracted_data(
    request: ProcessRequest,
    processor: InvoiceProcessor = Depends(get_invoice_processor),
) -> ProcessResponse:
    """Create supplier, products and invoice from confirmed data."""
    if request.entity_id:
        processor.client.set_current_entity(request.entity_id)

    logger.info(
        f"Process requested for {request.file_name or 'unknown file'} "
        f"(entity={request.entity_id or 'default'})"
    )
    if request.force_duplicate:
        logger.warning("Processing a possible duplicate invoice confirmed by the user")

    result = await processor.process_extracted_data(request.extracted_data)

    return ProcessResponse(
        success=True,
        was_duplicate_forced=request.force_duplicate,
        entity_id=request.entity_id,
        **result,
    )
