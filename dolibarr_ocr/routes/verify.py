"""
Pre-processing verification endpoint.

POST /verify reports which records already exist in the selected Dolibarr
entity, which must be created, and whether the invoice looks like a
duplicate. It never writes to Dolibarr.
"""

import logging

from fastapi import APIRouter, Depends, status

from dolibarr_ocr.routes.dependencies import get_invoice_processor
from dolibarr_ocr.schemas.invoices import VerificationResult, VerifyRequest, VerifyResponse
from dolibarr_ocr.services.processor import InvoiceProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["processing"])


@router.post(
    "/verify",
    response_model=VerifyResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify extracted data against Dolibarr",
)
async def verify_extracted_data(
    request: VerifyRequest,
    processor: InvoiceProcessor = Depends(get_invoice_processor),
) -> VerifyResponse:
    """
    Check supplier, products and duplicates before processing.

    Errors:
    - 422: no supplier name, or a product without description
    - 503: Dolibarr failed
    """
    if request.entity_id:
        processor.client.set_current_entity(request.entity_id)

    logger.info(f"Verify requested: entity={request.entity_id or 'default'}")

    result = await processor.verify_data_before_processing(request.extracted_data)

    return VerifyResponse(success=True, verification=VerificationResult.model_validate(result))
