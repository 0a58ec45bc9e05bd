"""
Record creation endpoints.

Used from the review screen to create the supplier or products that
verification reported as missing, before processing the invoice:
- POST /create-supplier
- POST /create-product

Both are idempotent from the user's point of view: an existing matching
record is returned (isNew=false) instead of creating a duplicate.
"""

import logging

from fastapi import APIRouter, Depends, status

from dolibarr_ocr.routes.dependencies import get_invoice_processor
from dolibarr_ocr.schemas.invoices import (
    CreateProductRequest,
    CreateProductResponse,
    CreateSupplierRequest,
    CreateSupplierResponse,
)
from dolibarr_ocr.services.processor import InvoiceProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["records"])


@router.post(
    "/create-supplier",
    response_model=CreateSupplierResponse,
    status_code=status.HTTP_200_OK,
    summary="Create a supplier in Dolibarr",
)
async def create_supplier(
    request: CreateSupplierRequest,
    processor: InvoiceProcessor = Depends(get_invoice_processor),
) -> CreateSupplierResponse:
    if request.entity_id:
        processor.client.set_current_entity(request.entity_id)

    supplier = request.supplier_data.model_dump(by_alias=True)
    supplier_id, is_new = await processor.ensure_supplier(supplier)

    return CreateSupplierResponse(
        success=True,
        supplier_id=supplier_id,
        message=(
            "Proveedor creado exitosamente en Dolibarr" if is_new
            else "Proveedor ya existe en Dolibarr"
        ),
        is_new=is_new,
    )


@router.post(
    "/create-product",
    response_model=CreateProductResponse,
    status_code=status.HTTP_200_OK,
    summary="Create a product in Dolibarr",
)
async def create_product(
    request: CreateProductRequest,
    processor: InvoiceProcessor = Depends(get_invoice_processor),
) -> CreateProductResponse:
    """
    Create a product, or reuse the matching one.

    A new product requires productData.ref (422 otherwise). When supplierId is
    given, the supplier's purchase price is recorded.
    """
    if request.entity_id:
        processor.client.set_current_entity(request.entity_id)

    product = request.product_data.model_dump(by_alias=True)
    product_id, is_new = await processor.create_product_record(product, request.supplier_id)

    return CreateProductResponse(
        success=True,
        product_id=product_id,
        message=(
            "Producto creado exitosamente en Dolibarr" if is_new
            else "Producto ya existe en Dolibarr"
        ),
        is_new=is_new,
    )
