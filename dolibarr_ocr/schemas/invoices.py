"""
Pydantic schemas for the invoice ingestion endpoints.

These models define the request/response contracts between the browser and
the backend. The wire format is camelCase (as produced by the extraction model
and consumed by the browser); attributes are snake_case with camelCase aliases.
Responses are serialized by alias.

Extracted data is accepted as a free-form object in verify/process requests:
it may contain user edits in any shape (numbers as strings, Spanish dates) and
is validated and coerced by the sanitizer, not here.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WireModel(BaseModel):
    """Base model: camelCase on the wire, populate by name or alias."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


# --- Extracted data models ---

class SupplierData(WireModel):
    """Supplier block of the extracted (or edited) invoice data."""
    name: str = Field(..., min_length=1, description="Supplier legal name", examples=["Infortisa S.L."])
    email: Optional[str] = Field(None, description="Supplier email")
    phone: Optional[str] = Field(None, description="Supplier phone")
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = Field(None, description="City")
    zip: Optional[str] = Field(None, description="Postal code")
    vat_number: Optional[str] = Field(None, alias="vatNumber", description="CIF/NIF")
    country: Optional[str] = Field(None, description="Country name")
    ref: Optional[str] = Field(None, description="Supplier reference chosen by the user")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Strip the name and reject it when only whitespace is left."""
        v = v.strip()
        if not v:
            raise ValueError("Supplier name cannot be empty")
        return v


class InvoiceHeaderData(WireModel):
    """Invoice identifiers and totals."""
    number: str = Field(..., description="Invoice number as printed", examples=["FAC-2024-001"])
    date: str = Field(..., description="Invoice date (YYYY-MM-DD)", examples=["2024-03-15"])
    due_date: Optional[str] = Field(None, alias="dueDate", description="Due date (YYYY-MM-DD)")
    total_ht: Optional[float] = Field(0, alias="totalHT", description="Total without VAT")
    total_ttc: Optional[float] = Field(0, alias="totalTTC", description="Total with VAT")
    total_vat: Optional[float] = Field(0, alias="totalVAT", description="VAT amount")


class ProductData(WireModel):
    """A single invoice line."""
    description: str = Field(..., description="Product description as printed")
    quantity: float = Field(1, description="Quantity")
    unit_price: float = Field(0, alias="unitPrice", description="Unit price without VAT")
    total_price: float = Field(0, alias="totalPrice", description="Line total without VAT")
    vat_rate: Optional[float] = Field(21, alias="vatRate", description="VAT percentage", examples=[21])
    discount_percent: float = Field(0, alias="discountPercent", description="Percentage discount")
    discount_amount: float = Field(0, alias="discountAmount", description="Fixed discount amount")
    product_code: Optional[str] = Field(None, alias="productCode", description="Supplier product code")
    ref: Optional[str] = Field(None, description="Dolibarr product reference chosen by the user")
    type: Optional[Literal["product", "service"]] = Field(None, description="Product or service")


class ExtractedInvoiceDataResponse(WireModel):
    """Response model for POST /extract."""
    supplier: SupplierData
    invoice: InvoiceHeaderData
    products: List[ProductData]


# --- Verification models ---

class VerifyRequest(WireModel):
    """Request body for POST /verify."""
    extracted_data: Dict[str, Any] = Field(..., alias="extractedData", description="Extracted or edited invoice data")
    entity_id: Optional[str] = Field(None, alias="entityId", description="Dolibarr multicompany entity id")


class SupplierVerification(WireModel):
    exists: bool
    id: Optional[str] = None
    needs_creation: bool = Field(..., alias="needsCreation")
    data: Dict[str, Any]


class ProductVerification(WireModel):
    exists: bool
    id: Optional[str] = None
    needs_creation: bool = Field(..., alias="needsCreation")
    data: Dict[str, Any]


class DuplicateDetails(WireModel):
    """Key fields of an already registered invoice."""
    ref: str
    ref_supplier: str
    id: str
    socid: int


class InvoiceVerification(WireModel):
    is_duplicate: bool = Field(..., alias="isDuplicate")
    existing_invoice: Optional[Dict[str, Any]] = Field(None, alias="existingInvoice")
    duplicate_details: Optional[DuplicateDetails] = Field(None, alias="duplicateDetails")


class MissingItems(WireModel):
    suppliers: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)


class VerificationResult(WireModel):
    """
    What exists in Dolibarr for a given invoice, computed fresh per call.

    can_process is True only when the supplier and every product exist and
    no duplicate invoice was found.
    """
    supplier: SupplierVerification
    products: List[ProductVerification]
    invoice: InvoiceVerification
    can_process: bool = Field(..., alias="canProcess")
    missing_items: MissingItems = Field(..., alias="missingItems")
    warnings: List[str] = Field(default_factory=list, description="Spanish messages for the user")


class VerifyResponse(WireModel):
    """Response model for POST /verify."""
    success: bool = True
    verification: VerificationResult


# --- Processing models ---

class ProcessRequest(WireModel):
    """Request body for POST /process."""
    extracted_data: Dict[str, Any] = Field(..., alias="extractedData", description="Confirmed invoice data")
    file_name: Optional[str] = Field(None, alias="fileName", description="Original file name, for logging")
    force_duplicate: bool = Field(
        False,
        alias="forceDuplicate",
        description="User confirmed processing a possible duplicate",
    )
    entity_id: Optional[str] = Field(None, alias="entityId", description="Dolibarr multicompany entity id")


class ProcessResponse(WireModel):
    """Response model for POST /process."""
    success: bool = True
    was_duplicate_forced: bool = Field(False, alias="wasDuplicateForced")
    entity_id: Optional[str] = Field(None, alias="entityId")
    supplier_id: str = Field(..., alias="supplierId")
    invoice_id: str = Field(..., alias="invoiceId")
    created_products: List[str] = Field(
        default_factory=list,
        alias="createdProducts",
        description="Ids of products created during this run",
    )
    updated_products: List[str] = Field(
        default_factory=list,
        alias="updatedProducts",
        description="Ids of existing products reused (purchase price refreshed)",
    )
    errors: List[str] = Field(default_factory=list, description="Non-fatal per-product errors")


# --- Record creation models ---

class CreateSupplierRequest(WireModel):
    """Request body for POST /create-supplier."""
    supplier_data: SupplierData = Field(..., alias="supplierData")
    entity_id: Optional[str] = Field(None, alias="entityId")


class CreateSupplierResponse(WireModel):
    success: bool = True
    supplier_id: str = Field(..., alias="supplierId")
    message: str
    is_new: bool = Field(..., alias="isNew")


class CreateProductRequest(WireModel):
    """Request body for POST /create-product."""
    product_data: ProductData = Field(..., alias="productData")
    supplier_id: Optional[str] = Field(None, alias="supplierId", description="Supplier to register a purchase price for")
    entity_id: Optional[str] = Field(None, alias="entityId")


class CreateProductResponse(WireModel):
    success: bool = True
    product_id: str = Field(..., alias="productId")
    message: str
    is_new: bool = Field(..., alias="isNew")
