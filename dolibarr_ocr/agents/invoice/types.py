"""
Invoice extraction type definitions.

Typed contracts for the data produced by the extraction agent and edited by
the user before processing. Keys mirror the JSON exchanged with the browser and
the model (camelCase), so a payload can be passed through without renaming.
"""

from typing import List, Literal, Optional, TypedDict


class ExtractedSupplier(TypedDict, total=False):
    """Supplier (issuer) of the invoice."""
    name: str  # required, never empty after validation
    email: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    city: Optional[str]
    zip: Optional[str]
    vatNumber: Optional[str]  # CIF/NIF
    country: Optional[str]


class ExtractedInvoice(TypedDict, total=False):
    """Invoice header totals and identifiers."""
    number: str
    date: str  # YYYY-MM-DD
    dueDate: Optional[str]
    totalHT: float  # total without VAT
    totalTTC: float  # total with VAT
    totalVAT: float


class ExtractedProduct(TypedDict, total=False):
    """Single invoice line."""
    description: str
    quantity: float
    unitPrice: float  # without VAT
    totalPrice: float  # without VAT, after discounts
    vatRate: float  # percentage, e.g. 21
    discountPercent: float
    discountAmount: float  # fixed amount, absolute value
    productCode: Optional[str]


class ExtractedInvoiceData(TypedDict):
    """Output of the extraction agent."""
    supplier: ExtractedSupplier
    invoice: ExtractedInvoice
    products: List[ExtractedProduct]


class EditableSupplier(ExtractedSupplier, total=False):
    ref: Optional[str]


class EditableProduct(ExtractedProduct, total=False):
    ref: Optional[str]
    type: Literal["product", "service"]


class EditableExtractedData(TypedDict):
    """Extracted data after user review; sent to verify/process."""
    supplier: EditableSupplier
    invoice: ExtractedInvoice
    products: List[EditableProduct]
