"""
FastAPI dependencies shared by the routers.

Each request gets its own DolibarrClient: the selected multicompany entity is
stored on the client, so clients must never be shared between requests.
"""

from typing import AsyncIterator

from fastapi import Depends

from dolibarr_ocr.services.dolibarr_client import DolibarrClient
from dolibarr_ocr.services.processor import InvoiceProcessor


async def get_dolibarr_client() -> AsyncIterator[DolibarrClient]:
    """Yield a request-scoped Dolibarr client and close it afterwards."""
    client = DolibarrClient.from_settings()
    try:
        yield client
    finally:
        await client.aclose()


def get_invoice_processor(client: DolibarrClient = Depends(get_dolibarr_client)) -> InvoiceProcessor:
    return InvoiceProcessor(client)
