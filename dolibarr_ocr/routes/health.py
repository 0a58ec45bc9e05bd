"""
Health check route for the Dolibarr OCR backend.

This endpoint is PUBLIC and provides a simple status check for load
balancers, monitoring, and deployment verification. It does not contact
Dolibarr or Gemini.
"""

from fastapi import APIRouter

from dolibarr_ocr.config import settings
from dolibarr_ocr.schemas.health import HealthResponse
from dolibarr_ocr.utils.logging import get_logger, mask_secret

logger = get_logger(__name__)

# Create router with no prefix (mounted at root level in main.py)
router = APIRouter(tags=["system"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description=(
        "Public health check endpoint. Returns a status indicator and whether "
        "the Dolibarr and Gemini settings are present."
    ),
    status_code=200,
)
async def health_check() -> HealthResponse:
    """
    Public health check endpoint.

    Example response:
        {
            "status": "ok",
            "service": "dolibarr-ocr-backend",
            "dolibarrConfigured": true,
            "geminiKeys": 2
        }
    """
    key_configs = settings.gemini_key_configs()
    logger.debug(
        f"Health check called (dolibarr key={mask_secret(settings.DOLIBARR_API_KEY)}, "
        f"gemini keys={len(key_configs)})"
    )

    return HealthResponse(
        status="ok",
        dolibarr_configured=bool(settings.DOLIBARR_BASE_URL and settings.DOLIBARR_API_KEY),
        gemini_keys=len(key_configs),
    )
