"""
FastAPI application entry point for the Dolibarr OCR backend.

This module creates the FastAPI app instance, registers the domain error
handler and all routers.
"""

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dolibarr_ocr.agents.invoice.agent import EXTRACTION_UNAVAILABLE_MESSAGE
from dolibarr_ocr.config import settings
from dolibarr_ocr.errors import (
    ConfigurationError,
    InvoiceIngestError,
    NotFoundError,
    UnsupportedDocumentError,
    UpstreamError,
    ValidationError,
)
from dolibarr_ocr.routes.creation import router as creation_router
from dolibarr_ocr.routes.entities import router as entities_router
from dolibarr_ocr.routes.extract import router as extract_router
from dolibarr_ocr.routes.health import router as health_router
from dolibarr_ocr.routes.process import router as process_router
from dolibarr_ocr.routes.verify import router as verify_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    """
    Get allowed CORS origins based on environment.

    - ENVIRONMENT=production: Uses CORS_ALLOWED_ORIGINS (none allowed when unset)
    - Any other environment: Allows all origins for local dev

    Returns:
        List of allowed origin URLs, or ["*"] for development.
    """
    if settings.is_production():
        origins = settings.CORS_ALLOWED_ORIGINS
        if origins:
            logger.info(f"CORS configured for production with {len(origins)} allowed origins")
        else:
            logger.warning(
                "CORS_ALLOWED_ORIGINS not set in production. "
                "No web origins allowed. Set CORS_ALLOWED_ORIGINS for the browser client."
            )
        return list(origins)

    logger.info(f"CORS configured for {settings.ENVIRONMENT}: allowing all origins")
    return ["*"]


def _error_response(exc: InvoiceIngestError) -> tuple[int, Dict[str, Any]]:
    """Map a domain error to (HTTP status, JSON body)."""
    if isinstance(exc, UnsupportedDocumentError):
        return status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, {
            "error": "unsupported_document",
            "details": exc.message,
            "field": exc.field,
        }
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY, {
            "error": "validation_error",
            "details": exc.message,
            "field": exc.field,
        }
    if isinstance(exc, UpstreamError):
        if exc.service == "gemini":
            return status.HTTP_503_SERVICE_UNAVAILABLE, {
                "error": "extraction_unavailable",
                "details": EXTRACTION_UNAVAILABLE_MESSAGE,
            }
        return status.HTTP_503_SERVICE_UNAVAILABLE, {
            "error": "dolibarr_error",
            "details": exc.message,
        }
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND, {"error": "not_found", "details": exc.message}
    if isinstance(exc, ConfigurationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR, {
            "error": "configuration_error",
            "details": exc.message,
        }
    return status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": "internal_error", "details": exc.message}


# Create FastAPI app
app = FastAPI(
    title="Dolibarr OCR API",
    description="Invoice extraction with Gemini and supplier invoice creation in Dolibarr",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(InvoiceIngestError)
async def invoice_ingest_exception_handler(request: Request, exc: InvoiceIngestError):
    """Translate domain errors raised anywhere below the routes into HTTP responses."""
    status_code, content = _error_response(exc)
    if exc.created_records:
        content["createdRecords"] = exc.created_records

    logger.error(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
        + (f" (created records: {exc.created_records})" if exc.created_records else "")
    )
    return JSONResponse(status_code=status_code, content=content)


# Custom validation error handler to log detailed errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Log detailed validation errors for debugging.

    This helps diagnose 422 errors from the browser.
    """
    logger.error(
        f"Validation error on {request.method} {request.url.path}: {exc.errors()}"
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "details": jsonable_encoder(exc.errors()),
            "body": exc.body if isinstance(exc.body, (dict, list, str)) else None,
        }
    )


# Configure CORS with environment-based origins
cors_origins = _get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(extract_router)
app.include_router(verify_router)
app.include_router(process_router)
app.include_router(creation_router)
app.include_router(entities_router)

logger.info("FastAPI app initialized successfully")
