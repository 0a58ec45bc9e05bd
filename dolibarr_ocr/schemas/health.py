"""
Health check endpoint schemas.

The health endpoint is PUBLIC and returns a simple status indicator.
"""

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """
    Response model for GET /health endpoint.

    Used by load balancers, monitoring systems, and deployment checks.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "status": "ok",
                "service": "dolibarr-ocr-backend",
                "dolibarrConfigured": True,
                "geminiKeys": 2,
            }
        },
    )

    status: str = Field(
        default="ok",
        description="Health status of the API (always 'ok' if responding)",
        examples=["ok"]
    )
    service: str = Field(default="dolibarr-ocr-backend", description="Service name")
    dolibarr_configured: bool = Field(
        default=False,
        alias="dolibarrConfigured",
        description="Whether the Dolibarr URL and API key are set",
    )
    gemini_keys: int = Field(default=0, alias="geminiKeys", description="Number of Gemini API keys configured")
