"""
Configuration module for the Dolibarr OCR backend.

Loads environment variables and validates required settings.
"""
import os
from dataclasses import dataclass
from typing import List
from dotenv import load_dotenv

# Load .env file
load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class GeminiKeyConfig:
    """One Gemini API key and the model preferred for it."""
    api_key: str
    model: str
    slot: int  # 1-based position in the environment (GOOGLE_API_KEY, _2, _3)


class Settings:
    """Application settings loaded from environment variables."""

    # Dolibarr ERP
    DOLIBARR_BASE_URL: str = os.getenv("DOLIBARR_BASE_URL", "").rstrip("/")
    DOLIBARR_API_KEY: str = os.getenv("DOLIBARR_API_KEY", "")
    DOLIBARR_TIMEOUT_SECONDS: float = float(os.getenv("DOLIBARR_TIMEOUT_SECONDS", "30"))

    # Google Gemini API - up to three independent keys, each with its own model
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
    GOOGLE_API_KEY_2: str = os.getenv("GOOGLE_API_KEY_2", "")
    GOOGLE_API_KEY_3: str = os.getenv("GOOGLE_API_KEY_3", "")
    GOOGLE_GEMINI_MODEL: str = os.getenv("GOOGLE_GEMINI_MODEL", "gemini-2.5-flash")
    GOOGLE_GEMINI_MODEL_2: str = os.getenv("GOOGLE_GEMINI_MODEL_2", "gemini-2.5-flash")
    GOOGLE_GEMINI_MODEL_3: str = os.getenv("GOOGLE_GEMINI_MODEL_3", "gemini-2.5-flash")

    # Models tried after the key's own model, in order
    GEMINI_FALLBACK_MODELS: List[str] = _split_csv(
        os.getenv("GEMINI_FALLBACK_MODELS", "gemini-2.5-pro,gemini-2.0-flash")
    )
    GEMINI_MAX_ATTEMPTS_PER_MODEL: int = int(os.getenv("GEMINI_MAX_ATTEMPTS_PER_MODEL", "2"))
    GEMINI_RETRY_DELAY_SECONDS: float = float(os.getenv("GEMINI_RETRY_DELAY_SECONDS", "0.5"))
    GEMINI_TIMEOUT_SECONDS: float = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "120"))

    # Uploads
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS Settings (production only; other environments allow all origins)
    CORS_ALLOWED_ORIGINS: List[str] = _split_csv(os.getenv("CORS_ALLOWED_ORIGINS", ""))

    @classmethod
    def gemini_key_configs(cls) -> List[GeminiKeyConfig]:
        """
        Return the configured Gemini keys in environment order.

        Keys are stripped of whitespace and surrounding quotes, which are a
        common copy/paste artifact in .env files. Empty slots are skipped.
        """
        slots = [
            (cls.GOOGLE_API_KEY, cls.GOOGLE_GEMINI_MODEL),
            (cls.GOOGLE_API_KEY_2, cls.GOOGLE_GEMINI_MODEL_2),
            (cls.GOOGLE_API_KEY_3, cls.GOOGLE_GEMINI_MODEL_3),
        ]
        configs = []
        for index, (api_key, model) in enumerate(slots, start=1):
            cleaned = (api_key or "").strip().strip("\"'")
            if cleaned:
                configs.append(GeminiKeyConfig(api_key=cleaned, model=model, slot=index))
        return configs

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required settings are configured.

        Raises:
            ValueError: If any required setting is missing.
        """
        required_settings = {
            "DOLIBARR_BASE_URL": cls.DOLIBARR_BASE_URL,
            "DOLIBARR_API_KEY": cls.DOLIBARR_API_KEY,
            "GOOGLE_API_KEY": cls.GOOGLE_API_KEY or cls.GOOGLE_API_KEY_2 or cls.GOOGLE_API_KEY_3,
        }

        missing = [key for key, value in required_settings.items() if not value]

        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Please check your .env file."
            )

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment."""
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment."""
        return cls.ENVIRONMENT.lower() == "development"


# Create a singleton instance
settings = Settings()

# Validate settings on module import (will fail fast if misconfigured)
# Skip validation during tests or when importing for introspection
if os.getenv("VALIDATE_CONFIG", "true").lower() == "true":
    try:
        settings.validate()
    except ValueError as e:
        # In development, warn but don't crash
        if settings.is_development():
            print(f"⚠️  Warning: {e}")
            print("   The app may not work correctly until you configure your .env file.")
        else:
            # In production or staging, fail immediately
            raise
