"""
Logging utilities for the Dolibarr OCR backend.

Provides standardized logger configuration following security and privacy rules.

CRITICAL SECURITY RULES:
- NEVER log raw invoice documents or their base64 content
- NEVER log Dolibarr or Gemini API keys (use mask_secret)
- NEVER log full prompts or full model responses at INFO level

Acceptable logging:
- High-level events (e.g., "Extraction started", "Supplier created")
- Non-sensitive metadata (e.g., supplier name, invoice number, record ids)
- Matching strategy decisions (e.g., "matched with strategy 'exact ref'")
- Error codes and sanitized error messages
"""

import logging
from typing import Optional

from dolibarr_ocr.config import settings


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for the specified module.

    Args:
        name: Module name (typically __name__)
        level: Optional logging level (defaults to settings.LOG_LEVEL)

    Returns:
        Configured logger instance

    Usage:
        >>> from dolibarr_ocr.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("High-level event occurred")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)

    # Add handler if not already configured (avoid duplicate handlers)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def mask_secret(secret: Optional[str]) -> str:
    """Render a secret as '***' plus its last 4 characters."""
    if not secret:
        return "NOT_SET"
    return "***" + secret[-4:]
