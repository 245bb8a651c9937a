"""
Configuration management for the annotation service.

Loads environment variables and provides centralized config access.
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration"""

    # Flask settings
    FLASK_ENV: str = os.getenv("FLASK_ENV", "development")
    FRONTEND_URL: Optional[str] = os.getenv("FRONTEND_URL")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Storage settings
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

    # Presentation hints
    STATUS_DISPLAY_SECONDS: float = float(os.getenv("STATUS_DISPLAY_SECONDS", "5"))

    @classmethod
    def validate(cls):
        """Validate required configuration"""
        errors = []

        if cls.FLASK_ENV == "production" and not cls.DATABASE_URL:
            errors.append("DATABASE_URL is not set")
        if cls.STORE_TIMEOUT_SECONDS <= 0:
            errors.append("STORE_TIMEOUT_SECONDS must be positive")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")
