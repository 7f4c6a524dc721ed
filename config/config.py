import os
from dotenv import load_dotenv
from typing import Optional

import pytz

# Configuration constants
SUBMISSIONS_COLLECTION = "survey_submissions"
ACTIVITY_COLLECTION = "survey_activity"

SUBMISSIONS_FEED_LIMIT = 50
ACTIVITY_FEED_LIMIT = 20
MATCH_CHOICES = 3

load_dotenv()

class Config:
    """Configuration class for the survey service."""

    # Record store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///surveylink.db")
    SUBMISSIONS_COLLECTION: str = SUBMISSIONS_COLLECTION
    ACTIVITY_COLLECTION: str = ACTIVITY_COLLECTION

    # Dashboard feeds
    SUBMISSIONS_FEED_LIMIT: int = int(os.getenv("SUBMISSIONS_FEED_LIMIT", str(SUBMISSIONS_FEED_LIMIT)))
    ACTIVITY_FEED_LIMIT: int = int(os.getenv("ACTIVITY_FEED_LIMIT", str(ACTIVITY_FEED_LIMIT)))
    DASHBOARD_TIMEZONE: str = os.getenv("DASHBOARD_TIMEZONE", "UTC")

    # Matching
    MATCH_CHOICES: int = MATCH_CHOICES

    # Session configuration
    SESSION_TTL: int = int(os.getenv("SESSION_TTL", "86400"))  # 24 hours default

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Web server configuration
    PORT: int = int(os.getenv("PORT", "3000"))
    HOST: str = os.getenv("HOST", "0.0.0.0")
    SSL_CERT_PATH: Optional[str] = os.getenv("SSL_CERT_PATH")
    SSL_KEY_PATH: Optional[str] = os.getenv("SSL_KEY_PATH")
    WEB_AUTH_TOKEN: str = os.getenv("WEB_AUTH_TOKEN", "")

    @classmethod
    def timezone(cls):
        """Return the tzinfo used to cut dashboard calendar days."""
        return pytz.timezone(cls.DASHBOARD_TIMEZONE)

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values."""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.SUBMISSIONS_FEED_LIMIT <= 0 or cls.ACTIVITY_FEED_LIMIT <= 0:
            raise ValueError("feed limits must be positive")
        if cls.SESSION_TTL <= 0:
            raise ValueError("SESSION_TTL must be positive")
        try:
            cls.timezone()
        except pytz.UnknownTimeZoneError as e:
            raise ValueError(f"Unknown DASHBOARD_TIMEZONE: {cls.DASHBOARD_TIMEZONE}") from e
