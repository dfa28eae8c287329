"""
Application settings.

Values come from environment variables, optionally provided through a .env
file in the working directory. Anything not set falls back to the default
shown here.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime configuration for the API, the workers and the seed script."""

    # Storage and broker
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./reviews.db")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Classification provider. An empty key is a valid setup: every review
    # then gets the rating-based fallback labels.
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")
    CLASSIFIER_TIMEOUT = float(os.getenv("CLASSIFIER_TIMEOUT", "20"))
    CLASSIFIER_MAX_TOKENS = int(os.getenv("CLASSIFIER_MAX_TOKENS", "100"))

    # Queue retry policy (attempts include the first delivery, backoff in seconds)
    ENRICHMENT_ATTEMPTS = int(os.getenv("ENRICHMENT_ATTEMPTS", "3"))
    ENRICHMENT_BACKOFF = float(os.getenv("ENRICHMENT_BACKOFF", "2"))
    AUDITLOG_ATTEMPTS = int(os.getenv("AUDITLOG_ATTEMPTS", "3"))
    AUDITLOG_BACKOFF = float(os.getenv("AUDITLOG_BACKOFF", "1"))

    # Worker pools
    ENRICHMENT_CONCURRENCY = int(os.getenv("ENRICHMENT_CONCURRENCY", "5"))
    AUDITLOG_CONCURRENCY = int(os.getenv("AUDITLOG_CONCURRENCY", "1"))

    # Query limits
    ENRICHMENT_BATCH_SIZE = int(os.getenv("ENRICHMENT_BATCH_SIZE", "50"))
    DEFAULT_PAGE_LIMIT = int(os.getenv("DEFAULT_PAGE_LIMIT", "15"))
    MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "100"))
    TRENDING_LIMIT = int(os.getenv("TRENDING_LIMIT", "5"))

    # Server
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    DEBUG = _bool(os.getenv("DEBUG", "false"))
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))


settings = Settings()
