"""
Configuration Management for Acquirarr

This module centralizes process-level configuration: database location,
outbound HTTP timeouts, indexer throttling intervals and background
scheduler cadence.

All configuration values have sensible defaults and can be overridden via
environment variables for production deployment. Runtime toggles that an
operator flips while the service runs (redownload on failure, auto import,
propers/repacks preference) live in the Settings table instead.
"""

import os
from typing import List


class Config:
    """
    Centralized configuration management using environment variables.

    Values are read once at import time. Tests that need different
    intervals pass them to the component constructors directly.
    """

    # =============================================================================
    # APPLICATION SETTINGS
    # =============================================================================
    APP_VERSION = "1.0.0"
    APP_TITLE = "Acquirarr"
    APP_DESCRIPTION = "Automated release discovery and download lifecycle management"
    APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))

    DEBUG = os.getenv("DEBUG", "false").lower() == "true"

    # =============================================================================
    # CORS CONFIGURATION
    # =============================================================================
    # Comma-separated list of allowed origins
    CORS_ORIGINS_STR = os.getenv("CORS_ORIGINS", "")
    CORS_ORIGINS: List[str] = (
        CORS_ORIGINS_STR.split(",") if CORS_ORIGINS_STR else ["http://localhost:8000"]
    )

    # =============================================================================
    # DATABASE CONFIGURATION
    # =============================================================================
    _db_path = "./data/acquirarr.db" if os.path.exists("./data") else "./backend/data/acquirarr.db"
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"sqlite:///{_db_path}"
    )

    # =============================================================================
    # REQUEST TIMEOUTS (seconds)
    # =============================================================================
    # Indexer search / RSS request timeout
    API_REQUEST_TIMEOUT = int(os.getenv("API_REQUEST_TIMEOUT", "30"))

    # Download client API timeout
    DOWNLOAD_CLIENT_TIMEOUT = int(os.getenv("DOWNLOAD_CLIENT_TIMEOUT", "10"))

    # Outbound webhook timeout
    NOTIFICATION_TIMEOUT = int(os.getenv("NOTIFICATION_TIMEOUT", "10"))

    # =============================================================================
    # RETRY CONFIGURATION
    # =============================================================================
    MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_EXPONENTIAL_BASE = float(os.getenv("RETRY_EXPONENTIAL_BASE", "2"))

    # =============================================================================
    # INDEXER THROTTLING (seconds)
    # =============================================================================
    # Minimum spacing between any two indexer requests
    INDEXER_GLOBAL_INTERVAL = float(os.getenv("INDEXER_GLOBAL_INTERVAL", "1.0"))

    # Minimum spacing between two requests to the same indexer
    INDEXER_MIN_INTERVAL = float(os.getenv("INDEXER_MIN_INTERVAL", "3.0"))

    # Minimum spacing between the start of two logical searches
    SEARCH_MIN_INTERVAL = float(os.getenv("SEARCH_MIN_INTERVAL", "2.0"))

    # =============================================================================
    # SCHEDULER (seconds)
    # =============================================================================
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    DOWNLOAD_SYNC_INTERVAL = int(os.getenv("DOWNLOAD_SYNC_INTERVAL", "5"))
    RSS_SYNC_INTERVAL = int(os.getenv("RSS_SYNC_INTERVAL", "900"))
    MISSING_SEARCH_INTERVAL = int(os.getenv("MISSING_SEARCH_INTERVAL", "3600"))
    CUTOFF_SEARCH_INTERVAL = int(os.getenv("CUTOFF_SEARCH_INTERVAL", "21600"))

    # Pause between two targets of a batch search
    BATCH_SEARCH_DELAY = float(os.getenv("BATCH_SEARCH_DELAY", "2.0"))

    # =============================================================================
    # RSS CACHE
    # =============================================================================
    RSS_CACHE_RETENTION_DAYS = int(os.getenv("RSS_CACHE_RETENTION_DAYS", "7"))
    RSS_FETCH_LIMIT = int(os.getenv("RSS_FETCH_LIMIT", "100"))

    # =============================================================================
    # LIBRARY PATHS
    # =============================================================================
    MOVIES_ROOT = os.getenv("MOVIES_ROOT", "/data/movies")
    TV_ROOT = os.getenv("TV_ROOT", "/data/tv")

    # =============================================================================
    # LOGGING
    # =============================================================================
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"

    @classmethod
    def validate(cls) -> bool:
        """
        Validate critical configuration values.

        Returns:
            True if configuration is valid, False otherwise
        """
        if not cls.DATABASE_URL:
            return False

        if cls.APP_PORT < 1 or cls.APP_PORT > 65535:
            return False

        if cls.INDEXER_GLOBAL_INTERVAL < 0 or cls.INDEXER_MIN_INTERVAL < 0:
            return False

        if cls.DOWNLOAD_SYNC_INTERVAL < 1:
            return False

        return True

    @classmethod
    def get_summary(cls) -> dict:
        """
        Get configuration summary for logging/debugging.

        Returns:
            Dictionary with non-sensitive configuration values
        """
        return {
            "app_version": cls.APP_VERSION,
            "debug": cls.DEBUG,
            "app_host": cls.APP_HOST,
            "app_port": cls.APP_PORT,
            "database_url": cls.DATABASE_URL.split("@")[-1] if "@" in cls.DATABASE_URL else "sqlite",
            "api_timeout": cls.API_REQUEST_TIMEOUT,
            "max_retries": cls.MAX_RETRIES,
            "indexer_global_interval": cls.INDEXER_GLOBAL_INTERVAL,
            "indexer_min_interval": cls.INDEXER_MIN_INTERVAL,
            "search_min_interval": cls.SEARCH_MIN_INTERVAL,
            "scheduler_enabled": cls.SCHEDULER_ENABLED,
            "download_sync_interval": cls.DOWNLOAD_SYNC_INTERVAL,
            "rss_sync_interval": cls.RSS_SYNC_INTERVAL,
            "missing_search_interval": cls.MISSING_SEARCH_INTERVAL,
            "cutoff_search_interval": cls.CUTOFF_SEARCH_INTERVAL,
            "rss_cache_retention_days": cls.RSS_CACHE_RETENTION_DAYS,
        }


# Singleton instance
config = Config()
