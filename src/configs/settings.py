"""Centralized settings management for the event analytics ingest service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url


class Settings(BaseSettings):
    """
    Application settings powered by pydantic-settings.

    Loads configuration from environment variables and a .env file located
    at the project root.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = True

    # -------------------------------------------------------------------------
    # DATABASE
    # -------------------------------------------------------------------------
    # Without a DATABASE_URL the in-memory repository is used.
    DATABASE_URL: str | None = None
    DB_POOL_MAX_CONN: int = 20

    # -------------------------------------------------------------------------
    # SERVER
    # -------------------------------------------------------------------------
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # -------------------------------------------------------------------------
    # ENRICHMENT SERVICES
    # -------------------------------------------------------------------------
    OPENAI_API_KEY: SecretStr | None = None
    ANTHROPIC_API_KEY: SecretStr | None = None
    LLM_PROVIDER: str = "anthropic"
    LLM_MODEL: str | None = None

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------
    # BASE_DIR points to the project root
    BASE_DIR: Path = Path(__file__).resolve().parents[2]

    UPLOAD_DIR: Path = BASE_DIR / "data" / "uploads"
    INGESTION_CONFIG_PATH: Path = BASE_DIR / "src" / "configs" / "ingestion.yaml"

    # -------------------------------------------------------------------------
    # CONFIGURATION
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        # Allow extra fields in .env but ignore them in the model
        extra="ignore",
    )

    @property
    def uses_database(self) -> bool:
        """True when a PostgreSQL DATABASE_URL is configured."""
        return bool(self.DATABASE_URL)

    def get_psycopg2_params(self) -> dict:
        """
        Parse DATABASE_URL into psycopg2-compatible connection parameters.

        Uses sqlalchemy.make_url for robust parsing of complex connection strings.

        Returns
        -------
        dict
            psycopg2 connection arguments (host, port, dbname, user, password).

        Raises
        ------
        ValueError
            If DATABASE_URL is not configured.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")
        url = make_url(self.DATABASE_URL)
        return {
            "host": url.host,
            "port": url.port,
            "dbname": url.database,
            "user": url.username,
            "password": url.password,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns
    -------
    Settings
        The process-wide settings instance.
    """
    return Settings()
