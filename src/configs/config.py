"""Configuration loader for the event analytics ingest service."""

from dataclasses import dataclass, fields
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from src.configs.settings import get_settings

settings = get_settings()


class Config:
    """Configuration for the event analytics ingest service."""

    # 1. Setup Base Paths
    CONFIG_DIR = Path(__file__).parent.resolve()
    PROJECT_ROOT = settings.BASE_DIR

    # 2. Define File Paths
    INGESTION_CONFIG_PATH = settings.INGESTION_CONFIG_PATH

    @classmethod
    @lru_cache
    def load_ingestion_config(cls) -> dict:
        """Load the YAML configuration for the ingestion pipeline."""
        if not cls.INGESTION_CONFIG_PATH.exists():
            raise FileNotFoundError(f"Missing config at {cls.INGESTION_CONFIG_PATH}")

        with open(cls.INGESTION_CONFIG_PATH, encoding="utf-8") as f:
            content = f.read()

            # Substitute environment variables from settings
            # This handles placeholders like ${DATABASE_URL} in the YAML
            for key, value in settings.model_dump().items():
                placeholder = f"${{{key}}}"
                if placeholder in content:
                    # Handle SecretStr
                    val_str = (
                        value.get_secret_value()
                        if hasattr(value, "get_secret_value")
                        else str(value)
                    )
                    content = content.replace(placeholder, val_str)

            return yaml.safe_load(content) or {}


def _known_fields(cls, data: dict[str, Any] | None) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class PipelineConfig:
    """
    Configuration for the ingestion pipeline.

    Timeouts are in seconds and apply to each collaborator call.
    """

    source_type: str = "amplitude_export"
    batch_size: int = 50
    enrichment_concurrency: int = 5
    default_confidence: float = 0.8
    storage_timeout: float = 60.0
    extraction_timeout: float = 300.0
    enrichment_timeout: float = 30.0
    persistence_timeout: float = 60.0
    date_range_strategy: str = "sorted"  # 'sorted' | 'positional'

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.enrichment_concurrency < 1:
            raise ValueError(
                f"enrichment_concurrency must be >= 1, got {self.enrichment_concurrency}"
            )
        if self.date_range_strategy not in ("sorted", "positional"):
            raise ValueError(
                f"Unknown date_range_strategy '{self.date_range_strategy}'"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PipelineConfig":
        """Build from the `pipeline` section of ingestion.yaml, ignoring unknown keys."""
        return cls(**_known_fields(cls, data))


@dataclass
class DashboardConfig:
    """Limits and window sizes used when computing dashboard statistics."""

    event_limit: int = 1000
    source_limit: int = 20
    window_days: int = 7
    top_event_types: int = 6
    top_countries: int = 5
    explorer_limit: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DashboardConfig":
        """Build from the `dashboard` section of ingestion.yaml."""
        return cls(**_known_fields(cls, data))


def load_pipeline_config() -> PipelineConfig:
    """Return the pipeline section of ingestion.yaml as a PipelineConfig."""
    return PipelineConfig.from_dict(Config.load_ingestion_config().get("pipeline"))


def load_dashboard_config() -> DashboardConfig:
    """Return the dashboard section of ingestion.yaml as a DashboardConfig."""
    return DashboardConfig.from_dict(Config.load_ingestion_config().get("dashboard"))
