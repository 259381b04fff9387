"""
Unit tests for the config module.

Tests for Config path resolution, YAML loading and the pipeline/dashboard
configuration dataclasses.
"""

from pathlib import Path

import pytest

from src.configs.config import (
    Config,
    DashboardConfig,
    PipelineConfig,
    load_dashboard_config,
    load_pipeline_config,
)


class TestConfigPaths:
    """Tests for Config path attributes."""

    def test_config_dir_exists(self):
        """CONFIG_DIR should exist."""
        assert isinstance(Config.CONFIG_DIR, Path)
        assert Config.CONFIG_DIR.exists()

    def test_project_root_exists(self):
        """PROJECT_ROOT should exist."""
        assert isinstance(Config.PROJECT_ROOT, Path)
        assert Config.PROJECT_ROOT.exists()

    def test_ingestion_config_path(self):
        """INGESTION_CONFIG_PATH should point at the bundled YAML."""
        assert Config.INGESTION_CONFIG_PATH.exists()


class TestLoadIngestionConfig:
    """Tests for load_ingestion_config."""

    def test_returns_sections(self):
        config = Config.load_ingestion_config()
        assert "pipeline" in config
        assert "dashboard" in config

    def test_substitutes_placeholders(self):
        """${LLM_PROVIDER} should be replaced from settings."""
        config = Config.load_ingestion_config()
        assert "${" not in str(config["enrichment"]["provider"])


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.batch_size == 50
        assert config.default_confidence == 0.8
        assert config.date_range_strategy == "sorted"

    def test_from_dict_ignores_unknown_keys(self):
        config = PipelineConfig.from_dict({"batch_size": 10, "unknown": True})
        assert config.batch_size == 10

    def test_from_dict_none(self):
        assert PipelineConfig.from_dict(None) == PipelineConfig()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"batch_size": 0},
            {"enrichment_concurrency": 0},
            {"date_range_strategy": "random"},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            PipelineConfig(**kwargs)

    def test_loaded_from_yaml(self):
        config = load_pipeline_config()
        assert config.batch_size == 50
        assert config.enrichment_concurrency == 5
        assert config.source_type == "amplitude_export"


class TestDashboardConfig:
    """Tests for DashboardConfig."""

    def test_loaded_from_yaml(self):
        config = load_dashboard_config()
        assert config == DashboardConfig()
        assert config.event_limit == 1000
        assert config.window_days == 7
        assert config.top_event_types == 6
        assert config.top_countries == 5
