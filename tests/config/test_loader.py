"""
Tests for lifecycle_config -- YAML parsing, validation, environment
overrides and the single public entrypoint.
"""

import logging
from datetime import timedelta

import pytest
import yaml

from lifecycle_config import get_active_config, log_level
from lifecycle_config.loader import DATABASE_URL_ENV, parse_settings
from lifecycle_kernel.exceptions import ConfigurationError


class TestDefaults:
    def test_shipped_default_file(self, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
        settings = get_active_config()

        assert settings.database.url == "sqlite:///lifecycle.db"
        assert settings.sla.at_risk_window == timedelta(hours=2)
        assert settings.scheduler.tick_interval_seconds == 300
        assert settings.outbound.max_attempts == 5
        assert settings.outbound.synchronous is False
        assert settings.source.endswith("default.yaml")

    def test_empty_mapping_uses_defaults(self):
        settings = parse_settings({})
        assert settings.outbound.workers == 4
        assert settings.logging.level == "INFO"
        assert log_level(settings) == logging.INFO


class TestOverrides:
    def test_yaml_file_values(self, tmp_path, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "database": {"url": "postgresql://localhost/lifecycle"},
                    "sla": {"at_risk_window_hours": 4},
                    "outbound": {"synchronous": True, "max_attempts": 2},
                    "logging": {"level": "debug"},
                }
            )
        )

        settings = get_active_config(path)
        assert settings.database.url == "postgresql://localhost/lifecycle"
        assert settings.sla.at_risk_window == timedelta(hours=4)
        assert settings.outbound.synchronous is True
        assert settings.outbound.max_attempts == 2
        assert settings.logging.level == "DEBUG"

    def test_env_overrides_database_url(self):
        settings = parse_settings(
            {"database": {"url": "sqlite:///a.db"}},
            env={DATABASE_URL_ENV: "postgresql://db/prod"},
        )
        assert settings.database.url == "postgresql://db/prod"

    def test_empty_env_value_ignored(self):
        settings = parse_settings({"database": {"url": "sqlite:///a.db"}}, env={DATABASE_URL_ENV: ""})
        assert settings.database.url == "sqlite:///a.db"

    def test_config_trace_logged(self, captured_logs, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
        get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "LIFECYCLE_CONFIG_TRACE"]
        assert len(traces) == 1
        assert "url" not in traces[0]


class TestValidation:
    @pytest.mark.parametrize(
        "data",
        [
            {"database": {"url": ""}},
            {"sla": {"at_risk_window_hours": -1}},
            {"scheduler": {"tick_interval_seconds": 0}},
            {"outbound": {"max_attempts": 0}},
            {"outbound": {"workers": -2}},
            {"outbound": {"synchronous": "yes"}},
            {"sla": {"at_risk_window_hours": "soon"}},
            {"sla": {"at_risk_window_hours": True}},
            {"logging": {"level": "CHATTY"}},
            {"sla": ["not", "a", "mapping"]},
        ],
    )
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ConfigurationError):
            parse_settings(data)

    def test_unknown_section_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown configuration sections: slas"):
            parse_settings({"slas": {}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")
