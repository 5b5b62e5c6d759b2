"""Tests for environment-driven settings and logging setup."""

from __future__ import annotations

import json
import logging

import pytest

from config import load_settings
from logconfig import _JsonFormatter


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings({})
        assert settings.env == "dev"
        assert settings.is_dev
        assert settings.label_language == "es"
        assert settings.seed_demo_data is True
        assert settings.api_port == 8000
        assert settings.log_json is False

    def test_production_does_not_seed_by_default(self) -> None:
        settings = load_settings({"PROJECTS_ENV": "prod"})
        assert not settings.is_dev
        assert settings.seed_demo_data is False
        assert load_settings({"PROJECTS_ENV": "prod", "PROJECTS_SEED_DEMO_DATA": "yes"}).seed_demo_data

    def test_overrides(self) -> None:
        settings = load_settings({
            "PROJECTS_LOG_LEVEL": "debug",
            "PROJECTS_LOG_JSON": "1",
            "PROJECTS_LABEL_LANGUAGE": "EN",
            "PROJECTS_API_HOST": "0.0.0.0",
            "PROJECTS_API_PORT": "9000",
        })
        assert settings.log_level == "DEBUG"
        assert settings.log_json is True
        assert settings.label_language == "en"
        assert (settings.api_host, settings.api_port) == ("0.0.0.0", 9000)

    @pytest.mark.parametrize(
        "environ",
        [
            {"PROJECTS_LABEL_LANGUAGE": "fr"},
            {"PROJECTS_API_PORT": "http"},
            {"PROJECTS_API_PORT": "70000"},
        ],
    )
    def test_invalid_values(self, environ) -> None:
        with pytest.raises(ValueError):
            load_settings(environ)


class TestJsonFormatter:
    def test_includes_extra_fields(self) -> None:
        record = logging.LogRecord(
            name="application", level=logging.INFO, pathname=__file__, lineno=1,
            msg="Project created. project_id=%s", args=("p-1",), exc_info=None,
        )
        record.project_id = "p-1"
        payload = json.loads(_JsonFormatter().format(record))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "application"
        assert payload["message"] == "Project created. project_id=p-1"
        assert payload["project_id"] == "p-1"
