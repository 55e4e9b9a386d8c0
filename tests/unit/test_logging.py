"""Unit tests for logging setup."""

from __future__ import annotations

import logging

import pytest
import structlog

from revpi_tags.config.schema import LoggingConfig
from revpi_tags.domain.model.tags import Address, TagDescriptor, TagType
from revpi_tags.observability.logging import (
    LOG_FORMAT_ENV,
    LOG_LEVEL_ENV,
    LogContext,
    render_domain_values,
    resolve_settings,
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    monkeypatch.delenv(LOG_FORMAT_ENV, raising=False)
    return monkeypatch


class TestRenderDomainValues:
    """Tests for the domain value processor."""

    def test_renders_domain_objects(self) -> None:
        tag = TagDescriptor(name="X", type=TagType.BOOLEAN, address=Address(13, 2))
        event = render_domain_values(
            None,
            "info",
            {
                "event": "Tag written",
                "tag": tag,
                "offset": Address(30),
                "type": TagType.INT16BE,
                "raw": b"\x01\xff",
                "value": 5,
            },
        )
        assert event == {
            "event": "Tag written",
            "tag": "X@13.2",
            "offset": "30",
            "type": "int16be",
            "raw": "01 ff",
            "value": 5,
        }


class TestResolveSettings:
    """Tests for level/format precedence."""

    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        assert resolve_settings() == (logging.INFO, "console")

    def test_config_section(self, clean_env: pytest.MonkeyPatch) -> None:
        config = LoggingConfig(level="DEBUG", format="json")
        assert resolve_settings(config=config) == (logging.DEBUG, "json")

    def test_env_overrides_config(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv(LOG_LEVEL_ENV, "error")
        clean_env.setenv(LOG_FORMAT_ENV, "JSON")
        config = LoggingConfig(level="DEBUG", format="console")
        assert resolve_settings(config=config) == (logging.ERROR, "json")

    def test_arguments_override_env(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv(LOG_LEVEL_ENV, "ERROR")
        assert resolve_settings("warning", "console") == (logging.WARNING, "console")

    def test_unknown_values_fall_back(self, clean_env: pytest.MonkeyPatch) -> None:
        assert resolve_settings("chatty", "xml") == (logging.INFO, "console")


class TestLogContext:
    def test_binds_and_unbinds(self) -> None:
        with LogContext(namespace="cell1"):
            assert structlog.contextvars.get_contextvars()["namespace"] == "cell1"
        assert "namespace" not in structlog.contextvars.get_contextvars()
