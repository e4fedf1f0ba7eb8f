"""
Tests for controller configuration and structured logging
"""

import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from loadgen.observability.logging import (
    JsonFormatter,
    clear_request_id,
    set_request_id,
)
from loadgen.server.config import ControllerConfig, get_config, reload_config


@pytest.fixture(autouse=True)
def fresh_config():
    get_config.cache_clear()
    yield
    get_config.cache_clear()


# =============================================================================
# Test: ControllerConfig
# =============================================================================


class TestControllerConfig:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ("LOADGEN_RECURRENCE_PERIOD_MS", "LOADGEN_AUTOSTART", "LOADGEN_ADMIN_TOKEN"):
            monkeypatch.delenv(name, raising=False)
        config = ControllerConfig()

        assert config.recurrence_period_ms == 2000
        assert config.autostart is False
        assert config.admin_token is None
        assert config.store_path.name == "load_generators.yaml"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LOADGEN_RECURRENCE_PERIOD_MS", "250")
        monkeypatch.setenv("LOADGEN_AUTOSTART", "true")
        monkeypatch.setenv("LOADGEN_ROOT_DIR", str(tmp_path))
        monkeypatch.setenv("LOADGEN_LOCAL_HOST_EXECUTORS", "4")

        config = reload_config()

        assert config.recurrence_period_ms == 250
        assert config.autostart is True
        assert config.local_host_executors == 4
        assert config.store_path == tmp_path / "load_generators.yaml"

    def test_recurrence_period_lower_bound(self, monkeypatch):
        monkeypatch.setenv("LOADGEN_RECURRENCE_PERIOD_MS", "1")
        with pytest.raises(PydanticValidationError):
            ControllerConfig()

    def test_get_config_is_cached(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("LOADGEN_RECURRENCE_PERIOD_MS", "777")

        assert get_config() is first
        assert reload_config().recurrence_period_ms == 777


# =============================================================================
# Test: JsonFormatter
# =============================================================================


class TestJsonFormatter:
    """Tests for structured log output."""

    def _record(self, **extra):
        record = logging.LogRecord(
            name="loadgen.test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Generator started",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_extra_fields_included(self):
        output = json.loads(JsonFormatter().format(self._record(generator_id="g-1", mode="ramp_up")))

        assert output["message"] == "Generator started"
        assert output["level"] == "INFO"
        assert output["generator_id"] == "g-1"
        assert output["mode"] == "ramp_up"
        assert "lineno" not in output

    def test_redaction(self):
        formatter = JsonFormatter(redact_fields=["admin_token"])
        output = json.loads(formatter.format(self._record(admin_token="s3cret")))
        assert output["admin_token"] == "[REDACTED]"

    def test_request_id(self):
        set_request_id("req-42")
        try:
            output = json.loads(JsonFormatter().format(self._record()))
        finally:
            clear_request_id()
        assert output["request_id"] == "req-42"

    def test_unserializable_values(self):
        output = json.loads(JsonFormatter().format(self._record(path=object())))
        assert isinstance(output["path"], str)
