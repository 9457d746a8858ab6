"""Tests for credential redaction in the structlog pipeline."""

import json
import logging

import pytest
import structlog

from core.logging import configure_logging, get_logger, redact, redact_credentials


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    config = structlog.get_config()
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.configure(**config)


def test_redact():
    assert redact("0123456789abcdef") == "012345..."
    assert redact("abc") == "***"
    assert redact(None) == ""


def test_credential_fields_are_shortened():
    event = redact_credentials(None, "info", {
        "event": "API key created",
        "key": "0123456789abcdef",
        "token": "eyJhbGciOiJIUzI1NiJ9.payload.sig",
        "name": "ops",
    })

    assert event["key"] == "012345..."
    assert event["token"] == "eyJhbG..."
    assert event["name"] == "ops"
    assert event["event"] == "API key created"


def test_only_api_key_cache_keys_are_shortened():
    api_key = redact_credentials(None, "debug", {"cache_key": "apikey:0123456789abcdef"})
    render = redact_credentials(None, "debug", {"cache_key": "render:https://example.com/a"})

    assert api_key["cache_key"] == "apikey:012345..."
    assert render["cache_key"] == "render:https://example.com/a"


def test_non_string_values_are_left_alone():
    event = redact_credentials(None, "info", {"key": None, "cache_key": 42})
    assert event == {"key": None, "cache_key": 42}


def test_configured_pipeline_redacts(settings, capsys, restore_logging):
    settings.log_format = "json"
    settings.log_level = "INFO"
    configure_logging(settings)

    assert redact_credentials in structlog.get_config()["processors"]

    get_logger("tests.redaction").info("Cache operation", cache_key="apikey:0123456789abcdef",
                                       key="0123456789abcdef")

    record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert record["event"] == "Cache operation"
    assert record["cache_key"] == "apikey:012345..."
    assert record["key"] == "012345..."
