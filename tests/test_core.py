import logging

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.core.errors import TokenRefreshError, UpstreamError
from app.core.logging_config import SuppressPatternsFilter, build_logging_config
from app.core.security import sanitize_for_logging
from app.models.schemas import as_address_list
from app.services.sync.canonical import extract_address, parse_timestamp, split_address_list


def record(message):
    return logging.LogRecord("test", logging.INFO, __file__, 1, message, None, None)


def test_suppress_patterns_filter():
    f = SuppressPatternsFilter(["Received 404", ""])

    assert not f.filter(record("HTTP Request: GET ... Received 404 from upstream"))
    assert f.filter(record("Synced 3 emails"))
    assert SuppressPatternsFilter().filter(record("anything"))


def test_logging_config_quiets_http_libraries(settings):
    config = build_logging_config(settings)

    assert config["loggers"]["httpx"] == {"level": "WARNING"}
    assert config["root"]["handlers"] == ["console"]


def test_debug_outside_production_logs_debug(settings):
    config = build_logging_config(settings.model_copy(update={"debug": True, "environment": "development"}))
    assert config["root"]["level"] == "DEBUG"


def test_settings_reject_non_positive_state_ttl(monkeypatch):
    monkeypatch.setenv("OAUTH_STATE_TTL_SECONDS", "0")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_load_without_anon_key(monkeypatch):
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

    settings = Settings()

    assert settings.supabase_service_key
    assert not hasattr(settings, "supabase_anon_key")


def test_settings_provider_flags(settings):
    assert settings.azure_configured
    assert settings.azure_token_url == "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    assert not settings.model_copy(update={"gmail_redirect_uri": None}).google_configured


def test_upstream_error_embeds_body():
    error = TokenRefreshError("Failed to refresh access token", upstream_status=400, upstream_body='{"error":"invalid_grant"}')

    assert isinstance(error, UpstreamError)
    assert error.status_code == 400
    assert error.message == 'Failed to refresh access token: {"error":"invalid_grant"}'


def test_sanitize_for_logging_masks_local_part():
    assert sanitize_for_logging("jane@example.com") == "j***@example.com"


def test_address_helpers():
    assert extract_address("Jane Doe <jane@example.com>") == "jane@example.com"
    assert split_address_list("a@example.com, , B <b@example.com>") == ["a@example.com", "b@example.com"]
    assert as_address_list(" solo@example.com ") == ["solo@example.com"]
    assert as_address_list(None) == []


def test_parse_timestamp_variants():
    assert parse_timestamp("2026-01-02T03:04:05Z").isoformat() == "2026-01-02T03:04:05+00:00"
    assert parse_timestamp("2026-01-02T03:04:05").tzinfo is not None
    assert parse_timestamp(0).year == 1970
    assert parse_timestamp("") is None
    with pytest.raises(ValueError):
        parse_timestamp("next tuesday")
