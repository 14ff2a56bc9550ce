"""Settings validation tests."""

import pytest
from pydantic import ValidationError

from bulwark.config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_ddos_defaults():
    s = _settings()
    assert s.ddos_enabled is True
    assert s.ddos_window_seconds == 60
    assert s.ddos_request_threshold == 100
    assert s.ddos_block_threshold == 200
    assert s.ddos_block_duration == 300
    assert s.ddos_key_prefix == "ddos"


def test_ddos_values_read_from_environment(monkeypatch):
    monkeypatch.setenv("DDOS_REQUEST_THRESHOLD", "10")
    monkeypatch.setenv("DDOS_BLOCK_THRESHOLD", "20")
    monkeypatch.setenv("DDOS_ENABLED", "false")

    s = _settings()

    assert s.ddos_request_threshold == 10
    assert s.ddos_block_threshold == 20
    assert s.ddos_enabled is False


@pytest.mark.parametrize(
    "field",
    ["ddos_window_seconds", "ddos_request_threshold", "ddos_block_threshold", "ddos_block_duration"],
)
def test_non_positive_ddos_values_rejected(field):
    with pytest.raises(ValidationError):
        _settings(**{field: 0})


def test_block_threshold_below_request_threshold_rejected():
    with pytest.raises(ValidationError, match="DDOS_BLOCK_THRESHOLD"):
        _settings(ddos_request_threshold=50, ddos_block_threshold=10)


def test_log_level_normalized_and_validated():
    assert _settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        _settings(log_level="verbose")


def test_app_env_validated():
    assert _settings(app_env="Production").is_production
    with pytest.raises(ValidationError):
        _settings(app_env="staging")


def test_redis_url():
    assert _settings(redis_host="cache", redis_port=6380, redis_db=2).redis_url == (
        "redis://cache:6380/2"
    )
    assert _settings(redis_password="s3cret").redis_url == "redis://:s3cret@localhost:6379/0"


def test_api_prefix_and_cors_list():
    s = _settings(api_version="v2", cors_origins="http://a.test, http://b.test")
    assert s.api_prefix == "/api/v2"
    assert s.cors_origins_list == ["http://a.test", "http://b.test"]
