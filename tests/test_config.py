# tests/test_config.py

from common.config import Config


def test_defaults():
    config = Config()

    assert config.POLL_INTERVAL_S == 1.0
    assert config.FULFILLMENT_TIMEOUT_S == 300.0
    assert config.SECRETS_FETCH_TIMEOUT_S == 3.0
    assert config.SECRETS_MAX_CONTENT_LENGTH == 1_000_000


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("TADI_FULFILLMENT_TIMEOUT_S", "120")
    monkeypatch.setenv("TADI_CONFIRMATION_BLOCKS", "3")
    monkeypatch.setenv("TADI_STORE_API_TOKEN", "ghp_env")
    monkeypatch.setenv("TADI_STRICT_NO_LOGGING_MODE", "yes")

    config = Config.from_env()

    assert config.FULFILLMENT_TIMEOUT_S == 120.0
    assert config.CONFIRMATION_BLOCKS == 3
    assert config.STORE_API_TOKEN == "ghp_env"
    assert config.STRICT_NO_LOGGING_MODE is True


def test_invalid_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("TADI_CONFIRMATION_BLOCKS", "two")
    monkeypatch.setenv("TADI_POLL_INTERVAL_S", "fast")
    monkeypatch.setenv("TADI_STRICT_NO_LOGGING_MODE", "maybe")

    config = Config.from_env()

    assert config.CONFIRMATION_BLOCKS == Config.CONFIRMATION_BLOCKS
    assert config.POLL_INTERVAL_S == Config.POLL_INTERVAL_S
    assert config.STRICT_NO_LOGGING_MODE is False
