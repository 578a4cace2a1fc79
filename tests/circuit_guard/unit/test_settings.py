from __future__ import annotations

import pytest
from pydantic import ValidationError

from circuit_guard.settings import BreakerSettings, prefixed_settings_config


def test_defaults_build_default_config(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "CIRCUIT_BREAKER_FAILURE_THRESHOLD",
        "CIRCUIT_BREAKER_RESET_TIMEOUT_SECONDS",
        "CIRCUIT_BREAKER_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)

    settings = BreakerSettings()
    config = settings.to_config()

    assert settings.log_level == "INFO"
    assert config.failure_threshold == 5
    assert config.reset_timeout == 60.0


def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", "3")
    monkeypatch.setenv("circuit_breaker_reset_timeout_seconds", "12.5")
    monkeypatch.setenv("CIRCUIT_BREAKER_LOG_LEVEL", " debug ")

    settings = BreakerSettings()
    config = settings.to_config()

    assert settings.log_level == "DEBUG"
    assert config.failure_threshold == 3
    assert config.reset_timeout == 12.5


@pytest.mark.parametrize(
    "overrides",
    [
        {"failure_threshold": 0},
        {"reset_timeout_seconds": -1.0},
        {"log_level": "TRACE"},
    ],
)
def test_rejects_invalid_values(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        BreakerSettings(**overrides)  # type: ignore[arg-type]


def test_prefixed_settings_config() -> None:
    config = prefixed_settings_config("PAYMENTS_BREAKER_")

    assert config["env_prefix"] == "PAYMENTS_BREAKER_"
    assert config["case_sensitive"] is False
