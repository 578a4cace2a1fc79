from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from typing import Protocol, cast

import pytest
import structlog

from circuit_guard.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    LoggingListener,
    ManualClock,
)
from circuit_guard.logging import (
    BREAKER_LOGGER_NAME,
    bound_breaker_context,
    configure_structlog,
    get_log_level_value,
    log_error,
    log_info,
    log_warning,
)
from circuit_guard.settings import BreakerSettings
from tests.circuit_guard.support.fakes import DownstreamError, FakeLogger


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def json_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)


def _events(captured: str) -> list[dict[str, object]]:
    return [
        json.loads(line)
        for line in captured.splitlines()
        if line.startswith("{")
    ]


def _configured_renderer() -> object:
    root_handler = logging.getLogger().handlers[0]
    formatter = root_handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


def _breaker(clock: ManualClock, **config: float) -> CircuitBreaker:
    return CircuitBreaker(
        "payments",
        config=CircuitBreakerConfig(**config),  # type: ignore[arg-type]
        clock=clock,
        listeners=[LoggingListener()],
    )


def _fail() -> None:
    raise DownstreamError("connection reset")


def test_get_log_level_value_maps_known_levels() -> None:
    assert get_log_level_value("debug") == logging.DEBUG
    assert get_log_level_value(" warning ") == logging.WARNING
    assert get_log_level_value("CRITICAL") == logging.CRITICAL


def test_get_log_level_value_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="log_level must be one of"):
        get_log_level_value("TRACE")


@pytest.mark.parametrize(
    ("isatty", "renderer"),
    [
        (True, structlog.dev.ConsoleRenderer),
        (False, structlog.processors.JSONRenderer),
    ],
)
def test_configure_structlog_picks_renderer_for_stderr(
    monkeypatch: pytest.MonkeyPatch, isatty: bool, renderer: type
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: isatty, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_configured_renderer(), renderer)


def test_reconfiguring_replaces_root_handler(json_logs: None) -> None:
    configure_structlog(log_level="INFO")
    configure_structlog(log_level="DEBUG")

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.DEBUG


def test_tripping_breaker_logs_failure_and_state_change_as_json(
    json_logs: None, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_structlog(log_level="INFO")
    breaker = _breaker(ManualClock(), failure_threshold=1)

    with pytest.raises(DownstreamError):
        breaker.execute_sync(_fail)

    events = _events(capsys.readouterr().err)
    failed, opened = events[-2], events[-1]
    assert failed["event"] == "circuit_breaker.call_failed"
    assert failed["level"] == "error"
    assert failed["breaker"] == "payments"
    assert failed["error_type"] == "DownstreamError"
    assert failed["error"] == "connection reset"
    assert opened["event"] == "circuit_breaker.state_changed"
    assert opened["level"] == "warning"
    assert opened["logger"] == BREAKER_LOGGER_NAME
    assert opened["old_state"] == "closed"
    assert opened["new_state"] == "open"


def test_log_level_filters_rejections_but_keeps_circuit_opening(
    json_logs: None, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_structlog(log_level="WARNING")
    breaker = _breaker(ManualClock(), reset_timeout=30.0)

    breaker.force_open()
    with pytest.raises(CircuitOpenError):
        breaker.execute_sync(lambda: "unused")

    names = [event["event"] for event in _events(capsys.readouterr().err)]
    assert names == ["circuit_breaker.state_changed"]


def test_operation_logs_carry_breaker_name(
    json_logs: None, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_structlog(log_level="INFO")
    breaker = CircuitBreaker("inventory", clock=ManualClock())
    app_logger = structlog.stdlib.get_logger("app")

    def _lookup() -> int:
        app_logger.info("inventory.lookup", sku="A-1")
        return 3

    assert breaker.execute_sync(_lookup) == 3
    app_logger.info("inventory.done")

    inside, outside = _events(capsys.readouterr().err)[-2:]
    assert inside["event"] == "inventory.lookup"
    assert inside["breaker"] == "inventory"
    assert inside["sku"] == "A-1"
    assert outside["event"] == "inventory.done"
    assert "breaker" not in outside


def test_stdlib_records_inside_operation_carry_breaker_name(
    json_logs: None, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_structlog(log_level="INFO")
    breaker = CircuitBreaker("inventory", clock=ManualClock())

    def _lookup() -> None:
        logging.getLogger("app.stdlib").info("legacy lookup")

    breaker.execute_sync(_lookup)

    event = _events(capsys.readouterr().err)[-1]
    assert event["event"] == "legacy lookup"
    assert event["breaker"] == "inventory"
    assert event["logger"] == "app.stdlib"


def test_bound_breaker_context_restores_outer_binding() -> None:
    structlog.contextvars.bind_contextvars(breaker="outer")

    with bound_breaker_context("inner"):
        assert structlog.contextvars.get_contextvars()["breaker"] == "inner"

    assert structlog.contextvars.get_contextvars()["breaker"] == "outer"


def test_settings_configure_logging_applies_log_level(
    json_logs: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CIRCUIT_BREAKER_LOG_LEVEL", "error")

    BreakerSettings().configure_logging()

    assert logging.getLogger().level == logging.ERROR
    assert not logging.getLogger(BREAKER_LOGGER_NAME).isEnabledFor(logging.WARNING)


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [(log_info, "info"), (log_warning, "warning"), (log_error, "error")],
)
def test_log_helpers_forward_breaker_fields_to_structured_logger(
    log_fn, level: str
) -> None:
    logger = FakeLogger()

    log_fn(logger, "circuit_breaker.call_rejected", breaker="payments", retry_after=2)

    assert logger.calls == [
        (
            level,
            "circuit_breaker.call_rejected",
            {"breaker": "payments", "retry_after": 2},
        )
    ]


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class _RecordWithBreakerFields(Protocol):
    breaker: str
    new_state: str


def test_logging_listener_accepts_stdlib_logger() -> None:
    logger = logging.getLogger("tests.circuit_guard.logging.listener")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)
    breaker = CircuitBreaker(
        "payments",
        config=CircuitBreakerConfig(failure_threshold=1),
        clock=ManualClock(),
        listeners=[LoggingListener(logger)],  # type: ignore[arg-type]
    )

    breaker.force_open()

    assert len(handler.records) == 1
    record = handler.records[0]
    assert record.getMessage() == "circuit_breaker.state_changed"
    assert record.levelno == logging.WARNING
    typed_record = cast(_RecordWithBreakerFields, record)
    assert typed_record.breaker == "payments"
    assert typed_record.new_state == "open"
