from __future__ import annotations

import json
import logging
import sys

from orderwatch.logging_context import get_logging_context, with_logging_context
from orderwatch.logging_utils import JsonFormatter, setup_logging


def _record(msg: str, *args: object, exc_info=None) -> logging.LogRecord:  # type: ignore[no-untyped-def]
    return logging.LogRecord(
        name="orderwatch.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


def test_json_formatter_includes_exception_details() -> None:
    formatter = JsonFormatter()

    try:
        raise ValueError("boom")
    except ValueError:
        rendered = formatter.format(_record("Receipt handler failed", exc_info=sys.exc_info()))

    payload = json.loads(rendered)
    assert payload["message"] == "Receipt handler failed"
    assert payload["error_type"] == "ValueError"
    assert payload["error_message"] == "boom"
    assert "ValueError: boom" in payload["traceback"]


def test_json_formatter_merges_extras_and_context() -> None:
    record = _record("Order confirmed")
    record.extra = {"handle": 12345, "order_id": "explicit"}

    with with_logging_context(order_id="o1", tx_hash="0xt1"):
        payload = json.loads(JsonFormatter().format(record))

    assert payload["handle"] == 12345
    assert payload["order_id"] == "explicit"
    assert payload["tx_hash"] == "0xt1"
    assert payload["run_id"]


def test_logging_context_is_scoped() -> None:
    with with_logging_context(order_id="o1", unknown="ignored", user=None):
        inner = get_logging_context()
    outer = get_logging_context()

    assert inner["order_id"] == "o1"
    assert "unknown" not in inner and "user" not in inner
    assert "order_id" not in outer
    assert inner["run_id"] == outer["run_id"]


def test_json_formatter_redacts_secrets() -> None:
    record = _record("Authorization: Bearer %s", "sk-secret-value")
    record.extra = {"private_key": "0x" + "ab" * 32, "from_token": "CPH"}

    rendered = JsonFormatter().format(record)

    assert "sk-secret-value" not in rendered
    assert "ab" * 32 not in rendered
    assert json.loads(rendered)["from_token"] == "CPH"


def test_setup_logging_uses_log_level_env(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    setup_logging()

    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_quiets_http_loggers_for_info() -> None:
    setup_logging("INFO")

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_setup_logging_debug_enables_http_debug() -> None:
    setup_logging("DEBUG")

    assert logging.getLogger("httpx").level == logging.DEBUG
    assert logging.getLogger("httpcore").level == logging.DEBUG


def test_setup_logging_respects_http_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("HTTPX_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("HTTPCORE_LOG_LEVEL", "CRITICAL")

    setup_logging("INFO")

    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger("httpcore").level == logging.CRITICAL
