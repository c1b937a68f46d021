from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_RUN_ID = uuid.uuid4().hex
_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in ("order_id", "tx_hash", "handle", "user")
}


def get_logging_context() -> dict[str, str]:
    """Return the run id plus whichever order fields are bound right now."""
    context = {"run_id": _RUN_ID}
    for name, var in _FIELDS.items():
        value = var.get()
        if value is not None:
            context[name] = value
    return context


@contextmanager
def with_logging_context(**fields: object) -> Iterator[None]:
    """Bind order fields for the enclosed block; unknown names and ``None`` are skipped."""
    tokens = [
        (_FIELDS[name], _FIELDS[name].set(str(value)))
        for name, value in fields.items()
        if name in _FIELDS and value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
