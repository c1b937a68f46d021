from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit, urlunsplit

REDACTED = "***REDACTED***"

_SENSITIVE_PARTS = (
    "api_key",
    "apikey",
    "secret",
    "signature",
    "private_key",
    "privatekey",
    "password",
    "authorization",
    "mnemonic",
)

_SENSITIVE_EXACT_KEYS = {"token", "access_token", "auth_token", "auth"}

_PLAIN_SECRET_PATTERNS = (
    re.compile(r"(?im)(authorization\s*[:=]\s*)(bearer\s+)?([^\s,;]+)"),
    re.compile(r"(?im)(private_key\s*[:=]\s*)()([^\s,;]+)"),
)
# Hosted RPC endpoints embed the API key as the last path segment.
_RPC_KEY_PATH = re.compile(r"/(v\d+|v\d+/[a-z]+)/([A-Za-z0-9_\-]{16,})$")


def _is_sensitive_key(key: object) -> bool:
    normalized = str(key).replace("-", "_").casefold()
    if normalized in _SENSITIVE_EXACT_KEYS:
        return True
    return any(part in normalized for part in _SENSITIVE_PARTS)


def _mask_secret(value: str) -> str:
    if not value:
        return REDACTED
    if len(value) > 8:
        return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
    if len(value) <= 2:
        return "*" * len(value)
    return f"{'*' * (len(value) - 2)}{value[-2:]}"


def redact_rpc_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{REDACTED}@{netloc.rsplit('@', 1)[1]}"
    path = _RPC_KEY_PATH.sub(lambda m: f"/{m.group(1)}/{_mask_secret(m.group(2))}", parts.path)
    return urlunsplit((parts.scheme, netloc, path, "", ""))


def sanitize_text(text: str) -> str:
    redacted = str(text)
    for pattern in _PLAIN_SECRET_PATTERNS:
        redacted = pattern.sub(lambda m: f"{m.group(1)}{m.group(2) or ''}[REDACTED]", redacted)
    return redacted


def sanitize_mapping(d: Mapping[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in d.items():
        key_str = str(key)
        if _is_sensitive_key(key_str):
            sanitized[key_str] = _mask_secret(str(value)) if value is not None else REDACTED
            continue
        sanitized[key_str] = redact_data(value)
    return sanitized


def redact_data(value: Any) -> Any:
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, list):
        return [redact_data(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_data(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
