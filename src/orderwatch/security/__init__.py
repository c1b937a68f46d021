from orderwatch.security.redaction import (
    REDACTED,
    redact_data,
    redact_rpc_url,
    sanitize_mapping,
    sanitize_text,
)

__all__ = [
    "REDACTED",
    "redact_data",
    "redact_rpc_url",
    "sanitize_mapping",
    "sanitize_text",
]
