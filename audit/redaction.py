"""
audit/redaction.py -- Declarative redaction of sensitive fields.

The audit log records request parameters and action details. Any key in
SENSITIVE_FIELDS is replaced with REDACTED before the record is written.
Extend the set to cover a new field; call sites never change.

Matching is case-insensitive and recursive through nested dicts and lists.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "token",
        "apikey",
        "api_key",
        "secret",
        "refresh_token",
        "refreshtoken",
        "access_token",
        "authorization",
    }
)


def redact(value: Any, sensitive: frozenset[str] = SENSITIVE_FIELDS) -> Any:
    """Return a copy of value with sensitive keys masked. Non-containers pass through."""
    if isinstance(value, Mapping):
        return {
            k: (REDACTED if str(k).lower() in sensitive and v not in (None, "") else redact(v, sensitive))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v, sensitive) for v in value]
    return value
