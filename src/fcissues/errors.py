"""Error taxonomy & redaction helpers.

Every failure surfaced by the client derives from ``FreedcampError`` so
callers can catch the whole family at once. The core never retries; errors
propagate synchronously to the caller of ``fetch_all`` / ``get``.

Public API:
- ConfigError, TransportError, NotFoundError, AmbiguousResultError
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


class FreedcampError(RuntimeError):
    """Base class for all fcissues failures."""


class ConfigError(FreedcampError):
    """Missing credentials or an invalid option combination."""


class TransportError(FreedcampError):
    """Raised when a request to the Freedcamp API fails."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


class NotFoundError(FreedcampError):
    def __init__(self, ref: str):
        super().__init__(f'Issue "{ref}" not found')
        self.ref = ref


class AmbiguousResultError(FreedcampError):
    def __init__(self, ref: str, count: int):
        super().__init__(f'Search for issue "{ref}" returned {count} candidates')
        self.ref = ref
        self.count = count


# Query-string credentials as they appear in logged URLs and error bodies
_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(api_key=)[^&\s\"']+"),
    re.compile(r"(hash=)[0-9a-fA-F]{40}"),
    re.compile(r"(secret=)[^&\s\"']+"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact credentials embedded in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
    return redacted


def mask_key(value: str | None) -> str:
    """Keep the first and last four characters of a key, hide the rest."""
    if not value:
        return ""
    if len(value) <= 8:  # noqa: PLR2004
        return "x" * len(value)
    return value[:4] + "x" * (len(value) - 8) + value[-4:]


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    - fcissues taxonomy classes map to their own categories
    - HTTP 429 / rate limit text -> 'freedcamp.rate_limit', transient
    - Network-y keywords or 5xx -> 'network', transient
    - Fallback -> 'generic'
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, ConfigError):
        return ErrorInfo("config", redact(msg), name)
    if isinstance(exc, NotFoundError):
        return ErrorInfo("not_found", redact(msg), name, details={"ref": exc.ref})
    if isinstance(exc, AmbiguousResultError):
        return ErrorInfo(
            "ambiguous", redact(msg), name, details={"ref": exc.ref, "count": exc.count}
        )
    status = getattr(exc, "status", None)
    if status == 429 or "rate limit" in low:  # noqa: PLR2004
        return ErrorInfo("freedcamp.rate_limit", redact(msg), name, transient=True)
    if (isinstance(status, int) and status >= 500) or any(  # noqa: PLR2004
        k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")
    ):
        return ErrorInfo("network", redact(msg), name, transient=True)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "AmbiguousResultError",
    "ConfigError",
    "ErrorInfo",
    "FreedcampError",
    "NotFoundError",
    "TransportError",
    "classify_error",
    "mask_key",
    "redact",
]
