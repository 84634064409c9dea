"""Error taxonomy & redaction helpers.

Three failure families matter to the graph engine:

- remote fetch failures (``FetchError``): surfaced to the caller as a typed
  error, never retried inside the engine;
- cache backend failures (``PositionStoreError``): always swallowed by
  :class:`issuegraph.position_store.PositionCache`, the store is best-effort;
- layout failures: whatever the layered algorithm raised, propagated as-is.

``classify_error`` maps arbitrary exceptions onto a small category set so log
lines and CLI output stay consistent, and ``redact`` scrubs tokens first.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"gho_[A-Za-z0-9]{20,40}"),  # GitHub OAuth tokens (gh auth token)
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"(?i)bearer\s+[A-Za-z0-9_\-\.]{16,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


class IssueGraphError(RuntimeError):
    """Base class for errors raised by issuegraph."""


class FetchError(IssueGraphError):
    """Raised (or attached to a snapshot) when remote issue data cannot be loaded."""

    def __init__(
        self,
        message: str,
        *,
        graph_id: str | None = None,
        status: int | None = None,
        category: str = "generic",
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.graph_id = graph_id
        self.status = status
        self.category = category
        self.transient = transient


class PositionStoreError(IssueGraphError):
    """Raised by position store backends; callers treat it as a cache miss."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    - messages referencing rate limits -> 'github.rate_limit', transient
    - abuse detection -> 'github.abuse', transient
    - network-y keywords -> 'network', transient
    - ``PositionStoreError`` -> 'cache'
    - JSON / decode errors -> 'parse'
    - fallback -> 'generic'
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, PositionStoreError):
        return ErrorInfo("cache", redact(msg), name)
    if "rate limit" in low or "secondary rate" in low:
        return ErrorInfo("github.rate_limit", redact(msg), name, transient=True)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), name, transient=True)
    if any(
        k in low
        for k in ("timeout", "timed out", "connection reset", "connection refused",
                  "temporarily unavailable")
    ):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if any(k in low for k in ("json", "decode", "expecting value")):
        return ErrorInfo("parse", redact(msg), name)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "ErrorInfo",
    "FetchError",
    "IssueGraphError",
    "PositionStoreError",
    "classify_error",
    "redact",
]
