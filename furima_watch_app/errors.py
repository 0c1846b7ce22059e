"""
Exception types shared across the pipeline.

Per-item problems (``ValidationError``) and notifier failures
(``NotifierError``) are handled where they occur.  Everything else is
allowed to reach the worker entry point, which logs it and exits with a
non-zero status.
"""

from __future__ import annotations

from typing import Iterable


class WatchError(Exception):
    """Base class for all errors raised by the watcher."""


class ValidationError(WatchError, ValueError):
    """A scraped item is missing a field or carries an unusable value."""


class TransientIOError(WatchError):
    """Storage or network failure; the run can be repeated safely."""


class SummarizerError(WatchError):
    """The summarizer returned an error or an unreadable response."""


class RateLimitError(SummarizerError):
    """The summarizer rejected the request because of rate limiting."""


class NotifierError(WatchError):
    """The notifier failed to deliver a message."""


class FatalConfigError(WatchError):
    """Required configuration is missing or invalid; raised before any side effect."""

    def __init__(self, missing: Iterable[str], hint: str = "") -> None:
        self.missing = list(missing)
        message = "Missing or invalid configuration: " + ", ".join(self.missing)
        if hint:
            message += f" ({hint})"
        super().__init__(message)
