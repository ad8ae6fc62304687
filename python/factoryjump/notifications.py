"""Structured error/log events and the notifiers that consume them.

The core never raises for recoverable failures; it builds an ErrorEvent and
hands it to a Notifier. LoggingNotifier writes events through stdlib logging
using dotted event names as the record message and the event fields as
``extra``, so integration layers and tests can filter on them.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .protocols import Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorLevel(str, enum.Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


_LOG_LEVELS = {
    ErrorLevel.DEBUG: logging.DEBUG,
    ErrorLevel.INFO: logging.INFO,
    ErrorLevel.WARNING: logging.WARNING,
    ErrorLevel.ERROR: logging.ERROR,
    ErrorLevel.FATAL: logging.CRITICAL,
}


@dataclass
class ErrorEvent:
    """One reportable occurrence.

    ``context`` is a dotted event name (``extractor.read_failure``);
    ``user_message`` and ``retry`` are for the integration layer, which decides
    whether and how to surface the event.
    """
    level: ErrorLevel
    context: str
    message: str
    error: BaseException | None = None
    user_message: str | None = None
    retry: Callable[[], Awaitable[Any]] | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def show_to_user(self) -> bool:
        return self.user_message is not None and self.level in (
            ErrorLevel.WARNING, ErrorLevel.ERROR, ErrorLevel.FATAL,
        )


class LoggingNotifier:
    """Writes events to a logger. Debug events are dropped unless debug is on."""

    def __init__(self, log: logging.Logger | None = None, debug: bool = False):
        self._log = log or logger
        self.debug = debug

    def notify(self, event: ErrorEvent) -> None:
        if event.level == ErrorLevel.DEBUG and not self.debug:
            return
        extra: dict[str, Any] = {"detail": event.message, **event.details}
        if event.error is not None:
            extra["error_type"] = type(event.error).__name__
            extra["error_message"] = str(event.error)
        if event.user_message:
            extra["user_message"] = event.user_message
        self._log.log(_LOG_LEVELS[event.level], event.context, extra=extra)


class RecordingNotifier(LoggingNotifier):
    """LoggingNotifier that also keeps every event it receives."""

    def __init__(self, log: logging.Logger | None = None, debug: bool = False):
        super().__init__(log, debug)
        self.events: list[ErrorEvent] = []

    def notify(self, event: ErrorEvent) -> None:
        self.events.append(event)
        super().notify(event)

    def contexts(self) -> list[str]:
        return [e.context for e in self.events]


def safe_call(
    notifier: Notifier,
    operation: Callable[[], T],
    fallback: T,
    context: str,
    level: ErrorLevel = ErrorLevel.WARNING,
    **details: Any,
) -> T:
    """Run operation; on any exception report it and return fallback."""
    try:
        return operation()
    except Exception as e:
        notifier.notify(ErrorEvent(
            level=level,
            context=context,
            message=f"{context} failed",
            error=e,
            details=details,
        ))
        return fallback
