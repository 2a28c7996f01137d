"""
Status reporting for the supervisor.

The engine and loop never print. They hand a severity, a message and a few
structured fields to a Reporter, which turns them into log records. Tests
swap in a recording Reporter to assert on what happened.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(Enum):
    SUCCESS = "success"
    UPDATED = "updated"
    WARNING = "warning"
    FAILURE = "failure"


LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.UPDATED: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.FAILURE: logging.ERROR,
}


@dataclass
class Event:
    """A single status line."""

    severity: Severity
    message: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.severity.name}:"


class Reporter:
    """Writes status events to a logger."""

    def __init__(self, logger: logging.Logger = None):
        self._logger = logger or logging.getLogger("mittorch")

    def emit(self, event: Event):
        self._logger.log(
            LEVELS[event.severity],
            f"{event.label} {event.message}",
            extra={"event_fields": event.fields},
        )

    def success(self, message: str, **fields):
        self.emit(Event(Severity.SUCCESS, message, fields))

    def updated(self, message: str, **fields):
        self.emit(Event(Severity.UPDATED, message, fields))

    def warning(self, message: str, **fields):
        self.emit(Event(Severity.WARNING, message, fields))

    def failure(self, message: str, **fields):
        self.emit(Event(Severity.FAILURE, message, fields))
