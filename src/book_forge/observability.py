"""Run metrics: counters and events collected while a book is generated.

A RunMetrics instance is created per run and passed by reference to every
component that reports progress. Events are also forwarded to the module
logger so the log file tells the same story as the metrics.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunEvent:
    """A single named event with structured fields."""

    name: str
    fields: dict[str, Any]
    timestamp: float


@dataclass
class RunMetrics:
    """Counters and ordered events for one pipeline run.

    Example:
        >>> metrics = RunMetrics()
        >>> metrics.increment("paragraphs.generated")
        >>> metrics.emit("stage.completed", stage="draft")
        >>> metrics.counters["paragraphs.generated"]
        1
    """

    counters: Counter[str] = field(default_factory=Counter)
    events: list[RunEvent] = field(default_factory=list)

    def increment(self, name: str, amount: int = 1) -> None:
        """Increase a named counter."""
        self.counters[name] += amount

    def emit(self, name: str, **fields: Any) -> None:
        """Record an event and log it."""
        self.events.append(RunEvent(name=name, fields=fields, timestamp=time.time()))
        if fields:
            details = ", ".join(f"{k}={v}" for k, v in fields.items())
            logger.info(f"{name}: {details}")
        else:
            logger.info(name)

    def events_named(self, name: str) -> list[RunEvent]:
        """Return all events with the given name, in emission order."""
        return [event for event in self.events if event.name == name]

    def snapshot(self) -> dict[str, int]:
        """Return a plain copy of the counters."""
        return dict(self.counters)
