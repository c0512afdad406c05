from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger


@dataclass(frozen=True)
class AnalyticsEvent:
    """Named analytics event with free-form parameters and an optional value."""
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    value: Optional[float] = None


class AnalyticsSink(Protocol):
    def track(self, event: AnalyticsEvent) -> None: ...


class LoggingSink:
    """Writes events to the application log (used when no collector is wired)."""

    def track(self, event: AnalyticsEvent) -> None:
        logger.info(f"analytics event {event.name}: {event.parameters} value={event.value}")


class BufferedSink:
    """Keeps events in memory for inspection."""

    def __init__(self):
        self.events: List[AnalyticsEvent] = []

    def track(self, event: AnalyticsEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> List[AnalyticsEvent]:
        return [event for event in self.events if event.name == name]
