"""
Event Bus - Observable events for loggers and UIs.

Publishers queue events during a tick; flush() delivers them at the tick
boundary. An event with the same (kind, key) published twice in one tick is
delivered once, with the latest payload.
"""

import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)


class EventKind(Enum):
    MODE_CHANGED = "mode_changed"
    DEGRADATION_CHANGED = "degradation_changed"
    PERFORMANCE_ALERT = "performance_alert"
    METRICS_UPDATED = "metrics_updated"
    BUDGET_EXCEEDED = "budget_exceeded"
    COMPONENT_DEGRADED = "component_degraded"
    EMERGENCY_MODE = "emergency_mode"


@dataclass
class Event:
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    key: str = ""


Handler = Callable[[Event], None]


class EventBus:

    def __init__(self):
        self._handlers: Dict[EventKind, List[Handler]] = {}
        self._pending: Dict[Tuple[EventKind, str], Event] = {}
        self.delivered = 0

    def subscribe(self, kind: EventKind, handler: Handler):
        self._handlers.setdefault(kind, []).append(handler)

    def unsubscribe(self, kind: EventKind, handler: Handler):
        handlers = self._handlers.get(kind, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, kind: EventKind, payload: Dict[str, Any] = None, key: str = ""):
        # dict keeps first-publish order; re-publishing replaces the payload
        self._pending[(kind, key)] = Event(kind, payload or {}, key)

    def pending_count(self) -> int:
        return len(self._pending)

    def flush(self) -> int:
        """Deliver queued events. Returns how many were delivered."""
        events = list(self._pending.values())
        self._pending.clear()
        count = 0
        for event in events:
            for handler in list(self._handlers.get(event.kind, [])):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Event handler for {event.kind.value} failed: {e}")
            count += 1
        self.delivered += count
        return count
