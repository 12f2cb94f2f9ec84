"""
Error Tracking - Classifies and counts recoverable failures per component.

Failures inside agents, stores and handlers are caught at the component
boundary and recorded here. A component that fails repeatedly is flagged
through a COMPONENT_DEGRADED event; nothing here ever raises.
"""

import time
import logging
from collections import deque
from enum import IntEnum
from dataclasses import dataclass
from typing import Dict, List, Optional

from training.events import EventBus, EventKind

logger = logging.getLogger(__name__)

DISABLE_THRESHOLD = 3
HISTORY_SIZE = 100


class ErrorSeverity(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


@dataclass
class ErrorRecord:
    component: str
    operation: str
    message: str
    severity: ErrorSeverity
    timestamp: float


def classify(error: BaseException) -> ErrorSeverity:
    if isinstance(error, MemoryError):
        return ErrorSeverity.CRITICAL
    if isinstance(error, OSError):
        return ErrorSeverity.HIGH
    if isinstance(error, (ValueError, RuntimeError, KeyError)):
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


class ErrorTracker:

    def __init__(self, events: Optional[EventBus] = None,
                 disable_threshold: int = DISABLE_THRESHOLD):
        self.events = events
        self.disable_threshold = disable_threshold
        self.history: deque = deque(maxlen=HISTORY_SIZE)
        self.component_errors: Dict[str, int] = {}
        self._flagged = set()

    def record(self, component: str, operation: str,
               error: BaseException) -> ErrorRecord:
        severity = classify(error)
        rec = ErrorRecord(component, operation, str(error), severity, time.time())
        self.history.append(rec)
        self.component_errors[component] = self.component_errors.get(component, 0) + 1

        log = logger.error if severity >= ErrorSeverity.HIGH else logger.warning
        log(f"[{component}] {operation} failed ({severity.name}): {error}")

        if self.should_disable(component) and component not in self._flagged:
            self._flagged.add(component)
            logger.warning(f"Component {component} failed "
                           f"{self.component_errors[component]} times, consider disabling")
            if self.events is not None:
                self.events.publish(EventKind.COMPONENT_DEGRADED, {
                    'component': component,
                    'error_count': self.component_errors[component],
                }, key=component)
        return rec

    def should_disable(self, component: str) -> bool:
        return self.component_errors.get(component, 0) >= self.disable_threshold

    def reset_component(self, component: str):
        self.component_errors.pop(component, None)
        self._flagged.discard(component)

    def recent(self, count: int = 10) -> List[ErrorRecord]:
        return list(self.history)[-count:]

    def statistics(self) -> Dict:
        by_severity = {s.name: 0 for s in ErrorSeverity}
        for rec in self.history:
            by_severity[rec.severity.name] += 1
        return {
            'total_errors': sum(self.component_errors.values()),
            'components': dict(self.component_errors),
            'by_severity': by_severity,
            'flagged': sorted(self._flagged),
        }
