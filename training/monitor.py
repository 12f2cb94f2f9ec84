"""
Performance Monitor - Samples tick latency, memory and agent count, and
turns load into scheduling knobs.

Load is the largest of three ratios (frame time, memory, active agents
against their limits) and maps onto five degradation levels. Each level
fixes a (batch size, agents per tick, update interval) tuple that the
coordinator applies. A separate adaptive loop nudges batch size from a
smoothed frame-time score, with a cooldown after every change.
"""

import time
import logging
import psutil
from collections import deque
from enum import IntEnum
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from training.config import PerformanceConfig
from training.events import EventBus, EventKind

logger = logging.getLogger(__name__)


class DegradationLevel(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    SEVERE = 4


class AlertSeverity(IntEnum):
    WARNING = 0
    CRITICAL = 1


# (minimum load ratio, level), checked top-down
LEVEL_THRESHOLDS = [
    (1.5, DegradationLevel.SEVERE),
    (1.2, DegradationLevel.HIGH),
    (1.0, DegradationLevel.MEDIUM),
    (0.8, DegradationLevel.LOW),
]
CRITICAL_FACTOR = 1.5


@dataclass
class PerformanceSample:
    frame_time_ms: float
    memory_mb: float
    active_agents: int
    timestamp: float
    component_times: Dict[str, float] = field(default_factory=dict)


@dataclass
class PerformanceAlert:
    kind: str
    severity: AlertSeverity
    message: str
    value: float
    limit: float
    timestamp: float


@dataclass
class AdaptiveSettings:
    batch_size: int
    max_agents_per_tick: int
    update_interval: float


def process_memory_mb() -> float:
    """Resident memory of this process in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class PerformanceMonitor:

    def __init__(self, config: Optional[PerformanceConfig] = None,
                 events: Optional[EventBus] = None,
                 memory_fn: Callable[[], float] = process_memory_mb,
                 time_fn: Callable[[], float] = time.monotonic):
        self.config = config or PerformanceConfig()
        self.events = events
        self.memory_fn = memory_fn
        self.time_fn = time_fn

        self.history: deque = deque(maxlen=self.config.history_size)
        self.alerts: deque = deque(maxlen=50)
        self.degradation_level = DegradationLevel.NONE
        # Optimizer overrides on top of load classification
        self.forced_level: Optional[DegradationLevel] = None
        self.level_bias = 0
        self.level_floor = DegradationLevel.NONE

        self.batch_size = self.config.base_batch_size
        self._batch_scores: deque = deque(maxlen=self.config.batch_score_window)
        self._batch_cooldown = 0

        self._baseline_memory: Optional[float] = None
        self._baseline_time: Optional[float] = None

    # Sampling

    def record_sample(self, frame_time_ms: float, active_agents: int,
                      memory_mb: Optional[float] = None,
                      component_times: Optional[Dict[str, float]] = None) -> PerformanceSample:
        now = self.time_fn()
        if memory_mb is None:
            memory_mb = self.memory_fn()
        sample = PerformanceSample(frame_time_ms, memory_mb, active_agents, now,
                                   dict(component_times or {}))
        self.history.append(sample)

        if self._baseline_memory is None:
            self._baseline_memory = memory_mb
            self._baseline_time = now

        self._check_alerts(sample)
        self.set_degradation_level(self.effective_level(sample))
        if self.config.enable_adaptive_batching:
            self._adapt_batch_size(sample)
        return sample

    def latest(self) -> Optional[PerformanceSample]:
        return self.history[-1] if self.history else None

    # Classification

    def load_ratios(self, sample: PerformanceSample) -> Dict[str, float]:
        cfg = self.config
        return {
            'frame_time': sample.frame_time_ms / cfg.max_frame_time_ms,
            'memory': sample.memory_mb / cfg.max_memory_mb,
            'agents': sample.active_agents / cfg.max_active_agents,
        }

    def classify(self, sample: PerformanceSample) -> DegradationLevel:
        load = max(self.load_ratios(sample).values())
        for threshold, level in LEVEL_THRESHOLDS:
            if load >= threshold:
                return level
        return DegradationLevel.NONE

    def effective_level(self, sample: PerformanceSample) -> DegradationLevel:
        if self.forced_level is not None:
            return self.forced_level
        level = max(int(self.classify(sample)) + self.level_bias, int(self.level_floor))
        return DegradationLevel(min(int(DegradationLevel.SEVERE), max(0, level)))

    def set_degradation_level(self, level: DegradationLevel):
        if level == self.degradation_level:
            return
        previous = self.degradation_level
        self.degradation_level = level
        logger.info(f"Degradation level {previous.name} -> {level.name}")
        if self.events is not None:
            self.events.publish(EventKind.DEGRADATION_CHANGED, {
                'previous': previous.name, 'level': level.name,
            }, key='level')

    def settings_for(self, level: DegradationLevel) -> AdaptiveSettings:
        b = self.batch_size
        a = self.config.base_agents_per_tick
        i = self.config.base_update_interval
        if level == DegradationLevel.LOW:
            return AdaptiveSettings(max(16, b - 8), max(5, a - 2), i * 1.2)
        if level == DegradationLevel.MEDIUM:
            return AdaptiveSettings(max(8, b // 2), max(3, a // 2), i * 1.5)
        if level == DegradationLevel.HIGH:
            return AdaptiveSettings(max(4, b // 4), max(2, a // 3), i * 2.0)
        if level == DegradationLevel.SEVERE:
            return AdaptiveSettings(2, 1, i * 3.0)
        return AdaptiveSettings(b, a, i)

    def current_settings(self) -> AdaptiveSettings:
        return self.settings_for(self.degradation_level)

    # Adaptive batch size

    def _adapt_batch_size(self, sample: PerformanceSample):
        cfg = self.config
        if self._batch_cooldown > 0:
            self._batch_cooldown -= 1
            return

        self._batch_scores.append(sample.frame_time_ms / cfg.max_frame_time_ms)
        if len(self._batch_scores) < cfg.batch_min_samples:
            return

        avg = sum(self._batch_scores) / len(self._batch_scores)
        if avg > cfg.poor_score_threshold:
            new_size = max(cfg.min_batch_size,
                           int(round(self.batch_size * (1 - cfg.batch_adjust_rate))))
        elif avg < cfg.good_score_threshold:
            new_size = min(cfg.max_batch_size,
                           int(round(self.batch_size * (1 + cfg.batch_adjust_rate))))
        else:
            return

        # Below 15 a 10% step rounds to under 2, so small batches only move when forced.
        if abs(new_size - self.batch_size) >= 2:
            logger.debug(f"Batch size {self.batch_size} -> {new_size} (score {avg:.2f})")
            self.batch_size = new_size
            self._batch_cooldown = cfg.batch_cooldown_samples

    def force_batch_size(self, size: int):
        cfg = self.config
        self.batch_size = max(cfg.min_batch_size, min(cfg.max_batch_size, size))
        self._batch_scores.clear()

    # Alerts

    def _alert(self, kind: str, value: float, limit: float, allow_critical: bool = True):
        severity = AlertSeverity.WARNING
        if allow_critical and value > limit * CRITICAL_FACTOR:
            severity = AlertSeverity.CRITICAL
        alert = PerformanceAlert(kind, severity,
                                 f"{kind} {value:.1f} exceeds limit {limit:.1f}",
                                 value, limit, self.time_fn())
        self.alerts.append(alert)
        if severity == AlertSeverity.CRITICAL:
            logger.warning(alert.message)
        if self.events is not None:
            self.events.publish(EventKind.PERFORMANCE_ALERT, {
                'kind': kind, 'severity': severity.name,
                'value': value, 'limit': limit,
            }, key=kind)

    def _check_alerts(self, sample: PerformanceSample):
        cfg = self.config
        if sample.frame_time_ms > cfg.max_frame_time_ms:
            self._alert('frame_time', sample.frame_time_ms, cfg.max_frame_time_ms)
        if sample.memory_mb > cfg.max_memory_mb:
            self._alert('memory', sample.memory_mb, cfg.max_memory_mb)
        if sample.active_agents > cfg.max_active_agents:
            self._alert('agents', sample.active_agents, cfg.max_active_agents,
                        allow_critical=False)
        share_limit = cfg.max_frame_time_ms * cfg.component_budget_share
        for name, ms in sample.component_times.items():
            if ms > share_limit:
                self._alert(f'component:{name}', ms, share_limit, allow_critical=False)

    def recent_alerts(self, count: int = 10) -> List[PerformanceAlert]:
        return list(self.alerts)[-count:]

    # Reporting

    def averages(self) -> Dict[str, float]:
        if not self.history:
            return {'frame_time_ms': 0.0, 'memory_mb': 0.0, 'active_agents': 0.0}
        n = len(self.history)
        return {
            'frame_time_ms': sum(s.frame_time_ms for s in self.history) / n,
            'memory_mb': sum(s.memory_mb for s in self.history) / n,
            'active_agents': sum(s.active_agents for s in self.history) / n,
        }

    def memory_growth_mb_per_min(self) -> float:
        latest = self.latest()
        if latest is None or self._baseline_time is None:
            return 0.0
        elapsed = latest.timestamp - self._baseline_time
        if elapsed <= 0:
            return 0.0
        return (latest.memory_mb - self._baseline_memory) / elapsed * 60.0

    def recommendations(self) -> List[str]:
        avg = self.averages()
        cfg = self.config
        recs = []
        if avg['frame_time_ms'] > cfg.max_frame_time_ms * cfg.degradation_threshold:
            recs.append("Lower max agents per tick or raise the update interval")
        if avg['memory_mb'] > cfg.max_memory_mb * cfg.degradation_threshold:
            recs.append("Reduce experience pool sizes")
        if avg['active_agents'] > cfg.max_active_agents * cfg.degradation_threshold:
            recs.append("Run distant monsters in inference mode")
        if self.memory_growth_mb_per_min() > 10.0:
            recs.append("Memory is growing steadily; check for leaked agents")
        if not recs:
            recs.append("Performance within limits")
        return recs

    def summary(self) -> Dict:
        return {
            'degradation_level': self.degradation_level.name,
            'batch_size': self.batch_size,
            'samples': len(self.history),
            'alerts': len(self.alerts),
            **self.averages(),
        }
