"""
Optimization Manager - Turns monitor readings into scheduling strategy.

Every optimization interval the average of three target ratios (frame
time, memory, agent count against their targets) picks a strategy:

  > 1.2   AGGRESSIVE    halve batch size, hold degradation at HIGH, collect garbage
  > 1.0   CONSERVATIVE  shrink batch size, bias degradation up one level
  < 0.7   PERFORMANCE   grow batch size, bias degradation down one level
  else    BALANCED      drift batch size back toward its base

Independently, emergency mode engages as soon as any monitor limit is
exceeded by the emergency factor and holds SEVERE degradation with the
minimum batch size until every ratio is back under that factor.
"""

import gc
import time
import logging
from collections import deque
from enum import Enum
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from training.config import OptimizationConfig
from training.events import EventBus, EventKind
from training.monitor import DegradationLevel, PerformanceMonitor, PerformanceSample

logger = logging.getLogger(__name__)


class OptimizationStrategy(Enum):
    BALANCED = "balanced"
    PERFORMANCE = "performance"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


@dataclass
class OptimizationSnapshot:
    timestamp: float
    strategy: OptimizationStrategy
    score: float
    batch_size: int
    degradation_level: DegradationLevel
    emergency: bool


class OptimizationManager:

    def __init__(self, monitor: PerformanceMonitor,
                 config: Optional[OptimizationConfig] = None,
                 events: Optional[EventBus] = None,
                 time_fn: Callable[[], float] = time.monotonic,
                 gc_fn: Callable[[], int] = gc.collect):
        self.monitor = monitor
        self.config = config or OptimizationConfig()
        self.events = events
        self.time_fn = time_fn
        self.gc_fn = gc_fn

        self.strategy = OptimizationStrategy.BALANCED
        self.emergency_mode = False
        self.history: deque = deque(maxlen=self.config.history_size)
        self._last_optimization: Optional[float] = None
        self.stats = {'optimizations': 0, 'emergencies': 0, 'gc_runs': 0}

    def update(self, now: Optional[float] = None) -> bool:
        """Run emergency checks and, when due, a strategy pass."""
        sample = self.monitor.latest()
        if sample is None:
            return False
        now = self.time_fn() if now is None else now

        self.check_emergency(sample)
        if self.emergency_mode:
            return False

        if (self._last_optimization is not None
                and now - self._last_optimization < self.config.optimization_interval):
            return False
        self._last_optimization = now
        self.optimize(sample, now)
        return True

    # Emergency

    def check_emergency(self, sample: PerformanceSample) -> bool:
        ratios = self.monitor.load_ratios(sample)
        overloaded = any(r > self.config.emergency_threshold for r in ratios.values())

        if overloaded and not self.emergency_mode:
            self._enter_emergency(ratios)
        elif not overloaded and self.emergency_mode:
            self._exit_emergency()
        return self.emergency_mode

    def _enter_emergency(self, ratios: Dict[str, float]):
        self.emergency_mode = True
        self.stats['emergencies'] += 1
        logger.warning(f"Entering emergency mode: {ratios}")
        self.monitor.force_batch_size(self.monitor.config.min_batch_size)
        self.monitor.forced_level = DegradationLevel.SEVERE
        self.monitor.set_degradation_level(DegradationLevel.SEVERE)
        self._collect_garbage()
        if self.events is not None:
            self.events.publish(EventKind.EMERGENCY_MODE, {'active': True, **ratios},
                                key='emergency')

    def _exit_emergency(self):
        self.emergency_mode = False
        self.monitor.forced_level = None
        logger.info("Leaving emergency mode")
        if self.events is not None:
            self.events.publish(EventKind.EMERGENCY_MODE, {'active': False},
                                key='emergency')

    def _collect_garbage(self):
        self.stats['gc_runs'] += 1
        self.gc_fn()

    # Strategy

    def score(self, sample: PerformanceSample) -> float:
        cfg = self.config
        return (sample.frame_time_ms / cfg.target_frame_time_ms
                + sample.memory_mb / cfg.target_memory_mb
                + sample.active_agents / cfg.target_agent_count) / 3.0

    def choose_strategy(self, score: float) -> OptimizationStrategy:
        cfg = self.config
        if score > cfg.aggressive_score:
            return OptimizationStrategy.AGGRESSIVE
        if score > cfg.conservative_score:
            return OptimizationStrategy.CONSERVATIVE
        if score < cfg.performance_score:
            return OptimizationStrategy.PERFORMANCE
        return OptimizationStrategy.BALANCED

    def optimize(self, sample: PerformanceSample, now: float):
        score = self.score(sample)
        strategy = self.choose_strategy(score)
        if strategy != self.strategy:
            logger.info(f"Optimization strategy {self.strategy.value} -> "
                        f"{strategy.value} (score {score:.2f})")
        self.strategy = strategy
        self.apply_strategy(strategy)
        self.stats['optimizations'] += 1
        self.history.append(OptimizationSnapshot(
            now, strategy, score, self.monitor.batch_size,
            self.monitor.degradation_level, self.emergency_mode))

    def apply_strategy(self, strategy: OptimizationStrategy):
        monitor = self.monitor
        base = monitor.config.base_batch_size
        b = monitor.batch_size
        level = monitor.degradation_level

        if strategy == OptimizationStrategy.PERFORMANCE:
            monitor.force_batch_size(min(64, b + 8))
            monitor.level_bias = -1
            monitor.level_floor = DegradationLevel.NONE
            monitor.set_degradation_level(DegradationLevel(max(0, level - 1)))

        elif strategy == OptimizationStrategy.BALANCED:
            if abs(b - base) > 4:
                monitor.force_batch_size(b + 2 if b < base else b - 2)
            monitor.level_bias = 0
            monitor.level_floor = DegradationLevel.NONE

        elif strategy == OptimizationStrategy.CONSERVATIVE:
            monitor.force_batch_size(max(16, b - 4))
            monitor.level_bias = 1
            monitor.level_floor = DegradationLevel.NONE
            if level < DegradationLevel.MEDIUM:
                monitor.set_degradation_level(DegradationLevel(level + 1))

        elif strategy == OptimizationStrategy.AGGRESSIVE:
            monitor.force_batch_size(max(8, b // 2))
            monitor.level_bias = 0
            monitor.level_floor = DegradationLevel.HIGH
            if level < DegradationLevel.HIGH:
                monitor.set_degradation_level(DegradationLevel.HIGH)
            self._collect_garbage()

    def report(self) -> Dict:
        latest = self.monitor.latest()
        return {
            'strategy': self.strategy.value,
            'emergency_mode': self.emergency_mode,
            'score': self.score(latest) if latest else 0.0,
            'batch_size': self.monitor.batch_size,
            'degradation_level': self.monitor.degradation_level.name,
            'recommendations': self.monitor.recommendations(),
            **self.stats,
        }
