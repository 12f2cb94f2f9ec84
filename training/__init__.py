"""
Training Scheduler for Monster Learners

Runs learning updates for a changing population of monster agents inside
a real-time loop:

- Per-type learning managers with bounded capacity and experience sharing
- A coordinator with training / inference / mixed modes and a
  round-robin, time-boxed update pass
- Performance monitoring with degradation levels and adaptive batch size
- An optimization manager with strategies and an emergency mode
- Profile persistence (Redis, checksummed JSON files, or memory)
- Event bus and error tracking for observability
"""

from training.config import (
    TrainingConfig, PerformanceConfig, OptimizationConfig, SystemConfig,
    TrainingMode,
)
from training.events import EventBus, Event, EventKind
from training.errors import ErrorTracker, ErrorSeverity, ErrorRecord
from training.storage import ProfileStore, compress_weights, decompress_weights
from training.type_manager import TypeLearningManager, SharedExperience
from training.coordinator import TrainingCoordinator, PassReport
from training.monitor import (
    PerformanceMonitor, DegradationLevel, AdaptiveSettings, PerformanceSample,
)
from training.optimizer import OptimizationManager, OptimizationStrategy

__all__ = [
    "TrainingConfig", "PerformanceConfig", "OptimizationConfig", "SystemConfig",
    "TrainingMode",
    "EventBus", "Event", "EventKind",
    "ErrorTracker", "ErrorSeverity", "ErrorRecord",
    "ProfileStore", "compress_weights", "decompress_weights",
    "TypeLearningManager", "SharedExperience",
    "TrainingCoordinator", "PassReport",
    "PerformanceMonitor", "DegradationLevel", "AdaptiveSettings", "PerformanceSample",
    "OptimizationManager", "OptimizationStrategy",
]
