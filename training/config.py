"""
Training Configuration - Settings for the scheduler, monitor and optimizer

Every config can be built from code, from MONSTER_RL_* environment
variables, or from a JSON file written by save().
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
from enum import IntEnum
import os
import json


ENV_PREFIX = 'MONSTER_RL_'


def _env(name: str, default, cast=float):
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value == '':
        return default
    if cast is bool:
        return value.lower() in ('1', 'true', 'yes')
    return cast(value)


class TrainingMode(IntEnum):
    """Global learning mode"""
    INFERENCE = 0   # Policies frozen
    TRAINING = 1    # Every agent learns
    MIXED = 2       # Only agents that have not converged learn


@dataclass
class TrainingConfig:
    """Scheduler configuration"""
    mode: TrainingMode = TrainingMode.TRAINING
    update_interval: float = 0.1         # seconds between scheduling passes
    max_agents_per_tick: int = 10
    max_frame_time_ms: float = 16.0      # per-tick compute budget
    soft_budget_fraction: float = 0.8
    batch_size: int = 32

    # Per-type managers
    max_agents_per_type: int = 10
    enable_experience_sharing: bool = True
    share_rate: float = 0.1
    metrics_update_interval: float = 1.0
    experience_pool_size: int = 1000
    donor_threshold: float = 1.1
    recipient_threshold: float = 0.8

    @classmethod
    def from_env(cls) -> 'TrainingConfig':
        """Load from environment variables"""
        return cls(
            mode=TrainingMode(_env('MODE', int(TrainingMode.TRAINING), int)),
            update_interval=_env('UPDATE_INTERVAL', 0.1),
            max_agents_per_tick=_env('MAX_AGENTS_PER_TICK', 10, int),
            max_frame_time_ms=_env('MAX_FRAME_TIME_MS', 16.0),
            batch_size=_env('BATCH_SIZE', 32, int),
            max_agents_per_type=_env('MAX_AGENTS_PER_TYPE', 10, int),
            enable_experience_sharing=_env('EXPERIENCE_SHARING', True, bool),
            share_rate=_env('SHARE_RATE', 0.1),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['mode'] = int(self.mode)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainingConfig':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if 'mode' in known:
            known['mode'] = TrainingMode(known['mode'])
        return cls(**known)


@dataclass
class PerformanceConfig:
    """Limits the monitor classifies load against"""
    max_frame_time_ms: float = 16.0
    max_memory_mb: float = 100.0
    max_active_agents: int = 50
    degradation_threshold: float = 0.8
    history_size: int = 60
    component_budget_share: float = 0.5

    # Adaptive batch sizing
    enable_adaptive_batching: bool = True
    base_batch_size: int = 32
    min_batch_size: int = 4
    max_batch_size: int = 128
    batch_adjust_rate: float = 0.1
    batch_score_window: int = 10
    batch_min_samples: int = 5
    batch_cooldown_samples: int = 30
    poor_score_threshold: float = 1.2
    good_score_threshold: float = 0.6

    # Settings at degradation level NONE
    base_agents_per_tick: int = 10
    base_update_interval: float = 0.1

    @classmethod
    def from_env(cls) -> 'PerformanceConfig':
        return cls(
            max_frame_time_ms=_env('MAX_FRAME_TIME_MS', 16.0),
            max_memory_mb=_env('MAX_MEMORY_MB', 100.0),
            max_active_agents=_env('MAX_ACTIVE_AGENTS', 50, int),
            enable_adaptive_batching=_env('ADAPTIVE_BATCHING', True, bool),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceConfig':
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class OptimizationConfig:
    """Targets and thresholds for the optimization manager"""
    optimization_interval: float = 2.0
    emergency_threshold: float = 1.5
    target_frame_time_ms: float = 12.0
    target_memory_mb: float = 80.0
    target_agent_count: int = 40
    history_size: int = 30
    aggressive_score: float = 1.2
    conservative_score: float = 1.0
    performance_score: float = 0.7

    @classmethod
    def from_env(cls) -> 'OptimizationConfig':
        return cls(
            optimization_interval=_env('OPTIMIZATION_INTERVAL', 2.0),
            emergency_threshold=_env('EMERGENCY_THRESHOLD', 1.5),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OptimizationConfig':
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class SystemConfig:
    """Master configuration for the learning system"""
    training: TrainingConfig = field(default_factory=TrainingConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)

    profile_directory: Optional[str] = None   # None = in-memory profiles
    difficulty_multiplier: float = 1.0
    enable_optimization: bool = True

    @classmethod
    def from_env(cls) -> 'SystemConfig':
        """Load from environment variables"""
        return cls(
            training=TrainingConfig.from_env(),
            performance=PerformanceConfig.from_env(),
            optimization=OptimizationConfig.from_env(),
            profile_directory=os.getenv(ENV_PREFIX + 'PROFILE_DIR'),
            difficulty_multiplier=_env('DIFFICULTY', 1.0),
            enable_optimization=_env('OPTIMIZATION', True, bool),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize configuration"""
        return {
            'training': self.training.to_dict(),
            'performance': self.performance.to_dict(),
            'optimization': self.optimization.to_dict(),
            'profile_directory': self.profile_directory,
            'difficulty_multiplier': self.difficulty_multiplier,
            'enable_optimization': self.enable_optimization,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SystemConfig':
        return cls(
            training=TrainingConfig.from_dict(data.get('training', {})),
            performance=PerformanceConfig.from_dict(data.get('performance', {})),
            optimization=OptimizationConfig.from_dict(data.get('optimization', {})),
            profile_directory=data.get('profile_directory'),
            difficulty_multiplier=data.get('difficulty_multiplier', 1.0),
            enable_optimization=data.get('enable_optimization', True),
        )

    def save(self, filepath: str):
        """Save configuration to file"""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from file"""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)
