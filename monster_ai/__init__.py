"""
Monster AI - Feature pipeline and reward model for learning monsters.

Converts observations into fixed-size feature vectors, decodes policy
output into masked monster actions, and scores action outcomes with one of
several reward strategies.

Architecture:
- StateEncoder: 64-float normalized observation encoding
- ActionDecoder: stable index table with per-observation validity masks
- Reward strategies: dense, sparse, curiosity-driven, adaptive
- ComponentRegistry: per-process decoder and calculator cache
- LearningAgent contract with a rule-based FallbackAgent
"""

from monster_ai.encoder import StateEncoder, STATE_SIZE
from monster_ai.decoder import ActionDecoder, ActionMapping, build_mappings
from monster_ai.rewards import (
    RewardConfig, RewardFunctionType, RewardCalculator,
    DenseRewardCalculator, SparseRewardCalculator,
    CuriosityRewardCalculator, AdaptiveRewardCalculator,
    create_calculator, create_basic,
)
from monster_ai.registry import ComponentRegistry
from monster_ai.agent import LearningAgent, LearningMetrics, FallbackAgent

__all__ = [
    "StateEncoder", "STATE_SIZE",
    "ActionDecoder", "ActionMapping", "build_mappings",
    "RewardConfig", "RewardFunctionType", "RewardCalculator",
    "DenseRewardCalculator", "SparseRewardCalculator",
    "CuriosityRewardCalculator", "AdaptiveRewardCalculator",
    "create_calculator", "create_basic",
    "ComponentRegistry",
    "LearningAgent", "LearningMetrics", "FallbackAgent",
]
