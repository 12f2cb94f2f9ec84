"""
Component Registry - Process-wide cache of decoders and reward calculators.

Owned by the composition root and passed to whatever needs it. Decoders are
cached per action space (their tables are a pure function of it); reward
calculators are cached per entity type and invalidated when that type's
config is replaced.
"""

import logging
from typing import Dict, Tuple

from game.actions import ActionSpace
from game.observation import EntityType
from monster_ai.decoder import ActionDecoder
from monster_ai.encoder import StateEncoder
from monster_ai.rewards import RewardCalculator, RewardConfig, create_calculator

logger = logging.getLogger(__name__)


class ComponentRegistry:

    def __init__(self):
        self.encoder = StateEncoder()
        self._decoders: Dict[Tuple, ActionDecoder] = {}
        self._reward_configs: Dict[EntityType, RewardConfig] = {}
        self._calculators: Dict[EntityType, RewardCalculator] = {}
        self._action_spaces: Dict[EntityType, ActionSpace] = {}
        self.difficulty_multiplier = 1.0

    # Decoders

    def get_decoder(self, action_space: ActionSpace) -> ActionDecoder:
        key = action_space.cache_key()
        decoder = self._decoders.get(key)
        if decoder is None:
            decoder = ActionDecoder(action_space)
            self._decoders[key] = decoder
            logger.debug(f"Built decoder with {decoder.action_count} actions")
        return decoder

    def get_action_space(self, entity_type: EntityType) -> ActionSpace:
        if entity_type not in self._action_spaces:
            self._action_spaces[entity_type] = ActionSpace.for_entity_type(entity_type)
        return self._action_spaces[entity_type]

    def set_action_space(self, entity_type: EntityType, space: ActionSpace):
        self._action_spaces[entity_type] = space

    # Reward calculators

    def get_reward_config(self, entity_type: EntityType) -> RewardConfig:
        if entity_type not in self._reward_configs:
            base = RewardConfig.for_entity_type(entity_type)
            if self.difficulty_multiplier != 1.0:
                base = base.scaled(self.difficulty_multiplier)
            self._reward_configs[entity_type] = base
        return self._reward_configs[entity_type]

    def get_reward_calculator(self, entity_type: EntityType) -> RewardCalculator:
        calculator = self._calculators.get(entity_type)
        if calculator is None:
            calculator = create_calculator(self.get_reward_config(entity_type))
            self._calculators[entity_type] = calculator
        return calculator

    def set_reward_config(self, entity_type: EntityType, config: RewardConfig):
        """Hot-reload one type's config. Other types keep their calculators."""
        self._reward_configs[entity_type] = config
        if self._calculators.pop(entity_type, None) is not None:
            logger.info(f"Reward config reloaded for {entity_type.name}")

    def apply_difficulty_scaling(self, multiplier: float):
        if multiplier <= 0:
            logger.warning(f"Ignoring non-positive difficulty multiplier {multiplier}")
            return
        for entity_type, config in list(self._reward_configs.items()):
            self._reward_configs[entity_type] = config.scaled(
                multiplier / self.difficulty_multiplier)
        self.difficulty_multiplier = multiplier
        self._calculators.clear()
        logger.info(f"Difficulty scaling set to {multiplier:.2f}")

    def clear(self):
        self._decoders.clear()
        self._calculators.clear()
        self._reward_configs.clear()
        self._action_spaces.clear()

    def stats(self) -> Dict:
        return {
            'decoders': len(self._decoders),
            'calculators': len(self._calculators),
            'reward_configs': len(self._reward_configs),
            'difficulty_multiplier': self.difficulty_multiplier,
        }
