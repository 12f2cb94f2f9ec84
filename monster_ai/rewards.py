"""
Reward Model - Immediate, terminal, and shaped rewards for monster agents.

Four interchangeable strategies share one contract:

- Dense: hit/damage/action-kind bonuses, a survival trickle and positional
  improvement; optional shaping when the config asks for SHAPED rewards
- Sparse: reward only when the player is hit
- Curiosity: sparse extrinsic reward plus an intrinsic term driven by how
  much the player moved or changed health since the previous call
- Adaptive: hit/coordination reward scaled by a multiplier that tracks
  recent episode outcomes

Every strategy returns finite values for finite inputs.
"""

import math
import logging
from enum import IntEnum
from dataclasses import dataclass, asdict, replace
from typing import Dict, Optional

from game.actions import Action, ActionKind, ActionOutcome
from game.observation import EntityType, Observation, distance

logger = logging.getLogger(__name__)


class RewardFunctionType(IntEnum):
    SPARSE = 0
    DENSE = 1
    SHAPED = 2
    CURIOSITY = 3
    ADAPTIVE = 4


@dataclass
class RewardConfig:
    """Named weights for every reward term."""
    # Primary
    hit_player_reward: float = 25.0
    damage_reward_multiplier: float = 1.0
    survival_reward: float = 1.0
    coordination_reward: float = 15.0
    death_penalty: float = -100.0
    kill_player_reward: float = 200.0
    survival_bonus_multiplier: float = 5.0

    # Action-kind bonuses
    attack_attempt_reward: float = 1.0
    special_attack_reward: float = 5.0
    tactical_retreat_reward: float = 3.0
    coordination_attempt_reward: float = 2.0
    ambush_success_reward: float = 10.0
    damage_penalty_multiplier: float = 0.5

    reward_type: RewardFunctionType = RewardFunctionType.DENSE

    # Shaping
    optimal_distance: float = 3.0
    optimal_distance_reward: float = 1.0
    distance_penalty: float = 0.5
    health_maintenance_reward: float = 0.5
    player_low_health_bonus: float = 5.0
    player_low_health_ratio: float = 0.3
    recent_damage_bonus: float = 3.0
    recent_damage_window: float = 3.0
    position_improvement_reward: float = 1.0

    fixed_delta_time: float = 0.02
    max_health: float = 100.0

    # Adaptive
    adaptive_warmup_episodes: int = 10
    adaptive_poor_threshold: float = -0.5
    adaptive_poor_multiplier: float = 1.5
    adaptive_good_threshold: float = 0.5
    adaptive_good_multiplier: float = 0.8
    adaptive_adaptation_rate: float = 0.1

    # Curiosity
    curiosity_displacement_scale: float = 0.1
    curiosity_health_scale: float = 0.5
    curiosity_length_bonus: float = 0.1

    def is_valid(self) -> bool:
        return (self.hit_player_reward >= 0
                and self.damage_reward_multiplier >= 0
                and self.death_penalty <= 0
                and self.kill_player_reward >= 0
                and self.optimal_distance > 0
                and self.recent_damage_window > 0
                and self.max_health > 0
                and self.fixed_delta_time > 0)

    def scaled(self, multiplier: float) -> 'RewardConfig':
        """Copy with primary rewards scaled for difficulty."""
        return replace(
            self,
            hit_player_reward=self.hit_player_reward * multiplier,
            kill_player_reward=self.kill_player_reward * multiplier,
            coordination_reward=self.coordination_reward * multiplier,
            death_penalty=self.death_penalty * multiplier,
            special_attack_reward=self.special_attack_reward * multiplier,
            ambush_success_reward=self.ambush_success_reward * multiplier,
        )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['reward_type'] = int(self.reward_type)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'RewardConfig':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if 'reward_type' in known:
            known['reward_type'] = RewardFunctionType(known['reward_type'])
        return cls(**known)

    # Presets

    @classmethod
    def aggressive(cls) -> 'RewardConfig':
        return cls(hit_player_reward=40.0, damage_reward_multiplier=2.0,
                   attack_attempt_reward=3.0, tactical_retreat_reward=0.5,
                   death_penalty=-50.0, optimal_distance=1.5)

    @classmethod
    def defensive(cls) -> 'RewardConfig':
        return cls(survival_reward=3.0, damage_penalty_multiplier=1.5,
                   tactical_retreat_reward=8.0, death_penalty=-200.0,
                   health_maintenance_reward=2.0, optimal_distance=5.0,
                   reward_type=RewardFunctionType.SHAPED)

    @classmethod
    def coordination(cls) -> 'RewardConfig':
        return cls(coordination_reward=40.0, coordination_attempt_reward=6.0,
                   ambush_success_reward=20.0)

    @classmethod
    def sparse(cls) -> 'RewardConfig':
        return cls(reward_type=RewardFunctionType.SPARSE)

    @classmethod
    def for_entity_type(cls, entity_type: EntityType) -> 'RewardConfig':
        if entity_type == EntityType.BOSS:
            return cls(kill_player_reward=1000.0, hit_player_reward=60.0,
                       special_attack_reward=25.0, death_penalty=-300.0)
        if entity_type == EntityType.RANGED:
            return cls(optimal_distance=6.0, tactical_retreat_reward=5.0)
        if entity_type in (EntityType.THROWING, EntityType.BOOMERANG):
            return cls(optimal_distance=5.0, special_attack_reward=8.0)
        if entity_type == EntityType.MELEE:
            return cls.aggressive()
        return cls()


def _finite(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return float(value)


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return min(hi, max(lo, value))


class RewardCalculator:
    """
    Base strategy. Subclasses override the _raw methods; the public methods
    guard against non-finite results.
    """

    reward_type = RewardFunctionType.DENSE

    def __init__(self, config: Optional[RewardConfig] = None):
        self.config = config or RewardConfig()

    def calculate_reward(self, prev: Observation, action: Action,
                         curr: Observation, outcome: ActionOutcome) -> float:
        return _finite(self._raw_reward(prev, action, curr, outcome))

    def calculate_terminal_reward(self, final: Observation, episode_length: int,
                                  killed_by_self: bool) -> float:
        return _finite(self._raw_terminal(final, episode_length, killed_by_self))

    def shape_reward(self, base_reward: float, state: Observation) -> float:
        return _finite(self._raw_shape(base_reward, state))

    def reset(self):
        pass

    def _raw_reward(self, prev, action, curr, outcome) -> float:
        raise NotImplementedError

    def _raw_terminal(self, final, episode_length, killed_by_self) -> float:
        raise NotImplementedError

    def _raw_shape(self, base_reward, state) -> float:
        return base_reward

    # Shared terms

    def _hit_term(self, outcome: ActionOutcome) -> float:
        if not outcome.hit_player:
            return 0.0
        cfg = self.config
        return cfg.hit_player_reward + outcome.damage_dealt * cfg.damage_reward_multiplier

    def _death_or_survival(self, episode_length: int, killed_by_self: bool) -> float:
        cfg = self.config
        if killed_by_self:
            return cfg.death_penalty
        return cfg.survival_bonus_multiplier * math.log1p(max(0, episode_length))

    def _kill_term(self, final: Observation) -> float:
        if final is not None and final.player_health <= 0:
            return self.config.kill_player_reward
        return 0.0


class DenseRewardCalculator(RewardCalculator):
    """Default strategy: rich per-step feedback."""

    reward_type = RewardFunctionType.DENSE

    def _raw_reward(self, prev, action, curr, outcome) -> float:
        cfg = self.config
        reward = self._hit_term(outcome)

        if outcome.took_damage:
            reward -= outcome.damage_taken * cfg.damage_penalty_multiplier

        reward += self._action_bonus(action, outcome)

        if outcome.coordinated:
            reward += cfg.coordination_reward

        reward += cfg.survival_reward * cfg.fixed_delta_time

        if prev is not None and curr is not None:
            prev_dist = prev.distance_to_player()
            curr_dist = curr.distance_to_player()
            if curr_dist < prev_dist and curr_dist <= cfg.optimal_distance:
                reward += cfg.position_improvement_reward

        if curr is not None:
            reward = self._raw_shape(reward, curr)
        return reward

    def _action_bonus(self, action: Action, outcome: ActionOutcome) -> float:
        cfg = self.config
        kind = action.kind if action is not None else ActionKind.WAIT
        if kind == ActionKind.ATTACK:
            return cfg.attack_attempt_reward
        if kind == ActionKind.SPECIAL_ATTACK:
            return cfg.special_attack_reward
        if kind == ActionKind.RETREAT and outcome.took_damage:
            return cfg.tactical_retreat_reward
        if kind == ActionKind.COORDINATE:
            return cfg.coordination_attempt_reward
        if kind == ActionKind.AMBUSH and outcome.hit_player:
            return cfg.ambush_success_reward
        return 0.0

    def _raw_terminal(self, final, episode_length, killed_by_self) -> float:
        return (self._death_or_survival(episode_length, killed_by_self)
                + self._kill_term(final))

    def _raw_shape(self, base_reward, state) -> float:
        cfg = self.config
        if cfg.reward_type != RewardFunctionType.SHAPED or state is None:
            return base_reward

        shaped = base_reward

        # Distance
        dist = state.distance_to_player()
        opt = cfg.optimal_distance
        if dist <= opt:
            shaped += cfg.optimal_distance_reward * (1.0 - dist / opt)
        else:
            shaped -= cfg.distance_penalty * min((dist - opt) / opt, 1.0)

        # Health
        shaped += cfg.health_maintenance_reward * (state.self_health / cfg.max_health)
        if state.player_health_ratio() < cfg.player_low_health_ratio:
            shaped += cfg.player_low_health_bonus

        # Recency
        since = state.time_since_player_damage
        window = cfg.recent_damage_window
        if since < window:
            shaped += cfg.recent_damage_bonus * (1.0 - since / window)

        return shaped


class SparseRewardCalculator(RewardCalculator):
    """Reward only for hitting the player."""

    reward_type = RewardFunctionType.SPARSE

    def _raw_reward(self, prev, action, curr, outcome) -> float:
        return self._hit_term(outcome)

    def _raw_terminal(self, final, episode_length, killed_by_self) -> float:
        return (self._death_or_survival(episode_length, killed_by_self)
                + self._kill_term(final))


class CuriosityRewardCalculator(RewardCalculator):
    """Sparse extrinsic reward plus novelty of the player's state."""

    reward_type = RewardFunctionType.CURIOSITY

    def __init__(self, config: Optional[RewardConfig] = None):
        super().__init__(config)
        self._last_player_position = None
        self._last_player_health = None

    def reset(self):
        self._last_player_position = None
        self._last_player_health = None

    def _raw_reward(self, prev, action, curr, outcome) -> float:
        extrinsic = self._hit_term(outcome)
        intrinsic = 0.0
        if curr is not None:
            intrinsic = self._intrinsic(curr)
        return extrinsic + intrinsic

    def _intrinsic(self, curr: Observation) -> float:
        cfg = self.config
        if self._last_player_position is None:
            self._last_player_position = curr.player_position
            self._last_player_health = curr.player_health
            return 0.0

        displacement = distance(curr.player_position, self._last_player_position)
        health_delta = abs(curr.player_health - self._last_player_health)
        self._last_player_position = curr.player_position
        self._last_player_health = curr.player_health
        return (cfg.curiosity_displacement_scale * displacement
                + cfg.curiosity_health_scale * health_delta)

    def _raw_terminal(self, final, episode_length, killed_by_self) -> float:
        cfg = self.config
        reward = cfg.death_penalty if killed_by_self else 0.0
        reward += self._kill_term(final)
        reward += cfg.curiosity_length_bonus * max(0, episode_length)
        return reward


class AdaptiveRewardCalculator(RewardCalculator):
    """
    Scales hit and coordination rewards by recent performance.

    Outcomes are tracked as an exponential moving average of -1 (death),
    0 (timeout) and +1 (kill). Struggling agents get a larger multiplier,
    dominant ones a smaller one. The multiplier stays at 1.0 until enough
    episodes have been seen.
    """

    reward_type = RewardFunctionType.ADAPTIVE

    def __init__(self, config: Optional[RewardConfig] = None):
        super().__init__(config)
        self.performance_average = 0.0
        self.episodes_seen = 0

    def reset(self):
        self.performance_average = 0.0
        self.episodes_seen = 0

    @property
    def multiplier(self) -> float:
        cfg = self.config
        if self.episodes_seen < cfg.adaptive_warmup_episodes:
            return 1.0
        if self.performance_average < cfg.adaptive_poor_threshold:
            return cfg.adaptive_poor_multiplier
        if self.performance_average > cfg.adaptive_good_threshold:
            return cfg.adaptive_good_multiplier
        return 1.0

    def record_episode_outcome(self, killed_by_self: bool, killed_player: bool):
        if killed_player:
            outcome = 1.0
        elif killed_by_self:
            outcome = -1.0
        else:
            outcome = 0.0
        rate = self.config.adaptive_adaptation_rate
        self.performance_average = (1 - rate) * self.performance_average + rate * outcome
        self.episodes_seen += 1

    def _raw_reward(self, prev, action, curr, outcome) -> float:
        base = self._hit_term(outcome)
        if outcome.coordinated:
            base += self.config.coordination_reward
        return base * self.multiplier

    def _raw_terminal(self, final, episode_length, killed_by_self) -> float:
        killed_player = final is not None and final.player_health <= 0
        reward = self.config.death_penalty if killed_by_self else 0.0
        reward += self._kill_term(final)
        self.record_episode_outcome(killed_by_self, killed_player)
        return reward

    def _raw_shape(self, base_reward, state) -> float:
        cfg = self.config
        if cfg.reward_type != RewardFunctionType.SHAPED or state is None:
            return base_reward
        if state.distance_to_player() <= cfg.optimal_distance:
            return base_reward + cfg.optimal_distance_reward
        return base_reward


_CALCULATORS = {
    RewardFunctionType.DENSE: DenseRewardCalculator,
    RewardFunctionType.SHAPED: DenseRewardCalculator,
    RewardFunctionType.SPARSE: SparseRewardCalculator,
    RewardFunctionType.CURIOSITY: CuriosityRewardCalculator,
    RewardFunctionType.ADAPTIVE: AdaptiveRewardCalculator,
}


def create_calculator(config: Optional[RewardConfig] = None) -> RewardCalculator:
    """Build the strategy selected by config.reward_type."""
    config = config or RewardConfig()
    if not config.is_valid():
        logger.warning("Invalid reward config, using defaults")
        config = RewardConfig()
    cls = _CALCULATORS.get(config.reward_type, DenseRewardCalculator)
    return cls(config)


def create_basic() -> RewardCalculator:
    """Dense calculator with every shaping term switched off."""
    config = RewardConfig(
        reward_type=RewardFunctionType.DENSE,
        optimal_distance_reward=0.0, distance_penalty=0.0,
        health_maintenance_reward=0.0, player_low_health_bonus=0.0,
        recent_damage_bonus=0.0, position_improvement_reward=0.0,
    )
    return DenseRewardCalculator(config)
