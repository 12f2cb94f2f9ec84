"""
Learning Agent Contract - What the scheduler needs from a monster learner.

The training pipeline never looks inside a policy network. It talks to
agents through LearningAgent: pick an action index from an encoded state,
store experience, run an update step, and report LearningMetrics.

FallbackAgent is a rule-based implementation with no network, used when a
learner is unavailable and to drive the demo loop.
"""

import math
import uuid
import numpy as np
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Optional

from game.actions import ActionKind, ActionSpace
from game.observation import EntityType, Observation
from monster_ai.decoder import ActionDecoder

METRIC_ALPHA = 0.01
RECENT_WINDOW = 100


@dataclass
class LearningMetrics:
    """Training statistics for one agent or one agent type."""
    # Progress
    episode_count: int = 0
    average_reward: float = 0.0
    best_reward: float = -math.inf
    recent_average_reward: float = 0.0

    # Performance
    average_episode_length: float = 0.0
    player_damage_dealt: float = 0.0
    damage_taken: float = 0.0
    survival_rate: float = 0.0

    # Learning
    exploration_rate: float = 1.0
    learning_rate: float = 0.001
    total_steps: int = 0
    loss_value: float = 0.0
    learning_progress: float = 0.0

    # Behaviour
    coordinated_actions: int = 0
    successful_attacks: int = 0
    retreat_actions: int = 0
    average_distance_to_player: float = 0.0

    def update_after_episode(self, episode_reward: float, episode_length: float,
                             damage_dealt: float = 0.0, damage_taken: float = 0.0,
                             survived: bool = True):
        self.episode_count += 1
        a = METRIC_ALPHA

        self.average_reward = self.average_reward * (1 - a) + episode_reward * a
        if episode_reward > self.best_reward:
            self.best_reward = episode_reward

        recent_alpha = 1.0 / min(self.episode_count, RECENT_WINDOW)
        self.recent_average_reward = (self.recent_average_reward * (1 - recent_alpha)
                                      + episode_reward * recent_alpha)

        self.average_episode_length = (self.average_episode_length * (1 - a)
                                       + episode_length * a)
        self.player_damage_dealt = self.player_damage_dealt * (1 - a) + damage_dealt * a
        self.damage_taken = self.damage_taken * (1 - a) + damage_taken * a
        self.survival_rate = self.survival_rate * (1 - a) + (1.0 if survived else 0.0) * a

    def is_converging(self) -> bool:
        return (self.episode_count > 100
                and abs(self.average_reward - self.recent_average_reward) < 0.1
                and self.exploration_rate < 0.1)

    def progress_percentage(self) -> float:
        if self.episode_count < 10:
            return 0.0
        exploration = (1.0 - self.exploration_rate) * 50.0
        stability = 50.0 if self.is_converging() else 0.0
        return min(100.0, max(0.0, exploration + stability))

    def copy(self) -> 'LearningMetrics':
        return replace(self)

    def to_dict(self) -> Dict:
        data = asdict(self)
        # json has no -inf
        if not math.isfinite(data['best_reward']):
            data['best_reward'] = None
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'LearningMetrics':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if known.get('best_reward') is None:
            known['best_reward'] = -math.inf
        return cls(**known)


class LearningAgent:
    """
    Base class for monster learners.

    Subclasses implement select_action and update_policy. Episode
    bookkeeping in store_experience is shared.
    """

    def __init__(self, agent_id: Optional[str] = None):
        self.agent_id = agent_id or f"agent_{uuid.uuid4().hex[:8]}"
        self.entity_type = EntityType.NONE
        self.action_space: Optional[ActionSpace] = None
        self.decoder: Optional[ActionDecoder] = None
        self.metrics = LearningMetrics()
        self._is_training = True

        self._episode_reward = 0.0
        self._episode_length = 0
        self._episode_damage_dealt = 0.0
        self._episode_damage_taken = 0.0

    @property
    def is_training(self) -> bool:
        return self._is_training

    @is_training.setter
    def is_training(self, value: bool):
        self._is_training = bool(value)

    def initialize(self, entity_type: EntityType, action_space: ActionSpace,
                   decoder: Optional[ActionDecoder] = None):
        self.entity_type = entity_type
        self.action_space = action_space
        self.decoder = decoder or ActionDecoder(action_space)

    def select_action(self, state: np.ndarray, observation: Optional[Observation] = None,
                      is_training: bool = False) -> int:
        raise NotImplementedError

    def store_experience(self, state: np.ndarray, action: int, reward: float,
                         next_state: np.ndarray, done: bool, survived: bool = True):
        self._episode_reward += reward
        self._episode_length += 1
        self.metrics.total_steps += 1
        if done:
            self.metrics.update_after_episode(
                self._episode_reward, self._episode_length,
                self._episode_damage_dealt, self._episode_damage_taken, survived)
            self._episode_reward = 0.0
            self._episode_length = 0
            self._episode_damage_dealt = 0.0
            self._episode_damage_taken = 0.0

    def record_outcome(self, kind: ActionKind, damage_dealt: float = 0.0,
                       damage_taken: float = 0.0, coordinated: bool = False):
        """Behavioural counters fed by the simulation after each action."""
        self._episode_damage_dealt += damage_dealt
        self._episode_damage_taken += damage_taken
        if damage_dealt > 0:
            self.metrics.successful_attacks += 1
        if coordinated:
            self.metrics.coordinated_actions += 1
        if kind == ActionKind.RETREAT:
            self.metrics.retreat_actions += 1

    def update_policy(self):
        raise NotImplementedError

    def get_metrics(self) -> LearningMetrics:
        return self.metrics

    def apply_learning_boost(self, amount: float):
        self.metrics.learning_progress = min(1.0, self.metrics.learning_progress + amount)

    def save_state(self) -> Dict[str, Any]:
        return {
            'agent_id': self.agent_id,
            'entity_type': int(self.entity_type),
            'metrics': self.metrics.to_dict(),
            'parameters': self.get_parameters(),
        }

    def load_state(self, blob: Dict[str, Any]):
        if 'metrics' in blob:
            self.metrics = LearningMetrics.from_dict(blob['metrics'])
        if 'parameters' in blob:
            self.set_parameters(blob['parameters'])

    def get_parameters(self) -> Dict[str, Any]:
        """Opaque policy parameters for persistence."""
        return {}

    def set_parameters(self, parameters: Dict[str, Any]):
        pass

    def __repr__(self):
        return (f"{type(self).__name__}({self.agent_id}, "
                f"{self.entity_type.name}, training={self.is_training})")


# Per-type starting temperament: (aggression, caution)
_TEMPERAMENT = {
    EntityType.MELEE: (0.8, 0.2),
    EntityType.RANGED: (0.6, 0.4),
    EntityType.THROWING: (0.7, 0.3),
    EntityType.BOOMERANG: (0.5, 0.5),
    EntityType.BOSS: (0.9, 0.1),
}


class FallbackAgent(LearningAgent):
    """
    Rule-based monster behaviour with no network.

    Scores each table entry from aggression, caution and random noise, then
    lets the decoder mask and pick. Its update step only nudges aggression
    and caution by the sign of recent rewards.
    """

    ADAPT_STEP = 0.001

    def __init__(self, agent_id: Optional[str] = None, aggression: float = 0.5,
                 caution: float = 0.3, randomness: float = 0.1,
                 seed: Optional[int] = None):
        super().__init__(agent_id)
        self.aggression = aggression
        self.caution = caution
        self.randomness = randomness
        self.rng = np.random.default_rng(seed)
        self._pending_reward = 0.0
        self._pending_steps = 0
        self.metrics.exploration_rate = randomness

    def initialize(self, entity_type: EntityType, action_space: ActionSpace,
                   decoder: Optional[ActionDecoder] = None):
        super().initialize(entity_type, action_space, decoder)
        if entity_type in _TEMPERAMENT:
            self.aggression, self.caution = _TEMPERAMENT[entity_type]

    def action_scores(self, observation: Optional[Observation]) -> np.ndarray:
        decoder = self.decoder
        scores = np.zeros(decoder.action_count, dtype=np.float64)

        toward = (0.0, 0.0)
        if observation is not None:
            toward = ActionDecoder._toward_player(observation)

        for m in decoder.mappings:
            dot = m.direction[0] * toward[0] + m.direction[1] * toward[1]
            if m.kind == ActionKind.MOVE:
                scores[m.index] = self.aggression * max(0.0, dot)
            elif m.kind == ActionKind.RETREAT:
                scores[m.index] = self.caution * max(0.0, -dot) * 1.2
            elif m.kind == ActionKind.ATTACK:
                scores[m.index] = self.aggression * 0.8
            elif m.kind == ActionKind.SPECIAL_ATTACK:
                scores[m.index] = self.aggression * 0.3
            elif m.kind == ActionKind.DEFENSIVE_STANCE:
                scores[m.index] = self.caution
            elif m.kind in (ActionKind.COORDINATE, ActionKind.AMBUSH):
                scores[m.index] = (self.aggression + self.caution) * 0.25

        if self.randomness > 0:
            scores += self.rng.uniform(0.0, self.randomness, size=scores.shape)
        return scores

    def select_action(self, state: np.ndarray, observation: Optional[Observation] = None,
                      is_training: bool = False) -> int:
        if self.decoder is None or self.decoder.action_count == 0:
            return 0
        scores = self.action_scores(observation)
        mask = self.decoder.valid_mask(observation)
        if not mask.any():
            return self.decoder.action_count - 1
        scores[~mask] = -np.inf
        return int(np.argmax(scores))

    def store_experience(self, state, action, reward, next_state, done, survived=True):
        super().store_experience(state, action, reward, next_state, done, survived)
        self._pending_reward += reward
        self._pending_steps += 1

    def update_policy(self):
        if not self.is_training or self._pending_steps == 0:
            return
        if self._pending_reward > 0:
            self.aggression = min(1.0, self.aggression + self.ADAPT_STEP)
        elif self._pending_reward < 0:
            self.caution = min(1.0, self.caution + self.ADAPT_STEP)
            self.aggression = max(0.0, self.aggression - self.ADAPT_STEP)
        self._pending_reward = 0.0
        self._pending_steps = 0

    def get_parameters(self) -> Dict[str, Any]:
        return {'weights': [self.aggression, self.caution, self.randomness]}

    def set_parameters(self, parameters: Dict[str, Any]):
        weights = parameters.get('weights') or []
        if len(weights) >= 3:
            self.aggression = min(1.0, max(0.0, float(weights[0])))
            self.caution = min(1.0, max(0.0, float(weights[1])))
            self.randomness = min(1.0, max(0.0, float(weights[2])))
