"""
Type Learning Manager - Owns the learners of one monster type.

Each pass runs update_policy on training agents, tracks a learning-progress
score per agent, and optionally shares a lightweight summary of strong
agents' experience with weaker ones of the same type. Shared experience only
nudges the recipient's progress score; moving policy weights is left to the
agent implementation.
"""

import time
import random
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from game.observation import EntityType
from monster_ai.agent import LearningAgent, LearningMetrics
from training.config import TrainingConfig
from training.errors import ErrorTracker
from training.events import EventBus, EventKind

logger = logging.getLogger(__name__)

EXPERIENCE_TTL = 60.0
REWARD_SCALE = 100.0
EPISODE_SCALE = 1000.0


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


@dataclass
class SharedExperience:
    """Summary of a strong agent offered to weaker peers."""
    donor_id: str
    reward: float
    episodes: int
    weight: float
    created_at: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at <= EXPERIENCE_TTL


def donor_weight(metrics: LearningMetrics) -> float:
    return (_clamp01(metrics.average_reward / REWARD_SCALE)
            + _clamp01(metrics.episode_count / EPISODE_SCALE)) / 2.0


def learning_progress(metrics: LearningMetrics) -> float:
    reward_part = _clamp01(metrics.average_reward / REWARD_SCALE)
    episode_part = _clamp01(metrics.episode_count / EPISODE_SCALE)
    loss_part = _clamp01(1.0 - metrics.loss_value) if metrics.loss_value > 0 else 0.0
    return (reward_part + episode_part + loss_part) / 3.0


class TypeLearningManager:
    """
    Bounded set of agents of a single entity type.

    Registration past capacity is refused, never evicting an existing agent.
    """

    def __init__(self, entity_type: EntityType, config: Optional[TrainingConfig] = None,
                 errors: Optional[ErrorTracker] = None, events: Optional[EventBus] = None,
                 time_fn: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        self.entity_type = entity_type
        self.config = config or TrainingConfig()
        self.errors = errors or ErrorTracker(events)
        self.events = events
        self.time_fn = time_fn
        self.rng = rng or random.Random()

        self.agents: "OrderedDict[str, LearningAgent]" = OrderedDict()
        self.cached_metrics: Dict[str, LearningMetrics] = {}
        self.base_progress: Dict[str, float] = {}
        self.boosts: Dict[str, float] = {}

        self.experience_pool: deque = deque(maxlen=self.config.experience_pool_size)
        self.aggregated = LearningMetrics()
        self._last_metrics_update = None

        self.stats = {'updates': 0, 'update_failures': 0,
                      'shared': 0, 'distributed': 0}

    @property
    def agent_count(self) -> int:
        return len(self.agents)

    @property
    def component(self) -> str:
        return f"type_manager.{self.entity_type.name.lower()}"

    # Registration

    def register_agent(self, agent: Optional[LearningAgent]) -> bool:
        if agent is None:
            logger.warning(f"Refusing to register a missing agent for {self.entity_type.name}")
            return False
        if agent.agent_id in self.agents:
            return False
        if len(self.agents) >= self.config.max_agents_per_type:
            logger.warning(f"{self.entity_type.name} manager at capacity "
                           f"({self.config.max_agents_per_type}), rejecting {agent.agent_id}")
            return False
        self.agents[agent.agent_id] = agent
        self.base_progress[agent.agent_id] = 0.0
        self.boosts[agent.agent_id] = 0.0
        self.read_metrics(agent)
        return True

    def unregister_agent(self, agent: LearningAgent) -> bool:
        if agent is None or agent.agent_id not in self.agents:
            return False
        del self.agents[agent.agent_id]
        self.cached_metrics.pop(agent.agent_id, None)
        self.base_progress.pop(agent.agent_id, None)
        self.boosts.pop(agent.agent_id, None)
        return True

    def has_agent(self, agent: LearningAgent) -> bool:
        return agent is not None and agent.agent_id in self.agents

    # Per-pass work

    def read_metrics(self, agent: LearningAgent) -> Optional[LearningMetrics]:
        """Latest metrics, or the last known copy if the agent fails."""
        try:
            metrics = agent.get_metrics().copy()
        except Exception as e:
            self.errors.record(self.component, f"get_metrics[{agent.agent_id}]", e)
            return self.cached_metrics.get(agent.agent_id)
        self.cached_metrics[agent.agent_id] = metrics
        return metrics

    def update_agent(self, agent: LearningAgent) -> bool:
        """Run one update step for one agent. Returns False on failure."""
        if agent.is_training:
            try:
                agent.update_policy()
                self.stats['updates'] += 1
            except Exception as e:
                self.stats['update_failures'] += 1
                self.errors.record(self.component, f"update_policy[{agent.agent_id}]", e)
                return False

        metrics = self.read_metrics(agent)
        if metrics is not None:
            self.base_progress[agent.agent_id] = learning_progress(metrics)
        return True

    def update(self, now: Optional[float] = None) -> int:
        """Full pass over every agent. Returns how many updated cleanly."""
        ok = 0
        for agent in list(self.agents.values()):
            if self.update_agent(agent):
                ok += 1
        self.maintain(now)
        return ok

    def maintain(self, now: Optional[float] = None):
        """Interval-driven metric aggregation and experience sharing."""
        now = self.time_fn() if now is None else now
        if (self._last_metrics_update is None
                or now - self._last_metrics_update >= self.config.metrics_update_interval):
            self.refresh_aggregated_metrics()
            self._last_metrics_update = now
            if self.events is not None:
                self.events.publish(EventKind.METRICS_UPDATED, {
                    'entity_type': self.entity_type.name,
                    'agents': self.agent_count,
                    'average_reward': self.aggregated.average_reward,
                }, key=self.entity_type.name)

        if self.config.enable_experience_sharing and self.agent_count >= 2:
            self.collect_experiences(now)
            self.distribute_experiences(now)

    # Metrics

    def refresh_aggregated_metrics(self) -> LearningMetrics:
        valid = [m for m in (self.cached_metrics.get(aid) for aid in self.agents)
                 if m is not None]
        if not valid:
            self.aggregated = LearningMetrics()
            return self.aggregated

        n = len(valid)
        agg = LearningMetrics()
        agg.average_reward = sum(m.average_reward for m in valid) / n
        agg.loss_value = sum(m.loss_value for m in valid) / n
        agg.episode_count = int(sum(m.episode_count for m in valid) / n)
        agg.exploration_rate = sum(m.exploration_rate for m in valid) / n
        agg.total_steps = sum(m.total_steps for m in valid)
        agg.learning_progress = sum(self.get_agent_progress(a) for a in self.agents) / len(self.agents)
        self.aggregated = agg
        return agg

    def aggregated_metrics(self) -> LearningMetrics:
        return self.aggregated

    # Experience sharing

    def collect_experiences(self, now: float) -> int:
        threshold = self.aggregated.average_reward * self.config.donor_threshold
        added = 0
        for agent_id in self.agents:
            metrics = self.cached_metrics.get(agent_id)
            if metrics is None or metrics.average_reward <= threshold:
                continue
            self.experience_pool.append(SharedExperience(
                donor_id=agent_id,
                reward=metrics.average_reward,
                episodes=metrics.episode_count,
                weight=donor_weight(metrics),
                created_at=now,
            ))
            added += 1
        self.stats['shared'] += added
        return added

    def distribute_experiences(self, now: float) -> int:
        budget = min(len(self.experience_pool), 2 * self.agent_count)
        delivered = 0
        for _ in range(budget):
            exp = self.experience_pool.popleft()
            if not exp.is_valid(now):
                continue
            limit = exp.reward * self.config.recipient_threshold
            candidates = [aid for aid, m in self.cached_metrics.items()
                          if aid in self.agents and aid != exp.donor_id
                          and m.average_reward < limit]
            if not candidates:
                continue
            target = self.rng.choice(candidates)
            self._boost(target, exp.weight * self.config.share_rate)
            delivered += 1
        self.stats['distributed'] += delivered
        return delivered

    def _boost(self, agent_id: str, amount: float):
        self.boosts[agent_id] = self.boosts.get(agent_id, 0.0) + amount
        agent = self.agents.get(agent_id)
        if agent is None:
            return
        try:
            agent.apply_learning_boost(amount)
        except Exception as e:
            self.errors.record(self.component, f"apply_learning_boost[{agent_id}]", e)

    def apply_learning_boost_to_all(self, amount: float):
        for agent_id in list(self.agents):
            self._boost(agent_id, amount)

    def get_agent_progress(self, agent_id: str) -> float:
        return min(1.0, self.base_progress.get(agent_id, 0.0)
                   + self.boosts.get(agent_id, 0.0))

    def reset_progress(self):
        for agent_id in self.agents:
            self.base_progress[agent_id] = 0.0
            self.boosts[agent_id] = 0.0

    def training_agents(self) -> List[LearningAgent]:
        return [a for a in self.agents.values() if a.is_training]

    def performance_summary(self) -> Dict:
        return {
            'entity_type': self.entity_type.name,
            'agents': self.agent_count,
            'training_agents': len(self.training_agents()),
            'average_reward': self.aggregated.average_reward,
            'average_loss': self.aggregated.loss_value,
            'average_progress': self.aggregated.learning_progress,
            'pool_size': len(self.experience_pool),
            **self.stats,
        }
