"""
Training Coordinator - Schedules learning updates inside a per-tick budget.

Responsibilities:
- Global mode (training / inference / mixed) and the per-agent training flags
  it implies
- Agent registration, grouped into per-type TypeLearningManagers
- The per-tick update pass: round-robin from a persisted cursor, bounded by
  an agent quota and a soft time budget
- Forced synchronous updates bounded by the hard time budget
- Profile persistence through a ProfileStore

All work happens on the caller's thread at tick boundaries. A pass that
runs out of budget leaves the remaining agents for the next tick.
"""

import time
import random
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from game.observation import EntityType
from monster_ai.agent import LearningAgent, LearningMetrics
from training.config import TrainingConfig, TrainingMode
from training.errors import ErrorTracker
from training.events import EventBus, EventKind
from training.monitor import AdaptiveSettings
from training.storage import ProfileStore
from training.type_manager import TypeLearningManager

logger = logging.getLogger(__name__)

MODE_SNAPSHOT_PROFILE = "mode_snapshot"


@dataclass
class PassReport:
    """What one scheduling pass did."""
    processed: int = 0
    attempted: int = 0
    aborted: bool = False
    skipped: bool = False
    elapsed_ms: float = 0.0


class TrainingCoordinator:

    def __init__(self, config: Optional[TrainingConfig] = None,
                 store: Optional[ProfileStore] = None,
                 events: Optional[EventBus] = None,
                 errors: Optional[ErrorTracker] = None,
                 clock: Callable[[], float] = time.perf_counter,
                 time_fn: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        self.config = replace(config) if config else TrainingConfig()
        self.store = store or ProfileStore()
        self.events = events or EventBus()
        self.errors = errors or ErrorTracker(self.events)
        self.clock = clock
        self.time_fn = time_fn
        self.rng = rng or random.Random()

        self.mode = self.config.mode
        self.managers: Dict[EntityType, TypeLearningManager] = {}
        self.agents: List[LearningAgent] = []
        self.cursor = 0
        self.last_known: Dict[str, LearningMetrics] = {}
        self.mode_history: deque = deque(maxlen=20)
        self._last_pass: Optional[float] = None

        self.stats = {'passes': 0, 'agent_updates': 0, 'aborted_passes': 0,
                      'forced_updates': 0}

    # Registration

    @property
    def agent_count(self) -> int:
        return len(self.agents)

    def is_registered(self, agent: LearningAgent) -> bool:
        return any(a is agent for a in self.agents)

    def get_manager(self, entity_type: EntityType) -> TypeLearningManager:
        manager = self.managers.get(entity_type)
        if manager is None:
            manager = TypeLearningManager(entity_type, self.config, self.errors,
                                          self.events, self.time_fn, self.rng)
            self.managers[entity_type] = manager
        return manager

    def register_agent(self, agent: Optional[LearningAgent]) -> bool:
        """Add an agent. Registering the same agent again is a no-op."""
        if agent is None:
            return False
        if self.is_registered(agent):
            return True
        manager = self.get_manager(agent.entity_type)
        if not manager.register_agent(agent):
            return False
        self.agents.append(agent)
        metrics = manager.cached_metrics.get(agent.agent_id)
        if metrics is not None:
            self.last_known[agent.agent_id] = metrics
        agent.is_training = self._training_flag(agent)
        logger.debug(f"Registered {agent.agent_id} ({agent.entity_type.name})")
        return True

    def unregister_agent(self, agent: Optional[LearningAgent]) -> bool:
        if agent is None:
            return False
        for index, existing in enumerate(self.agents):
            if existing is agent:
                break
        else:
            return False

        del self.agents[index]
        if index < self.cursor:
            self.cursor -= 1
        if self.cursor >= len(self.agents):
            self.cursor = 0
        self.last_known.pop(agent.agent_id, None)
        manager = self.managers.get(agent.entity_type)
        if manager is not None:
            manager.unregister_agent(agent)
        return True

    # Modes

    def _training_flag(self, agent: LearningAgent) -> bool:
        if self.mode == TrainingMode.TRAINING:
            return True
        if self.mode == TrainingMode.INFERENCE:
            return False
        metrics = self.last_known.get(agent.agent_id)
        return metrics is None or not metrics.is_converging()

    def snapshot_metrics(self) -> Dict[str, LearningMetrics]:
        """Refresh the last-known metrics of every agent."""
        for agent in self.agents:
            manager = self.get_manager(agent.entity_type)
            metrics = manager.read_metrics(agent)
            if metrics is not None:
                self.last_known[agent.agent_id] = metrics
        return dict(self.last_known)

    def set_mode(self, mode: TrainingMode):
        """
        Switch the global mode.

        Metrics are snapshotted before any flag changes, and every flag is
        set before this returns, so the next pass sees the whole transition.
        """
        previous = self.mode
        snapshot = self.snapshot_metrics()
        self.mode = mode
        self.config.mode = mode

        training = 0
        for agent in self.agents:
            agent.is_training = self._training_flag(agent)
            training += agent.is_training

        record = {
            'previous': previous.name,
            'mode': mode.name,
            'timestamp': self.time_fn(),
            'training_agents': training,
            'metrics': {aid: m.to_dict() for aid, m in snapshot.items()},
        }
        self.mode_history.append(record)
        self._persist_mode_snapshot(record)

        logger.info(f"Training mode {previous.name} -> {mode.name} "
                    f"({training}/{len(self.agents)} agents training)")
        self.events.publish(EventKind.MODE_CHANGED, {
            'previous': previous.name, 'mode': mode.name,
            'training_agents': training,
        }, key='mode')

    def _persist_mode_snapshot(self, record: Dict):
        by_type: Dict[EntityType, Dict] = {}
        for agent in self.agents:
            metrics = record['metrics'].get(agent.agent_id)
            if metrics is not None:
                by_type.setdefault(agent.entity_type, {})[agent.agent_id] = metrics
        for entity_type, metrics in by_type.items():
            blob = {k: v for k, v in record.items() if k != 'metrics'}
            blob['metrics'] = metrics
            try:
                self.store.save((entity_type, MODE_SNAPSHOT_PROFILE), blob)
            except Exception as e:
                self.errors.record('profile_store', 'save_mode_snapshot', e)

    # Scheduling

    def _elapsed_ms(self, start: float) -> float:
        return (self.clock() - start) * 1000.0

    def update_agents(self, now: Optional[float] = None) -> PassReport:
        """
        One scheduling pass.

        Runs only when update_interval has elapsed since the previous pass.
        Visits up to max_agents_per_tick agents from the cursor and stops
        once elapsed time passes the soft budget.
        """
        now = self.time_fn() if now is None else now
        if (self._last_pass is not None
                and now - self._last_pass < self.config.update_interval):
            return PassReport(skipped=True)
        self._last_pass = now

        count = len(self.agents)
        if count == 0:
            return PassReport()

        limit = min(self.config.max_agents_per_tick, count)
        soft_budget = self.config.max_frame_time_ms * self.config.soft_budget_fraction
        report = PassReport(attempted=limit)
        touched = set()
        start = self.clock()

        for i in range(limit):
            agent = self.agents[(self.cursor + i) % count]
            manager = self.get_manager(agent.entity_type)
            manager.update_agent(agent)
            metrics = manager.cached_metrics.get(agent.agent_id)
            if metrics is not None:
                self.last_known[agent.agent_id] = metrics
            touched.add(agent.entity_type)
            report.processed += 1

            if i < limit - 1 and self._elapsed_ms(start) > soft_budget:
                report.aborted = True
                break

        report.elapsed_ms = self._elapsed_ms(start)
        self.cursor = (self.cursor + report.processed) % count

        for entity_type in touched:
            self.managers[entity_type].maintain(now)

        self.stats['passes'] += 1
        self.stats['agent_updates'] += report.processed
        if report.aborted:
            self.stats['aborted_passes'] += 1
            logger.debug(f"Pass stopped after {report.processed}/{limit} agents "
                         f"({report.elapsed_ms:.2f}ms)")
            self.events.publish(EventKind.BUDGET_EXCEEDED, {
                'processed': report.processed, 'attempted': limit,
                'elapsed_ms': report.elapsed_ms, 'budget_ms': soft_budget,
            }, key='update_agents')
        return report

    def trigger_learning_update(self) -> PassReport:
        """
        Update every training agent now, ignoring the interval.

        The full frame budget is a hard ceiling: an agent is not started if
        the average cost so far says it would not fit.
        """
        budget = self.config.max_frame_time_ms
        targets = [a for a in self.agents if a.is_training]
        report = PassReport(attempted=len(targets))
        start = self.clock()

        for agent in targets:
            elapsed = self._elapsed_ms(start)
            expected = elapsed / report.processed if report.processed else 0.0
            if elapsed > budget or elapsed + expected > budget:
                report.aborted = True
                break
            manager = self.get_manager(agent.entity_type)
            manager.update_agent(agent)
            report.processed += 1

        report.elapsed_ms = self._elapsed_ms(start)
        self.stats['forced_updates'] += 1
        if report.aborted:
            logger.warning(f"Forced update hit the {budget:.1f}ms budget after "
                           f"{report.processed}/{len(targets)} agents")
            self.events.publish(EventKind.BUDGET_EXCEEDED, {
                'processed': report.processed, 'attempted': len(targets),
                'elapsed_ms': report.elapsed_ms, 'budget_ms': budget,
            }, key='trigger_learning_update')
        return report

    def apply_settings(self, settings: AdaptiveSettings):
        """Take batch size, agent quota and interval from the monitor."""
        self.config.batch_size = settings.batch_size
        self.config.max_agents_per_tick = max(1, settings.max_agents_per_tick)
        self.config.update_interval = settings.update_interval

    # Persistence

    def save_profile(self, agent: LearningAgent, profile_id: str) -> bool:
        try:
            blob = agent.save_state()
            return self.store.save((agent.entity_type, profile_id), blob)
        except Exception as e:
            self.errors.record('profile_store', f"save[{agent.agent_id}]", e)
            return False

    def load_profile(self, agent: LearningAgent, profile_id: str) -> bool:
        """Restore an agent. False means it starts from default state."""
        try:
            blob = self.store.load((agent.entity_type, profile_id))
            if blob is None:
                return False
            agent.load_state(blob)
        except Exception as e:
            self.errors.record('profile_store', f"load[{agent.agent_id}]", e)
            return False
        return True

    # Reporting

    def get_agent_metrics(self, agent: LearningAgent) -> Optional[LearningMetrics]:
        return self.last_known.get(agent.agent_id)

    def aggregated_metrics(self, entity_type: EntityType) -> LearningMetrics:
        manager = self.managers.get(entity_type)
        if manager is None:
            return LearningMetrics()
        return manager.aggregated_metrics()

    def status(self) -> Dict:
        return {
            'mode': self.mode.name,
            'agents': len(self.agents),
            'training_agents': sum(1 for a in self.agents if a.is_training),
            'cursor': self.cursor,
            'update_interval': self.config.update_interval,
            'max_agents_per_tick': self.config.max_agents_per_tick,
            'batch_size': self.config.batch_size,
            'types': {t.name: m.performance_summary() for t, m in self.managers.items()},
            **self.stats,
        }
