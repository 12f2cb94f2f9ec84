"""
Monster Learning System - Composition root for the learning pipeline.

Wires the registry, coordinator, monitor, optimizer, profile store and
event bus together and exposes the three calls a host loop makes:

    system = MonsterLearningSystem(config)
    system.init()
    ...
    system.tick(delta_time)      # once per simulation tick
    ...
    system.shutdown()

Between ticks the host spawns and despawns agents, asks for decisions and
reports rewards through the same object.
"""

import time
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from game.actions import Action, ActionOutcome
from game.observation import EntityType, Observation
from monster_ai.agent import FallbackAgent, LearningAgent
from monster_ai.registry import ComponentRegistry
from training.config import SystemConfig, TrainingMode
from training.coordinator import PassReport, TrainingCoordinator
from training.errors import ErrorTracker
from training.events import EventBus, EventKind
from training.monitor import PerformanceMonitor, process_memory_mb
from training.optimizer import OptimizationManager
from training.storage import ProfileStore

logger = logging.getLogger(__name__)


class MonsterLearningSystem:

    def __init__(self, config: Optional[SystemConfig] = None, redis_client=None,
                 clock: Callable[[], float] = time.perf_counter,
                 time_fn: Callable[[], float] = time.monotonic,
                 memory_fn: Callable[[], float] = process_memory_mb):
        self.config = config or SystemConfig()
        self.redis_client = redis_client
        self.clock = clock
        self.time_fn = time_fn
        self.memory_fn = memory_fn

        self.initialized = False
        self.registry: Optional[ComponentRegistry] = None
        self.events: Optional[EventBus] = None
        self.errors: Optional[ErrorTracker] = None
        self.store: Optional[ProfileStore] = None
        self.coordinator: Optional[TrainingCoordinator] = None
        self.monitor: Optional[PerformanceMonitor] = None
        self.optimizer: Optional[OptimizationManager] = None

        self.profiles: Dict[str, str] = {}   # agent_id -> profile id
        self.tick_count = 0
        self.last_report: Optional[PassReport] = None

    # Lifecycle

    def init(self):
        if self.initialized:
            return
        cfg = self.config
        self.registry = ComponentRegistry()
        if cfg.difficulty_multiplier != 1.0:
            self.registry.apply_difficulty_scaling(cfg.difficulty_multiplier)

        self.events = EventBus()
        self.errors = ErrorTracker(self.events)
        self.store = ProfileStore(self.redis_client, cfg.profile_directory)
        self.coordinator = TrainingCoordinator(cfg.training, self.store, self.events,
                                               self.errors, self.clock, self.time_fn)
        # Per-level settings scale from the scheduler's own configured values.
        performance = replace(cfg.performance,
                              base_agents_per_tick=cfg.training.max_agents_per_tick,
                              base_update_interval=cfg.training.update_interval,
                              base_batch_size=cfg.training.batch_size)
        self.monitor = PerformanceMonitor(performance, self.events,
                                          self.memory_fn, self.time_fn)
        self.optimizer = OptimizationManager(self.monitor, cfg.optimization,
                                             self.events, self.time_fn)
        self.initialized = True
        logger.info(f"Monster learning system initialized "
                    f"(mode={cfg.training.mode.name})")

    def shutdown(self):
        if not self.initialized:
            return
        for agent in list(self.coordinator.agents):
            profile_id = self.profiles.get(agent.agent_id)
            if profile_id:
                self.coordinator.save_profile(agent, profile_id)
        self.events.flush()
        logger.info(f"Monster learning system shut down after {self.tick_count} ticks")
        self.initialized = False

    def _require_init(self):
        if not self.initialized:
            raise RuntimeError("MonsterLearningSystem.init() must be called first")

    # Agents

    def spawn_agent(self, entity_type: EntityType,
                    agent: Optional[LearningAgent] = None,
                    profile_id: Optional[str] = None) -> Optional[LearningAgent]:
        """Initialize, restore and register an agent. None if at capacity."""
        self._require_init()
        agent = agent or FallbackAgent()
        space = self.registry.get_action_space(entity_type)
        agent.initialize(entity_type, space, self.registry.get_decoder(space))

        if profile_id:
            self.coordinator.load_profile(agent, profile_id)
        if not self.coordinator.register_agent(agent):
            return None
        if profile_id:
            self.profiles[agent.agent_id] = profile_id
        return agent

    def despawn_agent(self, agent: LearningAgent) -> bool:
        self._require_init()
        profile_id = self.profiles.pop(agent.agent_id, None)
        if profile_id:
            self.coordinator.save_profile(agent, profile_id)
        return self.coordinator.unregister_agent(agent)

    def decide(self, agent: LearningAgent, observation: Observation) -> Action:
        """Encode, ask the agent for an index, and decode it under the mask."""
        self._require_init()
        decoder = agent.decoder or self.registry.get_decoder(agent.action_space)
        state = self.registry.encoder.encode(observation)
        try:
            index = agent.select_action(state, observation, agent.is_training)
        except Exception as e:
            self.errors.record('agent', f"select_action[{agent.agent_id}]", e)
            return Action.wait()
        return decoder.decode_index(index, observation)

    def reward(self, agent: LearningAgent, prev: Observation, action: Action,
               curr: Observation, outcome: ActionOutcome) -> float:
        self._require_init()
        calculator = self.registry.get_reward_calculator(agent.entity_type)
        return calculator.calculate_reward(prev, action, curr, outcome)

    def terminal_reward(self, agent: LearningAgent, final: Observation,
                        episode_length: int, killed_by_self: bool) -> float:
        self._require_init()
        calculator = self.registry.get_reward_calculator(agent.entity_type)
        return calculator.calculate_terminal_reward(final, episode_length, killed_by_self)

    # Tick

    def tick(self, delta_time: float, frame_time_ms: Optional[float] = None) -> PassReport:
        """
        One scheduling step. frame_time_ms is the host's measured frame
        cost; when omitted, only this call's own work is measured.
        """
        self._require_init()
        start = self.clock()
        report = self.coordinator.update_agents()
        own_ms = (self.clock() - start) * 1000.0

        self.monitor.record_sample(
            frame_time_ms if frame_time_ms is not None else own_ms,
            self.coordinator.agent_count,
            component_times={'training': report.elapsed_ms},
        )
        if self.config.enable_optimization:
            self.optimizer.update()
        self.coordinator.apply_settings(self.monitor.current_settings())

        self.events.flush()
        self.tick_count += 1
        self.last_report = report
        return report

    def set_mode(self, mode: TrainingMode):
        self._require_init()
        self.coordinator.set_mode(mode)

    def subscribe(self, kind: EventKind, handler):
        self._require_init()
        self.events.subscribe(kind, handler)

    def status(self) -> Dict:
        self._require_init()
        return {
            'ticks': self.tick_count,
            'coordinator': self.coordinator.status(),
            'performance': self.monitor.summary(),
            'optimization': self.optimizer.report(),
            'errors': self.errors.statistics(),
            'registry': self.registry.stats(),
        }

    def agents(self) -> List[LearningAgent]:
        self._require_init()
        return list(self.coordinator.agents)
