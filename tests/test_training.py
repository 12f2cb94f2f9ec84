"""
Tests for the training scheduler.

Tests cover:
- Per-type learning managers and experience sharing
- Coordinator modes, round-robin passes and time budgets
- Performance monitor and optimization manager
- Profile storage, events, error tracking and configuration
"""

import sys
import os
import json
import random
import tempfile
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from game.observation import EntityType
from game.actions import ActionSpace
from monster_ai.agent import LearningAgent, FallbackAgent

from training.config import (
    TrainingConfig, PerformanceConfig, OptimizationConfig, SystemConfig,
    TrainingMode,
)
from training.events import EventBus, EventKind
from training.errors import ErrorTracker, ErrorSeverity, classify
from training.storage import ProfileStore, profile_key, compress_weights, decompress_weights
from training.type_manager import TypeLearningManager, SharedExperience, EXPERIENCE_TTL
from training.coordinator import TrainingCoordinator, MODE_SNAPSHOT_PROFILE
from training.monitor import (
    PerformanceMonitor, PerformanceSample, DegradationLevel, AlertSeverity,
    AdaptiveSettings,
)
from training.optimizer import OptimizationManager, OptimizationStrategy


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float):
        self.t += dt


class StubAgent(LearningAgent):
    """Agent whose update step costs a fixed amount of fake time."""

    def __init__(self, entity_type=EntityType.MELEE, clock=None, cost_ms=0.0, fail=False):
        super().__init__()
        self.initialize(entity_type, ActionSpace())
        self.clock = clock
        self.cost_ms = cost_ms
        self.fail = fail
        self.updates = 0

    def select_action(self, state, observation=None, is_training=False):
        return 0

    def update_policy(self):
        if self.clock is not None:
            self.clock.advance(self.cost_ms / 1000.0)
        if self.fail:
            raise RuntimeError("policy update failed")
        self.updates += 1


class FakeRedis:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


class BrokenRedis:
    def get(self, key):
        raise ConnectionError("redis down")

    def set(self, key, value):
        raise ConnectionError("redis down")

    def delete(self, key):
        raise ConnectionError("redis down")


def sample(frame=1.0, memory=1.0, agents=0) -> PerformanceSample:
    return PerformanceSample(frame, memory, agents, 0.0)


class TestTypeLearningManager:
    def test_capacity_rejects_without_eviction(self):
        manager = TypeLearningManager(EntityType.MELEE, TrainingConfig(max_agents_per_type=2))
        a, b, c = StubAgent(), StubAgent(), StubAgent()
        assert manager.register_agent(a)
        assert manager.register_agent(b)
        assert not manager.register_agent(c)
        assert list(manager.agents) == [a.agent_id, b.agent_id]

    def test_rejects_missing_and_duplicate(self):
        manager = TypeLearningManager(EntityType.MELEE)
        agent = StubAgent()
        assert not manager.register_agent(None)
        assert manager.register_agent(agent)
        assert not manager.register_agent(agent)
        assert manager.agent_count == 1

    def test_unregister(self):
        manager = TypeLearningManager(EntityType.MELEE)
        agent = StubAgent()
        manager.register_agent(agent)
        assert manager.unregister_agent(agent)
        assert not manager.unregister_agent(agent)
        assert agent.agent_id not in manager.cached_metrics

    def test_failing_agent_does_not_stop_pass(self):
        errors = ErrorTracker()
        manager = TypeLearningManager(EntityType.MELEE, errors=errors)
        good1, bad, good2 = StubAgent(), StubAgent(fail=True), StubAgent()
        for agent in (good1, bad, good2):
            manager.register_agent(agent)
        assert manager.update(now=0.0) == 2
        assert good1.updates == 1 and good2.updates == 1
        assert manager.stats['update_failures'] == 1
        assert errors.component_errors[manager.component] == 1

    def test_inference_agents_are_not_updated(self):
        manager = TypeLearningManager(EntityType.MELEE)
        agent = StubAgent()
        agent.is_training = False
        manager.register_agent(agent)
        manager.update(now=0.0)
        assert agent.updates == 0

    def test_empty_manager_aggregate_is_default(self):
        manager = TypeLearningManager(EntityType.RANGED)
        agg = manager.refresh_aggregated_metrics()
        assert agg.episode_count == 0
        assert agg.average_reward == 0.0

    def test_aggregation(self):
        manager = TypeLearningManager(EntityType.MELEE)
        for reward, episodes in ((10.0, 100), (30.0, 300)):
            agent = StubAgent()
            agent.metrics.average_reward = reward
            agent.metrics.episode_count = episodes
            manager.register_agent(agent)
        agg = manager.refresh_aggregated_metrics()
        assert agg.average_reward == pytest.approx(20.0)
        assert agg.episode_count == 200

    def test_experience_sharing_boosts_weaker_agent(self):
        manager = TypeLearningManager(EntityType.MELEE, rng=random.Random(0))
        agents = []
        for reward in (100.0, 10.0, 10.0):
            agent = StubAgent()
            agent.metrics.average_reward = reward
            manager.register_agent(agent)
            agents.append(agent)

        manager.maintain(now=0.0)

        donor, b, c = agents
        assert manager.stats['shared'] == 1
        assert manager.stats['distributed'] == 1
        assert manager.boosts[donor.agent_id] == 0.0
        total = manager.boosts[b.agent_id] + manager.boosts[c.agent_id]
        assert total == pytest.approx(0.05)
        assert (b.metrics.learning_progress + c.metrics.learning_progress
                == pytest.approx(0.05))

    def test_expired_experience_skipped(self):
        manager = TypeLearningManager(EntityType.MELEE)
        for reward in (100.0, 1.0):
            agent = StubAgent()
            agent.metrics.average_reward = reward
            manager.register_agent(agent)
        donor_id = next(iter(manager.agents))
        manager.experience_pool.append(SharedExperience(donor_id, 100.0, 0, 0.5, 0.0))
        assert manager.distribute_experiences(now=EXPERIENCE_TTL + 1.0) == 0
        assert len(manager.experience_pool) == 0

    def test_sharing_disabled(self):
        config = TrainingConfig(enable_experience_sharing=False)
        manager = TypeLearningManager(EntityType.MELEE, config)
        for reward in (100.0, 10.0):
            agent = StubAgent()
            agent.metrics.average_reward = reward
            manager.register_agent(agent)
        manager.maintain(now=0.0)
        assert manager.stats['shared'] == 0

    def test_progress_capped(self):
        manager = TypeLearningManager(EntityType.MELEE)
        agent = StubAgent()
        manager.register_agent(agent)
        manager.apply_learning_boost_to_all(2.0)
        assert manager.get_agent_progress(agent.agent_id) == 1.0
        manager.reset_progress()
        assert manager.get_agent_progress(agent.agent_id) == 0.0

    def test_metrics_event_on_interval(self):
        events = EventBus()
        manager = TypeLearningManager(EntityType.BOSS, events=events)
        manager.register_agent(StubAgent(EntityType.BOSS))
        manager.maintain(now=0.0)
        assert events.pending_count() == 1
        events.flush()
        manager.maintain(now=0.5)
        assert events.pending_count() == 0
        manager.maintain(now=1.0)
        assert events.pending_count() == 1


class TestTrainingCoordinator:
    def make(self, clock=None, **config):
        clock = clock or FakeClock()
        cfg = TrainingConfig(**config)
        return TrainingCoordinator(cfg, ProfileStore(), EventBus(), None,
                                   clock=clock, time_fn=FakeClock(),
                                   rng=random.Random(1))

    def test_register_idempotent(self):
        coord = self.make()
        agent = StubAgent()
        assert coord.register_agent(agent)
        assert coord.register_agent(agent)
        assert coord.agent_count == 1
        assert not coord.register_agent(None)

    def test_register_respects_type_capacity(self):
        coord = self.make(max_agents_per_type=1)
        assert coord.register_agent(StubAgent())
        assert not coord.register_agent(StubAgent())
        assert coord.register_agent(StubAgent(EntityType.RANGED))
        assert coord.agent_count == 2

    def test_mode_flags(self):
        coord = self.make()
        agents = [StubAgent() for _ in range(3)]
        for agent in agents:
            coord.register_agent(agent)
        assert all(a.is_training for a in agents)
        coord.set_mode(TrainingMode.INFERENCE)
        assert not any(a.is_training for a in agents)
        coord.set_mode(TrainingMode.TRAINING)
        assert all(a.is_training for a in agents)

    def test_mixed_mode_freezes_converged_agents(self):
        coord = self.make()
        converged = StubAgent()
        converged.metrics.episode_count = 150
        converged.metrics.average_reward = 5.0
        converged.metrics.recent_average_reward = 5.0
        converged.metrics.exploration_rate = 0.05
        fresh = StubAgent()
        coord.register_agent(converged)
        coord.register_agent(fresh)

        coord.set_mode(TrainingMode.MIXED)
        assert not converged.is_training
        assert fresh.is_training

    def test_new_agent_follows_current_mode(self):
        coord = self.make()
        coord.set_mode(TrainingMode.INFERENCE)
        agent = StubAgent()
        coord.register_agent(agent)
        assert not agent.is_training

    def test_mode_change_persisted_and_published(self):
        coord = self.make()
        agent = StubAgent()
        coord.register_agent(agent)
        received = []
        coord.events.subscribe(EventKind.MODE_CHANGED, received.append)

        coord.set_mode(TrainingMode.INFERENCE)
        assert received == []
        coord.events.flush()
        assert len(received) == 1
        assert received[0].payload['mode'] == 'INFERENCE'
        assert received[0].payload['previous'] == 'TRAINING'

        blob = coord.store.load((EntityType.MELEE, MODE_SNAPSHOT_PROFILE))
        assert blob['mode'] == 'INFERENCE'
        assert agent.agent_id in blob['metrics']
        assert len(coord.mode_history) == 1

    def test_interval_skip(self):
        coord = self.make(update_interval=0.1)
        coord.register_agent(StubAgent())
        assert not coord.update_agents(now=0.0).skipped
        assert coord.update_agents(now=0.05).skipped
        assert not coord.update_agents(now=0.1).skipped

    def test_empty_pass(self):
        coord = self.make()
        report = coord.update_agents(now=0.0)
        assert report.processed == 0
        assert not report.aborted

    def test_round_robin_fairness(self):
        coord = self.make(max_agents_per_tick=2, update_interval=0.0)
        agents = [StubAgent() for _ in range(5)]
        for agent in agents:
            coord.register_agent(agent)
        for tick in range(10):
            report = coord.update_agents(now=float(tick))
            assert report.processed == 2
        assert [a.updates for a in agents] == [4, 4, 4, 4, 4]

    def test_soft_budget_aborts_pass(self):
        clock = FakeClock()
        coord = self.make(clock=clock, max_agents_per_tick=10, max_frame_time_ms=16.0)
        agents = [StubAgent(clock=clock, cost_ms=5.0) for _ in range(10)]
        for agent in agents:
            coord.register_agent(agent)

        report = coord.update_agents(now=0.0)
        assert report.aborted
        assert report.processed == 3
        assert report.attempted == 10
        assert coord.cursor == 3
        assert coord.stats['aborted_passes'] == 1
        assert [a.updates for a in agents[:4]] == [1, 1, 1, 0]

        received = []
        coord.events.subscribe(EventKind.BUDGET_EXCEEDED, received.append)
        coord.events.flush()
        assert len(received) == 1

    def test_next_pass_resumes_at_cursor(self):
        clock = FakeClock()
        coord = self.make(clock=clock, max_frame_time_ms=16.0, update_interval=0.0)
        agents = [StubAgent(clock=clock, cost_ms=5.0) for _ in range(6)]
        for agent in agents:
            coord.register_agent(agent)
        coord.update_agents(now=0.0)
        coord.update_agents(now=1.0)
        assert [a.updates for a in agents] == [1, 1, 1, 1, 1, 1]

    def test_forced_update_stays_under_budget(self):
        clock = FakeClock()
        coord = self.make(clock=clock, max_frame_time_ms=16.0)
        agents = [StubAgent(clock=clock, cost_ms=5.0) for _ in range(5)]
        for agent in agents:
            coord.register_agent(agent)

        report = coord.trigger_learning_update()
        assert report.processed == 3
        assert report.aborted
        assert report.elapsed_ms <= 16.0

    def test_forced_update_skips_inference_agents(self):
        coord = self.make()
        agent = StubAgent()
        coord.register_agent(agent)
        coord.set_mode(TrainingMode.INFERENCE)
        report = coord.trigger_learning_update()
        assert report.attempted == 0
        assert agent.updates == 0

    def test_unregister_adjusts_cursor(self):
        coord = self.make(max_agents_per_tick=2)
        agents = [StubAgent() for _ in range(3)]
        for agent in agents:
            coord.register_agent(agent)
        coord.update_agents(now=0.0)
        assert coord.cursor == 2
        assert coord.unregister_agent(agents[0])
        assert coord.cursor == 1
        assert coord.agents[coord.cursor] is agents[2]
        assert not coord.unregister_agent(agents[0])

    def test_apply_settings_copies_config(self):
        config = TrainingConfig()
        coord = TrainingCoordinator(config)
        coord.apply_settings(AdaptiveSettings(8, 0, 0.3))
        assert coord.config.max_agents_per_tick == 1
        assert coord.config.batch_size == 8
        assert config.max_agents_per_tick == 10

    def test_profile_round_trip(self):
        coord = self.make()
        agent = FallbackAgent(aggression=0.25, caution=0.75)
        agent.initialize(EntityType.NONE, ActionSpace())
        assert coord.save_profile(agent, 'player1')

        restored = FallbackAgent()
        restored.initialize(EntityType.NONE, ActionSpace())
        assert coord.load_profile(restored, 'player1')
        assert restored.aggression == pytest.approx(0.25)
        assert not coord.load_profile(restored, 'someone-else')

    def test_profile_store_failure_recorded(self):
        class BrokenStore(ProfileStore):
            def save(self, key, data):
                raise OSError("disk full")

        coord = TrainingCoordinator(store=BrokenStore())
        agent = StubAgent()
        assert not coord.save_profile(agent, 'p')
        assert coord.errors.component_errors['profile_store'] == 1

    def test_status(self):
        coord = self.make()
        coord.register_agent(StubAgent())
        coord.register_agent(StubAgent(EntityType.RANGED))
        status = coord.status()
        assert status['agents'] == 2
        assert set(status['types']) == {'MELEE', 'RANGED'}


class TestPerformanceMonitor:
    def make(self, **config):
        return PerformanceMonitor(PerformanceConfig(**config), EventBus(),
                                  memory_fn=lambda: 10.0, time_fn=FakeClock())

    def test_classification_cut_points(self):
        monitor = self.make()
        assert monitor.classify(sample(agents=39)) == DegradationLevel.NONE
        assert monitor.classify(sample(agents=40)) == DegradationLevel.LOW
        assert monitor.classify(sample(agents=50)) == DegradationLevel.MEDIUM
        assert monitor.classify(sample(agents=60)) == DegradationLevel.HIGH
        assert monitor.classify(sample(agents=75)) == DegradationLevel.SEVERE

    def test_classification_uses_worst_ratio(self):
        monitor = self.make()
        assert monitor.classify(sample(frame=1.0, memory=130.0)) == DegradationLevel.HIGH

    def test_settings_per_level(self):
        monitor = self.make()
        expected = {
            DegradationLevel.NONE: (32, 10, 0.1),
            DegradationLevel.LOW: (24, 8, 0.12),
            DegradationLevel.MEDIUM: (16, 5, 0.15),
            DegradationLevel.HIGH: (8, 3, 0.2),
            DegradationLevel.SEVERE: (2, 1, 0.3),
        }
        for level, (batch, agents, interval) in expected.items():
            s = monitor.settings_for(level)
            assert s.batch_size == batch
            assert s.max_agents_per_tick == agents
            assert s.update_interval == pytest.approx(interval)

    def test_record_sample_sets_level(self):
        monitor = self.make()
        monitor.record_sample(20.0, 0)
        assert monitor.degradation_level == DegradationLevel.HIGH
        monitor.record_sample(1.0, 0)
        assert monitor.degradation_level == DegradationLevel.NONE

    def test_level_change_published(self):
        monitor = self.make()
        received = []
        monitor.events.subscribe(EventKind.DEGRADATION_CHANGED, received.append)
        monitor.record_sample(17.0, 0)
        monitor.events.flush()
        assert received[0].payload['level'] == 'MEDIUM'

    def test_adaptive_batch_shrinks_then_cools_down(self):
        monitor = self.make()
        for _ in range(5):
            monitor.record_sample(24.0, 0)
        assert monitor.batch_size == 29
        for _ in range(10):
            monitor.record_sample(24.0, 0)
        assert monitor.batch_size == 29

    def test_adaptive_batch_grows(self):
        monitor = self.make()
        for _ in range(5):
            monitor.record_sample(4.0, 0)
        assert monitor.batch_size == 35

    def test_adaptive_batch_disabled(self):
        monitor = self.make(enable_adaptive_batching=False)
        for _ in range(10):
            monitor.record_sample(4.0, 0)
        assert monitor.batch_size == 32

    def test_force_batch_size_clamps(self):
        monitor = self.make()
        monitor.force_batch_size(1000)
        assert monitor.batch_size == 128
        monitor.force_batch_size(0)
        assert monitor.batch_size == 4

    def test_small_batch_holds_under_light_load(self):
        monitor = self.make()
        monitor.force_batch_size(4)
        for _ in range(50):
            monitor.record_sample(1.0, 0)
        assert monitor.batch_size == 4

    def test_alerts(self):
        monitor = self.make()
        monitor.record_sample(30.0, 100, memory_mb=120.0,
                              component_times={'training': 9.0})
        alerts = {a.kind: a for a in monitor.recent_alerts()}
        assert alerts['frame_time'].severity == AlertSeverity.CRITICAL
        assert alerts['memory'].severity == AlertSeverity.WARNING
        assert alerts['agents'].severity == AlertSeverity.WARNING
        assert 'component:training' in alerts

    def test_no_alert_within_limits(self):
        monitor = self.make()
        monitor.record_sample(10.0, 5)
        assert monitor.recent_alerts() == []
        assert monitor.recommendations() == ["Performance within limits"]

    def test_forced_level_and_bias(self):
        monitor = self.make()
        monitor.forced_level = DegradationLevel.SEVERE
        assert monitor.effective_level(sample()) == DegradationLevel.SEVERE
        monitor.forced_level = None
        monitor.level_bias = 1
        assert monitor.effective_level(sample()) == DegradationLevel.LOW
        monitor.level_bias = 0
        monitor.level_floor = DegradationLevel.HIGH
        assert monitor.effective_level(sample()) == DegradationLevel.HIGH

    def test_memory_growth(self):
        clock = FakeClock()
        monitor = PerformanceMonitor(PerformanceConfig(), time_fn=clock)
        monitor.record_sample(1.0, 0, memory_mb=10.0)
        clock.advance(60.0)
        monitor.record_sample(1.0, 0, memory_mb=30.0)
        assert monitor.memory_growth_mb_per_min() == pytest.approx(20.0)


class TestOptimizationManager:
    def make(self):
        monitor = PerformanceMonitor(PerformanceConfig(), EventBus(),
                                     memory_fn=lambda: 10.0, time_fn=FakeClock())
        calls = []
        optimizer = OptimizationManager(monitor, OptimizationConfig(), monitor.events,
                                        time_fn=FakeClock(),
                                        gc_fn=lambda: calls.append(1) or 0)
        return monitor, optimizer, calls

    def test_no_samples_no_work(self):
        _, optimizer, _ = self.make()
        assert not optimizer.update(now=0.0)

    def test_emergency_enter_and_exit(self):
        monitor, optimizer, calls = self.make()
        monitor.record_sample(30.0, 0)
        assert not optimizer.update(now=0.0)
        assert optimizer.emergency_mode
        assert len(calls) == 1
        assert monitor.batch_size == 4
        assert monitor.degradation_level == DegradationLevel.SEVERE

        monitor.record_sample(5.0, 0)
        assert monitor.degradation_level == DegradationLevel.SEVERE

        assert optimizer.update(now=1.0)
        assert not optimizer.emergency_mode
        assert monitor.forced_level is None
        assert optimizer.stats['emergencies'] == 1

    def test_emergency_event(self):
        monitor, optimizer, _ = self.make()
        received = []
        monitor.events.subscribe(EventKind.EMERGENCY_MODE, received.append)
        monitor.record_sample(1.0, 0, memory_mb=200.0)
        optimizer.update(now=0.0)
        monitor.events.flush()
        assert received[0].payload['active'] is True

    def test_performance_strategy(self):
        monitor, optimizer, _ = self.make()
        monitor.record_sample(5.0, 0)
        assert optimizer.update(now=0.0)
        assert optimizer.strategy == OptimizationStrategy.PERFORMANCE
        assert monitor.batch_size == 40
        assert monitor.level_bias == -1

    def test_aggressive_strategy(self):
        monitor, optimizer, calls = self.make()
        monitor.record_sample(20.0, 45, memory_mb=120.0)
        optimizer.update(now=0.0)
        assert not optimizer.emergency_mode
        assert optimizer.strategy == OptimizationStrategy.AGGRESSIVE
        assert monitor.batch_size == 16
        assert monitor.degradation_level >= DegradationLevel.HIGH
        assert monitor.level_floor == DegradationLevel.HIGH
        assert len(calls) == 1

    def test_conservative_strategy(self):
        monitor, optimizer, _ = self.make()
        monitor.record_sample(12.0, 44, memory_mb=80.0)
        optimizer.update(now=0.0)
        assert optimizer.strategy == OptimizationStrategy.CONSERVATIVE
        assert monitor.batch_size == 28
        assert monitor.level_bias == 1
        assert monitor.degradation_level >= DegradationLevel.MEDIUM

    def test_balanced_drifts_toward_base(self):
        monitor, optimizer, _ = self.make()
        monitor.force_batch_size(20)
        monitor.record_sample(10.0, 35, memory_mb=70.0)
        optimizer.update(now=0.0)
        assert optimizer.strategy == OptimizationStrategy.BALANCED
        assert monitor.batch_size == 22

    def test_interval_respected(self):
        monitor, optimizer, _ = self.make()
        monitor.record_sample(10.0, 35, memory_mb=70.0)
        assert optimizer.update(now=0.0)
        assert not optimizer.update(now=1.0)
        assert optimizer.update(now=2.0)
        assert optimizer.stats['optimizations'] == 2

    def test_report(self):
        monitor, optimizer, _ = self.make()
        monitor.record_sample(5.0, 0)
        optimizer.update(now=0.0)
        report = optimizer.report()
        assert report['strategy'] == 'performance'
        assert report['batch_size'] == 40
        assert not report['emergency_mode']


class TestProfileStore:
    def test_memory_store(self):
        store = ProfileStore()
        assert store.save((EntityType.MELEE, 'p1'), {'weights': [1, 2]})
        assert store.load((EntityType.MELEE, 'p1')) == {'weights': [1, 2]}
        assert store.load((EntityType.RANGED, 'p1')) is None
        assert store.stats['misses'] == 1

    def test_key_format(self):
        assert profile_key(EntityType.BOSS, 'abc') == 'profile:5:abc'

    def test_file_store_survives_restart(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ProfileStore(directory=tmpdir).save((EntityType.MELEE, 'p1'), {'x': 1})
            assert ProfileStore(directory=tmpdir).load((EntityType.MELEE, 'p1')) == {'x': 1}

    def test_corrupt_primary_recovers_from_backup(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProfileStore(directory=tmpdir)
            store.save((EntityType.MELEE, 'p1'), {'x': 1})
            path = store._path(profile_key(EntityType.MELEE, 'p1'))
            with open(path, 'w') as f:
                f.write("{not json")

            fresh = ProfileStore(directory=tmpdir)
            assert fresh.load((EntityType.MELEE, 'p1')) == {'x': 1}
            assert fresh.stats['recoveries'] == 1

    def test_checksum_mismatch_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProfileStore(directory=tmpdir)
            store.save((EntityType.MELEE, 'p1'), {'x': 1})
            path = store._path(profile_key(EntityType.MELEE, 'p1'))
            for target in (path, path + '.backup'):
                with open(target) as f:
                    envelope = json.load(f)
                envelope['data']['x'] = 2
                with open(target, 'w') as f:
                    json.dump(envelope, f)

            assert ProfileStore(directory=tmpdir).load((EntityType.MELEE, 'p1')) is None

    def test_redis_backend(self):
        redis = FakeRedis()
        ProfileStore(redis_client=redis).save((EntityType.RANGED, 'p'), {'a': [1.5]})
        assert 'profile:2:p' in redis.data
        assert ProfileStore(redis_client=redis).load((EntityType.RANGED, 'p')) == {'a': [1.5]}

    def test_exists_checks_redis(self):
        redis = FakeRedis()
        ProfileStore(redis_client=redis).save((EntityType.RANGED, 'p'), {'a': 1})
        store = ProfileStore(redis_client=redis)
        assert store.exists((EntityType.RANGED, 'p'))
        assert not store.exists((EntityType.RANGED, 'q'))

    def test_exists_with_broken_redis(self):
        assert not ProfileStore(redis_client=BrokenRedis()).exists((EntityType.MELEE, 'p'))

    def test_broken_redis_falls_back_to_memory(self):
        store = ProfileStore(redis_client=BrokenRedis())
        assert not store.save((EntityType.MELEE, 'p'), {'a': 1})
        assert store.stats['failures'] == 1
        assert store.load((EntityType.MELEE, 'p')) == {'a': 1}

    def test_delete(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProfileStore(directory=tmpdir)
            store.save((EntityType.MELEE, 'p'), {'a': 1})
            assert store.exists((EntityType.MELEE, 'p'))
            store.delete((EntityType.MELEE, 'p'))
            assert not store.exists((EntityType.MELEE, 'p'))
            assert store.load((EntityType.MELEE, 'p')) is None

    def test_weight_compression(self):
        weights = np.linspace(-1.0, 1.0, 50)
        packed = compress_weights(weights.tolist())
        restored = decompress_weights(packed)
        assert restored.shape == (50,)
        assert np.max(np.abs(restored - weights)) <= packed['scale'] / 2 + 1e-6
        assert json.dumps(packed)

    def test_weight_compression_edge_cases(self):
        assert decompress_weights(compress_weights([])).size == 0
        restored = decompress_weights(compress_weights([0.5, 0.5, 0.5]))
        np.testing.assert_allclose(restored, [0.5, 0.5, 0.5])


class TestEventBus:
    def test_same_key_delivered_once_with_latest_payload(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.METRICS_UPDATED, received.append)
        bus.publish(EventKind.METRICS_UPDATED, {'v': 1}, key='melee')
        bus.publish(EventKind.METRICS_UPDATED, {'v': 2}, key='melee')
        bus.publish(EventKind.METRICS_UPDATED, {'v': 3}, key='boss')
        assert bus.flush() == 2
        assert [e.payload['v'] for e in received] == [2, 3]

    def test_nothing_delivered_before_flush(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.MODE_CHANGED, received.append)
        bus.publish(EventKind.MODE_CHANGED)
        assert received == []
        assert bus.pending_count() == 1

    def test_failing_handler_isolated(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise ValueError("handler bug")

        bus.subscribe(EventKind.PERFORMANCE_ALERT, broken)
        bus.subscribe(EventKind.PERFORMANCE_ALERT, received.append)
        bus.publish(EventKind.PERFORMANCE_ALERT, {'kind': 'memory'})
        bus.flush()
        assert len(received) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.MODE_CHANGED, received.append)
        bus.unsubscribe(EventKind.MODE_CHANGED, received.append)
        bus.publish(EventKind.MODE_CHANGED)
        bus.flush()
        assert received == []


class TestErrorTracker:
    def test_classification(self):
        assert classify(MemoryError()) == ErrorSeverity.CRITICAL
        assert classify(OSError()) == ErrorSeverity.HIGH
        assert classify(ValueError()) == ErrorSeverity.MEDIUM
        assert classify(KeyError('k')) == ErrorSeverity.MEDIUM
        assert classify(TypeError()) == ErrorSeverity.LOW

    def test_component_flagged_after_threshold(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.COMPONENT_DEGRADED, received.append)
        tracker = ErrorTracker(bus)
        for _ in range(2):
            tracker.record('agent', 'update', RuntimeError('x'))
        assert not tracker.should_disable('agent')
        tracker.record('agent', 'update', RuntimeError('x'))
        assert tracker.should_disable('agent')
        bus.flush()
        tracker.record('agent', 'update', RuntimeError('x'))
        bus.flush()
        assert len(received) == 1
        assert tracker.statistics()['flagged'] == ['agent']

    def test_reset_component(self):
        tracker = ErrorTracker()
        for _ in range(3):
            tracker.record('store', 'save', OSError('disk'))
        tracker.reset_component('store')
        assert not tracker.should_disable('store')
        assert tracker.statistics()['by_severity']['HIGH'] == 3


class TestConfig:
    def test_defaults(self):
        cfg = SystemConfig()
        assert cfg.training.mode == TrainingMode.TRAINING
        assert cfg.training.max_frame_time_ms == 16.0
        assert cfg.performance.max_memory_mb == 100.0
        assert cfg.optimization.emergency_threshold == 1.5

    def test_save_and_load(self):
        cfg = SystemConfig(difficulty_multiplier=1.5)
        cfg.training.mode = TrainingMode.MIXED
        cfg.performance.max_active_agents = 20
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'config.json')
            cfg.save(path)
            loaded = SystemConfig.load(path)
        assert loaded == cfg
        assert loaded.training.mode == TrainingMode.MIXED

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('MONSTER_RL_MODE', '0')
        monkeypatch.setenv('MONSTER_RL_MAX_AGENTS_PER_TICK', '3')
        monkeypatch.setenv('MONSTER_RL_EXPERIENCE_SHARING', 'false')
        monkeypatch.setenv('MONSTER_RL_MAX_MEMORY_MB', '256')
        monkeypatch.setenv('MONSTER_RL_DIFFICULTY', '2.0')
        monkeypatch.setenv('MONSTER_RL_PROFILE_DIR', '/tmp/profiles')
        cfg = SystemConfig.from_env()
        assert cfg.training.mode == TrainingMode.INFERENCE
        assert cfg.training.max_agents_per_tick == 3
        assert not cfg.training.enable_experience_sharing
        assert cfg.performance.max_memory_mb == 256.0
        assert cfg.difficulty_multiplier == 2.0
        assert cfg.profile_directory == '/tmp/profiles'

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv('MONSTER_RL_MODE', raising=False)
        assert TrainingConfig.from_env().mode == TrainingMode.TRAINING


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
