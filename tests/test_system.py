"""
Tests for the composition root and the command line driver.
"""

import sys
import os
import json
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from game.observation import EntityType, Observation
from game.actions import Action, ActionKind, ActionOutcome
from monster_ai.agent import FallbackAgent
from training.config import SystemConfig, TrainingConfig, TrainingMode
from training.events import EventKind
from system import MonsterLearningSystem
from cli import Arena, create_parser, main, EPISODE_TICKS


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float):
        self.t += dt


def make_system(config=None, **kwargs) -> MonsterLearningSystem:
    kwargs.setdefault('clock', FakeClock())
    kwargs.setdefault('time_fn', FakeClock())
    kwargs.setdefault('memory_fn', lambda: 10.0)
    system = MonsterLearningSystem(config or SystemConfig(), **kwargs)
    system.init()
    return system


class ExplodingAgent(FallbackAgent):
    def select_action(self, state, observation=None, is_training=False):
        raise ValueError("bad network output")


class TestMonsterLearningSystem:
    def test_requires_init(self):
        system = MonsterLearningSystem(SystemConfig())
        with pytest.raises(RuntimeError):
            system.spawn_agent(EntityType.MELEE)
        with pytest.raises(RuntimeError):
            system.tick(0.02)

    def test_init_is_idempotent(self):
        system = make_system()
        registry = system.registry
        system.init()
        assert system.registry is registry

    def test_spawn_uses_type_action_space(self):
        system = make_system()
        boss = system.spawn_agent(EntityType.BOSS)
        assert boss.entity_type == EntityType.BOSS
        assert boss.decoder.action_count == 26
        assert boss.decoder is system.registry.get_decoder(boss.action_space)
        assert boss.is_training

    def test_spawn_at_capacity(self):
        config = SystemConfig()
        config.training.max_agents_per_type = 1
        system = make_system(config)
        assert system.spawn_agent(EntityType.MELEE) is not None
        assert system.spawn_agent(EntityType.MELEE) is None
        assert len(system.agents()) == 1

    def test_despawn(self):
        system = make_system()
        agent = system.spawn_agent(EntityType.RANGED)
        assert system.despawn_agent(agent)
        assert system.agents() == []

    def test_decide_returns_valid_action(self):
        system = make_system()
        agent = system.spawn_agent(EntityType.MELEE, FallbackAgent(seed=3))
        obs = Observation(self_position=(0.0, 0.0), player_position=(1.0, 0.0))
        action = system.decide(agent, obs)
        assert isinstance(action, Action)
        assert isinstance(action.kind, ActionKind)

    def test_decide_on_dead_monster_never_moves(self):
        system = make_system()
        agent = system.spawn_agent(EntityType.MELEE, FallbackAgent(seed=3))
        obs = Observation(self_position=(0.0, 0.0), player_position=(1.0, 0.0),
                          self_health=0.0)
        for _ in range(10):
            assert system.decide(agent, obs).kind not in (ActionKind.MOVE, ActionKind.ATTACK)

    def test_decide_failure_waits(self):
        system = make_system()
        agent = system.spawn_agent(EntityType.MELEE, ExplodingAgent())
        action = system.decide(agent, Observation())
        assert action.kind == ActionKind.WAIT
        assert system.errors.component_errors['agent'] == 1

    def test_reward_uses_type_config(self):
        system = make_system()
        agent = system.spawn_agent(EntityType.MELEE)
        obs = Observation(player_position=(1.0, 0.0))
        reward = system.reward(agent, obs, Action.wait(), obs,
                               ActionOutcome(hit_player=True))
        assert reward >= 40.0
        terminal = system.terminal_reward(agent, obs, 10, killed_by_self=True)
        assert terminal <= -50.0

    def test_difficulty_scaling(self):
        system = make_system(SystemConfig(difficulty_multiplier=2.0))
        config = system.registry.get_reward_config(EntityType.RANGED)
        assert config.hit_player_reward == pytest.approx(50.0)

    def test_tick_runs_pass(self):
        system = make_system()
        for _ in range(3):
            system.spawn_agent(EntityType.MELEE)
        report = system.tick(0.02, frame_time_ms=1.0)
        assert report.processed == 3
        assert system.status()['ticks'] == 1

    def test_tick_applies_degradation_settings(self):
        system = make_system(SystemConfig(enable_optimization=False))
        system.spawn_agent(EntityType.MELEE)
        system.tick(0.02, frame_time_ms=20.0)
        assert system.monitor.degradation_level.name == 'HIGH'
        assert system.coordinator.config.max_agents_per_tick == 3
        assert system.coordinator.config.batch_size == 8
        assert system.coordinator.config.update_interval == pytest.approx(0.2)

    def test_calm_tick_keeps_scheduler_config(self):
        training = TrainingConfig(max_agents_per_tick=2, update_interval=1.0, batch_size=16)
        system = make_system(SystemConfig(training=training, enable_optimization=False))
        system.spawn_agent(EntityType.MELEE)
        system.tick(0.016, frame_time_ms=1.0)
        cfg = system.coordinator.config
        assert system.monitor.degradation_level.name == 'NONE'
        assert cfg.max_agents_per_tick == 2
        assert cfg.update_interval == pytest.approx(1.0)
        assert cfg.batch_size == 16

    def test_optimizer_keeps_scheduler_rate(self):
        training = TrainingConfig(max_agents_per_tick=2, update_interval=1.0)
        system = make_system(SystemConfig(training=training))
        system.spawn_agent(EntityType.MELEE)
        for _ in range(3):
            system.tick(0.016, frame_time_ms=1.0)
        assert system.coordinator.config.max_agents_per_tick == 2
        assert system.coordinator.config.update_interval == pytest.approx(1.0)

    def test_emergency_through_tick(self):
        system = make_system()
        received = []
        system.subscribe(EventKind.EMERGENCY_MODE, received.append)
        system.spawn_agent(EntityType.MELEE)
        system.tick(0.02, frame_time_ms=30.0)
        assert system.optimizer.emergency_mode
        assert system.coordinator.config.max_agents_per_tick == 1
        assert len(received) == 1

    def test_mode_change_delivered_on_tick(self):
        system = make_system()
        received = []
        system.subscribe(EventKind.MODE_CHANGED, received.append)
        agent = system.spawn_agent(EntityType.THROWING)
        system.set_mode(TrainingMode.INFERENCE)
        assert not agent.is_training
        assert received == []
        system.tick(0.02, frame_time_ms=1.0)
        assert len(received) == 1

    def test_profile_survives_despawn(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            system = make_system(SystemConfig(profile_directory=tmpdir))
            agent = system.spawn_agent(EntityType.MELEE, FallbackAgent(), profile_id='alice')
            agent.aggression = 0.42
            system.despawn_agent(agent)

            restored = system.spawn_agent(EntityType.MELEE, FallbackAgent(), profile_id='alice')
            assert restored.aggression == pytest.approx(0.42)

    def test_shutdown_saves_profiles(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = SystemConfig(profile_directory=tmpdir)
            system = make_system(config)
            agent = system.spawn_agent(EntityType.BOSS, FallbackAgent(), profile_id='bob')
            agent.caution = 0.66
            system.shutdown()

            second = make_system(config)
            restored = second.spawn_agent(EntityType.BOSS, FallbackAgent(), profile_id='bob')
            assert restored.caution == pytest.approx(0.66)

    def test_status_sections(self):
        system = make_system()
        status = system.status()
        for key in ('coordinator', 'performance', 'optimization', 'errors', 'registry'):
            assert key in status


class TestArena:
    def test_episodes_complete(self):
        system = make_system()
        arena = Arena(system, seed=1)
        for entity_type in (EntityType.MELEE, EntityType.RANGED, EntityType.BOSS):
            assert arena.spawn(entity_type) is not None
        for _ in range(EPISODE_TICKS):
            arena.step(0.02)
        assert arena.episodes >= 3
        for monster in arena.monsters:
            assert monster.agent.metrics.episode_count >= 1

    def test_observation_lists_other_monsters(self):
        system = make_system()
        arena = Arena(system, seed=2)
        first = arena.spawn(EntityType.MELEE)
        arena.spawn(EntityType.RANGED)
        obs = arena.observe(first)
        assert len(obs.allies()) == 1
        assert obs.allies()[0].entity_type == EntityType.RANGED


class TestCli:
    def test_parser(self):
        args = create_parser().parse_args(['demo', '--monsters', '4', '--mode', 'mixed'])
        assert args.command == 'demo'
        assert args.monsters == 4
        assert args.mode == 'mixed'

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert 'monster-rl' in capsys.readouterr().out

    def test_config_stdout(self, capsys):
        assert main(['config']) == 0
        data = json.loads(capsys.readouterr().out)
        assert 'training' in data
        assert data['training']['max_frame_time_ms'] == 16.0

    def test_config_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'cfg.json')
            assert main(['config', '--output', path]) == 0
            assert SystemConfig.load(path).training.mode == TrainingMode.TRAINING

    def test_demo(self, capsys):
        assert main(['demo', '--monsters', '3', '--ticks', '20']) == 0
        assert 'Spawned 3 monsters' in capsys.readouterr().out

    def test_benchmark(self, capsys):
        assert main(['benchmark', '--monsters', '5', '--ticks', '10']) == 0
        assert 'Monsters: 5' in capsys.readouterr().out


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
