#!/usr/bin/env python3
"""
Monster Learning Pipeline - Command Line Interface

Drives the learning system with a small synthetic arena: one player
circling the map and a crowd of rule-based monsters chasing it.

Usage:
    python cli.py demo --monsters 12 --ticks 500
    python cli.py benchmark --monsters 200 --ticks 300
    python cli.py config --output config.json
"""

import argparse
import json
import logging
import math
import random
import sys
import time
from typing import List, Optional, Tuple

from game.actions import Action, ActionKind, ActionOutcome
from game.observation import (
    EntityType, NearbyEntity, Observation, MAX_NEARBY_MONSTERS,
)
from monster_ai.agent import FallbackAgent, LearningAgent
from system import MonsterLearningSystem
from training.config import SystemConfig, TrainingMode
from training.events import Event, EventKind

logger = logging.getLogger(__name__)

ARENA_RADIUS = 20.0
PLAYER_SPEED = 4.0
MONSTER_SPEED = 3.0
MONSTER_DAMAGE = 5.0
PLAYER_DAMAGE = 10.0
EPISODE_TICKS = 200


class ArenaMonster:
    """Simulation-side state of one monster."""

    def __init__(self, agent: LearningAgent, position: Tuple[float, float]):
        self.agent = agent
        self.position = position
        self.health = 100.0
        self.time_alive = 0.0
        self.last_action_time = 0.0
        self.current_action = 0
        self.episode_steps = 0


class Arena:
    """
    Minimal stand-in for a game: enough movement and combat to exercise
    encoding, decoding, rewards and scheduling.
    """

    def __init__(self, system: MonsterLearningSystem, seed: int = 0):
        self.system = system
        self.rng = random.Random(seed)
        self.time = 0.0
        self.player_position = (0.0, 0.0)
        self.player_velocity = (0.0, 0.0)
        self.player_health = 100.0
        self.last_player_damage = -math.inf
        self.monsters: List[ArenaMonster] = []
        self.episodes = 0
        self.total_reward = 0.0

    def spawn(self, entity_type: EntityType) -> Optional[ArenaMonster]:
        agent = FallbackAgent(seed=self.rng.randrange(1 << 30))
        if self.system.spawn_agent(entity_type, agent) is None:
            return None
        angle = self.rng.uniform(0, 2 * math.pi)
        pos = (math.cos(angle) * ARENA_RADIUS, math.sin(angle) * ARENA_RADIUS)
        monster = ArenaMonster(agent, pos)
        self.monsters.append(monster)
        return monster

    def observe(self, monster: ArenaMonster) -> Observation:
        others = sorted(
            (m for m in self.monsters if m is not monster),
            key=lambda m: math.dist(m.position, monster.position),
        )[:MAX_NEARBY_MONSTERS]
        return Observation(
            player_position=self.player_position,
            player_velocity=self.player_velocity,
            player_health=self.player_health,
            self_position=monster.position,
            self_health=monster.health,
            current_action=monster.current_action,
            time_since_last_action=self.time - monster.last_action_time,
            time_alive=monster.time_alive,
            nearby_monsters=[NearbyEntity(m.position, m.agent.entity_type, m.health)
                             for m in others],
            time_since_player_damage=self.time - self.last_player_damage,
        )

    def _move_player(self, dt: float):
        angle = self.time * 0.3
        target = (math.cos(angle) * ARENA_RADIUS * 0.5,
                  math.sin(angle) * ARENA_RADIUS * 0.5)
        dx = target[0] - self.player_position[0]
        dy = target[1] - self.player_position[1]
        length = math.hypot(dx, dy) or 1.0
        step = min(PLAYER_SPEED * dt, length)
        self.player_velocity = (dx / length * PLAYER_SPEED, dy / length * PLAYER_SPEED)
        self.player_position = (self.player_position[0] + dx / length * step,
                                self.player_position[1] + dy / length * step)

    def _resolve(self, monster: ArenaMonster, action: Action, dt: float) -> ActionOutcome:
        outcome = ActionOutcome()
        space = monster.agent.action_space
        dist = math.dist(monster.position, self.player_position)

        if action.kind in (ActionKind.MOVE, ActionKind.RETREAT, ActionKind.AMBUSH):
            speed = MONSTER_SPEED * dt * max(action.intensity, 0.5)
            monster.position = (monster.position[0] + action.direction[0] * speed,
                                monster.position[1] + action.direction[1] * speed)
        elif action.kind in (ActionKind.ATTACK, ActionKind.SPECIAL_ATTACK):
            if dist <= space.max_action_range and self.rng.random() < 0.5:
                damage = MONSTER_DAMAGE * (2.0 if action.kind == ActionKind.SPECIAL_ATTACK else 1.0)
                outcome.hit_player = True
                outcome.damage_dealt = damage
                self.player_health = max(0.0, self.player_health - damage)
                self.last_player_damage = self.time
        elif action.kind == ActionKind.COORDINATE:
            outcome.coordinated = len(self.monsters) > 1

        if dist < 2.0 and self.rng.random() < 0.2:
            outcome.took_damage = True
            outcome.damage_taken = PLAYER_DAMAGE
            monster.health = max(0.0, monster.health - PLAYER_DAMAGE)

        outcome.distance_to_player = math.dist(monster.position, self.player_position)
        return outcome

    def step(self, dt: float):
        self.time += dt
        self._move_player(dt)
        encoder = self.system.registry.encoder

        for monster in list(self.monsters):
            agent = monster.agent
            obs = self.observe(monster)
            action = self.system.decide(agent, obs)
            outcome = self._resolve(monster, action, dt)
            monster.time_alive += dt
            monster.episode_steps += 1
            monster.last_action_time = self.time
            monster.current_action = int(action.kind)

            next_obs = self.observe(monster)
            reward = self.system.reward(agent, obs, action, next_obs, outcome)
            agent.record_outcome(action.kind, outcome.damage_dealt,
                                 outcome.damage_taken, outcome.coordinated)

            died = monster.health <= 0
            done = died or self.player_health <= 0 or monster.episode_steps >= EPISODE_TICKS
            if done:
                reward += self.system.terminal_reward(agent, next_obs,
                                                      monster.episode_steps, died)
            agent.store_experience(encoder.encode(obs), monster.current_action, reward,
                                   encoder.encode(next_obs), done, survived=not died)
            self.total_reward += reward

            if done:
                self.episodes += 1
                monster.health = 100.0
                monster.episode_steps = 0
                monster.time_alive = 0.0

        if self.player_health <= 0:
            self.player_health = 100.0


def _spawn_crowd(arena: Arena, count: int) -> int:
    types = [EntityType.MELEE, EntityType.RANGED, EntityType.THROWING,
             EntityType.BOOMERANG, EntityType.BOSS]
    spawned = 0
    for i in range(count):
        if arena.spawn(types[i % len(types)]) is not None:
            spawned += 1
    return spawned


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='monster-rl',
        description='Monster learning pipeline driver'
    )
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    parser.add_argument('--config', '-c', type=str, default=None,
                        help='System config JSON (default: from environment)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    demo_parser = subparsers.add_parser('demo', help='Run a small arena with live events')
    demo_parser.add_argument('--monsters', '-m', type=int, default=12)
    demo_parser.add_argument('--ticks', '-t', type=int, default=500)
    demo_parser.add_argument('--mode', choices=['training', 'inference', 'mixed'],
                             default='training')
    demo_parser.add_argument('--seed', type=int, default=0)

    bench_parser = subparsers.add_parser('benchmark', help='Measure tick cost under load')
    bench_parser.add_argument('--monsters', '-m', type=int, default=200)
    bench_parser.add_argument('--ticks', '-t', type=int, default=300)
    bench_parser.add_argument('--seed', type=int, default=0)

    config_parser = subparsers.add_parser('config', help='Write the effective config')
    config_parser.add_argument('--output', '-o', type=str, default=None,
                               help='Output file (default: stdout)')

    return parser


def load_config(args) -> SystemConfig:
    if args.config:
        return SystemConfig.load(args.config)
    return SystemConfig.from_env()


def cmd_demo(args) -> int:
    """Run a small arena and print events as they happen"""
    config = load_config(args)
    config.training.max_agents_per_type = max(config.training.max_agents_per_type,
                                              args.monsters)
    system = MonsterLearningSystem(config)
    system.init()

    def on_event(event: Event):
        print(f"  [{event.kind.value}] {json.dumps(event.payload, default=str)}")

    for kind in (EventKind.MODE_CHANGED, EventKind.DEGRADATION_CHANGED,
                 EventKind.EMERGENCY_MODE, EventKind.COMPONENT_DEGRADED):
        system.subscribe(kind, on_event)

    arena = Arena(system, seed=args.seed)
    spawned = _spawn_crowd(arena, args.monsters)
    print(f"Spawned {spawned} monsters")
    system.set_mode(TrainingMode[args.mode.upper()])

    dt = 0.02
    for tick in range(args.ticks):
        start = time.perf_counter()
        arena.step(dt)
        frame_ms = (time.perf_counter() - start) * 1000.0
        system.tick(dt, frame_time_ms=frame_ms)
        if (tick + 1) % 100 == 0:
            status = system.status()
            print(f"tick {tick + 1}: episodes={arena.episodes} "
                  f"reward={arena.total_reward:.1f} "
                  f"level={status['performance']['degradation_level']} "
                  f"strategy={status['optimization']['strategy']}")

    print(json.dumps(system.status(), indent=2, default=str))
    system.shutdown()
    return 0


def cmd_benchmark(args) -> int:
    """Measure frame cost of the learning pipeline"""
    config = load_config(args)
    config.training.max_agents_per_type = max(config.training.max_agents_per_type,
                                              args.monsters)
    system = MonsterLearningSystem(config)
    system.init()
    arena = Arena(system, seed=args.seed)
    spawned = _spawn_crowd(arena, args.monsters)

    print("=" * 60)
    print("MONSTER LEARNING - Tick Benchmark")
    print("=" * 60)

    dt = 0.02
    frame_times = []
    tick_times = []
    for _ in range(args.ticks):
        start = time.perf_counter()
        arena.step(dt)
        frame_ms = (time.perf_counter() - start) * 1000.0
        tick_start = time.perf_counter()
        system.tick(dt, frame_time_ms=frame_ms)
        tick_times.append((time.perf_counter() - tick_start) * 1000.0)
        frame_times.append(frame_ms)

    frame_times.sort()
    tick_times.sort()
    n = len(frame_times)
    status = system.status()
    print(f"Monsters: {spawned}")
    print(f"Ticks: {n}")
    print("-" * 60)
    if n:
        print(f"Arena step: mean {sum(frame_times) / n:.2f}ms  "
              f"p95 {frame_times[int(n * 0.95) - 1 if n > 1 else 0]:.2f}ms")
        print(f"Scheduler tick: mean {sum(tick_times) / n:.3f}ms  "
              f"max {tick_times[-1]:.3f}ms")
    print(f"Agent updates: {status['coordinator']['agent_updates']}")
    print(f"Aborted passes: {status['coordinator']['aborted_passes']}")
    print(f"Final degradation: {status['performance']['degradation_level']}")
    print(f"Final batch size: {status['performance']['batch_size']}")
    print(f"Emergencies: {status['optimization']['emergencies']}")
    system.shutdown()
    return 0


def cmd_config(args) -> int:
    """Print or save the effective configuration"""
    config = load_config(args)
    if args.output:
        config.save(args.output)
        print(f"Config written to {args.output}")
    else:
        print(json.dumps(config.to_dict(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        'demo': cmd_demo,
        'benchmark': cmd_benchmark,
        'config': cmd_config,
    }

    if args.command in commands:
        return commands[args.command](args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main() or 0)
