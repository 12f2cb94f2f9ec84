"""
Action System - Monster action kinds, concrete actions, outcomes, and
per-type capability sets.

A monster performs one Action per decision. The set of actions available
to a monster type is described by an ActionSpace, which the ActionDecoder
expands into a fixed index table once per type.
"""

import math
from enum import IntEnum
from dataclasses import dataclass, asdict
from typing import Dict, Tuple

from game.observation import EntityType, Vec2


class ActionKind(IntEnum):
    MOVE = 0
    ATTACK = 1
    RETREAT = 2
    COORDINATE = 3
    WAIT = 4
    SPECIAL_ATTACK = 5
    DEFENSIVE_STANCE = 6
    AMBUSH = 7


@dataclass
class Action:
    """A concrete action chosen for one monster."""
    kind: ActionKind = ActionKind.WAIT
    direction: Vec2 = (0.0, 0.0)
    intensity: float = 0.0
    target_index: int = -1

    @classmethod
    def move(cls, direction: Vec2, speed: float = 1.0) -> 'Action':
        return cls(ActionKind.MOVE, direction, speed)

    @classmethod
    def attack(cls, direction: Vec2, intensity: float = 1.0) -> 'Action':
        return cls(ActionKind.ATTACK, direction, min(1.0, max(0.0, intensity)))

    @classmethod
    def retreat(cls, direction: Vec2) -> 'Action':
        return cls(ActionKind.RETREAT, direction, 1.0)

    @classmethod
    def coordinate(cls, target_index: int) -> 'Action':
        return cls(ActionKind.COORDINATE, (0.0, 0.0), 1.0, target_index)

    @classmethod
    def wait(cls) -> 'Action':
        return cls()

    def __str__(self):
        dx, dy = self.direction
        return f"{self.kind.name}(dir=({dx:.2f}, {dy:.2f}), i={self.intensity:.2f})"


@dataclass
class ActionOutcome:
    """Result of executing an action, reported back by the simulation."""
    hit_player: bool = False
    damage_dealt: float = 0.0
    took_damage: bool = False
    damage_taken: float = 0.0
    coordinated: bool = False
    distance_to_player: float = math.inf


@dataclass
class ActionSpace:
    """
    Capability set for one monster type.

    The decoder expands this into an ordered index table; two spaces with
    the same capabilities always produce the same table.
    """
    can_move: bool = True
    movement_directions: int = 8
    can_attack: bool = True
    can_special_attack: bool = False
    can_defend: bool = False
    can_retreat: bool = True
    can_coordinate: bool = False
    can_ambush: bool = False
    can_wait: bool = True
    min_action_interval: float = 0.1
    max_action_range: float = 5.0

    def is_valid(self) -> bool:
        if self.can_move or self.can_retreat:
            if self.movement_directions <= 0:
                return False
        return self.max_action_range > 0 and self.min_action_interval >= 0

    def cache_key(self) -> Tuple:
        return tuple(asdict(self).values())

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'ActionSpace':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def basic(cls) -> 'ActionSpace':
        return cls()

    @classmethod
    def advanced(cls) -> 'ActionSpace':
        return cls(
            can_special_attack=True, can_defend=True, can_coordinate=True,
            can_ambush=True, min_action_interval=0.05, max_action_range=10.0,
        )

    @classmethod
    def for_entity_type(cls, entity_type: EntityType) -> 'ActionSpace':
        """Default capabilities per monster type."""
        if entity_type == EntityType.BOSS:
            return cls.advanced()
        if entity_type == EntityType.RANGED:
            return cls(can_coordinate=True, max_action_range=8.0)
        if entity_type in (EntityType.THROWING, EntityType.BOOMERANG):
            return cls(can_special_attack=True, max_action_range=7.0)
        return cls(can_coordinate=True, can_ambush=True, max_action_range=2.0)
