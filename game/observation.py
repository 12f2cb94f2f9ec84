"""
Observation Model - Structured snapshot of the world around one monster.

An Observation is produced once per decision point by the simulation and
consumed by the StateEncoder and ActionDecoder. Unused nearby-entity slots
are explicit "empty" sentinels (type NONE) so the encoded vector always has
the same length.

Entity kinds are carried as explicit tags on each entity, resolved once
when the entity is created rather than inferred from its name.
"""

import math
from enum import IntEnum
from dataclasses import dataclass, field
from typing import List, Tuple


Vec2 = Tuple[float, float]

MAX_NEARBY_MONSTERS = 5
MAX_NEARBY_COLLECTIBLES = 10


class EntityType(IntEnum):
    NONE = 0
    MELEE = 1
    RANGED = 2
    THROWING = 3
    BOOMERANG = 4
    BOSS = 5


class CollectibleType(IntEnum):
    NONE = 0
    EXP_GEM = 1
    COIN = 2
    CHEST = 3
    POWER_UP = 4


def distance(a: Vec2, b: Vec2) -> float:
    """Euclidean distance between two 2D points."""
    return math.hypot(a[0] - b[0], a[1] - b[1])


@dataclass
class NearbyEntity:
    """Another monster near the observing agent."""
    position: Vec2 = (0.0, 0.0)
    entity_type: EntityType = EntityType.NONE
    health: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.entity_type == EntityType.NONE


@dataclass
class NearbyCollectible:
    """A pickup near the observing agent."""
    position: Vec2 = (0.0, 0.0)
    collectible_type: CollectibleType = CollectibleType.NONE

    @property
    def is_empty(self) -> bool:
        return self.collectible_type == CollectibleType.NONE


@dataclass
class Observation:
    """
    Snapshot of everything one monster can perceive at a decision point.

    Player fields describe the opponent, self fields describe the observing
    monster. Times are in seconds of simulation time.
    """
    # Opponent
    player_position: Vec2 = (0.0, 0.0)
    player_velocity: Vec2 = (0.0, 0.0)
    player_health: float = 100.0
    player_abilities: int = 0            # 32-bit active ability bitmask

    # Self
    self_position: Vec2 = (0.0, 0.0)
    self_health: float = 100.0
    current_action: int = 0
    time_since_last_action: float = 0.0
    time_alive: float = 0.0

    # Surroundings
    nearby_monsters: List[NearbyEntity] = field(default_factory=list)
    nearby_collectibles: List[NearbyCollectible] = field(default_factory=list)

    # Temporal
    time_since_player_damage: float = math.inf

    max_health: float = 100.0
    player_max_health: float = 100.0

    def distance_to_player(self) -> float:
        return distance(self.self_position, self.player_position)

    def health_ratio(self) -> float:
        if self.max_health <= 0:
            return 0.0
        return self.self_health / self.max_health

    def player_health_ratio(self) -> float:
        if self.player_max_health <= 0:
            return 0.0
        return self.player_health / self.player_max_health

    def is_alive(self) -> bool:
        return self.self_health > 0

    def has_nearby_allies(self) -> bool:
        return any(not m.is_empty for m in self.nearby_monsters)

    def allies(self) -> List[NearbyEntity]:
        return [m for m in self.nearby_monsters if not m.is_empty]

    @classmethod
    def empty(cls) -> 'Observation':
        """Observation with every slot empty (used when sensing fails)."""
        return cls(
            nearby_monsters=[NearbyEntity() for _ in range(MAX_NEARBY_MONSTERS)],
            nearby_collectibles=[NearbyCollectible()
                                 for _ in range(MAX_NEARBY_COLLECTIBLES)],
        )
