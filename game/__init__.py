"""
Monster Arena Data Model

Simulation-facing types shared by the learning pipeline:

- Observation snapshots with fixed-size nearby-entity slots
- Explicitly tagged entity and collectible kinds
- Monster actions, action outcomes, and per-type action spaces
"""

from game.observation import (
    Observation, NearbyEntity, NearbyCollectible, EntityType, CollectibleType,
    distance, MAX_NEARBY_MONSTERS, MAX_NEARBY_COLLECTIBLES,
)
from game.actions import ActionKind, Action, ActionOutcome, ActionSpace

__all__ = [
    "Observation", "NearbyEntity", "NearbyCollectible",
    "EntityType", "CollectibleType", "distance",
    "MAX_NEARBY_MONSTERS", "MAX_NEARBY_COLLECTIBLES",
    "ActionKind", "Action", "ActionOutcome", "ActionSpace",
]
