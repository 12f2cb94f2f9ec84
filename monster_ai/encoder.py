"""
State Encoder - Converts an Observation into the fixed-length feature
vector consumed by a monster policy.

Layout (64 floats):
  [0:7]    player: pos x, pos y, vel x, vel y, health, ability lo, ability hi
  [7:13]   self: pos x, pos y, health, current action, time since action, time alive
  [13:33]  5 nearby monsters x (pos x, pos y, type, health)
  [33:63]  10 collectibles x (pos x, pos y, type)
  [63]     time since the player was last damaged

Policies are trained against this exact layout, so the order is fixed.
Encoding is a pure function of the observation.
"""

import math
import numpy as np
from typing import List, Sequence

from game.observation import (
    Observation, MAX_NEARBY_MONSTERS, MAX_NEARBY_COLLECTIBLES,
)

MAX_POSITION = 50.0
MAX_VELOCITY = 20.0
MAX_HEALTH = 200.0
MAX_TIME = 300.0
ABILITY_HALF_SCALE = 16.0
MAX_ACTION_INDEX = 15.0
MAX_MONSTER_TYPE = 5.0
MAX_COLLECTIBLE_TYPE = 4.0

PLAYER_FEATURES = 7
SELF_FEATURES = 6
MONSTER_FEATURES = 4
COLLECTIBLE_FEATURES = 3
TEMPORAL_FEATURES = 1

STATE_SIZE = (PLAYER_FEATURES + SELF_FEATURES
              + MAX_NEARBY_MONSTERS * MONSTER_FEATURES
              + MAX_NEARBY_COLLECTIBLES * COLLECTIBLE_FEATURES
              + TEMPORAL_FEATURES)
# = 7 + 6 + 20 + 30 + 1 = 64


def _signed(value: float, scale: float) -> float:
    """Scale into [-1, 1], saturating. NaN encodes as 0."""
    if math.isnan(value):
        return 0.0
    return min(1.0, max(-1.0, value / scale))


def _unit(value: float, scale: float) -> float:
    """Scale into [0, 1], saturating. NaN encodes as 0."""
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value / scale))


class StateEncoder:
    """
    Encodes observations into normalized float32 vectors.

    Holds no per-observation state; one instance can be shared by every
    agent in the process.
    """

    def __init__(self, max_monsters: int = MAX_NEARBY_MONSTERS,
                 max_collectibles: int = MAX_NEARBY_COLLECTIBLES):
        self.max_monsters = max_monsters
        self.max_collectibles = max_collectibles
        self._size = (PLAYER_FEATURES + SELF_FEATURES
                      + max_monsters * MONSTER_FEATURES
                      + max_collectibles * COLLECTIBLE_FEATURES
                      + TEMPORAL_FEATURES)

    @property
    def state_size(self) -> int:
        return self._size

    def encode(self, obs: Observation) -> np.ndarray:
        """Encode a single observation. Shape: (state_size,)"""
        return np.asarray(self._encode_list(obs), dtype=np.float32)

    def encode_batch(self, observations: Sequence[Observation]) -> np.ndarray:
        """Encode several observations. Shape: (B, state_size)"""
        if not observations:
            return np.zeros((0, self._size), dtype=np.float32)
        return np.asarray([self._encode_list(o) for o in observations],
                          dtype=np.float32)

    def _encode_list(self, obs: Observation) -> List[float]:
        features: List[float] = []

        # Player block
        abilities = int(obs.player_abilities) & 0xFFFFFFFF
        features.append(_signed(obs.player_position[0], MAX_POSITION))
        features.append(_signed(obs.player_position[1], MAX_POSITION))
        features.append(_signed(obs.player_velocity[0], MAX_VELOCITY))
        features.append(_signed(obs.player_velocity[1], MAX_VELOCITY))
        features.append(_unit(obs.player_health, MAX_HEALTH))
        features.append(_unit(abilities & 0xFFFF, ABILITY_HALF_SCALE))
        features.append(_unit((abilities >> 16) & 0xFFFF, ABILITY_HALF_SCALE))

        # Self block
        features.append(_signed(obs.self_position[0], MAX_POSITION))
        features.append(_signed(obs.self_position[1], MAX_POSITION))
        features.append(_unit(obs.self_health, MAX_HEALTH))
        features.append(_unit(obs.current_action, MAX_ACTION_INDEX))
        features.append(_unit(obs.time_since_last_action, MAX_TIME))
        features.append(_unit(obs.time_alive, MAX_TIME))

        # Nearby monsters, zero-filled past the end or for empty slots
        for i in range(self.max_monsters):
            if i < len(obs.nearby_monsters) and not obs.nearby_monsters[i].is_empty:
                m = obs.nearby_monsters[i]
                features.append(_signed(m.position[0], MAX_POSITION))
                features.append(_signed(m.position[1], MAX_POSITION))
                features.append(_unit(int(m.entity_type), MAX_MONSTER_TYPE))
                features.append(_unit(m.health, MAX_HEALTH))
            else:
                features.extend([0.0] * MONSTER_FEATURES)

        # Collectibles
        for i in range(self.max_collectibles):
            if (i < len(obs.nearby_collectibles)
                    and not obs.nearby_collectibles[i].is_empty):
                c = obs.nearby_collectibles[i]
                features.append(_signed(c.position[0], MAX_POSITION))
                features.append(_signed(c.position[1], MAX_POSITION))
                features.append(_unit(int(c.collectible_type), MAX_COLLECTIBLE_TYPE))
            else:
                features.extend([0.0] * COLLECTIBLE_FEATURES)

        # Temporal
        features.append(_unit(obs.time_since_player_damage, MAX_TIME))

        return features

    def feature_names(self) -> List[str]:
        """Human-readable label for every slot of the encoded vector."""
        names = ['player_x', 'player_y', 'player_vx', 'player_vy',
                 'player_health', 'player_abilities_lo', 'player_abilities_hi',
                 'self_x', 'self_y', 'self_health', 'self_action',
                 'self_time_since_action', 'self_time_alive']
        for i in range(self.max_monsters):
            names += [f'monster{i}_x', f'monster{i}_y',
                      f'monster{i}_type', f'monster{i}_health']
        for i in range(self.max_collectibles):
            names += [f'collectible{i}_x', f'collectible{i}_y',
                      f'collectible{i}_type']
        names.append('time_since_player_damage')
        return names
