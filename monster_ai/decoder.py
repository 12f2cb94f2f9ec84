"""
Action Decoder - Maps policy output to concrete monster actions.

An ActionSpace is expanded once into an ordered table of ActionMapping
entries. The order is fixed because policies are trained against the index
assignment:

  movement directions, stop, attack, special attack, defensive stance,
  retreat directions, coordinate, ambush (4 cardinal), wait

Every decision re-evaluates a validity mask over the table; invalid entries
are never chosen.
"""

import math
import numpy as np
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from game.actions import Action, ActionKind, ActionSpace
from game.observation import Observation, Vec2

logger = logging.getLogger(__name__)

AMBUSH_DIRECTIONS = 4
DEFEND_RANGE_FACTOR = 1.5
RETREAT_RANGE_FACTOR = 0.5
AMBUSH_MIN_FACTOR = 0.5
AMBUSH_MAX_FACTOR = 2.0
AMBUSH_MIN_TIME_ALIVE = 2.0
DEFEND_HEALTH_RATIO = 0.5
RETREAT_HEALTH_RATIO = 0.3

_FLOAT_MIN = float(np.finfo(np.float32).min)


@dataclass(frozen=True)
class ActionMapping:
    """One entry of the index table."""
    index: int
    kind: ActionKind
    direction: Vec2 = (0.0, 0.0)
    intensity: float = 1.0


def _unit_circle(count: int) -> List[Vec2]:
    directions = []
    for i in range(count):
        angle = math.radians(i * 360.0 / count)
        directions.append((math.cos(angle), math.sin(angle)))
    return directions


def build_mappings(space: ActionSpace) -> List[ActionMapping]:
    """Expand an action space into its ordered mapping table."""
    mappings: List[ActionMapping] = []

    def add(kind, direction=(0.0, 0.0), intensity=1.0):
        mappings.append(ActionMapping(len(mappings), kind, direction, intensity))

    if space.can_move:
        for d in _unit_circle(space.movement_directions):
            add(ActionKind.MOVE, d)
        add(ActionKind.WAIT, intensity=0.0)  # stop

    if space.can_attack:
        add(ActionKind.ATTACK)
    if space.can_special_attack:
        add(ActionKind.SPECIAL_ATTACK)
    if space.can_defend:
        add(ActionKind.DEFENSIVE_STANCE)

    if space.can_retreat:
        for d in _unit_circle(space.movement_directions):
            add(ActionKind.RETREAT, d)

    if space.can_coordinate:
        add(ActionKind.COORDINATE)
    if space.can_ambush:
        for d in _unit_circle(AMBUSH_DIRECTIONS):
            add(ActionKind.AMBUSH, d)

    if space.can_wait:
        add(ActionKind.WAIT, intensity=0.0)

    return mappings


class ActionDecoder:
    """Index table plus per-observation validity rules for one action space."""

    def __init__(self, action_space: ActionSpace):
        self.action_space = action_space
        self.mappings = build_mappings(action_space)

    @property
    def action_count(self) -> int:
        return len(self.mappings)

    def get_mapping(self, index: int) -> Optional[ActionMapping]:
        if 0 <= index < len(self.mappings):
            return self.mappings[index]
        return None

    def indices_of(self, kind: ActionKind) -> List[int]:
        return [m.index for m in self.mappings if m.kind == kind]

    def is_valid(self, mapping: ActionMapping, obs: Observation) -> bool:
        rng = self.action_space.max_action_range
        dist = obs.distance_to_player()
        alive = obs.is_alive()
        kind = mapping.kind

        if kind == ActionKind.MOVE:
            return alive
        if kind in (ActionKind.ATTACK, ActionKind.SPECIAL_ATTACK):
            return alive and dist <= rng
        if kind == ActionKind.DEFENSIVE_STANCE:
            return (dist <= rng * DEFEND_RANGE_FACTOR
                    or obs.health_ratio() < DEFEND_HEALTH_RATIO)
        if kind == ActionKind.RETREAT:
            return (dist <= rng * RETREAT_RANGE_FACTOR
                    or obs.health_ratio() < RETREAT_HEALTH_RATIO)
        if kind == ActionKind.COORDINATE:
            return obs.has_nearby_allies()
        if kind == ActionKind.AMBUSH:
            return (obs.time_alive > AMBUSH_MIN_TIME_ALIVE
                    and rng * AMBUSH_MIN_FACTOR < dist <= rng * AMBUSH_MAX_FACTOR)
        return True  # WAIT

    def valid_mask(self, obs: Optional[Observation]) -> np.ndarray:
        """Boolean mask over the table. A missing observation masks nothing."""
        if obs is None:
            return np.ones(self.action_count, dtype=bool)
        return np.array([self.is_valid(m, obs) for m in self.mappings],
                        dtype=bool)

    def decode(self, logits: Optional[Sequence[float]],
               obs: Optional[Observation] = None) -> Action:
        """
        Pick the highest-scoring valid entry and convert it to an Action.

        Ties go to the lowest index. Empty logits, or a table where nothing
        is valid, decode to Wait.
        """
        if logits is None or len(logits) == 0:
            return Action.wait()

        scores = np.full(self.action_count, _FLOAT_MIN, dtype=np.float64)
        n = min(len(logits), self.action_count)
        raw = np.asarray(logits[:n], dtype=np.float64)
        scores[:n] = np.where(np.isfinite(raw), raw, _FLOAT_MIN)

        mask = self.valid_mask(obs)
        scores[~mask] = _FLOAT_MIN

        if not mask.any():
            return Action.wait()

        best = int(np.argmax(scores))  # first occurrence wins ties
        if not mask[best]:
            return Action.wait()
        return self.to_action(self.mappings[best], obs)

    def decode_index(self, index: int,
                     obs: Optional[Observation] = None) -> Action:
        """
        Convert a raw index to an Action. Out-of-range indices, and entries
        invalid for the given observation, give Wait.
        """
        mapping = self.get_mapping(index)
        if mapping is None:
            logger.debug(f"Action index {index} out of range "
                         f"(table size {self.action_count})")
            return Action.wait()
        if obs is not None and not self.is_valid(mapping, obs):
            return Action.wait()
        return self.to_action(mapping, obs)

    def to_action(self, mapping: ActionMapping,
                  obs: Optional[Observation] = None) -> Action:
        kind = mapping.kind
        if kind == ActionKind.MOVE:
            return Action.move(mapping.direction, mapping.intensity)
        if kind == ActionKind.RETREAT:
            return Action.retreat(mapping.direction)
        if kind in (ActionKind.ATTACK, ActionKind.SPECIAL_ATTACK):
            direction = self._toward_player(obs)
            return Action(kind, direction, mapping.intensity)
        if kind == ActionKind.COORDINATE:
            target = 0
            if obs is not None:
                for i, m in enumerate(obs.nearby_monsters):
                    if not m.is_empty:
                        target = i
                        break
            return Action.coordinate(target)
        if kind in (ActionKind.AMBUSH, ActionKind.DEFENSIVE_STANCE):
            return Action(kind, mapping.direction, mapping.intensity)
        return Action.wait()

    @staticmethod
    def _toward_player(obs: Optional[Observation]) -> Vec2:
        if obs is None:
            return (0.0, 0.0)
        dx = obs.player_position[0] - obs.self_position[0]
        dy = obs.player_position[1] - obs.self_position[1]
        length = math.hypot(dx, dy)
        if length == 0:
            return (0.0, 0.0)
        return (dx / length, dy / length)

    def describe(self) -> List[str]:
        return [f"{m.index}: {m.kind.name} ({m.direction[0]:.2f}, {m.direction[1]:.2f})"
                for m in self.mappings]
