"""
Tests for the monster arena data model.

Tests cover:
- Observation helpers and empty slots
- Action factories and outcomes
- Action space presets and serialization
"""

import sys
import os
import math

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from game.observation import (
    Observation, NearbyEntity, NearbyCollectible, EntityType, CollectibleType,
    distance, MAX_NEARBY_MONSTERS, MAX_NEARBY_COLLECTIBLES,
)
from game.actions import ActionKind, Action, ActionOutcome, ActionSpace


class TestObservation:
    def test_distance_to_player(self):
        obs = Observation(player_position=(3.0, 4.0), self_position=(0.0, 0.0))
        assert obs.distance_to_player() == pytest.approx(5.0)

    def test_distance_helper(self):
        assert distance((1.0, 1.0), (1.0, 1.0)) == 0.0
        assert distance((0.0, 0.0), (0.0, -2.0)) == pytest.approx(2.0)

    def test_health_ratios(self):
        obs = Observation(self_health=25.0, player_health=150.0,
                          player_max_health=200.0)
        assert obs.health_ratio() == pytest.approx(0.25)
        assert obs.player_health_ratio() == pytest.approx(0.75)

    def test_zero_max_health_is_safe(self):
        obs = Observation(max_health=0.0, player_max_health=0.0)
        assert obs.health_ratio() == 0.0
        assert obs.player_health_ratio() == 0.0

    def test_alive(self):
        assert Observation(self_health=1.0).is_alive()
        assert not Observation(self_health=0.0).is_alive()

    def test_empty_slots_are_not_allies(self):
        obs = Observation(nearby_monsters=[NearbyEntity(), NearbyEntity()])
        assert not obs.has_nearby_allies()
        obs.nearby_monsters.append(NearbyEntity((1.0, 1.0), EntityType.MELEE, 50.0))
        assert obs.has_nearby_allies()
        assert len(obs.allies()) == 1

    def test_empty_observation(self):
        obs = Observation.empty()
        assert len(obs.nearby_monsters) == MAX_NEARBY_MONSTERS
        assert len(obs.nearby_collectibles) == MAX_NEARBY_COLLECTIBLES
        assert all(m.is_empty for m in obs.nearby_monsters)
        assert all(c.is_empty for c in obs.nearby_collectibles)
        assert math.isinf(obs.time_since_player_damage)

    def test_collectible_empty_flag(self):
        assert NearbyCollectible().is_empty
        assert not NearbyCollectible((0.0, 0.0), CollectibleType.COIN).is_empty

    def test_default_lists_not_shared(self):
        a = Observation()
        b = Observation()
        a.nearby_monsters.append(NearbyEntity())
        assert b.nearby_monsters == []


class TestActions:
    def test_wait_defaults(self):
        action = Action.wait()
        assert action.kind == ActionKind.WAIT
        assert action.intensity == 0.0
        assert action.target_index == -1

    def test_attack_intensity_clamped(self):
        assert Action.attack((1.0, 0.0), 3.0).intensity == 1.0
        assert Action.attack((1.0, 0.0), -1.0).intensity == 0.0

    def test_coordinate_target(self):
        action = Action.coordinate(2)
        assert action.kind == ActionKind.COORDINATE
        assert action.target_index == 2

    def test_outcome_defaults(self):
        outcome = ActionOutcome()
        assert not outcome.hit_player
        assert math.isinf(outcome.distance_to_player)

    def test_action_kind_values(self):
        assert int(ActionKind.MOVE) == 0
        assert int(ActionKind.WAIT) == 4
        assert int(ActionKind.AMBUSH) == 7


class TestActionSpace:
    def test_defaults(self):
        space = ActionSpace()
        assert space.can_move and space.can_attack and space.can_retreat
        assert not space.can_special_attack
        assert space.movement_directions == 8
        assert space.max_action_range == 5.0
        assert space.is_valid()

    def test_advanced(self):
        space = ActionSpace.advanced()
        assert space.can_ambush and space.can_coordinate and space.can_defend
        assert space.max_action_range == 10.0
        assert space.min_action_interval == pytest.approx(0.05)

    def test_invalid_directions(self):
        assert not ActionSpace(movement_directions=0).is_valid()

    def test_round_trip(self):
        space = ActionSpace(movement_directions=4, can_ambush=True)
        restored = ActionSpace.from_dict(space.to_dict())
        assert restored == space
        assert restored.cache_key() == space.cache_key()

    def test_from_dict_ignores_unknown_keys(self):
        space = ActionSpace.from_dict({'can_move': False, 'unknown': 1})
        assert not space.can_move

    def test_boss_gets_advanced_space(self):
        assert ActionSpace.for_entity_type(EntityType.BOSS) == ActionSpace.advanced()

    def test_cache_key_differs(self):
        assert ActionSpace().cache_key() != ActionSpace.advanced().cache_key()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
