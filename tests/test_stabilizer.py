import pytest

from parkspace.config import HISTORY_LIMIT
from parkspace.schemas import ParkingSpace, Region, SpaceFeatures
from parkspace.stabilizer import (
    apply_temporal_smoothing, feature_confidence, feature_consistency, weighted_vote
)

REGION = Region(id='a', points=[{'x': 0, 'y': 0}, {'x': 1, 'y': 0}, {'x': 1, 'y': 1}])


def space(occupied, history=(), stability=0.5, changed=10.0, space_id=0, **features):
    return ParkingSpace(
        id=space_id, region=REGION, is_occupied=occupied, confidence=0.5,
        last_state_change=changed, state_history=list(history),
        features=SpaceFeatures(stability_score=stability, **features)
    )


def test_weighted_vote_prefers_recent_states():
    assert weighted_vote([True]) == 1.0
    assert weighted_vote([False, True]) == pytest.approx(1 / 1.85)
    assert weighted_vote([True, False]) == pytest.approx(0.85 / 1.85)
    assert weighted_vote([]) == 0.0


def test_feature_consistency():
    same = SpaceFeatures(edge_density=0.2, brightness=0.4)
    assert feature_consistency(same, same) == pytest.approx(1.0)
    jumped = SpaceFeatures(edge_density=1.2, brightness=0.4)
    assert feature_consistency(jumped, same) == pytest.approx(0.7)


def test_feature_confidence_is_capped():
    assert feature_confidence(SpaceFeatures()) == pytest.approx(0.8 * 0.8 * 0.9)
    busy = SpaceFeatures(edge_density=0.5, texture_complexity=0.5, color_variance=0.5)
    assert feature_confidence(busy) == 1.0


def test_held_state_gains_stability():
    previous = space(True, history=[True, True])
    [result] = apply_temporal_smoothing([space(True, changed=20.0)], [previous], now=30.0)
    assert result.is_occupied
    assert result.state_history == [True, True, True]
    assert result.features.stability_score == pytest.approx(0.58)
    assert result.last_state_change == 10.0
    # vote 1.0 x stability factor 0.65 x feature confidence 0.576
    assert result.confidence == pytest.approx(0.65 * 0.576)


def test_single_frame_flicker_is_suppressed():
    previous = space(True, history=[True, True, True, True])
    [result] = apply_temporal_smoothing([space(False)], [previous], now=30.0)
    assert result.is_occupied
    assert result.state_history[-1] is False


def test_flip_loses_stability_and_stamps_time():
    previous = space(False, history=[])
    [result] = apply_temporal_smoothing([space(True)], [previous], now=30.0)
    assert result.is_occupied
    assert result.features.stability_score == pytest.approx(0.35)
    assert result.last_state_change == 30.0


def test_flip_is_strictly_less_stable_even_after_boost():
    previous = space(False, stability=0.6)
    boosted = space(True, stability=0.8)
    [result] = apply_temporal_smoothing([boosted], [previous], now=30.0)
    assert result.is_occupied
    assert result.features.stability_score < 0.6


def test_held_state_never_loses_stability_after_penalty():
    previous = space(True, history=[True, True], stability=0.7)
    penalized = space(True, stability=0.6)
    [result] = apply_temporal_smoothing([penalized], [previous], now=30.0)
    assert result.is_occupied
    assert result.features.stability_score >= 0.7


def test_stability_is_capped():
    previous = space(True, history=[True], stability=1.0)
    [result] = apply_temporal_smoothing([space(True, stability=1.0)], [previous], now=30.0)
    assert result.features.stability_score == 1.0


def test_history_is_bounded():
    previous = space(True, history=[True] * HISTORY_LIMIT)
    [result] = apply_temporal_smoothing([space(False)], [previous], now=30.0)
    assert len(result.state_history) == HISTORY_LIMIT
    assert HISTORY_LIMIT == 5


def test_new_and_frozen_spaces_pass_through():
    current = [space(True, space_id=0), space(True, space_id=1), space(True, space_id=2)]
    previous = [space(False, space_id=1), space(False, space_id=2)]
    result = apply_temporal_smoothing(current, previous, now=30.0, frozen={2})
    assert result[0] is current[0]
    assert result[1] is not current[1]
    assert result[2] is current[2]


def test_no_previous_spaces_is_a_no_op():
    current = [space(True)]
    assert apply_temporal_smoothing(current, []) is current
