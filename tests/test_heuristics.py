import pytest

from parkspace.heuristics import classify, occupancy_score
from tests.conftest import make_features


def test_coverage_and_texture_beat_default_threshold():
    # 0.9 coverage alone scores 0.315; texture adds 0.25
    verdict = classify(make_features(coverage=0.9, texture_complexity=0.3))
    assert verdict.occupancy_score == pytest.approx(0.565)
    assert verdict.is_occupied


def test_coverage_alone_stays_below_default_threshold():
    verdict = classify(make_features(coverage=0.9, texture_complexity=0.2))
    assert verdict.occupancy_score == pytest.approx(0.315)
    assert not verdict.is_occupied


@pytest.mark.parametrize('shadow', [0.0, 0.2, 0.44])
@pytest.mark.parametrize('coverage', [0.5, 1.0])
def test_shadow_vetoes_occupancy(shadow, coverage):
    verdict = classify(
        make_features(coverage=coverage, texture_complexity=0.9, edge_density=0.9,
                      color_variance=0.9, shadow_score=shadow, dynamic_threshold=0.1),
        motion=1.0
    )
    assert verdict.is_shadow
    assert not verdict.is_occupied
    assert verdict.confidence == pytest.approx(0.3 * 1.2 * 0.7)


def test_all_signals_score_one():
    f = make_features(texture_complexity=0.9, edge_density=0.9, color_variance=0.9)
    assert occupancy_score(f, motion=0.5, stability=0.5) == pytest.approx(1.0)


def test_motion_counts_relative_to_stability():
    f = make_features(coverage=0.0)
    assert occupancy_score(f, motion=0.2, stability=0.5) == pytest.approx(0.05)
    assert occupancy_score(f, motion=0.2, stability=1.0) == 0.0


def test_confidence_from_threshold_margin():
    verdict = classify(make_features(coverage=1.0, texture_complexity=0.9, dynamic_threshold=0.5),
                       motion=0.0, stability=1.0)
    # score 0.6, margin 0.1
    assert verdict.confidence == pytest.approx(0.9)
    assert verdict.margin == pytest.approx(0.1)


def test_confidence_floor_and_stability_weight():
    verdict = classify(make_features(coverage=0.0, dynamic_threshold=0.9), stability=0.2)
    # margin 0.9 floors base confidence at 0.5; low stability weighs 0.7
    assert verdict.confidence == pytest.approx(0.35)


def test_confidence_is_clamped():
    verdict = classify(make_features(coverage=1.0, texture_complexity=0.9, edge_density=0.9,
                                     color_variance=0.9, dynamic_threshold=1.0),
                       motion=1.0, stability=1.0)
    assert verdict.confidence == 1.0
