"""
Heuristic occupancy classification from region features and motion.
"""

from dataclasses import dataclass

from parkspace.config import (
    SHADOW_THRESHOLD, TEXTURE_COMPLEXITY_THRESHOLD, EDGE_DENSITY_THRESHOLD,
    COLOR_VARIANCE_THRESHOLD, MOTION_INFLUENCE, COVERAGE_WEIGHT, TEXTURE_WEIGHT,
    EDGE_WEIGHT, COLOR_WEIGHT, MOTION_WEIGHT, SHADOW_CONFIDENCE, MIN_CONFIDENCE,
    MIN_STABILITY_WEIGHT, MOTION_CONFIDENCE_WEIGHT, DEFAULT_STABILITY
)
from parkspace.features import RegionFeatures


@dataclass(frozen=True)
class HeuristicVerdict:
    is_occupied: bool
    confidence: float
    occupancy_score: float
    threshold: float
    is_shadow: bool

    @property
    def margin(self) -> float:
        """Distance between the occupancy score and the threshold."""
        return abs(self.occupancy_score - self.threshold)


def occupancy_score(features: RegionFeatures, motion: float, stability: float) -> float:
    has_texture = features.texture_complexity > TEXTURE_COMPLEXITY_THRESHOLD
    has_edges = features.edge_density > EDGE_DENSITY_THRESHOLD
    has_color = features.color_variance > COLOR_VARIANCE_THRESHOLD
    has_motion = motion > MOTION_INFLUENCE * stability

    return (
        features.coverage * COVERAGE_WEIGHT +
        (TEXTURE_WEIGHT if has_texture else 0) +
        (EDGE_WEIGHT if has_edges else 0) +
        (COLOR_WEIGHT if has_color else 0) +
        (MOTION_WEIGHT if has_motion else 0)
    )


def classify(features: RegionFeatures, motion: float = 0.0,
             stability: float = DEFAULT_STABILITY) -> HeuristicVerdict:
    """Decide occupancy for one region.

    Shadows are rejected regardless of score. Otherwise the region is occupied
    when its weighted score beats the brightness/color adjusted threshold, and
    the distance from that threshold doubles as confidence.

    Args:
        features: Region features
        motion: Shared frame motion score (0-1)
        stability: The region's stability score from the previous call

    Returns:
        HeuristicVerdict
    """
    score = occupancy_score(features, motion, stability)
    threshold = features.dynamic_threshold
    is_shadow = features.shadow_score < SHADOW_THRESHOLD
    is_occupied = not is_shadow and score > threshold

    if is_shadow:
        base_confidence = SHADOW_CONFIDENCE
    else:
        base_confidence = max(MIN_CONFIDENCE, 1 - abs(score - threshold))

    confidence = (base_confidence *
                  (1 + MOTION_CONFIDENCE_WEIGHT * motion) *
                  max(MIN_STABILITY_WEIGHT, stability))

    return HeuristicVerdict(
        is_occupied=is_occupied,
        confidence=min(1.0, max(0.0, confidence)),
        occupancy_score=score,
        threshold=threshold,
        is_shadow=is_shadow
    )
