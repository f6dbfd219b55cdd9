"""
Temporal smoothing of per-space states across frames.
"""

import time
from typing import Collection, Dict, List, Optional, Sequence

from parkspace.config import (
    HISTORY_LIMIT, HISTORY_DECAY, SMOOTHING_VOTE_RATIO, STABILITY_GAIN, STABILITY_PENALTY,
    EDGE_DENSITY_THRESHOLD, TEXTURE_COMPLEXITY_THRESHOLD, COLOR_VARIANCE_THRESHOLD
)
from parkspace.schemas import ParkingSpace, SpaceFeatures


def weighted_vote(history: Sequence[bool]) -> float:
    """Exponentially weighted share of occupied votes, newest weighted highest."""
    n = len(history)
    if n == 0:
        return 0.0
    weights = [HISTORY_DECAY ** (n - 1 - i) for i in range(n)]
    occupied = sum(w for w, state in zip(weights, history) if state)
    return occupied / sum(weights)


def feature_consistency(current: SpaceFeatures, previous: SpaceFeatures) -> float:
    """1.0 when appearance did not change between frames, lower on large jumps."""
    return min(1.0,
               0.3 * (1 - abs(current.edge_density - previous.edge_density)) +
               0.3 * (1 - abs(current.texture_complexity - previous.texture_complexity)) +
               0.2 * (1 - abs(current.color_variance - previous.color_variance)) +
               0.2 * (1 - abs(current.brightness - previous.brightness)))


def feature_confidence(features: SpaceFeatures) -> float:
    return min(1.0,
               (1.2 if features.edge_density > EDGE_DENSITY_THRESHOLD else 0.8) *
               (1.2 if features.texture_complexity > TEXTURE_COMPLEXITY_THRESHOLD else 0.8) *
               (1.1 if features.color_variance > COLOR_VARIANCE_THRESHOLD else 0.9))


def smooth_space(space: ParkingSpace, previous: ParkingSpace, now: float) -> ParkingSpace:
    """Fold this frame's provisional state into the space's history."""
    history = (list(previous.state_history) + [space.is_occupied])[-HISTORY_LIMIT:]
    vote = weighted_vote(history)

    stability = space.features.stability_score
    stability_factor = 0.7 * stability + 0.3 * feature_consistency(space.features, previous.features)
    is_occupied = vote > SMOOTHING_VOTE_RATIO * stability_factor
    held = is_occupied == previous.is_occupied

    # Never below the previous score when the state holds, always below it on a flip
    if held:
        next_stability = min(1.0, max(stability, previous.features.stability_score) + STABILITY_GAIN)
    else:
        next_stability = max(0.0, min(stability, previous.features.stability_score) - STABILITY_PENALTY)

    confidence = vote * stability_factor * feature_confidence(space.features)

    return space.model_copy(update={
        'is_occupied': is_occupied,
        'state_history': history,
        'last_state_change': previous.last_state_change if held else now,
        'confidence': min(1.0, max(0.0, confidence)),
        'features': space.features.model_copy(update={'stability_score': next_stability})
    })


def apply_temporal_smoothing(
    spaces: List[ParkingSpace],
    previous_spaces: Sequence[ParkingSpace],
    now: Optional[float] = None,
    frozen: Collection[int] = ()
) -> List[ParkingSpace]:
    """Smooth each space against its previous-frame counterpart (matched by id).

    Spaces without a counterpart, and spaces whose id is in ``frozen``, pass
    through unchanged.
    """
    if not previous_spaces:
        return spaces

    now = time.time() if now is None else now
    by_id: Dict[int, ParkingSpace] = {s.id: s for s in previous_spaces}
    return [
        smooth_space(space, by_id[space.id], now)
        if space.id in by_id and space.id not in frozen else space
        for space in spaces
    ]
