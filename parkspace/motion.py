"""
Global motion between consecutive processed frames.
"""

from typing import Optional

import numpy as np

from parkspace.config import MOTION_PIXEL_THRESHOLD
from parkspace.features import to_luma


def motion_score(current: np.ndarray, previous: Optional[np.ndarray]) -> float:
    """Fraction of pixels whose luma changed by more than the motion threshold.

    Returns 0 without a previous frame or when the frame size changed.
    """
    if previous is None or previous.shape != current.shape:
        return 0.0

    diff = np.abs(to_luma(current) - to_luma(previous)) / 255.0
    changed = np.count_nonzero(diff > MOTION_PIXEL_THRESHOLD)
    return float(changed / diff.size)
