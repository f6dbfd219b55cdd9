"""
Parking space occupancy detection.

Classical image heuristics (edges, texture, color variance, motion, shadows)
blended with periodic verification by pretrained detection/classification
models and temporal smoothing.
"""

from parkspace.detection import DetectionEngine
from parkspace.errors import (
    DetectionError, InvalidSource, RegionInvalid, RegionTooSmall,
    ModelLoadFailure, VerificationFailure
)
from parkspace.schemas import (
    Point, Region, SpaceFeatures, ParkingSpace, DetectionResult, DetectionSettings
)

__version__ = "0.3.0"

__all__ = [
    'DetectionEngine',
    'DetectionError', 'InvalidSource', 'RegionInvalid', 'RegionTooSmall',
    'ModelLoadFailure', 'VerificationFailure',
    'Point', 'Region', 'SpaceFeatures', 'ParkingSpace', 'DetectionResult',
    'DetectionSettings',
]
