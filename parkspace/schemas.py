"""
Data model shared by the pipeline and the HTTP layer.
"""

import math
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from parkspace.config import DEFAULT_STABILITY


class Point(BaseModel):
    x: float
    y: float


class Region(BaseModel):
    """User-drawn polygon marking one parking space."""
    id: str
    points: List[Point]
    type: Literal['rectangle', 'quadrilateral'] = 'quadrilateral'

    @field_validator('points')
    @classmethod
    def check_points(cls, points: List[Point]) -> List[Point]:
        if len(points) < 3:
            raise ValueError('region needs at least 3 points')
        for p in points:
            if not (math.isfinite(p.x) and math.isfinite(p.y)):
                raise ValueError('region points must be finite')
        return points


class SpaceFeatures(BaseModel):
    non_zero_count: int = 0
    brightness: float = 0.0
    edge_density: float = 0.0
    texture_complexity: float = 0.0
    perspective_score: float = 0.0
    heatmap_score: float = 0.0
    color_variance: float = 0.0
    motion_score: float = 0.0
    shadow_score: float = 0.0
    stability_score: float = DEFAULT_STABILITY


class ParkingSpace(BaseModel):
    """Per-region detection result for one frame."""
    id: int
    region: Region  # Always normalized 0-1
    is_occupied: bool = False
    confidence: float = 0.0
    last_state_change: float = 0.0  # Unix timestamp (seconds)
    state_history: List[bool] = Field(default_factory=list)
    vehicle_type: Optional[str] = None
    features: SpaceFeatures = Field(default_factory=SpaceFeatures)

    def with_features(self, **updates) -> 'ParkingSpace':
        """Copy with some feature values replaced."""
        return self.model_copy(update={'features': self.features.model_copy(update=updates)})


class DetectionResult(BaseModel):
    total: int
    occupied: int
    available: int
    spaces: List[ParkingSpace]
    processing_time_ms: float = 0.0
    degraded: bool = False  # True when verification models are unavailable

    @classmethod
    def from_spaces(cls, spaces: List[ParkingSpace], processing_time_ms: float = 0.0,
                    degraded: bool = False) -> 'DetectionResult':
        occupied = sum(1 for s in spaces if s.is_occupied)
        return cls(
            total=len(spaces),
            occupied=occupied,
            available=len(spaces) - occupied,
            spaces=spaces,
            processing_time_ms=processing_time_ms,
            degraded=degraded
        )


class DetectionSettings(BaseModel):
    """Runtime toggles, read once per detection call."""
    model_config = ConfigDict(extra='forbid')

    show_debug_info: bool = False
    use_motion_detection: bool = True
    use_model_verification: bool = True
    use_temporal_smoothing: bool = True
    use_adaptive_verification: bool = True
