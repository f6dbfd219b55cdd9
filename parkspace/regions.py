"""
Region normalization: validation, coordinate system detection and scaling.

Regions arrive either normalized to [0, 1] or in pixel coordinates of the
source frame. The coordinate system is resolved once per call for the whole
region list and carried on each PreparedRegion, so feature extraction and
model verification always agree on it.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

from pydantic import ValidationError

from parkspace.config import PARKING_SPACE_MIN_SIZE
from parkspace.errors import RegionInvalid
from parkspace.schemas import Point, Region

logger = logging.getLogger(__name__)


class CoordinateSpace(str, Enum):
    NORMALIZED = 'normalized'
    PIXEL = 'pixel'


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center_y(self) -> float:
        return (self.min_y + self.max_y) / 2

    def pixel_box(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Integer (x0, y0, x1, y1) covering these bounds, clipped to the image."""
        return (
            max(0, int(math.floor(self.min_x))),
            max(0, int(math.floor(self.min_y))),
            min(width, int(math.ceil(self.max_x))),
            min(height, int(math.ceil(self.max_y)))
        )


def bounds_of(points: Iterable[Tuple[float, float]]) -> Bounds:
    xs, ys = zip(*points)
    return Bounds(min(xs), min(ys), max(xs), max(ys))


@dataclass(frozen=True)
class PreparedRegion:
    """A validated region with its coordinate system resolved."""
    index: int
    source: Region
    coordinates: CoordinateSpace
    normalized: Region
    processing_bounds: Bounds

    @property
    def is_too_small(self) -> bool:
        return (self.processing_bounds.width < PARKING_SPACE_MIN_SIZE or
                self.processing_bounds.height < PARKING_SPACE_MIN_SIZE)

    def frame_bounds(self, width: int, height: int) -> Bounds:
        """Bounds in pixels of the full-resolution frame."""
        if self.coordinates is CoordinateSpace.PIXEL:
            return bounds_of((p.x, p.y) for p in self.source.points)
        return bounds_of((p.x * width, p.y * height) for p in self.source.points)


def validate_region(raw) -> Region:
    """Validate one region, raising RegionInvalid."""
    if isinstance(raw, Region):
        return raw
    try:
        return Region.model_validate(raw)
    except ValidationError as e:
        raise RegionInvalid(f"Invalid region {raw!r}: {e.error_count()} error(s)") from e


def validate_regions(raw_regions) -> List[Region]:
    """Drop invalid regions with a warning; the rest keep their order."""
    if not isinstance(raw_regions, (list, tuple)):
        if raw_regions is not None:
            logger.warning(f"Regions must be a list, got {type(raw_regions).__name__}")
        return []

    valid = []
    for raw in raw_regions:
        if raw is None:
            continue
        try:
            valid.append(validate_region(raw))
        except RegionInvalid as e:
            logger.warning(str(e))
    return valid


def detect_coordinate_space(regions: Sequence[Region]) -> CoordinateSpace:
    """Normalized only if every point of every region lies within [0, 1]."""
    for region in regions:
        for p in region.points:
            if not (0 <= p.x <= 1 and 0 <= p.y <= 1):
                return CoordinateSpace.PIXEL
    return CoordinateSpace.NORMALIZED


def prepare_regions(
    raw_regions,
    frame_size: Tuple[int, int],
    processing: Tuple[int, int]
) -> List[PreparedRegion]:
    """Validate regions and scale them into processing space.

    Args:
        raw_regions: Regions as dicts or Region models
        frame_size: (width, height) of the source frame
        processing: (width, height) of the processing frame

    Returns:
        Prepared regions, indexed in the order of the valid input regions
    """
    regions = validate_regions(raw_regions)
    coordinates = detect_coordinate_space(regions)
    frame_w, frame_h = frame_size
    proc_w, proc_h = processing

    if coordinates is CoordinateSpace.PIXEL and regions:
        logger.warning("Non-normalized regions - converting from frame pixels")

    prepared = []
    for index, region in enumerate(regions):
        if coordinates is CoordinateSpace.NORMALIZED:
            normalized = region
        else:
            normalized = region.model_copy(update={
                'points': [Point(x=p.x / frame_w, y=p.y / frame_h) for p in region.points]
            })

        bounds = bounds_of((p.x * proc_w, p.y * proc_h) for p in normalized.points)
        logger.debug(f"[Region {index}] processing bounds {bounds.width:.1f}x{bounds.height:.1f}px "
                     f"at {bounds.min_x:.1f},{bounds.min_y:.1f}")

        prepared.append(PreparedRegion(
            index=index,
            source=region,
            coordinates=coordinates,
            normalized=normalized,
            processing_bounds=bounds
        ))
    return prepared
