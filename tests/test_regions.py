import math

import pytest

from parkspace.errors import RegionInvalid
from parkspace.regions import (
    CoordinateSpace, bounds_of, detect_coordinate_space, prepare_regions,
    validate_region, validate_regions
)
from parkspace.schemas import Region
from tests.conftest import box_region


def test_invalid_regions_are_dropped():
    regions = [
        box_region('ok', 0.1, 0.1, 0.3, 0.3),
        {'id': 'two-points', 'type': 'rectangle', 'points': [{'x': 0, 'y': 0}, {'x': 1, 'y': 1}]},
        box_region('nan', 0.1, math.nan, 0.3, 0.3),
        box_region('inf', 0.1, 0.1, math.inf, 0.3),
        box_region(7, 0.1, 0.1, 0.3, 0.3),
        {'id': 'bad-type', 'type': 'circle', 'points': box_region('x', 0, 0, 1, 1)['points']},
        None,
    ]
    valid = validate_regions(regions)
    assert [r.id for r in valid] == ['ok']


def test_validate_region_raises_region_invalid():
    with pytest.raises(RegionInvalid):
        validate_region({'id': 'a', 'points': []})


def test_non_list_regions_yield_nothing():
    assert validate_regions(None) == []
    assert validate_regions('nope') == []


def test_coordinate_space_detection():
    normalized = [Region.model_validate(box_region('a', 0, 0, 1, 1))]
    pixel = normalized + [Region.model_validate(box_region('b', 10, 10, 50, 50))]
    assert detect_coordinate_space(normalized) is CoordinateSpace.NORMALIZED
    assert detect_coordinate_space(pixel) is CoordinateSpace.PIXEL


def test_normalized_regions_scale_to_processing_space():
    [region] = prepare_regions([box_region('a', 0.1, 0.2, 0.3, 0.6)], (1920, 1080), (1280, 720))
    assert region.coordinates is CoordinateSpace.NORMALIZED
    assert region.normalized == region.source
    b = region.processing_bounds
    assert (b.min_x, b.min_y) == pytest.approx((128, 144))
    assert (b.width, b.height) == pytest.approx((256, 288))
    # Verification uses the full-resolution frame
    fb = region.frame_bounds(1920, 1080)
    assert (fb.min_x, fb.max_y) == pytest.approx((192, 648))


def test_pixel_regions_are_normalized_for_output():
    [region] = prepare_regions([box_region('a', 192, 216, 576, 648)], (1920, 1080), (1280, 720))
    assert region.coordinates is CoordinateSpace.PIXEL
    points = [(p.x, p.y) for p in region.normalized.points]
    assert points[0] == pytest.approx((0.1, 0.2))
    assert points[2] == pytest.approx((0.3, 0.6))
    b = region.processing_bounds
    assert (b.min_x, b.min_y, b.max_x, b.max_y) == pytest.approx((128, 144, 384, 432))
    assert region.frame_bounds(1920, 1080) == bounds_of([(192, 216), (576, 648)])


def test_one_pixel_region_switches_all_to_pixel_space():
    regions = [box_region('a', 0.1, 0.1, 0.5, 0.5), box_region('b', 100, 100, 400, 400)]
    prepared = prepare_regions(regions, (1000, 1000), (720, 720))
    assert all(r.coordinates is CoordinateSpace.PIXEL for r in prepared)
    assert [r.index for r in prepared] == [0, 1]


def test_small_regions_are_flagged():
    small, tall, large = prepare_regions([
        box_region('small', 0.1, 0.1, 0.11, 0.5),
        box_region('tall', 0.1, 0.1, 0.2, 0.12),
        box_region('large', 0.1, 0.1, 0.3, 0.3),
    ], (1280, 720), (1280, 720))
    assert small.is_too_small
    assert tall.is_too_small
    assert not large.is_too_small


def test_pixel_box_is_clipped():
    b = bounds_of([(-5.5, 2.2), (30.1, 50.9)])
    assert b.pixel_box(20, 40) == (0, 2, 20, 40)
