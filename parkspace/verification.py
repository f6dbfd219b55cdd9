"""
Model verification gate.

Decides when a heuristic verdict is checked against the detector and
classifier, and merges their answers into the space. Verification only ever
augments a result: any failure leaves the heuristic space untouched.
"""

import asyncio
import logging
from typing import List, Sequence, Tuple

import cv2
import numpy as np

from parkspace.config import (
    MODEL_VERIFICATION_INTERVAL, VERIFY_CONFIDENCE_CEILING, UNCERTAINTY_THRESHOLD,
    VERIFY_MOTION_THRESHOLD, VERIFY_MARGIN, MIN_VERIFY_SIZE, DETECTOR_MIN_INPUT,
    CLASSIFIER_INPUT, VEHICLE_CLASSES, VEHICLE_KEYWORDS, MIN_VEHICLE_CONFIDENCE, VERIFY_TIMEOUT,
    MIN_CLASSIFIER_PROBABILITY, CONFIDENCE_BOOST, DETECTOR_STABILITY_BONUS,
    CLASSIFIER_STABILITY_BONUS, NO_VEHICLE_STABILITY_PENALTY
)
from parkspace.errors import VerificationFailure
from parkspace.frames import crop_frame
from parkspace.heuristics import HeuristicVerdict
from parkspace.oracles import Classification, Prediction
from parkspace.regions import PreparedRegion
from parkspace.schemas import ParkingSpace

logger = logging.getLogger(__name__)


def should_verify(
    verdict: HeuristicVerdict,
    motion: float,
    frame_count: int,
    interval: int = MODEL_VERIFICATION_INTERVAL
) -> bool:
    """True when any verification trigger fires for this region."""
    periodic = interval > 0 and frame_count % interval == 0
    weak_positive = verdict.is_occupied and verdict.confidence < VERIFY_CONFIDENCE_CEILING
    borderline_negative = (not verdict.is_occupied and
                           verdict.confidence > UNCERTAINTY_THRESHOLD * 0.8)
    moving_near_boundary = motion > VERIFY_MOTION_THRESHOLD and verdict.margin < VERIFY_MARGIN
    return periodic or weak_positive or borderline_negative or moving_near_boundary


def prepare_inputs(frame: np.ndarray, region: PreparedRegion) -> Tuple[np.ndarray, np.ndarray]:
    """Crop the region from the full-resolution frame and build model inputs.

    Returns:
        (detector input: uint8, at least 300x300; classifier input: float32 224x224 in [0, 1])
    """
    h, w = frame.shape[:2]
    x0, y0, x1, y1 = region.frame_bounds(w, h).pixel_box(w, h)
    if x1 - x0 < MIN_VERIFY_SIZE or y1 - y0 < MIN_VERIFY_SIZE:
        raise VerificationFailure(
            f"Cropped region too small for model verification: {x1 - x0}x{y1 - y0}"
        )

    cropped = crop_frame(frame, x0, y0, x1, y1)
    crop_h, crop_w = cropped.shape[:2]

    detector_size = (max(DETECTOR_MIN_INPUT, crop_w), max(DETECTOR_MIN_INPUT, crop_h))
    detector_input = cv2.resize(cropped, detector_size, interpolation=cv2.INTER_LINEAR)

    classifier_input = cv2.resize(
        cropped, (CLASSIFIER_INPUT, CLASSIFIER_INPUT), interpolation=cv2.INTER_LINEAR
    ).astype(np.float32) / 255.0

    return detector_input, classifier_input


def _is_vehicle(name: str, vocabulary: Sequence[str]) -> bool:
    name = name.lower()
    return any(v in name for v in vocabulary)


def merge_verdict(
    space: ParkingSpace,
    predictions: List[Prediction],
    classifications: List[Classification]
) -> ParkingSpace:
    """Merge detector and classifier answers into a heuristic space.

    The detector wins over the classifier; when neither sees a vehicle the
    heuristic state stands and stability drops.
    """
    stability = space.features.stability_score

    vehicles = [p for p in predictions
                if _is_vehicle(p.class_name, VEHICLE_CLASSES) and p.score > MIN_VEHICLE_CONFIDENCE]
    if vehicles:
        best = max(vehicles, key=lambda p: p.score)
        return space.model_copy(update={
            'is_occupied': True,
            'confidence': min(1.0, best.score * CONFIDENCE_BOOST),
            'vehicle_type': best.class_name,
            'features': space.features.model_copy(update={
                'heatmap_score': 1.0,
                'stability_score': min(1.0, stability + DETECTOR_STABILITY_BONUS)
            })
        })

    labels = [c for c in classifications
              if _is_vehicle(c.class_name, VEHICLE_KEYWORDS) and c.probability > MIN_CLASSIFIER_PROBABILITY]
    if labels:
        best = max(labels, key=lambda c: c.probability)
        return space.model_copy(update={
            'is_occupied': True,
            'confidence': min(1.0, best.probability * CONFIDENCE_BOOST),
            'vehicle_type': best.class_name.split(',')[0].strip(),
            'features': space.features.model_copy(update={
                'heatmap_score': 1.0,
                'stability_score': min(1.0, stability + CLASSIFIER_STABILITY_BONUS)
            })
        })

    return space.with_features(stability_score=max(0.0, stability - NO_VEHICLE_STABILITY_PENALTY))


async def _run_models(detector, classifier, frame, region, timeout):
    try:
        detector_input, classifier_input = prepare_inputs(frame, region)
    except VerificationFailure:
        raise
    except Exception as e:
        raise VerificationFailure(f"Could not prepare model inputs: {e}") from e

    try:
        return await asyncio.wait_for(
            asyncio.gather(
                asyncio.to_thread(detector.detect, detector_input),
                asyncio.to_thread(classifier.classify, classifier_input)
            ),
            timeout
        )
    except asyncio.TimeoutError as e:
        raise VerificationFailure(f"Model inference timed out after {timeout}s") from e
    except Exception as e:
        raise VerificationFailure(f"Model inference failed: {e}") from e


async def verify_space(
    space: ParkingSpace,
    frame: np.ndarray,
    region: PreparedRegion,
    detector,
    classifier,
    timeout: float = VERIFY_TIMEOUT
) -> ParkingSpace:
    """Check a space against both models; returns it unchanged on any failure.

    Both models together get ``timeout`` seconds. A model thread that overruns
    is abandoned, not interrupted.
    """
    if detector is None or classifier is None:
        logger.warning("Models not available for verification")
        return space

    try:
        predictions, classifications = await _run_models(detector, classifier, frame, region, timeout)
        try:
            merged = merge_verdict(space, predictions, classifications)
        except Exception as e:
            raise VerificationFailure(f"Malformed model output: {e}") from e
    except VerificationFailure as e:
        logger.warning(f"Space {space.id}: verification skipped - {e}")
        return space

    if merged.vehicle_type:
        logger.debug(f"Space {space.id}: verified {merged.vehicle_type} ({merged.confidence:.0%})")
    return merged
