"""
Parking space occupancy detection pipeline.

Per call: normalize the frame and regions, extract features for each region,
classify them heuristically, verify uncertain ones with the models, then
smooth the states against the previous call's spaces.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from parkspace.config import TARGET_SIZE, MODEL_VERIFICATION_INTERVAL, DEFAULT_STABILITY, VERIFY_TIMEOUT
from parkspace.errors import InvalidSource, RegionTooSmall
from parkspace.features import extract_features
from parkspace.frames import VideoSource, as_frame_source, crop_frame, processing_size, resize_frame
from parkspace.heuristics import classify
from parkspace.motion import motion_score
from parkspace.oracles import ModelManager
from parkspace.regions import PreparedRegion, prepare_regions
from parkspace.schemas import DetectionResult, DetectionSettings, ParkingSpace, Region, SpaceFeatures
from parkspace.stabilizer import apply_temporal_smoothing
from parkspace.verification import should_verify, verify_space

logger = logging.getLogger(__name__)


def empty_space(index: int, region: Region, now: float) -> ParkingSpace:
    """A never-occupied, zero-confidence space."""
    return ParkingSpace(
        id=index,
        region=region,
        is_occupied=False,
        confidence=0.0,
        last_state_change=now,
        state_history=[],
        features=SpaceFeatures(stability_score=DEFAULT_STABILITY)
    )


class DetectionEngine:
    """Owns the verification models, runtime settings and previous frame.

    One engine serves a stream of detection calls; the caller threads each
    call's spaces into the next call as ``previous_spaces``.
    """

    def __init__(
        self,
        models: Optional[ModelManager] = None,
        settings: Optional[DetectionSettings] = None,
        target_size: Tuple[int, int] = TARGET_SIZE,
        verification_interval: int = MODEL_VERIFICATION_INTERVAL,
        verify_timeout: float = VERIFY_TIMEOUT,
        clock: Callable[[], float] = time.time
    ):
        self.models = models if models is not None else ModelManager()
        self.settings = settings or DetectionSettings()
        self.target_size = target_size
        self.verification_interval = verification_interval
        self.verify_timeout = verify_timeout
        self.clock = clock
        self.frame_count = 0
        self._previous_frame: Optional[np.ndarray] = None
        self._frame_lock = threading.Lock()

    def configure(self, **options) -> DetectionSettings:
        """Update runtime toggles. Unknown option names raise ValueError."""
        self.settings = DetectionSettings(**{**self.settings.model_dump(), **options})
        logger.info(f"Detection settings: {self.settings.model_dump()}")
        return self.settings

    def reset_state(self):
        """Release the models and forget the previous frame."""
        self.models.release()
        with self._frame_lock:
            self._previous_frame = None
        self.frame_count = 0
        logger.info("Detection state reset")

    async def detect(
        self,
        source,
        regions,
        previous_spaces: Optional[Sequence] = None
    ) -> DetectionResult:
        """Detect the occupancy of every valid region in one frame.

        Args:
            source: Image array, base64 string, bytes, path, ImageSource or VideoSource
            regions: Region definitions (dicts or Region models), normalized or in frame pixels
            previous_spaces: Spaces returned by the previous call, if any

        Returns:
            DetectionResult with one space per valid region

        Raises:
            InvalidSource: The frame is missing, undecodable or has no dimensions
        """
        start = time.perf_counter()
        settings = self.settings
        previous = [s if isinstance(s, ParkingSpace) else ParkingSpace.model_validate(s)
                    for s in (previous_spaces or [])]

        frame = self._read_frame(as_frame_source(source), previous)
        if frame is None:
            # Ended video: keep showing the last known state
            return DetectionResult.from_spaces(previous, (time.perf_counter() - start) * 1000)

        models_ready = False
        if settings.use_model_verification:
            models_ready = await self.models.ensure_loaded()
            if not models_ready:
                logger.warning("Models not loaded, proceeding with basic detection")

        self.frame_count += 1
        frame_count = self.frame_count

        frame_h, frame_w = frame.shape[:2]
        proc_size = processing_size(frame_w, frame_h, self.target_size)
        processed = resize_frame(frame, proc_size)
        prepared = prepare_regions(regions, (frame_w, frame_h), proc_size)

        logger.debug(f"Frame {frame_w}x{frame_h}, processing {proc_size[0]}x{proc_size[1]}, "
                     f"{len(prepared)} regions")

        motion = self._update_motion(processed, settings.use_motion_detection)
        previous_by_id = {s.id: s for s in previous}
        now = self.clock()
        verify = settings.use_adaptive_verification and models_ready

        spaces: List[ParkingSpace] = list(await asyncio.gather(*(
            self._process_region(region, frame, processed, motion,
                                 previous_by_id.get(region.index), verify, frame_count, now)
            for region in prepared
        )))

        if settings.use_temporal_smoothing:
            frozen = {r.index for r in prepared if r.is_too_small}
            spaces = apply_temporal_smoothing(spaces, previous, now, frozen)

        log = logger.info if settings.show_debug_info else logger.debug
        for space in spaces:
            f = space.features
            log(f"Space {space.id}: {'OCCUPIED' if space.is_occupied else 'EMPTY'} "
                f"({space.confidence:.0%}) NZ:{f.non_zero_count} ED:{f.edge_density:.2f} "
                f"TC:{f.texture_complexity:.2f} CV:{f.color_variance:.2f} "
                f"SS:{f.stability_score:.2f} MS:{f.motion_score:.2f}")

        result = DetectionResult.from_spaces(
            spaces,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            degraded=settings.use_model_verification and not models_ready
        )
        logger.info(f"Frame {frame_count}: {result.occupied}/{result.total} occupied "
                    f"in {result.processing_time_ms:.0f}ms")
        return result

    def _read_frame(self, source, previous: List[ParkingSpace]) -> Optional[np.ndarray]:
        """Current RGB frame, or None for an ended video with previous results."""
        if isinstance(source, VideoSource):
            if not source.ended:
                if source.width == 0 or source.height == 0:
                    raise InvalidSource("Video has invalid dimensions")
                frame = source.read_frame()
                if frame is not None:
                    return frame
            if previous:
                logger.info("Video has ended, returning last known spaces")
                return None
            raise InvalidSource("Video has ended and no previous results are available")

        frame = source.read_frame()
        if frame is None or frame.size == 0:
            raise InvalidSource("Image has invalid dimensions")
        return frame

    def _update_motion(self, processed: np.ndarray, enabled: bool) -> float:
        """Swap in the new previous frame and score motion against the old one."""
        with self._frame_lock:
            previous = self._previous_frame
            self._previous_frame = processed.copy()
        if not enabled:
            return 0.0
        return motion_score(processed, previous)

    async def _process_region(
        self,
        region: PreparedRegion,
        frame: np.ndarray,
        processed: np.ndarray,
        motion: float,
        previous: Optional[ParkingSpace],
        verify: bool,
        frame_count: int,
        now: float
    ) -> ParkingSpace:
        try:
            bounds = region.processing_bounds
            if region.is_too_small:
                raise RegionTooSmall(
                    f"[Region {region.index}] Too small: {bounds.width:.1f}x{bounds.height:.1f}px "
                    f"- creating empty space"
                )

            proc_h, proc_w = processed.shape[:2]
            crop = crop_frame(processed, *bounds.pixel_box(proc_w, proc_h))
            if crop.size == 0:
                raise RegionTooSmall(f"[Region {region.index}] Outside the frame - creating empty space")

            features = extract_features(crop)
            stability = previous.features.stability_score if previous is not None else DEFAULT_STABILITY
            verdict = classify(features, motion, stability)

            space = ParkingSpace(
                id=region.index,
                region=region.normalized,
                is_occupied=verdict.is_occupied,
                confidence=verdict.confidence,
                last_state_change=now,
                state_history=list(previous.state_history) if previous is not None else [],
                features=SpaceFeatures(
                    non_zero_count=features.non_zero_count,
                    brightness=features.brightness,
                    edge_density=features.edge_density,
                    texture_complexity=features.texture_complexity,
                    perspective_score=1 - bounds.center_y / proc_h,
                    heatmap_score=features.coverage,
                    color_variance=features.color_variance,
                    motion_score=motion,
                    shadow_score=features.shadow_score,
                    stability_score=stability
                )
            )

            if verify and should_verify(verdict, motion, frame_count, self.verification_interval):
                space = await verify_space(space, frame, region, self.models.detector,
                                           self.models.classifier, self.verify_timeout)
            return space

        except RegionTooSmall as e:
            logger.warning(str(e))
            return empty_space(region.index, region.normalized, now)
        except Exception as e:
            logger.error(f"Error processing region {region.index}: {e}")
            return empty_space(region.index, region.normalized, now)
