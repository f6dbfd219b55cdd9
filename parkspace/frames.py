"""
Raster sources: still images and video frames as RGB numpy arrays.
"""

import base64
import binascii
import io
import logging
import os
from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from parkspace.config import TARGET_SIZE
from parkspace.errors import InvalidSource

logger = logging.getLogger(__name__)


def decode_base64_image(base64_string: str) -> np.ndarray:
    """Decode base64 image (optionally a data URL) to an RGB numpy array."""
    # Remove data URL prefix if present
    if ',' in base64_string:
        base64_string = base64_string.split(',', 1)[1]

    try:
        image_data = base64.b64decode(base64_string, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSource(f"Image is not valid base64: {e}") from e
    return decode_image_bytes(image_data)


def decode_image_bytes(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (JPEG, PNG, ...) to an RGB numpy array."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidSource(f"Failed to decode image: {e}") from e
    return np.array(image.convert('RGB'))


class ImageSource:
    """A decoded still image."""

    def __init__(self, image: np.ndarray):
        if image is None or image.ndim < 2 or image.shape[0] == 0 or image.shape[1] == 0:
            raise InvalidSource("Image has invalid dimensions")
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
        elif image.shape[2] == 4:
            image = image[:, :, :3]
        self.image = np.ascontiguousarray(image, dtype=np.uint8)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> 'ImageSource':
        try:
            data = Path(path).read_bytes()
        except FileNotFoundError as e:
            raise InvalidSource(f"Image file not found: {path}") from e
        except OSError as e:
            raise InvalidSource(f"Failed to read image {path}: {e}") from e
        return cls(decode_image_bytes(data))

    def read_frame(self) -> np.ndarray:
        return self.image


class VideoSource:
    """A video file, stream URL or camera, read one frame per detection call.

    Accepts anything with the cv2.VideoCapture ``get``/``read`` interface.
    """

    def __init__(self, capture):
        self.capture = capture
        self.ended = False

    @classmethod
    def open(cls, source: Union[str, int]) -> 'VideoSource':
        capture = cv2.VideoCapture(source)
        if not capture.isOpened():
            raise InvalidSource(f"Could not open video source {source!r}")
        return cls(capture)

    @property
    def width(self) -> int:
        return int(self.capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)

    @property
    def height(self) -> int:
        return int(self.capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

    def read_frame(self) -> Optional[np.ndarray]:
        """Grab the next frame as RGB, or None once the stream has ended."""
        if self.ended:
            return None
        ok, frame = self.capture.read()
        if not ok or frame is None:
            logger.info("Video has ended")
            self.ended = True
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def release(self):
        self.capture.release()


FrameSource = Union[ImageSource, VideoSource]


def _is_path_like(source: str) -> bool:
    """An existing file, or a name with an extension ('.' is not in the base64 alphabet)."""
    if source.startswith('data:'):
        return False
    return os.path.isfile(source) or bool(os.path.splitext(source)[1])


def as_frame_source(source) -> FrameSource:
    """Coerce caller input (array, base64 string, bytes, path or source) to a frame source."""
    if source is None:
        raise InvalidSource("Invalid image source")
    if isinstance(source, (ImageSource, VideoSource)):
        return source
    if isinstance(source, np.ndarray):
        return ImageSource(source)
    if isinstance(source, (bytes, bytearray)):
        return ImageSource(decode_image_bytes(bytes(source)))
    if isinstance(source, Path):
        return ImageSource.from_path(source)
    if isinstance(source, str):
        if not source:
            raise InvalidSource("Invalid image source")
        if _is_path_like(source):
            return ImageSource.from_path(source)
        return ImageSource(decode_base64_image(source))
    raise InvalidSource(f"Unsupported media type: {type(source).__name__}")


def processing_size(width: int, height: int, target: Tuple[int, int] = TARGET_SIZE) -> Tuple[int, int]:
    """Fit (width, height) inside the target box, preserving aspect ratio."""
    target_width, target_height = target
    aspect_ratio = width / height
    target_aspect_ratio = target_width / target_height

    if abs(aspect_ratio - target_aspect_ratio) < 0.01:
        return target_width, target_height
    if aspect_ratio > target_aspect_ratio:
        # Wider than target - fit to width
        return target_width, max(1, round(target_width / aspect_ratio))
    # Taller than target - fit to height
    return max(1, round(target_height * aspect_ratio)), target_height


def resize_frame(image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Resize an RGB frame to (width, height)."""
    if (image.shape[1], image.shape[0]) == tuple(size):
        return image
    return cv2.resize(image, tuple(size), interpolation=cv2.INTER_AREA)


def crop_frame(image: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> np.ndarray:
    """Crop [y0:y1, x0:x1], clipped to the image bounds."""
    h, w = image.shape[:2]
    x0, y0 = max(0, x0), max(0, y0)
    x1, y1 = min(w, x1), min(h, y1)
    if x1 <= x0 or y1 <= y0:
        return image[0:0, 0:0]
    return image[y0:y1, x0:x1]
