import base64
import io
import threading

import cv2
import numpy as np
import pytest
from PIL import Image

from parkspace.detection import DetectionEngine
from parkspace.features import RegionFeatures
from parkspace.oracles import Classification, ModelManager, Prediction


def solid(height, width, color=(128, 128, 128)):
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:] = color
    return frame


def box_region(region_id, x0, y0, x1, y1, type='rectangle'):
    return {
        'id': region_id,
        'type': type,
        'points': [{'x': x0, 'y': y0}, {'x': x1, 'y': y0}, {'x': x1, 'y': y1}, {'x': x0, 'y': y1}]
    }


def make_features(**overrides):
    values = dict(
        non_zero_count=100, coverage=1.0, brightness=0.5, edge_density=0.0,
        texture_complexity=0.0, color_variance=0.0, shadow_score=0.6,
        dynamic_threshold=0.5
    )
    values.update(overrides)
    return RegionFeatures(**values)


class StubDetector:
    def __init__(self, predictions=(), error=None):
        self.predictions = list(predictions)
        self.error = error
        self.calls = []

    def detect(self, image):
        self.calls.append(image.shape)
        if self.error:
            raise self.error
        return list(self.predictions)


class StubClassifier:
    def __init__(self, classifications=(), error=None):
        self.classifications = list(classifications)
        self.error = error
        self.calls = []

    def classify(self, image):
        self.calls.append(image.shape)
        if self.error:
            raise self.error
        return list(self.classifications)


class HangingDetector:
    """Blocks inside detect() until ``release`` is set."""

    def __init__(self):
        self.release = threading.Event()

    def detect(self, image):
        self.release.wait(5)
        return [car()]


def car(score=0.9):
    return Prediction('car', score, (0.0, 0.0, 1.0, 1.0))


def label(name, probability):
    return Classification(name, probability)


@pytest.fixture
def gray_frame():
    return solid(720, 1280)


@pytest.fixture
def heuristic_engine():
    """Engine with model verification unavailable."""
    return DetectionEngine(models=ModelManager(enabled=False), clock=lambda: 1000.0)


def engine_with(detector, classifier, **kwargs):
    return DetectionEngine(models=ModelManager.preloaded(detector, classifier),
                           clock=lambda: 1000.0, **kwargs)


def png_base64(image):
    buffer = io.BytesIO()
    Image.fromarray(image).save(buffer, format='PNG')
    return base64.b64encode(buffer.getvalue()).decode('ascii')


class FakeCapture:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, frames, width=64, height=48):
        self.frames = list(frames)
        self.width = width
        self.height = height
        self.released = False

    def get(self, prop):
        return {cv2.CAP_PROP_FRAME_WIDTH: self.width, cv2.CAP_PROP_FRAME_HEIGHT: self.height}.get(prop, 0)

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True
