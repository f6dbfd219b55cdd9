"""
Pretrained verification models (OpenCV DNN) and their process-level lifecycle.

Two oracles back the verification gate:

- an object detector (MobileNet-SSD, Caffe, VOC classes) fed an RGB uint8
  crop of at least 300x300, returning class/score/box predictions
- an image classifier (MobileNetV2, ONNX, ImageNet) fed a 224x224 RGB float
  crop in [0, 1], returning ranked class probabilities

Model files are downloaded on first use. ModelManager loads both lazily, at
most once, with a bounded number of attempts and a timeout per attempt.
"""

import asyncio
import functools
import logging
import os
import threading
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

from parkspace.config import (
    MODEL_DIR, MODEL_LOAD_TIMEOUT, MAX_MODEL_LOAD_ATTEMPTS, MODEL_RETRIES,
    MODEL_RETRY_BACKOFF, MODELS_ENABLED, DETECTOR_MIN_INPUT, CLASSIFIER_INPUT
)
from parkspace.errors import ModelLoadFailure
from parkspace.retry import retry_with_timeout

logger = logging.getLogger(__name__)

# VOC class names (MobileNet-SSD trained on VOC)
VOC_CLASSES = (
    'background', 'aeroplane', 'bicycle', 'bird', 'boat', 'bottle', 'bus', 'car',
    'cat', 'chair', 'cow', 'diningtable', 'dog', 'horse', 'motorbike', 'person',
    'pottedplant', 'sheep', 'sofa', 'train', 'tvmonitor'
)

DETECTOR_PROTOTXT = 'MobileNetSSD_deploy.prototxt'
DETECTOR_CAFFEMODEL = 'MobileNetSSD_deploy.caffemodel'
CLASSIFIER_ONNX = 'mobilenetv2-12.onnx'
CLASSIFIER_LABELS = 'classification_classes_ILSVRC2012.txt'

# PINTO0309 repo verified working as of Dec 2025
DETECTOR_PROTOTXT_URLS = [
    "https://raw.githubusercontent.com/PINTO0309/MobileNet-SSD-RealSense/master/caffemodel/MobileNetSSD/MobileNetSSD_deploy.prototxt",
]
DETECTOR_CAFFEMODEL_URLS = [
    "https://raw.githubusercontent.com/PINTO0309/MobileNet-SSD-RealSense/master/caffemodel/MobileNetSSD/MobileNetSSD_deploy.caffemodel",
    "https://raw.githubusercontent.com/opencv/opencv_extra/master/testdata/dnn/MobileNetSSD_deploy.caffemodel",
]
CLASSIFIER_ONNX_URLS = [
    "https://github.com/onnx/models/raw/main/validated/vision/classification/mobilenet/model/mobilenetv2-12.onnx",
]
CLASSIFIER_LABELS_URLS = [
    "https://raw.githubusercontent.com/opencv/opencv/4.x/samples/data/dnn/classification_classes_ILSVRC2012.txt",
]

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


@dataclass(frozen=True)
class Prediction:
    class_name: str
    score: float
    box: Tuple[float, float, float, float]  # [ymin, xmin, ymax, xmax] normalized


@dataclass(frozen=True)
class Classification:
    class_name: str
    probability: float


class MobileNetSSDDetector:
    """OpenCV DNN MobileNet-SSD object detector."""

    def __init__(self, net, min_score: float = 0.15):
        self.net = net
        self.min_score = min_score
        # cv2.dnn.Net keeps its input as state, so forward passes must not interleave
        self._lock = threading.Lock()

    def detect(self, image: np.ndarray) -> List[Prediction]:
        """Detect objects in an RGB image with 0-255 values."""
        h, w = image.shape[:2]
        if h < DETECTOR_MIN_INPUT or w < DETECTOR_MIN_INPUT:
            raise ValueError(f"Detector input must be at least {DETECTOR_MIN_INPUT}x{DETECTOR_MIN_INPUT}, got {w}x{h}")

        blob = cv2.dnn.blobFromImage(
            np.clip(image, 0, 255).astype(np.uint8), 0.007843, (300, 300), 127.5, swapRB=True
        )
        with self._lock:
            self.net.setInput(blob)
            detections = self.net.forward()

        # Parse detections - shape is [1, 1, N, 7]
        # Each detection: [batch_id, class_id, confidence, x1, y1, x2, y2]
        predictions = []
        for i in range(detections.shape[2]):
            confidence = float(detections[0, 0, i, 2])
            if confidence <= self.min_score:
                continue
            class_id = int(detections[0, 0, i, 1])
            class_name = VOC_CLASSES[class_id] if 0 <= class_id < len(VOC_CLASSES) else f'class_{class_id}'
            x1, y1, x2, y2 = (float(v) for v in detections[0, 0, i, 3:7])
            predictions.append(Prediction(class_name, confidence, (y1, x1, y2, x2)))
        return predictions


class MobileNetClassifier:
    """OpenCV DNN MobileNetV2 ImageNet classifier."""

    def __init__(self, net, labels: List[str], top_k: int = 5):
        self.net = net
        self.labels = labels
        self.top_k = top_k
        self._lock = threading.Lock()

    def classify(self, image: np.ndarray) -> List[Classification]:
        """Classify a 224x224 RGB float image in [0, 1]; best first."""
        if image.shape[:2] != (CLASSIFIER_INPUT, CLASSIFIER_INPUT):
            raise ValueError(f"Classifier input must be {CLASSIFIER_INPUT}x{CLASSIFIER_INPUT}, got {image.shape[1]}x{image.shape[0]}")

        normalized = (image.astype(np.float32) - IMAGENET_MEAN) / IMAGENET_STD
        blob = np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis])
        with self._lock:
            self.net.setInput(blob)
            logits = self.net.forward().flatten()

        exp = np.exp(logits - logits.max())
        probabilities = exp / exp.sum()
        top = np.argsort(probabilities)[::-1][:self.top_k]
        return [
            Classification(self.labels[i] if i < len(self.labels) else f'class_{i}', float(probabilities[i]))
            for i in top
        ]


def _download(urls: List[str], path: Path, min_size: int = 0) -> Path:
    """Download the first URL that yields a file of at least ``min_size`` bytes."""
    if path.exists():
        size = path.stat().st_size
        if size >= min_size:
            return path
        logger.warning(f"{path.name} too small ({size} bytes), re-downloading...")
        path.unlink()

    path.parent.mkdir(parents=True, exist_ok=True)
    for i, url in enumerate(urls):
        try:
            logger.info(f"Downloading {path.name}, URL {i + 1}/{len(urls)}: {url[:60]}...")
            urllib.request.urlretrieve(url, path)
            size = path.stat().st_size
            if size >= min_size:
                logger.info(f"{path.name} downloaded: {size / 1024 / 1024:.1f}MB")
                return path
            logger.warning(f"Downloaded file too small ({size} bytes), trying next URL...")
            path.unlink()
        except OSError as e:
            logger.warning(f"URL {i + 1} failed: {e}")
            if path.exists():
                path.unlink()

    raise ModelLoadFailure(f"All download URLs failed for {path.name}")


def load_detector(model_dir: Path = MODEL_DIR) -> MobileNetSSDDetector:
    """Download (if needed) and load MobileNet-SSD (~23MB)."""
    prototxt = _download(DETECTOR_PROTOTXT_URLS, model_dir / DETECTOR_PROTOTXT)
    caffemodel = _download(DETECTOR_CAFFEMODEL_URLS, model_dir / DETECTOR_CAFFEMODEL, min_size=20_000_000)
    net = cv2.dnn.readNetFromCaffe(str(prototxt), str(caffemodel))
    logger.info("MobileNet-SSD detector loaded")
    return MobileNetSSDDetector(net)


def load_classifier(model_dir: Path = MODEL_DIR) -> MobileNetClassifier:
    """Download (if needed) and load MobileNetV2 (~14MB) with ImageNet labels."""
    onnx_path = _download(CLASSIFIER_ONNX_URLS, model_dir / CLASSIFIER_ONNX, min_size=10_000_000)
    labels_path = _download(CLASSIFIER_LABELS_URLS, model_dir / CLASSIFIER_LABELS)
    labels = [line.strip() for line in labels_path.read_text().splitlines() if line.strip()]
    net = cv2.dnn.readNetFromONNX(str(onnx_path))
    logger.info(f"MobileNetV2 classifier loaded ({len(labels)} labels)")
    return MobileNetClassifier(net, labels)


class ModelManager:
    """Owns the detector and classifier handles.

    ensure_loaded() loads both models on first use. Concurrent callers share
    one in-flight load. Each attempt has a timeout and per-model retries;
    after max_attempts failed attempts the manager stops trying until
    release() is called.
    """

    def __init__(
        self,
        model_dir: Path = MODEL_DIR,
        detector_loader: Optional[Callable[[], object]] = None,
        classifier_loader: Optional[Callable[[], object]] = None,
        enabled: bool = MODELS_ENABLED,
        timeout: float = MODEL_LOAD_TIMEOUT,
        max_attempts: int = MAX_MODEL_LOAD_ATTEMPTS,
        retries: int = MODEL_RETRIES,
        backoff: float = MODEL_RETRY_BACKOFF
    ):
        self.model_dir = Path(model_dir)
        self.detector_loader = detector_loader or functools.partial(load_detector, self.model_dir)
        self.classifier_loader = classifier_loader or functools.partial(load_classifier, self.model_dir)
        self.enabled = enabled
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retries = retries
        self.backoff = backoff

        self.detector = None
        self.classifier = None
        self.attempts = 0
        self.last_error: Optional[str] = None
        self._loading: Optional[asyncio.Future] = None

    @classmethod
    def preloaded(cls, detector, classifier) -> 'ModelManager':
        """Manager around already constructed oracles."""
        manager = cls(enabled=True)
        manager.detector = detector
        manager.classifier = classifier
        return manager

    @property
    def loaded(self) -> bool:
        return self.detector is not None and self.classifier is not None

    async def ensure_loaded(self) -> bool:
        """Load both models if needed. Returns True when both are available."""
        if self.loaded:
            return True
        if not self.enabled:
            return False

        if self._loading is not None and not self._loading.done():
            try:
                await self._loading
            except Exception:
                return False
            return self.loaded

        if self.attempts >= self.max_attempts:
            logger.debug("Maximum model loading attempts reached")
            return False

        self.attempts += 1
        logger.info(f"Model loading attempt {self.attempts}/{self.max_attempts}")
        self._loading = asyncio.ensure_future(self._load())
        try:
            await self._loading
        except ModelLoadFailure as e:
            self.last_error = str(e)
            logger.error(f"Model loading failed: {e}")
            return False
        finally:
            self._loading = None

        self.last_error = None
        logger.info("All models loaded successfully")
        return True

    async def _load(self):
        async def load_both():
            return await asyncio.gather(
                retry_with_timeout(
                    lambda: asyncio.to_thread(self.detector_loader),
                    'Loading MobileNet-SSD', self.retries, self.backoff
                ),
                retry_with_timeout(
                    lambda: asyncio.to_thread(self.classifier_loader),
                    'Loading MobileNetV2', self.retries, self.backoff
                )
            )

        try:
            detector, classifier = await asyncio.wait_for(load_both(), self.timeout)
        except asyncio.TimeoutError as e:
            raise ModelLoadFailure(f"Model loading timeout after {self.timeout}s") from e
        except ModelLoadFailure:
            raise
        except Exception as e:
            raise ModelLoadFailure(str(e)) from e

        self.detector = detector
        self.classifier = classifier

    def release(self):
        """Drop both models and reset the attempt budget."""
        self.detector = None
        self.classifier = None
        self.attempts = 0
        self.last_error = None
        logger.info("Verification models released")

    def status(self) -> Dict:
        """Model status for debugging."""
        def file_size_mb(name: str) -> float:
            path = self.model_dir / name
            return round(os.path.getsize(path) / 1024 / 1024, 1) if path.exists() else 0

        return {
            'enabled': self.enabled,
            'loaded': self.loaded,
            'loading': self._loading is not None and not self._loading.done(),
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'last_error': self.last_error,
            'detector': {
                'name': 'OpenCV DNN MobileNet-SSD',
                'loaded': self.detector is not None,
                'caffemodel_size_mb': file_size_mb(DETECTOR_CAFFEMODEL),
            },
            'classifier': {
                'name': 'OpenCV DNN MobileNetV2',
                'loaded': self.classifier is not None,
                'onnx_size_mb': file_size_mb(CLASSIFIER_ONNX),
            }
        }
