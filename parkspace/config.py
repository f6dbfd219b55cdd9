"""
Detection constants and service configuration.

The numeric constants below were tuned empirically against recorded footage.
Change them together with the tests in tests/test_heuristics.py and
tests/test_stabilizer.py.
"""

import math
import os
from pathlib import Path

# Temporal smoothing
MIN_CONSECUTIVE_FRAMES = 3              # Frames needed for a stable state change
HISTORY_LIMIT = math.ceil(MIN_CONSECUTIVE_FRAMES * 1.5)
HISTORY_DECAY = 0.85                    # Weight base for older history entries
SMOOTHING_VOTE_RATIO = 0.65             # Weighted vote needed, scaled by stability
STABILITY_GAIN = 0.08                   # Stability bonus when the state holds
STABILITY_PENALTY = 0.15                # Stability penalty when the state flips
DEFAULT_STABILITY = 0.5

# Heuristic classification
SHADOW_THRESHOLD = 0.45
OCCUPANCY_THRESHOLD = 0.50              # Base threshold, adjusted per region
EDGE_DENSITY_THRESHOLD = 0.15
TEXTURE_COMPLEXITY_THRESHOLD = 0.25
COLOR_VARIANCE_THRESHOLD = 0.25
MOTION_INFLUENCE = 0.35
SHADOW_CONFIDENCE = 0.3
MIN_CONFIDENCE = 0.5
MIN_STABILITY_WEIGHT = 0.7
MOTION_CONFIDENCE_WEIGHT = 0.2

# Occupancy score weights
COVERAGE_WEIGHT = 0.35
TEXTURE_WEIGHT = 0.25
EDGE_WEIGHT = 0.25
COLOR_WEIGHT = 0.10
MOTION_WEIGHT = 0.05

# Pixel level thresholds (0-255)
NOISE_FLOOR = 25                        # Channel value below this counts as empty
EDGE_MAGNITUDE_FLOOR = 25               # Sobel magnitude below this is ignored
MOTION_PIXEL_THRESHOLD = 0.05           # Luma change (0-1) that counts as motion

# Geometry
TARGET_SIZE = (1280, 720)               # (width, height) processing bounding box
PARKING_SPACE_MIN_SIZE = 20             # Minimum region bounding box in pixels
MIN_VERIFY_SIZE = 10                    # Minimum crop for model verification

# Model verification
MODEL_VERIFICATION_INTERVAL = int(os.getenv('VERIFICATION_INTERVAL', '3'))
UNCERTAINTY_THRESHOLD = 0.35
VERIFY_CONFIDENCE_CEILING = 0.85        # Occupied below this gets verified
VERIFY_MOTION_THRESHOLD = 0.25
VERIFY_MARGIN = 0.1
MIN_VEHICLE_CONFIDENCE = 0.60
MIN_CLASSIFIER_PROBABILITY = 0.5
CONFIDENCE_BOOST = 1.2
DETECTOR_STABILITY_BONUS = 0.2
CLASSIFIER_STABILITY_BONUS = 0.1
NO_VEHICLE_STABILITY_PENALTY = 0.1
DETECTOR_MIN_INPUT = 300
CLASSIFIER_INPUT = 224
VERIFY_TIMEOUT = float(os.getenv('VERIFY_TIMEOUT', '5'))      # seconds for both models together

VEHICLE_CLASSES = ('car', 'truck', 'bus', 'motorcycle', 'motorbike', 'vehicle', 'van', 'suv', 'pickup')
VEHICLE_KEYWORDS = ('car', 'truck', 'bus', 'motorcycle', 'vehicle', 'van')

# Model loading
MODELS_ENABLED = os.getenv('MODELS_ENABLED', 'true').lower() in ('true', '1', 'yes')
MODELS_PRELOAD = os.getenv('MODELS_PRELOAD', 'false').lower() in ('true', '1', 'yes')
MODEL_LOAD_TIMEOUT = float(os.getenv('MODEL_LOAD_TIMEOUT', '60'))   # seconds
MAX_MODEL_LOAD_ATTEMPTS = 3
MODEL_RETRIES = 2                       # Extra tries per individual model
MODEL_RETRY_BACKOFF = 1.0               # seconds, multiplied by the try number
MODEL_DIR = Path(os.getenv('PARKSPACE_MODEL_DIR', str(Path(__file__).parent / 'models')))
