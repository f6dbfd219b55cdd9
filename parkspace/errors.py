"""Error types raised by the detection pipeline."""


class DetectionError(Exception):
    """Base class for detection pipeline errors."""


class InvalidSource(DetectionError):
    """Frame is missing, failed to decode, or has no usable dimensions."""


class RegionInvalid(DetectionError):
    """A region failed geometry validation and was dropped."""


class RegionTooSmall(DetectionError):
    """A region's bounding box is below the minimum processing size."""


class ModelLoadFailure(DetectionError):
    """Verification models could not be loaded within the retry budget."""


class VerificationFailure(DetectionError):
    """A single model verification call failed."""
