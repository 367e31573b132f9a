"""
Exception hierarchy for detect_kit.

Every error is raised synchronously and ends the current call; decoders never
return a partial detection list.
"""


class DetectKitError(Exception):
    """Base class for all detect_kit errors."""


class ConfigurationError(DetectKitError, ValueError):
    """Invalid decoder/pipeline settings, rejected at construction."""


class DecodeError(DetectKitError):
    """Raw output tensors could not be decoded."""


class LabelIndexError(DecodeError, IndexError):
    """A class index in the model output falls outside the label table."""

    def __init__(self, index: int, num_labels: int):
        super().__init__(f"Class index {index} out of range for {num_labels} labels.")
        self.index = index
        self.num_labels = num_labels


class DegenerateSoftmaxError(DecodeError):
    """Softmax input had no finite maximum or produced a zero/non-finite sum."""


class UnsupportedTensorTypeError(DetectKitError, TypeError):
    """Tensor element type is neither float32 nor uint8."""
