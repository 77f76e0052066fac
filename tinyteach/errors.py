"""
Errors - TinyTeach exception taxonomy.

Frame-level failures (DetectionMiss) are absorbed by the loops; session-level
failures are raised once to the caller and leave the session idle.
"""


class TinyTeachError(Exception):
    """Base class for every error raised by the core."""


class DetectionMiss(TinyTeachError):
    """A feature source found nothing in this frame."""


class InsufficientDataError(TinyTeachError):
    """Training was requested with an empty dataset."""


class AlreadyTrainingError(TinyTeachError):
    """train() was called while another training run is still running."""


class TrainingNotSupportedError(TinyTeachError):
    """The active mode is inference-only and never trains a model."""


class ModelLoadFailure(TinyTeachError):
    """A feature source or model asset could not be initialised."""


class TrainingFailure(TinyTeachError):
    """fit() raised mid-run. The run is marked failed; no retry happens."""


class OutputChannelFailure(TinyTeachError):
    """Sending to the external device failed."""


class ModelNotReadyError(TinyTeachError):
    """predict() was called on a model that is unfitted or disposed."""


class UnknownClassError(TinyTeachError, KeyError):
    """A class id does not reference an existing class label."""


class UnknownModeError(TinyTeachError, ValueError):
    """A mode name is not one of the registered modes."""
