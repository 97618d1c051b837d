"""
Exception hierarchy for the inference pipeline.

Frame-level errors (EncodeError, DecodeError, InferenceError) only affect the
frame being processed. BackendUnavailable leaves the session FAILED; the
producer has to create a new one.
"""

from enum import Enum


class VisionWorkerError(Exception):
    """Base class for all pipeline errors."""


class EncodeErrorReason(Enum):
    """Why a frame could not be packed into a tensor."""

    EMPTY_FRAME = "empty_frame"
    MALFORMED_FRAME = "malformed_frame"


class EncodeError(VisionWorkerError):
    """Frame could not be converted into a model input tensor."""

    def __init__(self, reason: EncodeErrorReason, message: str):
        super().__init__(message)
        self.reason = reason


class DecodeError(VisionWorkerError):
    """Model output does not match the configured layout."""


class BackendInitError(VisionWorkerError):
    """A single execution strategy failed to initialize."""


class BackendUnavailable(VisionWorkerError):
    """No execution strategy could be initialized (or the model could not be fetched)."""

    def __init__(
        self,
        message: str,
        accelerated_error: str | None = None,
        fallback_error: str | None = None,
    ):
        super().__init__(message)
        self.accelerated_error = accelerated_error
        self.fallback_error = fallback_error

    @classmethod
    def from_attempts(cls, accelerated_error: str, fallback_error: str) -> "BackendUnavailable":
        return cls(
            f"No inference backend available "
            f"(accelerated: {accelerated_error}; fallback: {fallback_error})",
            accelerated_error=accelerated_error,
            fallback_error=fallback_error,
        )


class SessionError(VisionWorkerError):
    """Session lifecycle misuse (e.g. loading a model twice)."""


class InferenceError(VisionWorkerError):
    """Base class for errors raised by InferenceSession.run."""


class NotReady(InferenceError):
    """run() was called before the session reached READY."""

    def __init__(self, state_name: str):
        super().__init__(f"Inference session not ready (state={state_name})")
        self.state_name = state_name


class ExecutionFailed(InferenceError):
    """The backend raised while executing the model."""

    def __init__(self, message: str):
        super().__init__(f"Inference execution failed: {message}")
        self.message = message
