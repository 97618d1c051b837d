"""
Inference session and execution backends.

An InferenceSession owns exactly one loaded model and one execution backend
for its lifetime. Loading tries the accelerated backend first and falls back
to the portable one once; the chosen backend never changes afterwards.

State machine:
UNINITIALIZED -> LOADING -> READY
UNINITIALIZED -> LOADING -> FAILED
"""

import logging
import time
from enum import Enum, auto
from typing import Callable, Protocol

import numpy as np
import onnxruntime as ort

from visionworker.config import InferenceConfig

from .errors import (
    BackendInitError,
    BackendUnavailable,
    ExecutionFailed,
    NotReady,
    SessionError,
)

logger = logging.getLogger(__name__)


class Backend(Enum):
    """Execution strategy actually used by a session."""

    ACCELERATED = "accelerated"
    FALLBACK = "fallback"


class SessionState(Enum):
    """Lifecycle states of an InferenceSession."""

    UNINITIALIZED = auto()
    LOADING = auto()
    READY = auto()
    FAILED = auto()


class ExecutionBackend(Protocol):
    """Minimal contract of a vendor inference engine."""

    def run(self, tensor: np.ndarray) -> np.ndarray:
        ...

    def close(self) -> None:
        ...


BackendLoader = Callable[[bytes], ExecutionBackend]


class OnnxRuntimeBackend:
    """ONNX Runtime execution backend using a fixed provider list."""

    def __init__(
        self,
        model_bytes: bytes,
        providers: list[str],
        required_provider: str | None = None,
    ):
        """
        Create an ONNX Runtime session from model bytes.

        Args:
            model_bytes: Serialized ONNX model
            providers: Execution providers in priority order
            required_provider: Provider that must end up active, else
                BackendInitError (used for the accelerated strategy)
        """
        available = ort.get_available_providers()
        if required_provider and required_provider not in available:
            raise BackendInitError(
                f"{required_provider} not available (available: {', '.join(available)})"
            )

        usable = [p for p in providers if p in available]
        if not usable:
            raise BackendInitError(f"None of {providers} available")

        try:
            self._session = ort.InferenceSession(model_bytes, providers=usable)
        except Exception as e:
            raise BackendInitError(f"ONNX Runtime session creation failed: {e}") from e

        self.active_provider = self._session.get_providers()[0]
        if required_provider and self.active_provider != required_provider:
            raise BackendInitError(
                f"Requested {required_provider} but session is running on {self.active_provider}"
            )

        self._input_name = self._session.get_inputs()[0].name
        self._output_name = self._session.get_outputs()[0].name
        logger.info(
            f"ONNX Runtime session created: provider={self.active_provider}, "
            f"input={self._input_name}, output={self._output_name}"
        )

    def run(self, tensor: np.ndarray) -> np.ndarray:
        outputs = self._session.run([self._output_name], {self._input_name: tensor})
        return outputs[0]

    def close(self) -> None:
        self._session = None


def onnxruntime_loaders(config: InferenceConfig) -> tuple[BackendLoader, BackendLoader]:
    """Build (accelerated, fallback) loaders from inference configuration."""
    accelerated_providers = list(config.accelerated_providers)
    fallback_providers = list(config.fallback_providers)

    def load_accelerated(model_bytes: bytes) -> ExecutionBackend:
        return OnnxRuntimeBackend(
            model_bytes,
            accelerated_providers,
            required_provider=accelerated_providers[0] if accelerated_providers else None,
        )

    def load_fallback(model_bytes: bytes) -> ExecutionBackend:
        return OnnxRuntimeBackend(model_bytes, fallback_providers)

    return load_accelerated, load_fallback


class InferenceSession:
    """
    Owns a loaded model and the backend selected for it.

    Not thread safe: a session is created and used from a single thread.
    """

    def __init__(self, accelerated_loader: BackendLoader, fallback_loader: BackendLoader):
        """
        Initialize an empty session.

        Args:
            accelerated_loader: Builds the accelerated backend from model bytes
            fallback_loader: Builds the portable backend from model bytes
        """
        self._loaders = {
            Backend.ACCELERATED: accelerated_loader,
            Backend.FALLBACK: fallback_loader,
        }
        self._state = SessionState.UNINITIALIZED
        self._backend: Backend | None = None
        self._engine: ExecutionBackend | None = None
        self._loaded = False

        # Stats
        self._run_count = 0
        self._total_run_time = 0.0
        self._error_count = 0

    @classmethod
    def from_config(cls, config: InferenceConfig) -> "InferenceSession":
        """Create a session with ONNX Runtime loaders."""
        accelerated, fallback = onnxruntime_loaders(config)
        return cls(accelerated, fallback)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def backend(self) -> Backend | None:
        """Backend in use once READY, None before."""
        return self._backend

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    def load(self, model_bytes: bytes) -> Backend:
        """
        Load the model, accelerated backend first, fallback once on failure.

        Args:
            model_bytes: Serialized model

        Returns:
            The backend the session ended up using

        Raises:
            BackendUnavailable: Both backends failed; session is FAILED
            SessionError: The session was already loaded
        """
        if self._loaded:
            raise SessionError(
                f"Session already loaded (state={self._state.name}); create a new session"
            )
        self._loaded = True
        self._state = SessionState.LOADING

        try:
            self._engine = self._loaders[Backend.ACCELERATED](model_bytes)
            self._backend = Backend.ACCELERATED
        except Exception as accelerated_error:
            logger.warning(f"Accelerated backend failed, trying fallback: {accelerated_error}")
            try:
                self._engine = self._loaders[Backend.FALLBACK](model_bytes)
                self._backend = Backend.FALLBACK
            except Exception as fallback_error:
                self._state = SessionState.FAILED
                logger.error(f"Fallback backend failed: {fallback_error}")
                raise BackendUnavailable.from_attempts(
                    str(accelerated_error), str(fallback_error)
                ) from fallback_error

        self._state = SessionState.READY
        logger.info(f"Inference session ready: backend={self._backend.value}")
        return self._backend

    def run(self, tensor: np.ndarray) -> np.ndarray:
        """
        Execute the model on one input tensor.

        Raises:
            NotReady: The session is not READY
            ExecutionFailed: The backend raised (not retried)
        """
        if self._state is not SessionState.READY:
            raise NotReady(self._state.name)

        start_time = time.perf_counter()
        try:
            output = self._engine.run(tensor)
        except Exception as e:
            self._error_count += 1
            logger.error(f"Backend execution error: {e}")
            raise ExecutionFailed(str(e)) from e

        self._run_count += 1
        self._total_run_time += (time.perf_counter() - start_time) * 1000  # ms
        return output

    @property
    def average_run_ms(self) -> float:
        """Average backend execution time in milliseconds."""
        if self._run_count == 0:
            return 0.0
        return self._total_run_time / self._run_count

    def get_status(self) -> dict:
        """Get session status."""
        return {
            "state": self._state.name,
            "backend": self._backend.value if self._backend else None,
            "run_count": self._run_count,
            "error_count": self._error_count,
            "average_run_ms": self.average_run_ms,
        }

    def close(self) -> None:
        """Release the backend. The session cannot be loaded again."""
        if self._engine is not None:
            try:
                self._engine.close()
            except Exception as e:
                logger.error(f"Error closing backend: {e}")
            self._engine = None

        if self._state is SessionState.READY:
            self._state = SessionState.UNINITIALIZED
        logger.info("Inference session closed")
