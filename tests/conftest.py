"""
Pytest configuration and shared fixtures for VisionWorker tests.
"""

import sys
import threading
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from visionworker.config import InferenceConfig
from visionworker.inference.codec import Frame, TensorCodec
from visionworker.inference.detection import BoundingBox, Detection
from visionworker.inference.errors import BackendInitError
from visionworker.inference.session import InferenceSession
from visionworker.worker.inference_worker import InferenceWorker


class FakeBackend:
    """Stand-in execution backend returning a fixed output tensor."""

    def __init__(
        self,
        output: np.ndarray | None = None,
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ):
        self.output = output if output is not None else np.zeros((1, 10, 6), dtype=np.float32)
        self.error = error
        self.gate = gate
        self.entered = threading.Event()
        self.calls: list[tuple[int, ...]] = []
        self.closed = False

    def run(self, tensor: np.ndarray) -> np.ndarray:
        self.calls.append(tensor.shape)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if self.error is not None:
            raise self.error
        return self.output

    def close(self) -> None:
        self.closed = True


def loader_returning(backend: FakeBackend):
    """Backend loader that always yields the given backend."""

    def load(model_bytes: bytes) -> FakeBackend:
        return backend

    return load


def loader_failing(message: str):
    """Backend loader that always fails to initialize."""

    def load(model_bytes: bytes) -> FakeBackend:
        raise BackendInitError(message)

    return load


def make_output(rows: list[list[float]], n: int = 10, stride: int = 6) -> np.ndarray:
    """Build a [1, n, stride] output tensor with the given leading rows."""
    output = np.zeros((1, n, stride), dtype=np.float32)
    for i, row in enumerate(rows):
        output[0, i, : len(row)] = row
    return output


@pytest.fixture
def codec():
    """Codec with the default COCO table and fixed-id layout."""
    return TensorCodec()


@pytest.fixture
def black_frame():
    """A 640x640 all-black RGBA frame."""
    return Frame.from_array(np.zeros((640, 640, 4), dtype=np.uint8), frame_id=1)


@pytest.fixture
def small_frame():
    """A 64x48 random RGB frame."""
    pixels = np.random.randint(0, 255, (48, 64, 3), dtype=np.uint8)
    return Frame.from_array(pixels, frame_id=1)


@pytest.fixture
def person_output():
    """Model output with one confident person box and one low-confidence row."""
    return make_output(
        [
            [10.0, 10.0, 20.0, 20.0, 0.9, 0.0],
            [30.0, 30.0, 5.0, 5.0, 0.2, 2.0],
        ]
    )


@pytest.fixture
def fake_backend(person_output):
    return FakeBackend(output=person_output)


@pytest.fixture
def ready_session(fake_backend):
    """A READY session on the accelerated fake backend."""
    session = InferenceSession(loader_returning(fake_backend), loader_returning(fake_backend))
    session.load(b"model")
    return session


@pytest.fixture
def inference_config():
    return InferenceConfig(input_size=64, model_path="models/test.onnx")


@pytest.fixture
def make_worker(inference_config):
    """Factory for started workers using fake backends; stopped on teardown."""
    workers: list[InferenceWorker] = []

    def factory(accelerated=None, fallback=None, model_loader=None) -> InferenceWorker:
        accelerated = accelerated or loader_returning(FakeBackend())
        fallback = fallback or loader_failing("fallback unused")
        worker = InferenceWorker(
            config=inference_config,
            session_factory=lambda: InferenceSession(accelerated, fallback),
            model_loader=model_loader or (lambda: b"model"),
        )
        worker.start()
        workers.append(worker)
        return worker

    yield factory

    for worker in workers:
        worker.stop(timeout=5.0)


@pytest.fixture
def sample_detections():
    """Three detections: two heavily overlapping, one apart."""
    return [
        Detection(class_id=0, score=0.9, bbox=BoundingBox(x=0, y=0, width=10, height=10), label="person"),
        Detection(class_id=0, score=0.8, bbox=BoundingBox(x=1, y=1, width=10, height=10), label="person"),
        Detection(class_id=2, score=0.7, bbox=BoundingBox(x=50, y=50, width=10, height=10), label="car"),
    ]
