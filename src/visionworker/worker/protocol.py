"""
Worker message protocol and the duplex channel carrying it.

Requests (producer -> worker): Init, Infer, Stop
Responses (worker -> producer): Ready, Result, Error

Every admitted Infer yields exactly one Result or Error. A frame dropped by
the scheduler yields nothing; the producer just sends a later frame.
"""

import asyncio
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Union

from visionworker.inference.codec import Frame
from visionworker.inference.detection import Detection
from visionworker.inference.session import Backend

logger = logging.getLogger(__name__)


# ==================== Requests ====================


@dataclass(frozen=True)
class InitRequest:
    """Load the model and pick a backend."""

    kind: ClassVar[str] = "init"

    input_size: int = 640


@dataclass(frozen=True)
class InferRequest:
    """Run detection on one frame."""

    kind: ClassVar[str] = "infer"

    frame: Frame
    input_size: int = 640
    emit_labels: bool = True


@dataclass(frozen=True)
class StopRequest:
    """Advisory stop: the in-flight frame finishes, then the worker exits."""

    kind: ClassVar[str] = "stop"


Request = Union[InitRequest, InferRequest, StopRequest]


# ==================== Responses ====================


@dataclass(frozen=True)
class ReadyResponse:
    kind: ClassVar[str] = "ready"

    backend: Backend

    def to_dict(self) -> dict:
        return {"type": self.kind, "backend": self.backend.value}


@dataclass(frozen=True)
class ResultResponse:
    kind: ClassVar[str] = "result"

    detections: list[Detection]
    frame_dimensions: tuple[int, int]  # (width, height) of the original frame
    frame_id: int
    inference_time_ms: float = 0.0

    def to_dict(self) -> dict:
        width, height = self.frame_dimensions
        return {
            "type": self.kind,
            "boxes": [d.to_dict() for d in self.detections],
            "dimensions": {"width": width, "height": height},
            "frameId": self.frame_id,
            "inferenceTimeMs": self.inference_time_ms,
        }


@dataclass(frozen=True)
class ErrorResponse:
    kind: ClassVar[str] = "error"

    message: str
    frame_id: int | None = field(default=None)

    def to_dict(self) -> dict:
        return {"type": self.kind, "message": self.message, "frameId": self.frame_id}


Response = Union[ReadyResponse, ResultResponse, ErrorResponse]


# ==================== Channel ====================


class WorkerChannel:
    """
    Duplex channel between a producer thread and the worker event loop.

    Producer side: send(), recv(), on_response().
    Worker side: attach(), get(), post(), detach().

    Requests sent before the worker attaches are buffered and delivered in
    order once it does.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue | None = None
        self._pending: list[Request] = []
        self._closed = False

        self._responses: queue.Queue[Response] = queue.Queue()
        self._callbacks: list[Callable[[Response], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    # ---------- producer side ----------

    def send(self, request: Request) -> bool:
        """
        Hand a request to the worker (thread safe, never blocks).

        Returns:
            False if the channel is closed and the request was discarded
        """
        with self._lock:
            if self._closed:
                logger.warning(f"Channel closed, discarding {request.kind} request")
                return False
            if self._loop is None:
                self._pending.append(request)
                return True
            self._loop.call_soon_threadsafe(self._inbox.put_nowait, request)
        return True

    def recv(self, timeout: float | None = None) -> Response | None:
        """Block for the next response; None on timeout."""
        try:
            return self._responses.get(timeout=timeout)
        except queue.Empty:
            return None

    def on_response(self, callback: Callable[[Response], None]) -> None:
        """Register a callback invoked (on the worker thread) for every response."""
        self._callbacks.append(callback)

    # ---------- worker side ----------

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind the channel to the worker loop. Must be called on that loop's thread."""
        with self._lock:
            self._loop = loop
            self._inbox = asyncio.Queue()
            for request in self._pending:
                self._inbox.put_nowait(request)
            self._pending.clear()

    async def get(self) -> Request:
        """Wait for the next request."""
        return await self._inbox.get()

    def post(self, response: Response) -> None:
        """Deliver a response to the producer."""
        self._responses.put(response)
        for callback in self._callbacks:
            try:
                callback(response)
            except Exception as e:
                logger.error(f"Response callback error: {e}")

    def detach(self) -> None:
        """Close the request side; later send() calls are discarded."""
        with self._lock:
            self._closed = True
            self._loop = None
            dropped = self._inbox.qsize() if self._inbox is not None else 0
            self._inbox = None
        if dropped:
            logger.info(f"Channel closed with {dropped} unread request(s)")
