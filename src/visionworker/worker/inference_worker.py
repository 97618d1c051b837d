"""
Inference Worker

Runs the detection pipeline in one dedicated thread with its own asyncio
event loop, isolated from the producer (camera / capture loop):

    InferRequest -> FrameScheduler (admit or drop) -> encode -> session.run
                 -> decode -> suppress -> ResultResponse

The session is loaded and executed in a single-thread executor, so it never
changes threads after creation. Both the model load and each backend run are
tasks awaiting that executor; the loop keeps reading requests meanwhile.
Frames arriving during a run meet a busy scheduler and are dropped. During a
load only the freshest frame is held, and it is submitted once the session
is READY.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from visionworker.config import InferenceConfig, inference_config
from visionworker.inference.codec import TensorCodec
from visionworker.inference.detection import summarize_detections
from visionworker.inference.errors import VisionWorkerError
from visionworker.inference.model_asset import load_model_bytes
from visionworker.inference.nms import suppress
from visionworker.inference.session import Backend, InferenceSession

from .protocol import (
    ErrorResponse,
    InferRequest,
    InitRequest,
    ReadyResponse,
    Request,
    Response,
    ResultResponse,
    StopRequest,
    WorkerChannel,
)
from .scheduler import Admission, FrameScheduler

logger = logging.getLogger(__name__)

# How long start() waits for the worker loop to come up
STARTUP_TIMEOUT_SECONDS = 5.0


class InferenceWorker:
    """
    Owns the inference session, the scheduler and the worker side of the channel.

    The producer talks to it only through send()/recv() (or the channel).
    """

    def __init__(
        self,
        config: InferenceConfig | None = None,
        session_factory: Callable[[], InferenceSession] | None = None,
        model_loader: Callable[[], bytes] | None = None,
        codec: TensorCodec | None = None,
    ):
        """
        Initialize the worker (not started).

        Args:
            config: Inference configuration (global config if not provided)
            session_factory: Creates a fresh InferenceSession for each (re-)init
            model_loader: Returns the model bytes for each (re-)init
            codec: Tensor codec (built from config if not provided)
        """
        self.config = config or inference_config
        self._session_factory = session_factory or (
            lambda: InferenceSession.from_config(self.config)
        )
        self._model_loader = model_loader or (
            lambda: load_model_bytes(
                self.config.model_path, timeout=self.config.fetch_timeout_seconds
            )
        )
        self.codec = codec or TensorCodec.from_config(self.config)

        self.channel = WorkerChannel()
        self.scheduler = FrameScheduler()

        # Owned by the worker thread
        self._session: InferenceSession | None = None
        self._input_size = self.config.input_size
        self._executor: ThreadPoolExecutor | None = None
        self._inflight: asyncio.Task | None = None
        self._loading: asyncio.Task | None = None
        self._pending_infer: InferRequest | None = None
        self._announce_ready = False
        self._last_result: ResultResponse | None = None

        self._thread: threading.Thread | None = None
        self._started = threading.Event()

        # Stats
        self._results = 0
        self._errors = 0
        self._superseded = 0

    # ==================== Producer API ====================

    def start(self) -> None:
        """Start the worker thread and wait until it accepts requests."""
        if self._thread is not None:
            raise RuntimeError("Worker already started")

        self._thread = threading.Thread(
            target=self._thread_main,
            name="InferenceWorker",
            daemon=True,
        )
        self._thread.start()

        if not self._started.wait(timeout=STARTUP_TIMEOUT_SECONDS):
            raise RuntimeError("Inference worker failed to start")
        logger.info("Inference worker started")

    def send(self, request: Request) -> bool:
        """Send a request to the worker (never blocks)."""
        return self.channel.send(request)

    def recv(self, timeout: float | None = None) -> Response | None:
        """Wait for the next response; None on timeout."""
        return self.channel.recv(timeout=timeout)

    def stop(self, timeout: float = 10.0) -> bool:
        """
        Request an advisory stop and wait for the worker to exit.

        The in-flight inference, if any, finishes and posts its response.

        Returns:
            True if the worker thread exited within the timeout
        """
        if self._thread is None:
            return True

        self.channel.send(StopRequest())
        self._thread.join(timeout=timeout)
        stopped = not self._thread.is_alive()
        if not stopped:
            logger.warning(f"Inference worker did not stop within {timeout}s")
        return stopped

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def backend(self) -> Backend | None:
        return self._session.backend if self._session else None

    def get_status(self) -> dict:
        """
        Get worker status (session, scheduler, last result).

        Best-effort snapshot: read without synchronization from other threads
        (e.g. the API server) while the worker thread keeps updating it.
        """
        last = self._last_result
        return {
            "running": self.running,
            "input_size": self._input_size,
            "session": self._session.get_status() if self._session else None,
            "scheduler": self.scheduler.get_status(),
            "results": self._results,
            "errors": self._errors,
            "superseded_during_load": self._superseded,
            "last_result": {
                "frame_id": last.frame_id,
                "inference_time_ms": last.inference_time_ms,
                "detections": [s.to_dict() for s in summarize_detections(last.detections)],
            }
            if last
            else None,
        }

    # ==================== Worker thread ====================

    def _thread_main(self) -> None:
        try:
            asyncio.run(self._serve())
        except Exception as e:
            logger.error(f"Inference worker crashed: {e}", exc_info=True)
        finally:
            self._started.set()  # unblock start() if we died during startup
            logger.info("Inference worker stopped")

    async def _serve(self) -> None:
        loop = asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inference")
        self.channel.attach(loop)
        self._started.set()

        try:
            while True:
                request = await self.channel.get()
                if not self._dispatch(request):
                    break

            # A load may still admit its pending frame, so wait for it first
            if self._loading is not None:
                await self._loading
            if self._inflight is not None:
                await self._inflight
        finally:
            self.channel.detach()
            if self._session is not None:
                await loop.run_in_executor(self._executor, self._session.close)
            self._executor.shutdown(wait=True)

    def _dispatch(self, request: Request) -> bool:
        """Handle one request. Returns False when the worker should exit."""
        if isinstance(request, InitRequest):
            self._request_init(request.input_size, announce=True)
        elif isinstance(request, InferRequest):
            self._handle_infer(request)
        elif isinstance(request, StopRequest):
            logger.info("Stop requested, letting in-flight work finish")
            return False
        else:
            logger.warning(f"Unknown request type: {type(request).__name__}")
            self._post_error(f"Unknown request type: {type(request).__name__}")
        return True

    def _request_init(self, input_size: int, announce: bool) -> None:
        """
        Make sure a READY session exists or is being loaded.

        The load runs as a task so the loop keeps reading requests meanwhile.
        An Init arriving during a load only asks for Ready once it finishes.
        """
        self._input_size = input_size

        if self._loading is not None:
            self._announce_ready = self._announce_ready or announce
            return

        if self._session is not None and self._session.is_ready:
            if announce:
                self.channel.post(ReadyResponse(backend=self._session.backend))
            return

        self._announce_ready = announce
        self._loading = asyncio.create_task(self._initialize(input_size))

    async def _initialize(self, input_size: int) -> None:
        """
        Load a fresh session, then admit the frame kept while loading.

        A new session is created for every load; a FAILED one is discarded.
        Posts Ready when requested, one Error on failure.
        """
        loop = asyncio.get_running_loop()
        backend: Backend | None = None

        try:
            if self._session is not None:
                await loop.run_in_executor(self._executor, self._session.close)

            session = self._session_factory()
            self._session = session
            logger.info(f"Initializing inference session (input_size={input_size})")

            backend = await loop.run_in_executor(self._executor, self._load_session, session)
        except VisionWorkerError as e:
            logger.error(f"Session initialization failed: {e}")
            self._post_error(str(e))
        except Exception as e:
            logger.error(f"Session initialization failed: {e}", exc_info=True)
            self._post_error(str(e) or type(e).__name__)
        finally:
            self._loading = None
            pending, self._pending_infer = self._pending_infer, None

        if backend is None:
            if pending is not None:
                logger.debug(f"Discarding frame {pending.frame.frame_id}: no session")
            return

        if self._announce_ready:
            self.channel.post(ReadyResponse(backend=backend))
        if pending is not None:
            self._admit(pending)

    def _load_session(self, session: InferenceSession) -> Backend:
        """Fetch the model and load it (runs in the inference executor)."""
        return session.load(self._model_loader())

    def _handle_infer(self, request: InferRequest) -> None:
        if self._loading is not None:
            self._hold_while_loading(request)
            return

        if self._session is None or not self._session.is_ready:
            logger.info("Session not ready, initializing before inference")
            self._pending_infer = request
            self._request_init(request.input_size, announce=False)
            return

        self._admit(request)

    def _hold_while_loading(self, request: InferRequest) -> None:
        """Keep only the freshest frame that arrives during a model load."""
        pending = self._pending_infer
        if pending is not None:
            self._superseded += 1
            if request.frame.frame_id < pending.frame.frame_id:
                return
            logger.debug(
                f"Frame {pending.frame.frame_id} superseded by {request.frame.frame_id} "
                f"while loading"
            )
        self._pending_infer = request

    def _admit(self, request: InferRequest) -> None:
        if self.scheduler.submit(request.frame) is Admission.DROPPED:
            return
        self._inflight = asyncio.create_task(self._process(request, self._session))

    async def _process(self, request: InferRequest, session: InferenceSession) -> None:
        """Run one admitted frame through the pipeline; always releases the slot."""
        frame = request.frame
        loop = asyncio.get_running_loop()
        start_time = time.perf_counter()

        try:
            tensor = self.codec.encode(frame, request.input_size)
            raw_output = await loop.run_in_executor(self._executor, session.run, tensor)
            detections = self.codec.decode(raw_output, request.input_size, request.emit_labels)
            detections = suppress(
                detections,
                iou_threshold=self.config.iou_threshold,
                class_aware=self.config.class_aware_nms,
            )
            response: Response = ResultResponse(
                detections=detections,
                frame_dimensions=frame.dimensions,
                frame_id=frame.frame_id,
                inference_time_ms=(time.perf_counter() - start_time) * 1000,
            )
        except VisionWorkerError as e:
            logger.warning(f"Frame {frame.frame_id} failed: {e}")
            response = ErrorResponse(message=str(e), frame_id=frame.frame_id)
        except Exception as e:
            logger.error(f"Frame {frame.frame_id} failed: {e}", exc_info=True)
            response = ErrorResponse(message=str(e) or type(e).__name__, frame_id=frame.frame_id)
        finally:
            self.scheduler.complete()
            self._inflight = None

        if isinstance(response, ResultResponse):
            self._results += 1
            self._last_result = response
            if response.detections:
                logger.debug(
                    f"Frame {frame.frame_id}: {len(response.detections)} detections, "
                    f"{response.inference_time_ms:.1f}ms"
                )
        else:
            self._errors += 1

        self.channel.post(response)

    def _post_error(self, message: str) -> None:
        self._errors += 1
        self.channel.post(ErrorResponse(message=message))
