"""
VisionWorker service entry point

Starts the inference worker, loads the model (Init), and serves the
diagnostics API until interrupted. Producers embed InferenceWorker directly;
this runner exists for standalone deployment and health monitoring.
"""

import asyncio
import logging
import signal
import sys

from visionworker.worker.inference_worker import InferenceWorker
from visionworker.worker.protocol import ErrorResponse, InitRequest, ReadyResponse, Response

logger = logging.getLogger(__name__)


class VisionWorkerService:
    """Owns the worker for the lifetime of the process."""

    def __init__(self):
        self._worker: InferenceWorker | None = None
        self._stop_event: asyncio.Event | None = None

    async def start(self) -> None:
        """Start the worker and block until shutdown."""
        from visionworker.config import api_config, inference_config, setup_logging

        setup_logging()
        logger.info("=== Starting VisionWorker ===")

        self._stop_event = asyncio.Event()
        self._worker = InferenceWorker(config=inference_config)
        self._worker.channel.on_response(self._log_control_response)
        # start() blocks until the worker loop is up
        await asyncio.get_running_loop().run_in_executor(None, self._worker.start)
        self._worker.send(InitRequest(input_size=inference_config.input_size))

        try:
            if api_config.enabled:
                from visionworker.api import start_server

                # uvicorn handles SIGINT/SIGTERM itself and returns on shutdown
                await start_server(self._worker, host=api_config.host, port=api_config.port)
            else:
                self._setup_signal_handlers()
                await self._stop_event.wait()
        finally:
            await self._shutdown()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._stop_event.set)

    @staticmethod
    def _log_control_response(response: Response) -> None:
        if isinstance(response, ReadyResponse):
            logger.info(f"Inference worker ready (backend={response.backend.value})")
        elif isinstance(response, ErrorResponse) and response.frame_id is None:
            logger.error(f"Inference worker error: {response.message}")

    async def _shutdown(self) -> None:
        logger.info("Shutting down...")
        if self._worker:
            await asyncio.get_running_loop().run_in_executor(None, self._worker.stop)
        logger.info("Shutdown complete")


async def app() -> None:
    """Main application entry point."""
    service = VisionWorkerService()
    await service.start()


def main() -> None:
    """Console script entry point."""
    try:
        asyncio.run(app())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
