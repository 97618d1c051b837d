"""
FastAPI Server - read-only diagnostics for the inference worker

Provides HTTP endpoints for:
- Health checks
- Worker status (backend, session state, scheduler counters, last detections)

Security: Designed for local network access only. It exposes no control
endpoints.
"""

import logging
import os
from datetime import datetime
from typing import Any

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from visionworker import __version__
from visionworker.worker.inference_worker import InferenceWorker

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    """Worker status response."""

    timestamp: str
    process: dict[str, Any]
    worker: dict[str, Any]


def create_app(worker: InferenceWorker | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="VisionWorker API",
        description="Diagnostics for the real-time detection inference worker",
        version=__version__,
    )

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint - basic service info."""
        return {
            "service": "VisionWorker",
            "version": __version__,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        if worker is None or not worker.running:
            raise HTTPException(status_code=503, detail="Inference worker not running")
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Get worker and process status."""
        if worker is None:
            raise HTTPException(status_code=503, detail="Inference worker not available")

        proc = psutil.Process(os.getpid())
        process_status = {
            "cpu_percent": proc.cpu_percent(interval=None),
            "memory_rss_mb": proc.memory_info().rss / (1024 * 1024),
            "threads": proc.num_threads(),
        }

        return StatusResponse(
            timestamp=datetime.now().isoformat(),
            process=process_status,
            worker=worker.get_status(),
        )

    return app


async def start_server(
    worker: InferenceWorker,
    host: str = "127.0.0.1",
    port: int = 8080,
) -> None:
    """
    Start the API server.

    Args:
        worker: Inference worker to report on
        host: Bind host
        port: Bind port
    """
    app = create_app(worker)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting API server on {host}:{port}")
    await server.serve()
