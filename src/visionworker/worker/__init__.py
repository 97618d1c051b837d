"""
Worker module for VisionWorker.

Provides:
- FrameScheduler: single-slot frame admission control
- WorkerChannel: duplex request/response channel
- InferenceWorker: dedicated inference thread running the pipeline
"""

from .inference_worker import InferenceWorker
from .protocol import (
    ErrorResponse,
    InferRequest,
    InitRequest,
    ReadyResponse,
    ResultResponse,
    StopRequest,
    WorkerChannel,
)
from .scheduler import Admission, FrameScheduler, SchedulerState

__all__ = [
    "InferenceWorker",
    "ErrorResponse",
    "InferRequest",
    "InitRequest",
    "ReadyResponse",
    "ResultResponse",
    "StopRequest",
    "WorkerChannel",
    "Admission",
    "FrameScheduler",
    "SchedulerState",
]
