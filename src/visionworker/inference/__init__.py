"""
Inference module for VisionWorker.

Provides:
- TensorCodec: frame -> tensor packing and raw output decoding
- suppress: Non-Maximum Suppression
- InferenceSession: model + backend ownership with accelerated/fallback selection
- Detection: Detection result data structures
"""

from .codec import Frame, FrameCounter, Layout, TensorCodec
from .detection import BoundingBox, Detection, LiveDetection, summarize_detections
from .errors import (
    BackendUnavailable,
    DecodeError,
    EncodeError,
    ExecutionFailed,
    InferenceError,
    NotReady,
    VisionWorkerError,
)
from .model_asset import load_model_bytes
from .nms import iou, suppress
from .session import Backend, InferenceSession, SessionState

__all__ = [
    "Frame",
    "FrameCounter",
    "Layout",
    "TensorCodec",
    "BoundingBox",
    "Detection",
    "LiveDetection",
    "summarize_detections",
    "BackendUnavailable",
    "DecodeError",
    "EncodeError",
    "ExecutionFailed",
    "InferenceError",
    "NotReady",
    "VisionWorkerError",
    "load_model_bytes",
    "iou",
    "suppress",
    "Backend",
    "InferenceSession",
    "SessionState",
]
