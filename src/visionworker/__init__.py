"""
VisionWorker - Real-time object detection inference worker

Frames in, filtered bounding boxes out: single-slot frame admission,
ONNX Runtime execution with accelerated/fallback backend selection,
YOLO-style output decoding and NMS.
"""

__version__ = "1.0.0"
