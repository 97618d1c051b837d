"""
Tensor codec: frame -> model input tensor, raw model output -> detections.

Input tensors are float32 [1, 3, S, S], channel planar (R, G, B), values in
[0, 1]. Output tensors come in one of two layouts:

- FIXED_CLASS_ID: [1, N, 6], rows of (x, y, w, h, confidence, class_id)
- CLASS_PROBABILITIES: [1, N, 5 + K], rows of (x, y, w, h, objectness, p_0..p_K-1)
"""

import itertools
import logging
import math
import random
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Sequence

import numpy as np
from PIL import Image

from visionworker.config import COCO_CLASSES, InferenceConfig

from .detection import BoundingBox, Detection
from .errors import DecodeError, EncodeError, EncodeErrorReason

logger = logging.getLogger(__name__)

BYTES_PER_PIXEL = 4  # RGBA8

# Fraction of decode calls that dump raw output at DEBUG level
RAW_OUTPUT_LOG_SAMPLE_RATE = 0.1


@dataclass(frozen=True)
class Frame:
    """An RGBA8 pixel buffer plus the producer-assigned frame id."""

    data: bytes
    width: int
    height: int
    stride: int
    frame_id: int
    pixel_format: str = "RGBA8"

    @classmethod
    def from_array(cls, array: np.ndarray, frame_id: int) -> "Frame":
        """
        Build a frame from an (H, W, 4) RGBA or (H, W, 3) RGB uint8 array.

        RGB input gets an opaque alpha channel.
        """
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise ValueError(f"Expected (H, W, 3|4) array, got shape {array.shape}")

        if array.dtype != np.uint8:
            array = np.clip(array, 0, 255).astype(np.uint8)

        height, width = array.shape[:2]
        if array.shape[2] == 3:
            alpha = np.full((height, width, 1), 255, dtype=np.uint8)
            array = np.concatenate([array, alpha], axis=2)

        return cls(
            data=np.ascontiguousarray(array).tobytes(),
            width=width,
            height=height,
            stride=width * BYTES_PER_PIXEL,
            frame_id=frame_id,
        )

    @property
    def dimensions(self) -> tuple[int, int]:
        """(width, height) of the original frame."""
        return self.width, self.height

    def to_array(self) -> np.ndarray:
        """Return the pixels as an (H, W, 4) uint8 array, honoring the row stride."""
        row_bytes = self.width * BYTES_PER_PIXEL
        if self.stride < row_bytes:
            raise EncodeError(
                EncodeErrorReason.MALFORMED_FRAME,
                f"Stride {self.stride} shorter than row of {row_bytes} bytes",
            )
        if len(self.data) < self.stride * self.height:
            raise EncodeError(
                EncodeErrorReason.MALFORMED_FRAME,
                f"Buffer of {len(self.data)} bytes too small for "
                f"{self.height} rows of stride {self.stride}",
            )

        buf = np.frombuffer(self.data, dtype=np.uint8, count=self.stride * self.height)
        rows = buf.reshape(self.height, self.stride)[:, :row_bytes]
        return rows.reshape(self.height, self.width, BYTES_PER_PIXEL)


class FrameCounter:
    """Thread-safe, strictly increasing frame id source for producers."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


class Layout(Enum):
    """Model output row layout."""

    FIXED_CLASS_ID = "fixed_class_id"
    CLASS_PROBABILITIES = "class_probabilities"


class TensorCodec:
    """
    Packs frames into model input tensors and decodes raw model output.

    The confidence threshold, row stride and layout depend on the model
    export, so they are configuration rather than constants.
    """

    def __init__(
        self,
        class_names: Sequence[str] | None = COCO_CLASSES,
        confidence_threshold: float = 0.5,
        layout: Layout = Layout.FIXED_CLASS_ID,
        row_stride: int | None = None,
        num_classes: int | None = None,
    ):
        """
        Initialize the codec.

        Args:
            class_names: Class table, index = class id (None for no labels)
            confidence_threshold: Minimum confidence to keep a row (inclusive)
            layout: Output row layout
            row_stride: Values per output row (derived from layout when None)
            num_classes: Valid class id range [0, num_classes) (defaults to
                the class table size)
        """
        self.class_names = list(class_names) if class_names else []
        self.confidence_threshold = confidence_threshold
        self.layout = Layout(layout)

        if num_classes is None:
            if self.class_names:
                num_classes = len(self.class_names)
            elif row_stride is not None and self.layout is Layout.CLASS_PROBABILITIES:
                num_classes = row_stride - 5
            else:
                raise ValueError("num_classes is required without a class table")
        self.num_classes = num_classes

        if row_stride is None:
            row_stride = 6 if self.layout is Layout.FIXED_CLASS_ID else 5 + num_classes
        self.row_stride = row_stride

        if self.layout is Layout.CLASS_PROBABILITIES and self.row_stride < 5 + self.num_classes:
            raise ValueError(
                f"row_stride {self.row_stride} too small for {self.num_classes} class probabilities"
            )

    @classmethod
    def from_config(cls, config: InferenceConfig) -> "TensorCodec":
        """Create a codec from inference configuration."""
        return cls(
            class_names=config.class_names,
            confidence_threshold=config.confidence_threshold,
            layout=Layout(config.layout),
            row_stride=config.row_stride,
        )

    # ==================== Encoding ====================

    def encode(self, frame: Frame, input_size: int) -> np.ndarray:
        """
        Convert an RGBA8 frame to a float32 [1, 3, S, S] tensor.

        Args:
            frame: Input frame
            input_size: Square model input side S

        Returns:
            Channel-planar tensor with values byte / 255
        """
        if frame.width == 0 or frame.height == 0:
            raise EncodeError(
                EncodeErrorReason.EMPTY_FRAME,
                f"Frame {frame.frame_id} is empty ({frame.width}x{frame.height})",
            )

        rgb = frame.to_array()[:, :, :3]

        # Resize if needed
        if frame.width != input_size or frame.height != input_size:
            img = Image.fromarray(np.ascontiguousarray(rgb))
            img = img.resize((input_size, input_size), Image.BILINEAR)
            rgb = np.asarray(img, dtype=np.uint8)

        # HWC -> CHW, normalize to 0..1
        chw = rgb.astype(np.float32).transpose(2, 0, 1) / 255.0
        return np.ascontiguousarray(chw)[np.newaxis, ...]

    # ==================== Decoding ====================

    def decode(
        self, raw_output: np.ndarray, input_size: int, emit_labels: bool = True
    ) -> list[Detection]:
        """
        Decode a raw model output tensor into detections.

        Coordinates stay in input-tensor pixel space [0, input_size).

        Args:
            raw_output: Model output, [1, N, row_stride]
            input_size: Square model input side the output refers to
            emit_labels: Attach class names when a class table is configured

        Returns:
            Detections that passed the confidence and class-id checks
        """
        output = np.asarray(raw_output, dtype=np.float32)
        self._maybe_log_raw_output(output)
        detections = list(self.iter_detections(output, emit_labels))
        logger.debug(f"Decoded {len(detections)} detections (input_size={input_size})")
        return detections

    def iter_detections(
        self, raw_output: np.ndarray, emit_labels: bool = True
    ) -> Iterator[Detection]:
        """Yield detections row by row (single pass)."""
        output = np.asarray(raw_output, dtype=np.float32)
        if output.ndim != 3:
            raise DecodeError(f"Expected [1, N, {self.row_stride}] output, got shape {output.shape}")
        if output.shape[2] != self.row_stride:
            raise DecodeError(
                f"Output row stride {output.shape[2]} does not match "
                f"{self.layout.value} layout stride {self.row_stride}"
            )

        for row in output[0]:
            parsed = self._parse_row(row)
            if parsed is None:
                continue
            x, y, w, h, confidence, class_id = parsed

            if confidence < self.confidence_threshold:
                continue
            if class_id < 0 or class_id >= self.num_classes:
                continue

            yield Detection(
                class_id=class_id,
                score=confidence,
                bbox=BoundingBox(x=x, y=y, width=w, height=h),
                label=self._label_for(class_id, emit_labels),
            )

    def _parse_row(self, row: np.ndarray) -> tuple[float, float, float, float, float, int] | None:
        x, y, w, h = (float(v) for v in row[:4])

        if self.layout is Layout.FIXED_CLASS_ID:
            confidence = float(row[4])
            raw_class = float(row[5])
            if not math.isfinite(raw_class):
                return None
            class_id = math.floor(raw_class + 0.5)
        else:
            objectness = float(row[4])
            probs = row[5 : 5 + self.num_classes]
            class_id = int(np.argmax(probs))
            confidence = objectness * float(probs[class_id])

        if not math.isfinite(confidence):
            return None
        return x, y, w, h, confidence, class_id

    def _label_for(self, class_id: int, emit_labels: bool) -> str:
        if emit_labels and class_id < len(self.class_names):
            return self.class_names[class_id]
        return f"class_{class_id}"

    def _maybe_log_raw_output(self, output: np.ndarray) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        if random.random() >= RAW_OUTPUT_LOG_SAMPLE_RATE:
            return
        logger.debug(
            f"Raw output: shape={output.shape}, "
            f"first20={output.reshape(-1)[:20].tolist()}"
        )
