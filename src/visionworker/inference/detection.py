"""
Detection data structures for object detection results.

Coordinates are in model input (tensor) pixel space, [0, input_size).
Mapping back to the original frame is left to the producer, see
Detection.rescaled().
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box, top-left corner plus size."""

    x: float  # Left edge
    y: float  # Top edge
    width: float
    height: float

    @property
    def center_x(self) -> float:
        """Get center X coordinate."""
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        """Get center Y coordinate."""
        return self.y + self.height / 2

    @property
    def area(self) -> float:
        """Get bounding box area."""
        return self.width * self.height

    @property
    def right(self) -> float:
        """Get right edge X coordinate."""
        return self.x + self.width

    @property
    def bottom(self) -> float:
        """Get bottom edge Y coordinate."""
        return self.y + self.height

    def iou(self, other: "BoundingBox") -> float:
        """
        Calculate Intersection over Union with another box.

        Union is area_a + area_b - intersection; IoU is 0 when the union
        is not positive (degenerate boxes).

        Args:
            other: Another bounding box

        Returns:
            IoU value (0-1)
        """
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.right, other.right)
        y2 = min(self.bottom, other.bottom)

        intersection = max(0.0, x2 - x1) * max(0.0, y2 - y1)
        union = self.area + other.area - intersection

        return intersection / union if union > 0 else 0.0

    def scaled(self, sx: float, sy: float) -> "BoundingBox":
        """Return a new box with x/width scaled by sx and y/height by sy."""
        return BoundingBox(
            x=self.x * sx,
            y=self.y * sy,
            width=self.width * sx,
            height=self.height * sy,
        )

    def to_dict(self) -> dict:
        """Box part of the wire form (left, top, w, h in model input pixels)."""
        return {"x": self.x, "y": self.y, "w": self.width, "h": self.height}


@dataclass(frozen=True)
class Detection:
    """Single object detection result."""

    class_id: int
    score: float
    bbox: BoundingBox
    label: str | None = None

    @property
    def x(self) -> float:
        return self.bbox.x

    @property
    def y(self) -> float:
        return self.bbox.y

    @property
    def w(self) -> float:
        return self.bbox.width

    @property
    def h(self) -> float:
        return self.bbox.height

    def rescaled(self, input_size: int, width: int, height: int) -> "Detection":
        """
        Map the box from input-tensor space to an original frame of width x height.

        Args:
            input_size: Square model input side the box was decoded in
            width: Original frame width in pixels
            height: Original frame height in pixels
        """
        return Detection(
            class_id=self.class_id,
            score=self.score,
            bbox=self.bbox.scaled(width / input_size, height / input_size),
            label=self.label,
        )

    def to_dict(self) -> dict:
        """Convert to the wire shape sent to the producer."""
        return {
            **self.bbox.to_dict(),
            "score": self.score,
            "classId": self.class_id,
            "label": self.label,
        }

    def __str__(self) -> str:
        name = self.label or f"class_{self.class_id}"
        return (
            f"{name} ({self.score:.2f}) "
            f"at ({self.bbox.center_x:.1f}, {self.bbox.center_y:.1f})"
        )


@dataclass
class LiveDetection:
    """Per-label aggregate of one frame's detections (for status displays)."""

    label: str
    score: float
    count: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "label": self.label,
            "score": self.score,
            "count": self.count,
            "timestamp": self.timestamp.isoformat(),
        }


def summarize_detections(
    detections: list[Detection], timestamp: datetime | None = None
) -> list[LiveDetection]:
    """
    Group detections by label, keeping the best score and a count.

    Returns summaries ordered by best score, highest first.
    """
    timestamp = timestamp or datetime.now()
    summaries: dict[str, LiveDetection] = {}

    for det in detections:
        label = det.label or f"class_{det.class_id}"
        entry = summaries.get(label)
        if entry is None:
            summaries[label] = LiveDetection(
                label=label, score=det.score, count=1, timestamp=timestamp
            )
        else:
            entry.count += 1
            entry.score = max(entry.score, det.score)

    return sorted(summaries.values(), key=lambda s: s.score, reverse=True)
