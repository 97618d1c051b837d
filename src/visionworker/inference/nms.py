"""
Non-Maximum Suppression for decoded detections.

Suppression is class agnostic by default: a box suppresses any lower-scored
box of any class that overlaps it by more than the IoU threshold.
"""

import logging
from typing import Sequence

from .detection import Detection

logger = logging.getLogger(__name__)

DEFAULT_IOU_THRESHOLD = 0.45


def iou(a: Detection, b: Detection) -> float:
    """Intersection over Union of two detections' boxes."""
    return a.bbox.iou(b.bbox)


def suppress(
    detections: Sequence[Detection],
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    class_aware: bool = False,
) -> list[Detection]:
    """
    Apply greedy Non-Maximum Suppression.

    Detections are visited by score, highest first (ties keep input order).
    A detection is kept iff its IoU with every kept detection is
    <= iou_threshold. O(k^2), fine for the handful of boxes left after
    confidence filtering.

    Args:
        detections: Candidate detections
        iou_threshold: Overlap above which the lower-scored box is dropped
        class_aware: Only compare boxes of the same class

    Returns:
        Kept detections, highest score first
    """
    if not detections:
        return []

    order = sorted(range(len(detections)), key=lambda i: (-detections[i].score, i))

    kept: list[Detection] = []
    for idx in order:
        candidate = detections[idx]
        overlaps = (
            iou(candidate, selected) > iou_threshold
            for selected in kept
            if not class_aware or selected.class_id == candidate.class_id
        )
        if not any(overlaps):
            kept.append(candidate)

    if len(kept) < len(detections):
        logger.debug(f"NMS kept {len(kept)}/{len(detections)} detections")

    return kept
