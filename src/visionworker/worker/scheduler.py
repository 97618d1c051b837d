"""
Frame Scheduler - single-slot admission control in front of the session

Policy: drop while busy, drop stale, never queue.
- At most one frame is in flight (admitted, not yet completed)
- A frame older than the last admitted one is dropped as stale
- complete() always frees the slot, whether the cycle succeeded or failed

Memory stays bounded to one frame and one tensor pair; under overload the
newest frames win and the rest are shed.
"""

import logging
from enum import Enum, auto

from visionworker.inference.codec import Frame

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Scheduler slot state."""

    IDLE = auto()
    BUSY = auto()


class Admission(Enum):
    """Outcome of FrameScheduler.submit()."""

    ADMITTED = auto()
    DROPPED = auto()


class FrameScheduler:
    """
    Admission control for a serial inference session.

    Not thread safe: submit() and complete() are called from the worker's
    event loop only.
    """

    def __init__(self):
        self._state = SchedulerState.IDLE
        self._last_admitted_frame_id: int | None = None
        self._in_flight_frame_id: int | None = None

        # Stats
        self._admitted = 0
        self._dropped_busy = 0
        self._dropped_stale = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state is SchedulerState.BUSY

    @property
    def last_admitted_frame_id(self) -> int | None:
        return self._last_admitted_frame_id

    def submit(self, frame: Frame) -> Admission:
        """
        Decide whether a frame is processed now or dropped.

        Args:
            frame: Incoming frame

        Returns:
            ADMITTED (slot taken, caller must call complete()) or DROPPED
        """
        if self._state is SchedulerState.BUSY:
            self._dropped_busy += 1
            logger.debug(
                f"Dropping frame {frame.frame_id}: frame {self._in_flight_frame_id} in flight"
            )
            return Admission.DROPPED

        if (
            self._last_admitted_frame_id is not None
            and frame.frame_id < self._last_admitted_frame_id
        ):
            self._dropped_stale += 1
            logger.debug(
                f"Dropping stale frame {frame.frame_id} "
                f"(last admitted {self._last_admitted_frame_id})"
            )
            return Admission.DROPPED

        self._state = SchedulerState.BUSY
        self._last_admitted_frame_id = frame.frame_id
        self._in_flight_frame_id = frame.frame_id
        self._admitted += 1
        return Admission.ADMITTED

    def complete(self) -> None:
        """Release the slot. Safe to call when already idle."""
        self._state = SchedulerState.IDLE
        self._in_flight_frame_id = None

    def get_status(self) -> dict:
        """Get scheduler status."""
        return {
            "state": self._state.name,
            "last_admitted_frame_id": self._last_admitted_frame_id,
            "in_flight_frame_id": self._in_flight_frame_id,
            "admitted": self._admitted,
            "dropped_busy": self._dropped_busy,
            "dropped_stale": self._dropped_stale,
        }
