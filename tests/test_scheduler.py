"""
Tests for FrameScheduler admission control.
"""

import numpy as np
import pytest

from visionworker.inference.codec import Frame
from visionworker.worker.scheduler import Admission, FrameScheduler, SchedulerState


def _frame(frame_id: int) -> Frame:
    return Frame.from_array(np.zeros((2, 2, 4), dtype=np.uint8), frame_id=frame_id)


@pytest.fixture
def scheduler():
    return FrameScheduler()


class TestFrameScheduler:
    """Tests for FrameScheduler.submit()/complete()."""

    def test_initial_state(self, scheduler):
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.last_admitted_frame_id is None

    def test_admit_when_idle(self, scheduler):
        assert scheduler.submit(_frame(1)) is Admission.ADMITTED
        assert scheduler.state is SchedulerState.BUSY
        assert scheduler.last_admitted_frame_id == 1

    def test_drop_while_busy(self, scheduler):
        """Frames 2 and 3 arriving while 1 is in flight are dropped."""
        results = [scheduler.submit(_frame(i)) for i in (1, 2, 3)]
        assert results == [Admission.ADMITTED, Admission.DROPPED, Admission.DROPPED]
        assert scheduler.last_admitted_frame_id == 1

    def test_complete_frees_slot(self, scheduler):
        scheduler.submit(_frame(1))
        scheduler.complete()
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.submit(_frame(2)) is Admission.ADMITTED

    def test_stale_after_completion(self, scheduler):
        """After 5 completes, 4 is stale."""
        scheduler.submit(_frame(5))
        scheduler.complete()
        assert scheduler.submit(_frame(4)) is Admission.DROPPED
        assert scheduler.state is SchedulerState.IDLE

    def test_same_id_not_stale(self, scheduler):
        scheduler.submit(_frame(5))
        scheduler.complete()
        assert scheduler.submit(_frame(5)) is Admission.ADMITTED

    def test_new_after_completion(self, scheduler):
        scheduler.submit(_frame(1))
        scheduler.complete()
        assert scheduler.submit(_frame(5)) is Admission.ADMITTED
        scheduler.complete()
        assert scheduler.submit(_frame(4)) is Admission.DROPPED

    def test_last_admitted_monotonic(self, scheduler):
        seen = []
        for frame_id in (3, 1, 7, 2, 7, 10, 9):
            if scheduler.submit(_frame(frame_id)) is Admission.ADMITTED:
                scheduler.complete()
            seen.append(scheduler.last_admitted_frame_id)
        assert seen == sorted(seen)
        assert seen[-1] == 10

    def test_complete_when_idle_is_harmless(self, scheduler):
        scheduler.complete()
        assert scheduler.state is SchedulerState.IDLE

    def test_status_counters(self, scheduler):
        scheduler.submit(_frame(2))
        scheduler.submit(_frame(3))
        scheduler.complete()
        scheduler.submit(_frame(1))

        status = scheduler.get_status()
        assert status["admitted"] == 1
        assert status["dropped_busy"] == 1
        assert status["dropped_stale"] == 1
        assert status["state"] == "IDLE"
        assert status["last_admitted_frame_id"] == 2
        assert status["in_flight_frame_id"] is None
