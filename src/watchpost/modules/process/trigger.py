"""
Per-camera trigger state machine.

Evidence (qualifying frames and movement of the detection centre) is collected
inside a rolling tick window of about one second. Recording starts as soon as
both the frame count and the travelled distance exceed the camera thresholds
within one window, and stops once no qualifying detection has been seen for
the inactivity timeout.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass

from ...core.contracts import DetectionResult, Point

logger = logging.getLogger(__name__)


class TriggerPhase(enum.Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    ACTIVE = "active"


@dataclass(frozen=True)
class TriggerUpdate:
    """What a qualifying detection changed."""

    activated: bool = False
    new_best: bool = False
    area: int = 0


class TriggerStateMachine:
    """Decide when a camera starts and stops an active recording session."""

    def __init__(
        self,
        *,
        trigger_frames: int = 1,
        trigger_distance: float = 0.0,
        inactivity_timeout: dt.timedelta = dt.timedelta(seconds=30),
        camera_name: str = "camera",
    ) -> None:
        self._trigger_frames = trigger_frames
        self._trigger_distance = trigger_distance
        self._inactivity_timeout = inactivity_timeout
        self._camera_name = camera_name
        self.active = False
        self.consecutive_qualifying_frames = 0
        self.cumulative_distance = 0.0
        self.last_center: Point | None = None
        self.best_area_seen = 0
        self.last_detection_time: dt.datetime | None = None

    @property
    def phase(self) -> TriggerPhase:
        if self.active:
            return TriggerPhase.ACTIVE
        if self.consecutive_qualifying_frames:
            return TriggerPhase.ACCUMULATING
        return TriggerPhase.IDLE

    def observe(self, detection: DetectionResult, now: dt.datetime) -> TriggerUpdate:
        """
        Account for one detection that lies inside the boundary.

        Returns whether this detection activated recording and whether it is
        the largest box of the running session. The activating detection sets
        the session's reference area; the first photo already holds its frame.
        """
        self.last_detection_time = now
        area = detection.area
        center = detection.center
        if self.last_center is not None:
            self.cumulative_distance += center.distance_to(self.last_center)
        self.last_center = center
        self.consecutive_qualifying_frames += 1

        if self.active:
            if area > self.best_area_seen:
                self.best_area_seen = area
                return TriggerUpdate(new_best=True, area=area)
            return TriggerUpdate(area=area)

        if (
            self.consecutive_qualifying_frames > self._trigger_frames
            and self.cumulative_distance > self._trigger_distance
        ):
            self.active = True
            self.best_area_seen = area
            logger.info(
                "%s: person trigger after %d frames, distance %.1f",
                self._camera_name,
                self.consecutive_qualifying_frames,
                self.cumulative_distance,
            )
            return TriggerUpdate(activated=True, area=area)
        return TriggerUpdate(area=area)

    def expired(self, now: dt.datetime) -> bool:
        """Whether an active session has gone without detections for too long."""
        if not self.active or self.last_detection_time is None:
            return False
        return now - self.last_detection_time > self._inactivity_timeout

    def deactivate(self) -> None:
        self.active = False
        self.best_area_seen = 0

    def end_window(self) -> None:
        """Close the current tick window; evidence never carries over."""
        if not self.active and self.consecutive_qualifying_frames > 0:
            logger.info(
                "%s: failed trigger, frames: %d, distance: %.1f",
                self._camera_name,
                self.consecutive_qualifying_frames,
                self.cumulative_distance,
            )
        self.consecutive_qualifying_frames = 0
        self.cumulative_distance = 0.0
        self.last_center = None


__all__ = ["TriggerPhase", "TriggerStateMachine", "TriggerUpdate"]
