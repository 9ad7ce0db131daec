"""
Optional on-screen monitor for a camera.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import cv2
import numpy as np

from ...core.contracts import DetectionResult, Point

logger = logging.getLogger(__name__)

INSIDE_COLOR = (64, 240, 64)
OUTSIDE_COLOR = (64, 64, 240)
BOUNDARY_COLOR = (128, 192, 192)


class PreviewWindow:
    """HighGUI window showing the live feed, boundary and detection box."""

    def __init__(self, title: str, boundary: Sequence[Point] | None = None) -> None:
        self._title = title
        self._boundary = boundary
        self._opened = False

    def show(
        self,
        frame: np.ndarray,
        detection: DetectionResult | None = None,
        inside: bool = True,
    ) -> bool:
        """Render ``frame``; return True when a key press asks to stop the camera."""
        if not self._opened:
            cv2.namedWindow(self._title, cv2.WINDOW_AUTOSIZE)
            self._opened = True
            logger.info("Opened monitor window for %s", self._title)
        canvas = frame.copy()
        if self._boundary:
            points = np.array([(p.x, p.y) for p in self._boundary], dtype=np.int32)
            cv2.polylines(canvas, [points], True, BOUNDARY_COLOR, 1, cv2.LINE_8)
        if detection is not None:
            color = INSIDE_COLOR if inside else OUTSIDE_COLOR
            corner = (detection.x + detection.width, detection.y + detection.height)
            cv2.rectangle(canvas, (detection.x, detection.y), corner, color, 2, cv2.LINE_8)
        cv2.imshow(self._title, canvas)
        key = cv2.waitKey(5)
        return key > 0 and key != 255

    def close(self) -> None:
        if self._opened:
            cv2.destroyWindow(self._title)
            self._opened = False


__all__ = ["PreviewWindow"]
