"""
Continuous low-rate timelapse with hourly file rotation.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from pathlib import Path

import numpy as np

from ...core.contracts import timestamp_string
from ..output.notifier import Notifier
from .media import EncoderFactory, FrameEncoder

logger = logging.getLogger(__name__)


class TimelapseRotator:
    """
    Append one frame per tick and roll over to a new file at every full hour.

    Rotation happens on the first tick whose minute is zero; the guard flag
    keeps later ticks of that same minute from rotating again.
    """

    def __init__(
        self,
        camera_name: str,
        output_dir: Path,
        frame_size: tuple[int, int],
        *,
        encoder_factory: EncoderFactory,
        notifier: Notifier,
        fps: float = 1.5,
    ) -> None:
        self._camera_name = camera_name
        self._output_dir = output_dir
        self._frame_size = frame_size
        self._encoder_factory = encoder_factory
        self._notifier = notifier
        self._fps = fps
        self._encoder: FrameEncoder | None = None
        self.path: Path | None = None
        self.just_rotated = False

    async def open(self, now: dt.datetime) -> None:
        """Start a new file named after the camera and ``now``; errors propagate."""
        path = self._output_dir / f"{self._camera_name}{timestamp_string(now)}.mp4"
        self._encoder = await asyncio.to_thread(
            self._encoder_factory, path, self._fps, self._frame_size
        )
        self.path = path
        # a file opened during minute zero already belongs to this hour
        self.just_rotated = now.minute == 0

    async def tick(self, frame: np.ndarray, now: dt.datetime) -> bool:
        """Write ``frame``; return True when this tick rotated the file."""
        if self._encoder is None:
            await self.open(now)
        assert self._encoder is not None
        await asyncio.to_thread(self._encoder.write, frame)

        if now.minute != 0:
            self.just_rotated = False
            return False
        if self.just_rotated:
            return False
        self.just_rotated = True
        previous = self.path
        await self.close()
        if previous is not None:
            await self._notifier.timelapse_rotated(previous)
        await self.open(now)
        return True

    async def close(self) -> None:
        if self._encoder is None:
            return
        encoder, self._encoder = self._encoder, None
        await asyncio.to_thread(encoder.release)


__all__ = ["TimelapseRotator"]
