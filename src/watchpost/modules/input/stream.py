"""
Video stream client used by the capture loop.

The default implementation relies on OpenCV, but the pipeline accepts any
object with the same three coroutines so tests can inject scripted frames.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)


class StreamError(RuntimeError):
    """Raised when a video stream cannot be opened or stops delivering frames."""


class FrameSource(Protocol):
    async def connect(self) -> None: ...

    async def read(self) -> np.ndarray | None: ...

    async def close(self) -> None: ...


def resolve_source(source: str) -> int | str:
    """Empty sources open the default camera; bare digits select a device index."""
    cleaned = source.strip()
    if not cleaned:
        return 0
    if cleaned.isdigit():
        return int(cleaned)
    return cleaned


class StreamClient:
    """``cv2.VideoCapture`` for URLs, files and devices, driven from worker threads."""

    def __init__(self, source: str) -> None:
        self._source = resolve_source(source)
        self._video = None

    async def connect(self) -> None:
        import cv2  # deferred so tests that inject frames never load the codec stack

        video = await asyncio.to_thread(cv2.VideoCapture, self._source)
        if not video.isOpened():
            await asyncio.to_thread(video.release)
            raise StreamError(f"Can't open video stream {self._source!r}")
        self._video = video
        if self._source == 0:
            logger.info("Opening default video stream.")
        else:
            logger.info("Opening video stream at %s", self._source)

    async def read(self) -> np.ndarray | None:
        """Next frame, or None once the stream has failed or ended."""
        if self._video is None:
            return None
        grabbed, frame = await asyncio.to_thread(self._video.read)
        if not grabbed or frame is None or frame.size == 0:
            return None
        return frame

    async def close(self) -> None:
        video, self._video = self._video, None
        if video is not None:
            await asyncio.to_thread(video.release)


__all__ = ["FrameSource", "StreamClient", "StreamError", "resolve_source"]
