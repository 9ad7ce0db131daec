"""
Media writers: OpenCV video encoder and JPEG stills.

Everything here blocks on disk or codec work and is meant to be called
through ``asyncio.to_thread`` by the recording and timelapse workers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import cv2
import imageio.v3 as iio
import numpy as np

logger = logging.getLogger(__name__)


class EncoderError(RuntimeError):
    """Raised when a video file cannot be opened for writing."""


class FrameEncoder(Protocol):
    def write(self, frame: np.ndarray) -> None: ...

    def release(self) -> None: ...


EncoderFactory = Callable[[Path, float, tuple[int, int]], FrameEncoder]


class VideoEncoder:
    """Append-only MP4 writer sized to the stream's native frames."""

    def __init__(
        self,
        path: Path,
        fps: float,
        frame_size: tuple[int, int],
        *,
        codec: str = "mp4v",
    ) -> None:
        self.path = path
        fourcc = cv2.VideoWriter_fourcc(*codec)
        self._writer = cv2.VideoWriter(str(path), fourcc, float(fps), frame_size, True)
        if not self._writer.isOpened():
            raise EncoderError(
                f"Can't create video writer {path} "
                f"(codec={codec}, fps={fps:.2f}, size={frame_size[0]}x{frame_size[1]})"
            )
        logger.info("Creating new video file: %s", path)

    def write(self, frame: np.ndarray) -> None:
        self._writer.write(frame)

    def release(self) -> None:
        self._writer.release()


def video_encoder_factory(codec: str = "mp4v") -> EncoderFactory:
    def _open(path: Path, fps: float, frame_size: tuple[int, int]) -> FrameEncoder:
        return VideoEncoder(path, fps, frame_size, codec=codec)

    return _open


def write_photo(path: Path, frame: np.ndarray, *, quality: int = 90) -> Path:
    """Write a BGR frame as a JPEG still."""
    image = frame
    if image.ndim == 3 and image.shape[-1] == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    iio.imwrite(path, image, extension=".jpg", quality=quality)
    return path


__all__ = [
    "EncoderError",
    "EncoderFactory",
    "FrameEncoder",
    "VideoEncoder",
    "video_encoder_factory",
    "write_photo",
]
