"""
Recording session: a worker task that owns the encoder for one person event.

The capture loop only enqueues messages; encoding, photo writing and the
end-of-event notification all happen in the worker so disk and codec latency
never delay frame acquisition.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from ...core.contracts import timestamp_string
from ..output.notifier import Notifier
from .media import EncoderError, EncoderFactory, FrameEncoder, write_photo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameMessage:
    frame: np.ndarray


@dataclass(frozen=True)
class BestFrameMessage:
    frame: np.ndarray
    timestamp: str


@dataclass(frozen=True)
class EndMessage:
    pass


SessionMessage = FrameMessage | BestFrameMessage | EndMessage


@dataclass(frozen=True)
class SessionPaths:
    """Output files of one recording session."""

    camera_name: str
    video: Path
    first_photo: Path
    photo_dir: Path

    @classmethod
    def at(
        cls, camera_name: str, video_dir: Path, photo_dir: Path, moment: dt.datetime
    ) -> SessionPaths:
        stamp = timestamp_string(moment)
        return cls(
            camera_name=camera_name,
            video=video_dir / f"{camera_name}{stamp}.mp4",
            first_photo=photo_dir / f"{camera_name}{stamp}-first.jpg",
            photo_dir=photo_dir,
        )

    def best_photo(self, timestamp: str) -> Path:
        return self.photo_dir / f"{self.camera_name}{timestamp}-best.jpg"


class RecordingSession:
    """One active recording, from trigger to inactivity timeout."""

    def __init__(
        self,
        paths: SessionPaths,
        *,
        fps: float,
        frame_size: tuple[int, int],
        encoder_factory: EncoderFactory,
        notifier: Notifier,
        photo_quality: int = 90,
    ) -> None:
        self.paths = paths
        self._fps = fps
        self._frame_size = frame_size
        self._encoder_factory = encoder_factory
        self._notifier = notifier
        self._photo_quality = photo_quality
        self._queue: asyncio.Queue[SessionMessage] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._ended = False
        self.frames_written = 0
        self.best_photo: Path | None = None

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(), name=f"watchpost-recording-{self.paths.camera_name}"
            )
        return self._task

    def send_frame(self, frame: np.ndarray) -> None:
        self._send(FrameMessage(frame))

    def send_best(self, frame: np.ndarray, timestamp: str) -> None:
        self._send(BestFrameMessage(frame, timestamp))

    def end(self) -> None:
        if self._ended:
            return
        self._queue.put_nowait(EndMessage())
        self._ended = True

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    def _send(self, message: SessionMessage) -> None:
        if self._ended:
            logger.debug("%s: session already ended; dropping message", self.paths.camera_name)
            return
        self._queue.put_nowait(message)

    async def _run(self) -> None:
        camera = self.paths.camera_name
        encoder: FrameEncoder | None = None
        try:
            encoder = await asyncio.to_thread(
                self._encoder_factory, self.paths.video, self._fps, self._frame_size
            )
        except EncoderError as exc:
            logger.error("%s: recording without video: %s", camera, exc)

        best: BestFrameMessage | None = None
        try:
            while True:
                message = await self._queue.get()
                if isinstance(message, EndMessage):
                    break
                if isinstance(message, BestFrameMessage):
                    best = message
                    continue
                if encoder is None:
                    continue
                try:
                    await asyncio.to_thread(encoder.write, message.frame)
                except (cv2.error, OSError) as exc:
                    logger.error("%s: can't write frame to %s: %s", camera, self.paths.video, exc)
                    continue
                self.frames_written += 1
        finally:
            if encoder is not None:
                await asyncio.to_thread(encoder.release)

        if best is not None:
            path = self.paths.best_photo(best.timestamp)
            try:
                await asyncio.to_thread(
                    write_photo, path, best.frame, quality=self._photo_quality
                )
                self.best_photo = path
            except (OSError, ValueError) as exc:
                logger.error("%s: can't write best photo %s: %s", camera, path, exc)

        logger.info("%s: person recording finished (%d frames).", camera, self.frames_written)
        if encoder is None:
            logger.warning("%s: no video was written; end notification skipped.", camera)
            return
        photo = self.best_photo or self.paths.first_photo
        await self._notifier.person_ended(photo, self.paths.video)


__all__ = [
    "BestFrameMessage",
    "EndMessage",
    "FrameMessage",
    "RecordingSession",
    "SessionMessage",
    "SessionPaths",
]
