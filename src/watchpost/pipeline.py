"""
Per-camera capture loop.

One ``CameraPipeline`` instance lives for one stream attempt: it measures the
crop geometry from the first frame, then runs every frame through detection,
the boundary filter and the trigger state machine, feeding either the pre-event
buffer or the active recording session. Restarting a camera means building a
fresh pipeline, so no per-attempt state survives a stream failure.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .core.config import RecordingSettings, TimelapseSettings
from .core.contracts import CameraConfig, DetectionResult, local_now, timestamp_string
from .modules.event.media import EncoderFactory, write_photo
from .modules.event.recording import RecordingSession, SessionPaths
from .modules.event.ring_buffer import PreEventBuffer
from .modules.event.timelapse import TimelapseRotator
from .modules.input.stream import FrameSource, StreamClient, StreamError
from .modules.output.notifier import Notifier
from .modules.output.preview import PreviewWindow
from .modules.process.boundary import inside_polygon
from .modules.process.detector import CropGeometry, DetectionAdapter
from .modules.process.trigger import TriggerPhase, TriggerStateMachine

logger = logging.getLogger(__name__)

TICK = dt.timedelta(seconds=1)
FPS_REPORT_TICKS = 300


@dataclass(frozen=True)
class OutputDirectories:
    people_video: Path
    people_photos: Path
    timelapse: Path | None = None


class CameraPipeline:
    """Capture, detect, trigger and record for a single camera."""

    def __init__(
        self,
        camera: CameraConfig,
        *,
        detector: DetectionAdapter,
        notifier: Notifier,
        directories: OutputDirectories,
        encoder_factory: EncoderFactory,
        recording: RecordingSettings | None = None,
        timelapse: TimelapseSettings | None = None,
        client_factory: Callable[[str], FrameSource] | None = None,
        clock: Callable[[], dt.datetime] | None = None,
        preview: PreviewWindow | None = None,
    ) -> None:
        self.camera = camera
        self._detector = detector
        self._notifier = notifier
        self._directories = directories
        self._encoder_factory = encoder_factory
        self._recording = recording or RecordingSettings()
        self._timelapse_settings = timelapse or TimelapseSettings()
        self._client_factory = client_factory or StreamClient
        self._clock = clock or local_now
        self._preview = preview
        self._polygon = camera.polygon

        self._trigger = TriggerStateMachine(
            trigger_frames=camera.trigger_frames,
            trigger_distance=camera.trigger_distance,
            inactivity_timeout=dt.timedelta(seconds=self._recording.inactivity_seconds),
            camera_name=camera.name,
        )
        self._buffer: PreEventBuffer[np.ndarray] = PreEventBuffer(self._recording.buffer_frames)
        self._session: RecordingSession | None = None
        self._session_tasks: set[asyncio.Task[None]] = set()
        self._timelapse: TimelapseRotator | None = None
        self._geometry: CropGeometry | None = None

        self._tick_started: dt.datetime | None = None
        self._tick_frames = 0
        self._report_frames = 0
        self._report_ticks = 0
        self._last_reported_fps = 0
        self.fps = 0.0
        self.stop_requested = False

    @property
    def trigger(self) -> TriggerStateMachine:
        return self._trigger

    @property
    def buffer(self) -> PreEventBuffer[np.ndarray]:
        return self._buffer

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    @property
    def timelapse(self) -> TimelapseRotator | None:
        return self._timelapse

    async def run(self) -> None:
        """Stream until the source fails (``StreamError``) or a stop is requested."""
        client = self._client_factory(self.camera.source)
        await client.connect()
        try:
            first = await client.read()
            if first is None:
                raise StreamError(f"{self.camera.name}: stream delivered no frames")
            await self.prepare(first)
            while not self.stop_requested:
                frame = await client.read()
                if frame is None:
                    raise StreamError(f"{self.camera.name}: error reading frame from video stream")
                await self.process_frame(frame)
        finally:
            await self.shutdown()
            await client.close()

    async def prepare(self, first_frame: np.ndarray) -> None:
        """Measure crop geometry and open the timelapse from the first frame."""
        self._geometry = self._detector.geometry_for(first_frame)
        now = self._clock()
        self._tick_started = now
        if self.camera.timelapse and self._directories.timelapse is not None:
            logger.info("%s: Timelapse recording is enabled.", self.camera.name)
            self._timelapse = TimelapseRotator(
                self.camera.name,
                self._directories.timelapse,
                self._geometry.frame_size,
                encoder_factory=self._encoder_factory,
                notifier=self._notifier,
                fps=self._timelapse_settings.fps,
            )
            await self._timelapse.open(now)
        else:
            logger.info("%s: Timelapse recording is disabled.", self.camera.name)

    async def process_frame(self, frame: np.ndarray) -> None:
        if self._geometry is None:
            await self.prepare(frame)
        assert self._geometry is not None
        now = self._clock()

        detection = await self._detector.detect(frame, self._geometry)
        inside = False
        if detection is not None:
            inside = inside_polygon(self._polygon, detection.center)
            if inside:
                await self._observe(frame, detection, now)

        self._route(frame, now)

        self._tick_frames += 1
        self._report_frames += 1
        assert self._tick_started is not None
        if now - self._tick_started > TICK:
            await self._on_tick(frame, now)

        if self._preview is not None and self._preview.show(frame, detection, inside):
            logger.info("%s: monitor key pressed; stopping camera.", self.camera.name)
            self.stop_requested = True

    async def shutdown(self) -> None:
        """End any open session and wait for in-flight recordings to finish."""
        if self._session is not None:
            self._session.end()
            self._session = None
            self._trigger.deactivate()
        if self._session_tasks:
            await asyncio.gather(*list(self._session_tasks), return_exceptions=True)
        if self._timelapse is not None:
            await self._timelapse.close()
        if self._preview is not None:
            self._preview.close()

    async def _observe(
        self, frame: np.ndarray, detection: DetectionResult, now: dt.datetime
    ) -> None:
        update = self._trigger.observe(detection, now)
        if update.activated:
            await self._activate(frame, now)
        elif update.new_best:
            if self._session is None:
                logger.error("%s: best frame without a recording session.", self.camera.name)
                return
            self._session.send_best(frame, timestamp_string(now))

    def _route(self, frame: np.ndarray, now: dt.datetime) -> None:
        if self._trigger.phase is not TriggerPhase.ACTIVE:
            self._buffer.push(frame)
            return
        if self._session is None:
            logger.error("%s: recording is active but no session exists.", self.camera.name)
            return
        if self._trigger.expired(now):
            self._deactivate()
        else:
            self._session.send_frame(frame)

    async def _activate(self, frame: np.ndarray, now: dt.datetime) -> None:
        assert self._geometry is not None
        logger.info("%s: person detected - recording started to buffer", self.camera.name)
        paths = SessionPaths.at(
            self.camera.name,
            self._directories.people_video,
            self._directories.people_photos,
            now,
        )
        session = RecordingSession(
            paths,
            fps=self.fps or self._recording.fallback_fps,
            frame_size=self._geometry.frame_size,
            encoder_factory=self._encoder_factory,
            notifier=self._notifier,
            photo_quality=self._recording.photo_quality,
        )
        task = session.start()
        self._session_tasks.add(task)
        task.add_done_callback(self._on_session_done)
        for buffered in self._buffer.drain():
            session.send_frame(buffered)
        self._session = session

        try:
            await asyncio.to_thread(
                write_photo, paths.first_photo, frame, quality=self._recording.photo_quality
            )
        except (OSError, ValueError) as exc:
            logger.error(
                "%s: can't write first photo %s: %s", self.camera.name, paths.first_photo, exc
            )
        await self._notifier.person_started(paths.first_photo)

    def _deactivate(self) -> None:
        assert self._session is not None
        logger.info(
            "%s: no person for %.0f seconds; ending recording.",
            self.camera.name,
            self._recording.inactivity_seconds,
        )
        self._session.end()
        self._session = None
        self._trigger.deactivate()

    def _on_session_done(self, task: asyncio.Task[None]) -> None:
        self._session_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: recording session failed", self.camera.name, exc_info=exc)

    async def _on_tick(self, frame: np.ndarray, now: dt.datetime) -> None:
        assert self._tick_started is not None
        elapsed = (now - self._tick_started).total_seconds()
        self.fps = self._tick_frames / elapsed
        self._tick_frames = 0
        self._tick_started = now
        self._report_ticks += 1
        if self._report_ticks >= FPS_REPORT_TICKS:
            average = self._report_frames / self._report_ticks
            if int(average) != self._last_reported_fps:
                logger.info("%s: Average fps = %.1f", self.camera.name, average)
                self._last_reported_fps = int(average)
            self._report_ticks = 0
            self._report_frames = 0

        self._trigger.end_window()

        if self._timelapse is not None:
            await self._timelapse.tick(frame, now)


__all__ = ["CameraPipeline", "OutputDirectories"]
