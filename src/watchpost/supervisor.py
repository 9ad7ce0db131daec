"""
Camera supervisor: one independently restarted capture loop per camera.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from .core.contracts import CameraConfig
from .pipeline import CameraPipeline

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[CameraConfig], CameraPipeline]


class CameraSupervisor:
    """
    Run every configured camera and restart it after a fixed backoff.

    Failures are handled inside each camera's own task, so a camera that is
    down or backing off never delays the others. There is no retry limit.
    """

    def __init__(
        self,
        cameras: Sequence[CameraConfig],
        *,
        pipeline_factory: PipelineFactory,
        restart_backoff: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._cameras = list(cameras)
        self._pipeline_factory = pipeline_factory
        self._restart_backoff = restart_backoff
        self._sleep = sleep or asyncio.sleep
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self.restarts: dict[str, int] = {camera.name: 0 for camera in self._cameras}

    async def run(self) -> None:
        """Supervise all cameras until each stops or ``stop`` is called."""
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._supervise(camera), name=f"watchpost-camera-{camera.name}")
            for camera in self._cameras
        ]
        logger.info("Supervising %d camera(s).", len(self._tasks))
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            if not self._stopping.is_set():
                raise
        finally:
            # cancelled loops still finalise their open recordings here
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

    async def stop(self) -> None:
        """Request shutdown; running capture loops are cancelled and cleaned up."""
        self._stopping.set()
        for task in self._tasks:
            task.cancel()

    async def _supervise(self, camera: CameraConfig) -> None:
        while not self._stopping.is_set():
            try:
                pipeline = self._pipeline_factory(camera)
                await pipeline.run()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - any failure restarts the camera
                logger.error("%s: camera stopped with error: %s", camera.name, exc)
            else:
                if pipeline.stop_requested:
                    logger.info("%s: camera stopped by operator.", camera.name)
                    return
                logger.warning("%s: camera loop ended unexpectedly.", camera.name)
            if self._stopping.is_set():
                return
            logger.info(
                "%s: restarting in %.0f seconds.", camera.name, self._restart_backoff
            )
            await self._sleep(self._restart_backoff)
            self.restarts[camera.name] += 1


__all__ = ["CameraSupervisor", "PipelineFactory"]
