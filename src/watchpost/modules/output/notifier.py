"""
Fire-and-forget notifier that launches the user's shell scripts.

The recording pipeline only sees the three event methods; how (or whether)
the outside world is told about an event stays behind this seam.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol

from ...core.readiness import Readiness

logger = logging.getLogger(__name__)

Spawner = Callable[..., Awaitable[Any]]


class Notifier(Protocol):
    async def person_started(self, photo: Path) -> None: ...

    async def person_ended(self, photo: Path, video: Path) -> None: ...

    async def timelapse_rotated(self, video: Path) -> None: ...


class ScriptNotifier:
    """Launch ``notify_*.sh`` scripts without waiting for them to finish."""

    def __init__(
        self,
        *,
        start_person: Path | None = None,
        end_person: Path | None = None,
        timelapse_rollover: Path | None = None,
        spawn: Spawner | None = None,
    ) -> None:
        self._start_person = start_person
        self._end_person = end_person
        self._timelapse_rollover = timelapse_rollover
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._reapers: set[asyncio.Task[None]] = set()

    @classmethod
    def from_readiness(cls, readiness: Readiness) -> ScriptNotifier:
        return cls(
            start_person=readiness.start_person_script,
            end_person=readiness.end_person_script,
            timelapse_rollover=readiness.timelapse_rollover_script,
        )

    async def person_started(self, photo: Path) -> None:
        await self._call(self._start_person, photo)

    async def person_ended(self, photo: Path, video: Path) -> None:
        await self._call(self._end_person, photo, video)

    async def timelapse_rotated(self, video: Path) -> None:
        await self._call(self._timelapse_rollover, video)

    async def _call(self, script: Path | None, *arguments: Path) -> None:
        if script is None:
            return
        args = [str(argument) for argument in arguments]
        logger.info("Calling '%s %s'", script, " ".join(args))
        try:
            process = await self._spawn(str(script.resolve()), *args)
        except OSError as exc:
            logger.error("Error calling script %s: %s", script, exc)
            return
        task = asyncio.create_task(self._reap(script, process))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    async def _reap(self, script: Path, process: Any) -> None:
        returncode = await process.wait()
        if returncode:
            logger.warning("Script %s exited with status %s", script, returncode)


__all__ = ["Notifier", "ScriptNotifier"]
