"""
Startup validation performed once before any camera worker is spawned.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .config import ConfigSnapshot
from .contracts import CameraConfig

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when a global precondition for running the cameras is not met."""


@dataclass(frozen=True)
class Readiness:
    """Outcome of the startup checks consumed by the supervisor wiring."""

    people_video_dir: Path
    people_photo_dir: Path
    timelapse_dir: Path | None
    start_person_script: Path | None
    end_person_script: Path | None
    timelapse_rollover_script: Path | None


def _script(path: Path, description: str) -> Path | None:
    if not path.exists():
        return None
    logger.info("'%s %s' will be called.", path, description)
    return path


def check_readiness(snapshot: ConfigSnapshot, cameras: Sequence[CameraConfig]) -> Readiness:
    """
    Verify output directories and discover notifier scripts.

    All missing directories are reported together in a single ``StartupError``.
    """
    storage = snapshot.storage
    timelapse_wanted = any(camera.timelapse for camera in cameras)
    required = [storage.people_video_dir, storage.people_photo_dir]
    if timelapse_wanted:
        required.append(storage.timelapse_dir)
    missing = [path for path in required if not path.is_dir()]
    for path in missing:
        logger.error("'%s' directory does not exist at this location.", path)
    if missing:
        raise StartupError(
            "Missing output directories: " + ", ".join(str(path) for path in missing)
        )

    notifications = snapshot.notifications
    return Readiness(
        people_video_dir=storage.people_video_dir,
        people_photo_dir=storage.people_photo_dir,
        timelapse_dir=storage.timelapse_dir if timelapse_wanted else None,
        start_person_script=_script(notifications.start_person, "<first-image-file>"),
        end_person_script=_script(notifications.end_person, "<best-image-file> <video-file>"),
        timelapse_rollover_script=(
            _script(notifications.timelapse_rollover, "<video-file>")
            if timelapse_wanted
            else None
        ),
    )


__all__ = ["Readiness", "StartupError", "check_readiness"]
