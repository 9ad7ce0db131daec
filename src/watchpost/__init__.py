"""
Watchpost - person triggered security camera recorder

Pulls live video from one or more cameras, detects people with a shared
inference engine and records pre-roll, event video and best-frame photos,
with an optional hourly timelapse per camera.
"""

__version__ = "0.1.0"

from watchpost.core import CameraConfig, ConfigService, ConfigSnapshot
from watchpost.pipeline import CameraPipeline, OutputDirectories
from watchpost.supervisor import CameraSupervisor

__all__ = [
    "CameraConfig",
    "CameraPipeline",
    "CameraSupervisor",
    "ConfigService",
    "ConfigSnapshot",
    "OutputDirectories",
]
