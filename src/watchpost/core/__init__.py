"""
Core infrastructure for Watchpost: data contracts, configuration loading and
startup readiness checks.
"""

from .config import ConfigError, ConfigService, ConfigSnapshot, load_polygon
from .contracts import (
    CameraConfig,
    DetectionResult,
    EngineOutput,
    Point,
    local_now,
    timestamp_string,
)
from .readiness import Readiness, StartupError, check_readiness

__all__ = [
    "CameraConfig",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "DetectionResult",
    "EngineOutput",
    "Point",
    "Readiness",
    "StartupError",
    "check_readiness",
    "load_polygon",
    "local_now",
    "timestamp_string",
]
