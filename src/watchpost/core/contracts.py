"""
Contracts and data model shared by the capture pipeline.

Camera configuration is validated with Pydantic so the supervisor can hand
immutable copies to every camera worker. Per-frame values (points, boxes,
engine output) are plain frozen dataclasses because they are created on the
hot path for every processed frame.
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def timestamp_string(moment: dt.datetime) -> str:
    """Format ``moment`` the way output files are named (local time)."""
    return moment.strftime(TIMESTAMP_FORMAT)


def local_now() -> dt.datetime:
    return dt.datetime.now().astimezone()


@dataclass(frozen=True)
class Point:
    """Integer pixel position in source-frame coordinates."""

    x: int
    y: int

    def distance_to(self, other: Point) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class DetectionResult:
    """
    Single person bounding box in source-frame pixels.

    ``width``/``height`` are corner differences taken straight from the model
    output and can be negative when the raw corners are inverted.
    """

    x: int
    y: int
    width: int
    height: int
    score: float = 0.0

    @property
    def center(self) -> Point:
        return Point(self.x + int(self.width / 2), self.y + int(self.height / 2))

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class EngineOutput:
    """Raw output tensors of an SSD-style detection model."""

    boxes: np.ndarray
    classes: np.ndarray
    scores: np.ndarray

    @property
    def count(self) -> int:
        return int(min(len(self.boxes), len(self.classes), len(self.scores)))


class PolygonPoint(BaseModel):
    """Boundary vertex as stored in configuration files."""

    model_config = ConfigDict(frozen=True)

    x: int
    y: int

    def as_point(self) -> Point:
        return Point(self.x, self.y)


class CameraConfig(BaseModel):
    """Per-camera settings, immutable once loaded."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(default="Security Camera")
    source: str = Field(default="", description="Stream URL, file path or device index.")
    monitor: bool = Field(default=False, description="Show a live preview window.")
    timelapse: bool = Field(default=False, description="Record an hourly timelapse.")
    boundary: tuple[PolygonPoint, ...] | None = Field(
        default=None,
        description="Optional polygon; detections outside it are ignored.",
    )
    trigger_frames: int = Field(default=1, ge=0)
    trigger_distance: float = Field(default=0.0, ge=0.0)

    @field_validator("boundary", mode="before")
    @classmethod
    def _coerce_boundary(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, Sequence) and not isinstance(value, str | bytes):
            points = []
            for item in value:
                if isinstance(item, Point):
                    points.append({"x": item.x, "y": item.y})
                elif isinstance(item, Sequence) and not isinstance(item, str | dict):
                    points.append({"x": item[0], "y": item[1]})
                else:
                    points.append(item)
            if len(points) < 3:
                raise ValueError("A boundary polygon needs at least 3 points.")
            return tuple(points)
        return value

    @property
    def polygon(self) -> list[Point] | None:
        if self.boundary is None:
            return None
        return [vertex.as_point() for vertex in self.boundary]

    @classmethod
    def single(
        cls,
        source: str = "",
        *,
        monitor: bool = False,
        timelapse: bool = False,
        boundary: Sequence[Point] | None = None,
    ) -> CameraConfig:
        """Default camera used when no multi-camera configuration is given."""
        return cls(
            source=source,
            monitor=monitor,
            timelapse=timelapse,
            boundary=list(boundary) if boundary else None,
        )


__all__ = [
    "TIMESTAMP_FORMAT",
    "CameraConfig",
    "DetectionResult",
    "EngineOutput",
    "Point",
    "PolygonPoint",
    "local_now",
    "timestamp_string",
]
