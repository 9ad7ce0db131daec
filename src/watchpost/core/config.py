"""
Dynaconf-powered configuration loader with Pydantic validation.

The configuration service loads the layered YAML files from a config
directory, validates them, and produces an immutable snapshot holding the
global settings plus the list of cameras to supervise. Single-camera runs
need no files at all: every section falls back to its defaults.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, ClassVar, Literal

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .contracts import CameraConfig, Point


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


def _section_list(raw: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """List-aware helper for case-insensitive lookups."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        return [value]
    return []


CONFIG_FILENAMES = ("config.yaml", "cameras.yaml")
DEFAULT_CONFIG_DIR = Path("config")


class ConfigError(RuntimeError):
    """Raised when configuration or polygon files are missing or invalid."""


class StorageSettings(BaseModel):
    """Output directory layout under the capture root."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    root: Path = Field(default=Path("captures"))
    people_subdir: str = Field(default="people")
    timelapse_subdir: str = Field(default="timelapse")
    log_filename: str = Field(default="watchpost.log")

    @field_validator("root", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value
        return Path(value)

    @property
    def people_video_dir(self) -> Path:
        return self.root / self.people_subdir / "video"

    @property
    def people_photo_dir(self) -> Path:
        return self.root / self.people_subdir / "photos"

    @property
    def timelapse_dir(self) -> Path:
        return self.root / self.timelapse_subdir

    @property
    def log_file(self) -> Path:
        return self.root / self.log_filename


class DetectionSettings(BaseModel):
    """Inference engine selection and person-detection thresholds."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    DEFAULT_TFLITE_MODEL: ClassVar[str] = "ssdlite_mobiledet_coco_qat_postprocess_edgetpu.tflite"

    engine: Literal["tflite", "ultralytics"] = Field(default="tflite")
    model_path: str | None = Field(default=None)
    use_edgetpu: bool = Field(default=True)
    resolution: int = Field(default=320, gt=0)
    threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    person_class: int = Field(default=0, ge=0)
    max_candidates: int = Field(default=50, gt=0)

    def resolved_model_path(self) -> str:
        if self.model_path:
            return self.model_path
        if self.engine == "tflite":
            return self.DEFAULT_TFLITE_MODEL
        return "yolov8n.pt"


class RecordingSettings(BaseModel):
    """Pre-roll buffer and recording session tuning."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    buffer_frames: int = Field(default=150, gt=0)
    inactivity_seconds: float = Field(default=30.0, gt=0.0)
    fallback_fps: float = Field(default=15.0, gt=0.0)
    video_codec: str = Field(default="mp4v", min_length=4, max_length=4)
    photo_quality: int = Field(default=90, ge=1, le=100)


class TimelapseSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    fps: float = Field(default=1.5, gt=0.0)


class SupervisorSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    restart_backoff_seconds: float = Field(default=10.0, ge=0.0)


class NotificationSettings(BaseModel):
    """External scripts invoked on person and timelapse events."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    start_person: Path = Field(default=Path("notify_start_person.sh"))
    end_person: Path = Field(default=Path("notify_end_person.sh"))
    timelapse_rollover: Path = Field(default=Path("notify_timelapse_rollover.sh"))


class ConfigSnapshot(BaseModel):
    """Validated, immutable view of the whole configuration."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    storage: StorageSettings = Field(default_factory=StorageSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    recording: RecordingSettings = Field(default_factory=RecordingSettings)
    timelapse: TimelapseSettings = Field(default_factory=TimelapseSettings)
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    cameras: tuple[CameraConfig, ...] = Field(default_factory=tuple)

    def camera_by_name(self, name: str) -> CameraConfig:
        for camera in self.cameras:
            if camera.name == name:
                return camera
        raise KeyError(f"Unknown camera '{name}'")


def load_polygon(path: str | Path) -> list[Point]:
    """
    Read a boundary polygon from a CSV file with an ``x,y`` header.

    Raises ``ConfigError`` when the file cannot be read or a row is malformed.
    """
    polygon_path = Path(path)
    try:
        with polygon_path.open(newline="", encoding="utf-8") as handle:
            reader = csv.DictReader(handle)
            points: list[Point] = []
            for line_number, row in enumerate(reader, start=2):
                try:
                    points.append(Point(int(row["x"]), int(row["y"])))
                except (KeyError, TypeError, ValueError) as exc:
                    raise ConfigError(
                        f"Error in polygon file {polygon_path} at line {line_number}: {exc}"
                    ) from exc
    except OSError as exc:
        raise ConfigError(f"Can't read polygon file {polygon_path}: {exc}") from exc
    return points


class ConfigService:
    """
    Runtime facade for loading and validating configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        if config_dir and not existing_files:
            raise ConfigError(
                f"No configuration files found in {self._config_dir}. "
                f"Expected one of: {', '.join(CONFIG_FILENAMES)}."
            )

        self._settings = settings or Dynaconf(
            envvar_prefix="WATCHPOST",
            settings_files=existing_files,
            environments=False,
        )
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def _build_snapshot(self) -> ConfigSnapshot:
        data = self._extract_snapshot_data(self._settings.as_dict())
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc

    def _extract_snapshot_data(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "storage": _section(raw, "storage"),
            "detection": _section(raw, "detection"),
            "recording": _section(raw, "recording"),
            "timelapse": _section(raw, "timelapse"),
            "supervisor": _section(raw, "supervisor"),
            "notifications": _section(raw, "notifications"),
            "cameras": [self._camera_entry(entry) for entry in _section_list(raw, "cameras")],
        }

    def _camera_entry(self, entry: dict[str, Any]) -> dict[str, Any]:
        camera = dict(entry)
        polygon_file = camera.pop("polygon_file", None)
        if polygon_file and not camera.get("boundary"):
            path = Path(polygon_file)
            if not path.is_absolute() and (self._config_dir / path).exists():
                path = self._config_dir / path
            camera["boundary"] = load_polygon(path)
        return camera


__all__ = [
    "CONFIG_FILENAMES",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "DetectionSettings",
    "NotificationSettings",
    "RecordingSettings",
    "StorageSettings",
    "SupervisorSettings",
    "TimelapseSettings",
    "load_polygon",
]
