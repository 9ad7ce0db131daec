from __future__ import annotations

import datetime as dt
import textwrap
from pathlib import Path

import numpy as np
import pytest

from watchpost.core.config import ConfigService
from watchpost.core.contracts import DetectionResult
from watchpost.modules.process.detector import CropGeometry
from watchpost.pipeline import OutputDirectories


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def _make_frame(value: int = 0, *, width: int = 64, height: int = 48) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


class FakeClock:
    """Manually advanced local-time clock."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2024, 5, 4, 9, 30, 0)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> dt.datetime:
        self.now += dt.timedelta(seconds=seconds)
        return self.now


class FakeEncoder:
    def __init__(self, path: Path, fps: float, frame_size: tuple[int, int]) -> None:
        self.path = path
        self.fps = fps
        self.frame_size = frame_size
        self.frames: list[np.ndarray] = []
        self.released = False

    def write(self, frame: np.ndarray) -> None:
        assert not self.released
        self.frames.append(frame)

    def release(self) -> None:
        self.released = True


class EncoderRecorder:
    """Encoder factory that keeps every encoder it opened."""

    def __init__(self) -> None:
        self.encoders: list[FakeEncoder] = []

    def __call__(self, path: Path, fps: float, frame_size: tuple[int, int]) -> FakeEncoder:
        encoder = FakeEncoder(path, fps, frame_size)
        self.encoders.append(encoder)
        return encoder

    def under(self, directory: Path) -> list[FakeEncoder]:
        return [encoder for encoder in self.encoders if encoder.path.parent == directory]


class RecordingNotifier:
    def __init__(self) -> None:
        self.started: list[Path] = []
        self.ended: list[tuple[Path, Path]] = []
        self.rotated: list[Path] = []

    async def person_started(self, photo: Path) -> None:
        self.started.append(photo)

    async def person_ended(self, photo: Path, video: Path) -> None:
        self.ended.append((photo, video))

    async def timelapse_rotated(self, video: Path) -> None:
        self.rotated.append(video)


class ScriptedDetector:
    """Detector double returning one scripted result per processed frame."""

    def __init__(self, results: list[DetectionResult | None] | None = None) -> None:
        self.results = list(results or [])
        self.calls = 0

    def geometry_for(self, frame: np.ndarray) -> CropGeometry:
        return CropGeometry.from_frame(frame, 32)

    async def detect(self, frame: np.ndarray, geometry: CropGeometry) -> DetectionResult | None:
        self.calls += 1
        if not self.results:
            return None
        return self.results.pop(0)


def _box_at(cx: int, cy: int, size: int = 10) -> DetectionResult:
    """Detection whose centre lands exactly on ``(cx, cy)``."""
    return DetectionResult(x=cx - size // 2, y=cy - size // 2, width=size, height=size, score=0.9)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def encoders() -> EncoderRecorder:
    return EncoderRecorder()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def output_dirs(tmp_path: Path) -> OutputDirectories:
    root = tmp_path / "captures"
    video = root / "people" / "video"
    photos = root / "people" / "photos"
    timelapse = root / "timelapse"
    for path in (video, photos, timelapse):
        path.mkdir(parents=True)
    return OutputDirectories(people_video=video, people_photos=photos, timelapse=timelapse)


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    captures_dir = tmp_path / "captures"
    config_yaml = f"""
    storage:
      root: "{captures_dir.as_posix()}"

    detection:
      engine: "ultralytics"
      threshold: 0.6
      resolution: 320

    recording:
      buffer_frames: 90
      inactivity_seconds: 20

    timelapse:
      fps: 2.0

    supervisor:
      restart_backoff_seconds: 5
    """
    cameras_yaml = """
    cameras:
      - name: "Front"
        source: "rtsp://example.test/front"
        monitor: true
        timelapse: true
        trigger_frames: 2
        trigger_distance: 5.0
        boundary:
          - {x: 0, y: 0}
          - {x: 100, y: 0}
          - {x: 100, y: 100}
          - {x: 0, y: 100}
      - name: "Garden"
        source: "rtsp://example.test/garden"
        monitor: false
        polygon_file: "garden.csv"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "cameras.yaml", cameras_yaml)
    polygon_csv = "x,y\n10,10\n200,10\n200,150\n10,150\n"
    (config_dir / "garden.csv").write_text(polygon_csv, encoding="utf-8")
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)


@pytest.fixture
def make_frame():
    return _make_frame


@pytest.fixture
def box_at():
    return _box_at


@pytest.fixture
def scripted_detector():
    return ScriptedDetector
