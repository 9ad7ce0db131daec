"""
CLI entrypoint that validates the environment and runs the camera supervisor.

Single-camera mode is driven entirely by command-line flags; when the config
directory defines ``cameras`` every listed camera is supervised instead. All
cameras share one inference engine.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import signal
from collections.abc import Sequence
from pathlib import Path

from .core.config import ConfigError, ConfigService, ConfigSnapshot, load_polygon
from .core.contracts import CameraConfig
from .core.readiness import Readiness, StartupError, check_readiness
from .modules.event.media import video_encoder_factory
from .modules.output.notifier import Notifier, ScriptNotifier
from .modules.output.preview import PreviewWindow
from .modules.process.detector import (
    DetectionAdapter,
    InferenceEngine,
    InferenceUnavailable,
    SharedInference,
    build_engine,
)
from .pipeline import CameraPipeline, OutputDirectories
from .supervisor import CameraSupervisor, PipelineFactory

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def attach_file_log(log_file: Path, *, max_bytes: int = 10 * 1024 * 1024, backups: int = 3) -> None:
    """Mirror the console log into a size-rotated file under the capture root."""

    if not log_file.parent.is_dir():
        LOGGER.warning("Log directory %s does not exist; file logging disabled.", log_file.parent)
        return

    target = str(log_file.resolve())
    root = logging.getLogger()
    if any(getattr(handler, "baseFilename", None) == target for handler in root.handlers):
        return

    file_handler = logging.handlers.RotatingFileHandler(
        target, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)


def resolve_cameras(args: argparse.Namespace, snapshot: ConfigSnapshot) -> list[CameraConfig]:
    """Use the configured cameras, or build the single default camera from flags."""
    if snapshot.cameras:
        if args.source or args.polygon:
            LOGGER.warning("Cameras are configured; ignoring the command-line video source.")
        return list(snapshot.cameras)
    boundary = None
    if args.polygon:
        boundary = load_polygon(args.polygon)
        LOGGER.info("Read polygon file %s containing %d points.", args.polygon, len(boundary))
    return [
        CameraConfig.single(
            args.source or "",
            monitor=args.monitor,
            timelapse=args.timelapse,
            boundary=boundary,
        )
    ]


def build_pipeline_factory(
    snapshot: ConfigSnapshot,
    readiness: Readiness,
    detector: DetectionAdapter,
    notifier: Notifier,
) -> PipelineFactory:
    directories = OutputDirectories(
        people_video=readiness.people_video_dir,
        people_photos=readiness.people_photo_dir,
        timelapse=readiness.timelapse_dir,
    )
    encoder_factory = video_encoder_factory(snapshot.recording.video_codec)

    def _factory(camera: CameraConfig) -> CameraPipeline:
        preview = PreviewWindow(camera.name, camera.polygon) if camera.monitor else None
        return CameraPipeline(
            camera,
            detector=detector,
            notifier=notifier,
            directories=directories,
            encoder_factory=encoder_factory,
            recording=snapshot.recording,
            timelapse=snapshot.timelapse,
            preview=preview,
        )

    return _factory


async def run_cameras(
    snapshot: ConfigSnapshot,
    cameras: Sequence[CameraConfig],
    readiness: Readiness,
    engine: InferenceEngine,
) -> None:
    """Wire the shared detector and notifier, then supervise until interrupted."""
    detector = DetectionAdapter.from_settings(SharedInference(engine), snapshot.detection)
    notifier = ScriptNotifier.from_readiness(readiness)
    supervisor = CameraSupervisor(
        cameras,
        pipeline_factory=build_pipeline_factory(snapshot, readiness, detector, notifier),
        restart_backoff=snapshot.supervisor.restart_backoff_seconds,
    )
    _install_signal_handlers(supervisor)
    await supervisor.run()


def _install_signal_handlers(supervisor: CameraSupervisor) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(name: str) -> None:
        LOGGER.info("Received %s; stopping cameras.", name)
        loop.create_task(supervisor.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except NotImplementedError:
            # no loop signal support on this platform; Ctrl+C still raises KeyboardInterrupt
            LOGGER.debug("Signal handler for %s not installed.", sig.name)


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="watchpost",
        description="Person activated camera video stream monitoring and recording.",
    )
    parser.add_argument(
        "source",
        nargs="?",
        default=None,
        help="Video source URL, file or device index (default camera when omitted).",
    )
    parser.add_argument(
        "-m",
        "--monitor",
        action="store_true",
        help="Create monitor window showing real time feed.",
    )
    parser.add_argument(
        "-t",
        "--timelapse",
        action="store_true",
        help="Record timelapse files, continuous 1.5 fps with hourly rollover.",
    )
    parser.add_argument(
        "-p",
        "--polygon",
        type=Path,
        default=None,
        metavar="POLYGON_FILE",
        help="Use a boundary polygon; csv file with an x,y header and one point per line.",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/cameras.yaml (default: ./config if present).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        snapshot = ConfigService(config_dir=args.config_dir).snapshot
        cameras = resolve_cameras(args, snapshot)
        readiness = check_readiness(snapshot, cameras)
        attach_file_log(snapshot.storage.log_file)
        engine = build_engine(snapshot.detection)
        asyncio.run(run_cameras(snapshot, cameras, readiness, engine))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except (ConfigError, StartupError, InferenceUnavailable) as exc:
        LOGGER.error("Unable to proceed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("Watchpost crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = [
    "attach_file_log",
    "build_pipeline_factory",
    "main",
    "parse_args",
    "resolve_cameras",
    "run_cameras",
]
