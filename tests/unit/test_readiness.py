from __future__ import annotations

import logging
from pathlib import Path

import pytest

from watchpost.core.config import ConfigSnapshot, NotificationSettings, StorageSettings
from watchpost.core.contracts import CameraConfig
from watchpost.core.readiness import StartupError, check_readiness


def _snapshot(tmp_path: Path) -> ConfigSnapshot:
    return ConfigSnapshot(
        storage=StorageSettings(root=tmp_path / "captures"),
        notifications=NotificationSettings(
            start_person=tmp_path / "notify_start_person.sh",
            end_person=tmp_path / "notify_end_person.sh",
            timelapse_rollover=tmp_path / "notify_timelapse_rollover.sh",
        ),
    )


def _make_dirs(snapshot: ConfigSnapshot, *, timelapse: bool) -> None:
    snapshot.storage.people_video_dir.mkdir(parents=True)
    snapshot.storage.people_photo_dir.mkdir(parents=True)
    if timelapse:
        snapshot.storage.timelapse_dir.mkdir(parents=True)


def test_all_missing_directories_reported_together(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    snapshot = _snapshot(tmp_path)
    cameras = [CameraConfig.single(timelapse=True)]

    with caplog.at_level(logging.ERROR), pytest.raises(StartupError) as excinfo:
        check_readiness(snapshot, cameras)

    message = str(excinfo.value)
    assert str(snapshot.storage.people_video_dir) in message
    assert str(snapshot.storage.people_photo_dir) in message
    assert str(snapshot.storage.timelapse_dir) in message
    assert caplog.text.count("directory does not exist") == 3


def test_timelapse_dir_only_required_when_enabled(tmp_path: Path) -> None:
    snapshot = _snapshot(tmp_path)
    _make_dirs(snapshot, timelapse=False)

    readiness = check_readiness(snapshot, [CameraConfig.single()])

    assert readiness.timelapse_dir is None
    assert readiness.people_video_dir == snapshot.storage.people_video_dir

    with pytest.raises(StartupError):
        check_readiness(snapshot, [CameraConfig.single(timelapse=True)])


def test_scripts_discovered_when_present(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    snapshot = _snapshot(tmp_path)
    _make_dirs(snapshot, timelapse=True)
    snapshot.notifications.start_person.write_text("#!/bin/sh\n", encoding="utf-8")
    snapshot.notifications.timelapse_rollover.write_text("#!/bin/sh\n", encoding="utf-8")

    with caplog.at_level(logging.INFO):
        readiness = check_readiness(snapshot, [CameraConfig.single(timelapse=True)])

    assert readiness.start_person_script == snapshot.notifications.start_person
    assert readiness.end_person_script is None
    assert readiness.timelapse_rollover_script == snapshot.notifications.timelapse_rollover
    assert readiness.timelapse_dir == snapshot.storage.timelapse_dir
    assert "<first-image-file>' will be called." in caplog.text


def test_rollover_script_ignored_without_timelapse(tmp_path: Path) -> None:
    snapshot = _snapshot(tmp_path)
    _make_dirs(snapshot, timelapse=False)
    snapshot.notifications.timelapse_rollover.write_text("#!/bin/sh\n", encoding="utf-8")

    readiness = check_readiness(snapshot, [CameraConfig.single()])

    assert readiness.timelapse_rollover_script is None
