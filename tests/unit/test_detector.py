from __future__ import annotations

import asyncio
import threading
import time

import numpy as np
import pytest

from watchpost.core.config import DetectionSettings
from watchpost.core.contracts import EngineOutput
from watchpost.modules.process.detector import (
    CropGeometry,
    DetectionAdapter,
    InferenceUnavailable,
    SharedInference,
    ssd_output_layout,
)


def make_output(rows: list[tuple[tuple[float, float, float, float], int, float]]) -> EngineOutput:
    return EngineOutput(
        boxes=np.asarray([row[0] for row in rows], dtype=np.float32).reshape(-1, 4),
        classes=np.asarray([row[1] for row in rows], dtype=np.float32),
        scores=np.asarray([row[2] for row in rows], dtype=np.float32),
    )


class ScriptedEngine:
    def __init__(self, output: EngineOutput | None = None, *, delay: float = 0.0) -> None:
        self.output = output or make_output([])
        self.delay = delay
        self.tensors: list[np.ndarray] = []
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def invoke(self, tensor: np.ndarray) -> EngineOutput:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            self.tensors.append(tensor)
            return self.output
        finally:
            with self._guard:
                self.active -= 1


class FailingEngine:
    def invoke(self, tensor: np.ndarray) -> EngineOutput:
        raise RuntimeError("accelerator went away")


def bgr_frame(width: int = 640, height: int = 480) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[..., 0] = 10
    frame[..., 1] = 20
    frame[..., 2] = 30
    return frame


@pytest.fixture
def geometry() -> CropGeometry:
    return CropGeometry.from_frame(bgr_frame(), 320)


def test_geometry_is_centred_square(geometry: CropGeometry) -> None:
    assert geometry.scale == pytest.approx(1.5)
    assert geometry.side == 480
    assert geometry.offset_x == 80
    assert geometry.offset_y == 0
    assert geometry.frame_size == (640, 480)


def test_geometry_for_portrait_frame() -> None:
    geometry = CropGeometry.from_frame(bgr_frame(width=320, height=640), 160)
    assert geometry.side == 320
    assert geometry.offset_x == 0
    assert geometry.offset_y == 160


def test_geometry_rejects_empty_frame() -> None:
    with pytest.raises(ValueError):
        CropGeometry.from_frame(np.zeros((0, 0, 3), dtype=np.uint8), 320)


def test_prepare_builds_rgb_tensor(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(ScriptedEngine()))
    tensor = adapter.prepare(bgr_frame(), geometry)

    assert tensor.shape == (1, 320, 320, 3)
    assert tensor.dtype == np.uint8
    assert tensor[0, 0, 0].tolist() == [30, 20, 10]
    assert tensor[0, 319, 319].tolist() == [30, 20, 10]


def test_decode_denormalises_into_frame_coordinates(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(ScriptedEngine()))
    output = make_output([((0.125, 0.25, 0.5, 0.75), 0, 0.9)])

    detection = adapter.decode(output, geometry)

    assert detection is not None
    assert (detection.x, detection.y) == (200, 60)
    assert (detection.width, detection.height) == (240, 180)
    assert detection.score == pytest.approx(0.9)


def test_decode_returns_first_accepted_candidate(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(ScriptedEngine()))
    output = make_output(
        [
            ((0.0, 0.0, 0.25, 0.25), 17, 0.99),
            ((0.0, 0.0, 0.25, 0.25), 0, 0.75),
            ((0.5, 0.5, 0.75, 0.75), 0, 0.8),
            ((0.0, 0.0, 0.5, 0.5), 0, 0.95),
        ]
    )

    detection = adapter.decode(output, geometry)

    assert detection is not None
    assert detection.score == pytest.approx(0.8)
    assert (detection.x, detection.y) == (320, 240)


def test_decode_without_person_returns_none(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(ScriptedEngine()), threshold=0.5)
    output = make_output([((0.0, 0.0, 0.5, 0.5), 2, 0.9), ((0.0, 0.0, 0.5, 0.5), 0, 0.4)])
    assert adapter.decode(output, geometry) is None


def test_decode_respects_candidate_limit(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(ScriptedEngine()), max_candidates=1)
    output = make_output([((0.0, 0.0, 0.5, 0.5), 3, 0.9), ((0.0, 0.0, 0.5, 0.5), 0, 0.9)])
    assert adapter.decode(output, geometry) is None


def test_decode_keeps_inverted_corners(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(ScriptedEngine()))
    output = make_output([((0.5, 0.5, 0.25, 0.25), 0, 0.9)])

    detection = adapter.decode(output, geometry)

    assert detection is not None
    assert detection.width == -120
    assert detection.height == -120


@pytest.mark.asyncio
async def test_detect_runs_engine(geometry: CropGeometry) -> None:
    engine = ScriptedEngine(make_output([((0.125, 0.25, 0.5, 0.75), 0, 0.9)]))
    adapter = DetectionAdapter.from_settings(SharedInference(engine), DetectionSettings())

    detection = await adapter.detect(bgr_frame(), geometry)

    assert detection is not None
    assert detection.x == 200
    assert len(engine.tensors) == 1


@pytest.mark.asyncio
async def test_detect_swallows_engine_failure(geometry: CropGeometry) -> None:
    adapter = DetectionAdapter(SharedInference(FailingEngine()))
    assert await adapter.detect(bgr_frame(), geometry) is None


@pytest.mark.asyncio
async def test_detect_rejects_frame_smaller_than_crop(geometry: CropGeometry) -> None:
    engine = ScriptedEngine()
    adapter = DetectionAdapter(SharedInference(engine))
    tiny = np.zeros((0, 10, 3), dtype=np.uint8)

    assert await adapter.detect(tiny, geometry) is None
    assert engine.tensors == []


@pytest.mark.asyncio
async def test_shared_inference_never_overlaps() -> None:
    engine = ScriptedEngine(delay=0.02)
    shared = SharedInference(engine)
    tensor = np.zeros((1, 8, 8, 3), dtype=np.uint8)

    await asyncio.gather(*(shared.infer(tensor) for _ in range(4)))

    assert len(engine.tensors) == 4
    assert engine.max_active == 1


def _detail(name: str, index: int, shape: tuple[int, ...]) -> dict:
    return {"name": name, "index": index, "shape": np.array(shape, dtype=np.int32)}


def test_output_layout_for_boxes_first_models() -> None:
    details = [
        _detail("TFLite_Detection_PostProcess", 250, (1, 10, 4)),
        _detail("TFLite_Detection_PostProcess:1", 251, (1, 10)),
        _detail("TFLite_Detection_PostProcess:2", 252, (1, 10)),
        _detail("TFLite_Detection_PostProcess:3", 253, (1,)),
    ]
    assert ssd_output_layout(details) == (250, 251, 252)


def test_output_layout_for_scores_first_models() -> None:
    details = [
        _detail("StatefulPartitionedCall:1", 410, (1, 25)),
        _detail("StatefulPartitionedCall:3", 408, (1, 25, 4)),
        _detail("StatefulPartitionedCall:0", 411, (1,)),
        _detail("StatefulPartitionedCall:2", 409, (1, 25)),
    ]
    assert ssd_output_layout(details) == (408, 409, 410)


def test_output_layout_rejects_non_ssd_models() -> None:
    with pytest.raises(InferenceUnavailable):
        ssd_output_layout([_detail("logits", 7, (1, 1001))])
