"""
Person detection adapter around a single shared inference engine.

The adapter crops the centre square of each frame, packs it into the model's
input tensor and decodes the SSD-style output tensors into at most one person
box in source-frame coordinates. Engines are pluggable so unit tests can run
with a scripted engine instead of an accelerator.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import cv2
import numpy as np

from ...core.config import DetectionSettings
from ...core.contracts import DetectionResult, EngineOutput

logger = logging.getLogger(__name__)

EDGETPU_LIBRARY = "libedgetpu.so.1"


class InferenceUnavailable(RuntimeError):
    """Raised when the inference runtime or its accelerator cannot be used."""


class InferenceEngine(Protocol):
    """Narrow capability exposed by every engine: one synchronous invocation."""

    def invoke(self, tensor: np.ndarray) -> EngineOutput: ...


def ssd_output_layout(details: Sequence[Mapping[str, Any]]) -> tuple[int, int, int]:
    """
    Tensor indices of ``(boxes, classes, scores)`` in an SSD postprocess output.

    Boxes are the only ``[1, N, 4]`` output and the count is ``[1]``. The two
    remaining ``[1, N]`` outputs come as classes then scores when boxes lead
    (TF1 exports), and as scores then classes otherwise (TF2 exports).
    """
    boxes = [detail for detail in details if len(detail["shape"]) == 3]
    per_candidate = [detail for detail in details if len(detail["shape"]) == 2]
    if len(boxes) != 1 or len(per_candidate) != 2:
        raise InferenceUnavailable(
            "Unsupported detection model outputs: "
            + ", ".join(f"{detail.get('name')}{list(detail['shape'])}" for detail in details)
        )
    if details[0] is boxes[0]:
        classes, scores = per_candidate
    else:
        scores, classes = per_candidate
    return boxes[0]["index"], classes["index"], scores["index"]


class TfliteEngine:
    """TensorFlow Lite interpreter, bound to an Edge TPU when requested."""

    def __init__(self, model_path: str, *, use_edgetpu: bool = True) -> None:
        try:
            from tflite_runtime.interpreter import Interpreter, load_delegate
        except ModuleNotFoundError as exc:  # pragma: no cover - import guard
            raise InferenceUnavailable("tflite_runtime is not installed") from exc

        delegates = []
        if use_edgetpu:
            try:
                delegates.append(load_delegate(EDGETPU_LIBRARY))
            except (OSError, ValueError) as exc:
                raise InferenceUnavailable("Can't find EdgeTPU device.") from exc
            logger.info("Using EdgeTPU delegate %s", EDGETPU_LIBRARY)
        try:
            self._interpreter = Interpreter(
                model_path=model_path, experimental_delegates=delegates
            )
            self._interpreter.allocate_tensors()
        except (OSError, RuntimeError, ValueError) as exc:
            raise InferenceUnavailable(f"Can't load model {model_path}: {exc}") from exc

        inputs = self._interpreter.get_input_details()
        outputs = self._interpreter.get_output_details()
        self._input_index = inputs[0]["index"]
        self._output_indices = ssd_output_layout(outputs)
        logger.info(
            "Successfully created tflite interpreter with %d inputs, %d outputs "
            "(boxes=%d, classes=%d, scores=%d)",
            len(inputs),
            len(outputs),
            *self._output_indices,
        )

    def invoke(self, tensor: np.ndarray) -> EngineOutput:  # pragma: no cover - hardware
        self._interpreter.set_tensor(self._input_index, tensor)
        self._interpreter.invoke()
        boxes, classes, scores = (
            self._interpreter.get_tensor(index)[0] for index in self._output_indices
        )
        return EngineOutput(boxes=boxes, classes=classes, scores=scores)


class UltralyticsEngine:
    """
    YOLO model exposed through the same normalised SSD output contract.

    Useful on hosts without an accelerator; boxes are converted from pixels
    to ``[ymin, xmin, ymax, xmax]`` fractions of the input tensor.
    """

    def __init__(self, model_path: str | None = None) -> None:
        try:
            from ultralytics import YOLO
        except ModuleNotFoundError as exc:  # pragma: no cover - import guard
            raise InferenceUnavailable("Ultralytics is not installed") from exc
        self._model = YOLO(model_path or "yolov8n.pt")

    def invoke(self, tensor: np.ndarray) -> EngineOutput:  # pragma: no cover - heavy
        # Ultralytics treats numpy input as BGR.
        image = np.ascontiguousarray(tensor[0][..., ::-1])
        height, width = image.shape[:2]
        rows: list[tuple[float, float, float, float]] = []
        classes: list[float] = []
        scores: list[float] = []
        for result in self._model(image, verbose=False):
            boxes = getattr(result, "boxes", None)
            if boxes is None:
                continue
            for xyxy, cls_id, conf in zip(boxes.xyxy, boxes.cls, boxes.conf, strict=False):
                x1, y1, x2, y2 = (float(value) for value in xyxy.tolist())
                rows.append((y1 / height, x1 / width, y2 / height, x2 / width))
                classes.append(float(cls_id))
                scores.append(float(conf))
        return EngineOutput(
            boxes=np.asarray(rows, dtype=np.float32).reshape(-1, 4),
            classes=np.asarray(classes, dtype=np.float32),
            scores=np.asarray(scores, dtype=np.float32),
        )


def build_engine(settings: DetectionSettings) -> InferenceEngine:
    """Create the engine named in the detection settings."""
    model_path = settings.resolved_model_path()
    if settings.engine == "ultralytics":
        return UltralyticsEngine(model_path)
    return TfliteEngine(model_path, use_edgetpu=settings.use_edgetpu)


class SharedInference:
    """
    Single engine instance shared by every camera worker.

    All access goes through ``infer`` which holds one lock for the whole
    invocation, so the engine is never entered by two cameras at once.
    """

    def __init__(self, engine: InferenceEngine) -> None:
        self._engine = engine
        self._lock = asyncio.Lock()

    async def infer(self, tensor: np.ndarray) -> EngineOutput:
        async with self._lock:
            return await asyncio.to_thread(self._engine.invoke, tensor)


@dataclass(frozen=True)
class CropGeometry:
    """Centre-square crop measured once from the first frame of a stream."""

    scale: float
    offset_x: int
    offset_y: int
    side: int
    frame_width: int
    frame_height: int

    @classmethod
    def from_frame(cls, frame: np.ndarray, resolution: int) -> CropGeometry:
        height, width = frame.shape[:2]
        if width <= 0 or height <= 0:
            raise ValueError("Cannot measure crop geometry from an empty frame.")
        scale = min(width / resolution, height / resolution)
        side = int(resolution * scale)
        return cls(
            scale=scale,
            offset_x=(width - side) // 2,
            offset_y=(height - side) // 2,
            side=side,
            frame_width=width,
            frame_height=height,
        )

    @property
    def frame_size(self) -> tuple[int, int]:
        return self.frame_width, self.frame_height


class DetectionAdapter:
    """Turn raw frames into at most one confident person detection."""

    def __init__(
        self,
        inference: SharedInference,
        *,
        resolution: int = 320,
        threshold: float = 0.75,
        person_class: int = 0,
        max_candidates: int = 50,
    ) -> None:
        self._inference = inference
        self._resolution = resolution
        self._threshold = threshold
        self._person_class = person_class
        self._max_candidates = max_candidates

    @classmethod
    def from_settings(
        cls, inference: SharedInference, settings: DetectionSettings
    ) -> DetectionAdapter:
        return cls(
            inference,
            resolution=settings.resolution,
            threshold=settings.threshold,
            person_class=settings.person_class,
            max_candidates=settings.max_candidates,
        )

    @property
    def resolution(self) -> int:
        return self._resolution

    def geometry_for(self, frame: np.ndarray) -> CropGeometry:
        return CropGeometry.from_frame(frame, self._resolution)

    def prepare(self, frame: np.ndarray, geometry: CropGeometry) -> np.ndarray:
        """Crop, resize and swap BGR to RGB into a ``[1, R, R, 3]`` tensor."""
        crop = frame[
            geometry.offset_y : geometry.offset_y + geometry.side,
            geometry.offset_x : geometry.offset_x + geometry.side,
        ]
        if crop.size == 0:
            raise ValueError("Crop region lies outside the frame.")
        resized = cv2.resize(
            crop, (self._resolution, self._resolution), interpolation=cv2.INTER_AREA
        )
        return np.ascontiguousarray(resized[..., ::-1])[np.newaxis, ...]

    def decode(self, output: EngineOutput, geometry: CropGeometry) -> DetectionResult | None:
        """Return the first candidate, in output order, that is a confident person."""
        span = self._resolution * geometry.scale
        for index in range(min(self._max_candidates, output.count)):
            if int(output.classes[index]) != self._person_class:
                continue
            score = float(output.scores[index])
            if score <= self._threshold:
                continue
            ymin, xmin, ymax, xmax = (float(value) for value in output.boxes[index][:4])
            x = int(xmin * span) + geometry.offset_x
            y = int(ymin * span) + geometry.offset_y
            right = int(xmax * span) + geometry.offset_x
            bottom = int(ymax * span) + geometry.offset_y
            return DetectionResult(x=x, y=y, width=right - x, height=bottom - y, score=score)
        return None

    async def detect(self, frame: np.ndarray, geometry: CropGeometry) -> DetectionResult | None:
        try:
            tensor = self.prepare(frame, geometry)
        except (cv2.error, ValueError) as exc:
            logger.error("Error extracting crop from frame: %s", exc)
            return None
        try:
            output = await self._inference.infer(tensor)
        except Exception:  # noqa: BLE001 - engine failures only cost this frame
            logger.exception("Inference invoke failed")
            return None
        return self.decode(output, geometry)


__all__ = [
    "CropGeometry",
    "DetectionAdapter",
    "InferenceEngine",
    "InferenceUnavailable",
    "SharedInference",
    "TfliteEngine",
    "UltralyticsEngine",
    "build_engine",
    "ssd_output_layout",
]
