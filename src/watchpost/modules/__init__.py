"""
Building blocks of the per-camera pipeline grouped by responsibility.
"""

from .event.recording import RecordingSession, SessionPaths
from .event.ring_buffer import PreEventBuffer
from .event.timelapse import TimelapseRotator
from .input.stream import StreamClient, StreamError
from .output.notifier import ScriptNotifier
from .output.preview import PreviewWindow
from .process.boundary import inside_polygon
from .process.detector import DetectionAdapter, SharedInference
from .process.trigger import TriggerStateMachine

__all__ = [
    "DetectionAdapter",
    "PreEventBuffer",
    "PreviewWindow",
    "RecordingSession",
    "ScriptNotifier",
    "SessionPaths",
    "SharedInference",
    "StreamClient",
    "StreamError",
    "TimelapseRotator",
    "TriggerStateMachine",
    "inside_polygon",
]
