"""Event modules: pre-event buffering, recording sessions and timelapse."""

from .media import EncoderError, VideoEncoder, write_photo
from .recording import RecordingSession, SessionPaths
from .ring_buffer import PreEventBuffer
from .timelapse import TimelapseRotator

__all__ = [
    "EncoderError",
    "PreEventBuffer",
    "RecordingSession",
    "SessionPaths",
    "TimelapseRotator",
    "VideoEncoder",
    "write_photo",
]
