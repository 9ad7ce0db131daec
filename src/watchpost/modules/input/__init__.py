"""Input modules responsible for acquiring frames from video streams."""

from .stream import StreamClient, StreamError

__all__ = ["StreamClient", "StreamError"]
