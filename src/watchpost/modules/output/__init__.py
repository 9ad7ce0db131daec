"""Output modules."""

from .notifier import Notifier, ScriptNotifier
from .preview import PreviewWindow

__all__ = ["Notifier", "PreviewWindow", "ScriptNotifier"]
