"""Processing modules that analyse frames and decide when to record."""

from .boundary import inside_polygon
from .detector import DetectionAdapter, SharedInference
from .trigger import TriggerStateMachine

__all__ = ["DetectionAdapter", "SharedInference", "TriggerStateMachine", "inside_polygon"]
