"""Round lifecycle."""

from .lifecycle import RoundLifecycleController, check_released_draw

__all__ = ["RoundLifecycleController", "check_released_draw"]
