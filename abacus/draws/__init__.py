"""Draw algorithms, judge panels and the draw-ticket protocol."""

from .base import DrawAlgorithm, DrawInput, TeamsOfRoom, check_draw_input
from .engine import DrawEngine, DrawOutcome
from .panels import JudgeConflicts, allocate_panels, panel_size
from .power_paired import PowerPairedDraw
from .random_draw import RandomDraw
from .registry import DrawRegistry, draw_registry

__all__ = [
    "DrawAlgorithm",
    "DrawEngine",
    "DrawInput",
    "DrawOutcome",
    "DrawRegistry",
    "JudgeConflicts",
    "PowerPairedDraw",
    "RandomDraw",
    "TeamsOfRoom",
    "allocate_panels",
    "check_draw_input",
    "draw_registry",
    "panel_size",
]
