"""
Assembly: plan timeline construction and MoviePy rendering.
"""
from .exceptions import AssemblyError
from .timeline import SourceKind, Timeline, TimelineEntry, build_timeline, find_segment
from .engine import AssemblyEngine, clamp_range, create_thumbnail, resize_to_fill

__all__ = [
    "AssemblyError",
    "SourceKind",
    "Timeline",
    "TimelineEntry",
    "build_timeline",
    "find_segment",
    "AssemblyEngine",
    "clamp_range",
    "create_thumbnail",
    "resize_to_fill",
]
