"""Utility modules for infrastructure and helpers."""

from .memory_monitor import MemoryMonitor
from .logging_setup import setup_logger
from .tools import ToolPaths, Capabilities, detect_capabilities
from .indexing import ensure_variant_index, has_variant_index

__all__ = [
    "MemoryMonitor",
    "setup_logger",
    "ToolPaths",
    "Capabilities",
    "detect_capabilities",
    "ensure_variant_index",
    "has_variant_index",
]
