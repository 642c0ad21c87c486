"""Background managers that observe the engine without owning puzzle state."""

from .diagnostics import DiagnosticsSnapshot, MemoryMonitor

__all__ = ["DiagnosticsSnapshot", "MemoryMonitor"]
