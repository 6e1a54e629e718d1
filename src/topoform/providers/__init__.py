"""Bundled providers."""

from topoform.providers.memory import MemoryCloud, MemoryHandler

__all__ = ["MemoryCloud", "MemoryHandler"]
