"""Core infrastructure components: persisted state."""

from topoform.core.state import ResourceRecord, State, StateStore

__all__ = ["ResourceRecord", "State", "StateStore"]
