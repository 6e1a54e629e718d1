"""Declaration models."""

from topoform.resources.base import (
    OutputDecl,
    OutputEntry,
    ResourceDecl,
    VariableDecl,
    VariableType,
)

__all__ = ["OutputDecl", "OutputEntry", "ResourceDecl", "VariableDecl", "VariableType"]
