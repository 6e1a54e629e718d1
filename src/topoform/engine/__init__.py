"""Graph building, planning and apply engine."""

from topoform.engine.builder import GraphBuilder, ResourceGraph, ResourceInstance, build_graph
from topoform.engine.engine import Engine
from topoform.engine.executor import Executor
from topoform.engine.handlers import ProviderContext, ResourceHandler
from topoform.engine.planner import Planner
from topoform.engine.registry import ResourceTypeRegistry
from topoform.engine.types import (
    Action,
    ApplyResult,
    FailedChange,
    Plan,
    PlanMetadata,
    ResourceChange,
)
from topoform.engine.variables import resolve_variables

__all__ = [
    "Action",
    "ApplyResult",
    "Engine",
    "Executor",
    "FailedChange",
    "GraphBuilder",
    "Plan",
    "PlanMetadata",
    "Planner",
    "ProviderContext",
    "ResourceChange",
    "ResourceGraph",
    "ResourceHandler",
    "ResourceInstance",
    "ResourceTypeRegistry",
    "build_graph",
    "resolve_variables",
]
