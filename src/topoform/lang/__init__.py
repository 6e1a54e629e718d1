"""Interpolation language: parsing, built-in functions and evaluation."""

from topoform.lang.evaluator import Evaluator, Scope, evaluate, evaluate_value
from topoform.lang.nodes import Node, ResourceRef, resource_refs, variable_refs
from topoform.lang.parser import parse_expression, parse_template, parse_value
from topoform.lang.values import UNKNOWN, UNKNOWN_MARKER, contains_unknown, for_display

__all__ = [
    "UNKNOWN",
    "UNKNOWN_MARKER",
    "Evaluator",
    "Node",
    "ResourceRef",
    "Scope",
    "contains_unknown",
    "evaluate",
    "evaluate_value",
    "for_display",
    "parse_expression",
    "parse_template",
    "parse_value",
    "resource_refs",
    "variable_refs",
]
