"""Declarative resource graph resolver and plan/apply engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("topoform")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
