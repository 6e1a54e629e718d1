"""Input variable resolution.

Values come from (highest precedence first) explicit overrides, environment
variables named ``TOPOFORM_VAR_<name>``, the ``.env`` file next to the
declaration file, and finally the declared default. Text values are parsed as
YAML so lists and maps can be passed on the command line.
"""

from __future__ import annotations

import logging
import os
from io import StringIO
from typing import TYPE_CHECKING, Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from topoform.errors import ConfigurationError, EvaluationError
from topoform.lang.values import to_bool, to_number, to_string

if TYPE_CHECKING:
    from collections.abc import Mapping

    from topoform.resources.base import VariableDecl

logger = logging.getLogger(__name__)

ENV_PREFIX = "TOPOFORM_VAR_"


def parse_text_value(text: str) -> Any:
    """Interpret a command-line or environment value."""
    try:
        value = YAML(typ="safe").load(StringIO(text))
    except YAMLError:
        return text
    return text if value is None else value


def coerce_variable(name: str, decl: VariableDecl, value: Any) -> Any:
    """Enforce the declared type of a variable value."""
    kind = decl.type
    if kind is None:
        if decl.default is None:
            return value
        # Infer from the default.
        if isinstance(decl.default, list):
            kind = "list"
        elif isinstance(decl.default, dict):
            kind = "map"
        else:
            return value
    try:
        match kind:
            case "string":
                if isinstance(value, list | dict):
                    raise EvaluationError(f"expected a string, got {value!r}")
                return to_string(value)
            case "number":
                return to_number(value)
            case "bool":
                return to_bool(value)
            case "list":
                if not isinstance(value, list):
                    raise EvaluationError(f"expected a list, got {value!r}")
                return value
            case "map":
                if not isinstance(value, dict):
                    raise EvaluationError(f"expected a map, got {value!r}")
                return value
    except EvaluationError as e:
        raise ConfigurationError(f"Invalid value for variable '{name}': {e}") from e
    raise ConfigurationError(f"Unsupported type {kind!r} for variable '{name}'")  # pragma: no cover


def resolve_variables(
    declarations: Mapping[str, VariableDecl],
    *,
    overrides: Mapping[str, Any] | None = None,
    dotenv: Mapping[str, str | None] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Resolve every declared variable to a concrete value."""
    overrides = overrides or {}
    dotenv = dotenv or {}
    environ = os.environ if environ is None else environ

    unknown = sorted(set(overrides) - set(declarations))
    if unknown:
        raise ConfigurationError(f"Values given for undeclared variable(s): {', '.join(unknown)}")

    resolved: dict[str, Any] = {}
    missing: list[str] = []
    for name, decl in declarations.items():
        env_key = ENV_PREFIX + name
        raw: Any
        if name in overrides:
            raw, source = overrides[name], "override"
        elif env_key in environ:
            raw, source = environ[env_key], "environment"
        elif dotenv.get(env_key) is not None:
            raw, source = dotenv[env_key], ".env"
        elif decl.default is not None:
            raw, source = decl.default, "default"
        else:
            missing.append(name)
            continue
        # Text for string variables is kept exactly as written.
        if isinstance(raw, str) and source != "default" and decl.type != "string":
            value = parse_text_value(raw)
        else:
            value = raw
        resolved[name] = coerce_variable(name, decl, value)
        logger.debug("Variable %s resolved from %s", name, source)

    if missing:
        raise ConfigurationError(f"No value for required variable(s): {', '.join(missing)}")
    return resolved
