"""Configuration models for YAML declaration files."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from topoform.resources.base import (
    OutputEntry,  # noqa: TC001 - Pydantic needs this at runtime
    ResourceDecl,  # noqa: TC001 - Pydantic needs this at runtime
    VariableDecl,  # noqa: TC001 - Pydantic needs this at runtime
)


class EngineSettings(BaseSettings):
    """Engine tuning.

    Fields can be set in the ``settings:`` section of the YAML file or via
    environment variables with the ``TOPOFORM_`` prefix. YAML values take
    precedence.
    """

    model_config = SettingsConfigDict(env_prefix="TOPOFORM_", extra="forbid")

    parallelism: int = Field(default=10, ge=1)
    max_retries: int = Field(default=3, ge=0)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=8.0, ge=0)
    lock_timeout: float | None = None
    cloud_path: Path | None = Path(".topoform-cloud.json")


_RESOURCE_KEYS = frozenset({"type", "name", "count", "attributes", "depends_on"})


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


def _collect_attributes(v: Any) -> Any:
    """Allow attributes inline next to ``type``/``name`` (Terraform block style)."""
    if not isinstance(v, dict):
        return v
    inline = {k: val for k, val in v.items() if k not in _RESOURCE_KEYS}
    if not inline:
        return v
    entry = {k: val for k, val in v.items() if k in _RESOURCE_KEYS}
    attributes = dict(entry.get("attributes") or {})
    duplicated = sorted(set(inline) & set(attributes))
    if duplicated:
        raise ValueError(f"attribute(s) given twice: {', '.join(duplicated)}")
    entry["attributes"] = {**attributes, **inline}
    return entry


def _variable_shorthand(v: Any) -> Any:
    return v if isinstance(v, dict) else {"default": v}


_ResourceEntry = Annotated[ResourceDecl, BeforeValidator(_collect_attributes)]
_VariableEntry = Annotated[VariableDecl, BeforeValidator(_variable_shorthand)]


class Config(BaseModel):
    """Declaration file: validates YAML structure directly."""

    model_config = ConfigDict(extra="forbid")

    state_path: Path = Path(".topoform-state.json")
    settings: EngineSettings = Field(default_factory=EngineSettings)
    variables: Annotated[dict[str, _VariableEntry], BeforeValidator(_none_to_dict)] = {}
    resources: Annotated[list[_ResourceEntry], BeforeValidator(_none_to_list)] = []
    outputs: Annotated[dict[str, OutputEntry], BeforeValidator(_none_to_dict)] = {}
    config_dir: Path = Path()
