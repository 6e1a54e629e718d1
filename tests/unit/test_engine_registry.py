import pytest

from topoform.engine.handlers import ResourceHandler
from topoform.engine.registry import ResourceTypeRegistry
from topoform.errors import UnknownResourceTypeError


class DummyHandler(ResourceHandler):
    pass


def test_registry_register_and_get() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register("aws_vpc", handler)

    assert registry.get("aws_vpc") is handler
    assert "aws_vpc" in registry
    assert list(registry) == ["aws_vpc"]


def test_registry_duplicate_registration() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register("aws_vpc", handler)
    with pytest.raises(ValueError, match="already registered"):
        registry.register("aws_vpc", handler)


def test_registry_rejects_empty_type() -> None:
    with pytest.raises(ValueError):
        ResourceTypeRegistry().register("", DummyHandler())


def test_registry_unknown_type() -> None:
    registry = ResourceTypeRegistry()
    with pytest.raises(UnknownResourceTypeError) as exc_info:
        registry.get("missing")
    assert exc_info.value.resource_type == "missing"


def test_handler_defaults() -> None:
    handler = DummyHandler()
    assert handler.force_new == frozenset()
    assert handler.validate(None, {}) == []  # type: ignore[arg-type]
