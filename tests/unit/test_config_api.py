"""Tests for the config convenience API, end to end on the bundled VPC example."""

from __future__ import annotations

import ipaddress
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from topoform.config import (
    drift,
    engine_from_config,
    outputs,
    plan,
    plan_and_apply,
    refresh,
    save_state,
)
from topoform.core.state import State
from topoform.engine.types import Action
from topoform.errors import ConfigurationError
from topoform.providers.memory import MemoryCloud

if TYPE_CHECKING:
    from collections.abc import Callable

    from topoform.config.schema import Config

_VPC_EXAMPLE = Path(__file__).resolve().parents[2] / "examples" / "vpc" / "topoform.yaml"


@pytest.fixture
def vpc(make_config: Callable[..., Config]) -> Config:
    return make_config(_VPC_EXAMPLE.read_text())


def _counts(config: Config) -> dict[str, int]:
    counts: dict[str, int] = {}
    for rec in State.load(config.state_path).resources.values():
        counts[rec.key] = counts.get(rec.key, 0) + 1
    return counts


class TestVpcExample:
    def test_nat_gateways_by_default(self, vpc: Config) -> None:
        result = plan_and_apply(vpc)

        assert result.ok
        assert len(result.applied) == 20
        assert _counts(vpc) == {
            "aws_vpc.main": 1,
            "aws_internet_gateway.main": 1,
            "aws_subnet.external": 2,
            "aws_route_table.external": 1,
            "aws_route.external": 1,
            "aws_route_table_association.external": 2,
            "aws_subnet.internal": 2,
            "aws_route_table.internal": 2,
            "aws_route_table_association.internal": 2,
            "aws_eip.nat": 2,
            "aws_nat_gateway.nat": 2,
            "aws_route.nat_gateway": 2,
        }

        state = State.load(vpc.state_path)
        vpc_id = state.resources["aws_vpc.main"].external_id
        subnet = state.resources["aws_subnet.internal[1]"].attributes
        assert subnet["vpc_id"] == vpc_id
        assert subnet["cidr_block"] == "10.0.2.0/24"
        assert subnet["availability_zone"] == "eu-west-1b"
        assert subnet["tags"] == {"Name": "demo-internal-002"}

        nat = state.resources["aws_nat_gateway.nat[0]"]
        assert nat.attributes["subnet_id"] == state.resources["aws_subnet.external[0]"].external_id
        assert "aws_internet_gateway.main" in nat.dependencies

        recorded = outputs(vpc)
        assert recorded["vpc_id"] == {"value": vpc_id, "sensitive": False}
        ips = recorded["nat_public_ips"]["value"]
        assert len(ips) == 2
        assert all(
            ipaddress.ip_address(ip) in ipaddress.ip_network("203.0.113.0/24") for ip in ips
        )

    def test_second_plan_is_empty(self, vpc: Config) -> None:
        plan_and_apply(vpc)
        assert not plan(vpc).has_changes()

    def test_switch_to_nat_instances(self, vpc: Config) -> None:
        plan_and_apply(vpc)

        p = plan(vpc, overrides={"use_nat_instances": "true"})
        changed = {(c.key, c.action) for c in p.changes if c.action != Action.NOOP}
        assert changed == {
            ("aws_security_group.nat", Action.CREATE),
            ("aws_instance.nat", Action.CREATE),
            ("aws_route.nat_instance", Action.CREATE),
            ("aws_eip.nat", Action.DELETE),
            ("aws_nat_gateway.nat", Action.DELETE),
            ("aws_route.nat_gateway", Action.DELETE),
        }
        assert p.summary() == {"create": 5, "update": 0, "delete": 6, "no-op": 14}

        engine_from_config(vpc).apply(p)

        state = State.load(vpc.state_path)
        sg_id = state.resources["aws_security_group.nat[0]"].external_id
        instance = state.resources["aws_instance.nat[1]"].attributes
        assert instance["vpc_security_group_ids"] == [sg_id]
        assert instance["source_dest_check"] is False
        assert ipaddress.ip_address(instance["private_ip"]) in ipaddress.ip_network("10.0.0.0/8")
        route = state.resources["aws_route.nat_instance[1]"].attributes
        assert route["instance_id"] == state.resources["aws_instance.nat[1]"].external_id
        assert outputs(vpc)["nat_public_ips"]["value"] == []

    def test_destroy_removes_everything(self, vpc: Config) -> None:
        plan_and_apply(vpc)

        plan_and_apply(vpc, destroy=True)

        assert State.load(vpc.state_path).resources == {}
        assert outputs(vpc) == {}
        assert len(MemoryCloud(vpc.settings.cloud_path)) == 0

    def test_invalid_cidr_fails_validation(self, vpc: Config) -> None:
        with pytest.raises(ConfigurationError, match="invalid cidr_block"):
            plan(vpc, overrides={"cidr": "10.0.0.0/99"})


class TestDrift:
    def test_refresh_reports_drift_and_save_state_persists(self, vpc: Config) -> None:
        plan_and_apply(vpc)
        state = State.load(vpc.state_path)
        vpc_id = state.resources["aws_vpc.main"].external_id
        cloud = MemoryCloud(vpc.settings.cloud_path)
        cloud.update(vpc_id, {"enable_dns_hostnames": False})
        igw_id = state.resources["aws_internet_gateway.main"].external_id
        cloud.delete(igw_id)

        changes, new_state = refresh(vpc)

        assert [(c.address, c.action) for c in changes] == [
            ("aws_vpc.main", Action.UPDATE),
            ("aws_internet_gateway.main", Action.DELETE),
        ]
        assert changes[0].diff == {"enable_dns_hostnames": {"from": True, "to": False}}
        assert State.load(vpc.state_path).serial == state.serial

        save_state(vpc, new_state)
        saved = State.load(vpc.state_path)
        assert saved.serial == state.serial + 1
        assert "aws_internet_gateway.main" not in saved.resources
        assert drift(vpc) == []
