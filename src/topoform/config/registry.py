"""Default resource type registry factory."""

from __future__ import annotations

from topoform.engine.registry import ResourceTypeRegistry
from topoform.providers.memory import MemoryCloud, MemoryHandler, fake_ip


def default_registry(cloud: MemoryCloud | None = None) -> ResourceTypeRegistry:
    """Create a fresh registry with the bundled networking types.

    All handlers share one ``MemoryCloud``; a new unpersisted one is used when
    *cloud* is omitted.
    """
    cloud = cloud if cloud is not None else MemoryCloud()
    registry = ResourceTypeRegistry()

    registry.register(
        "aws_vpc", MemoryHandler(cloud, "vpc", required=["cidr_block"], force_new=["cidr_block"])
    )
    registry.register(
        "aws_subnet",
        MemoryHandler(
            cloud,
            "subnet",
            required=["vpc_id", "cidr_block"],
            force_new=["vpc_id", "cidr_block", "availability_zone"],
        ),
    )
    registry.register(
        "aws_internet_gateway",
        MemoryHandler(cloud, "igw", required=["vpc_id"], force_new=["vpc_id"]),
    )
    registry.register(
        "aws_route_table", MemoryHandler(cloud, "rtb", required=["vpc_id"], force_new=["vpc_id"])
    )
    registry.register(
        "aws_route",
        MemoryHandler(
            cloud,
            "r",
            required=["route_table_id", "destination_cidr_block"],
            force_new=["route_table_id", "destination_cidr_block"],
        ),
    )
    registry.register(
        "aws_route_table_association",
        MemoryHandler(
            cloud,
            "rtbassoc",
            required=["subnet_id", "route_table_id"],
            force_new=["subnet_id"],
        ),
    )
    registry.register(
        "aws_eip",
        MemoryHandler(cloud, "eipalloc", computed={"public_ip": fake_ip("203.0.113.0/24")}),
    )
    registry.register(
        "aws_nat_gateway",
        MemoryHandler(
            cloud,
            "nat",
            required=["allocation_id", "subnet_id"],
            force_new=["allocation_id", "subnet_id"],
        ),
    )
    registry.register(
        "aws_instance",
        MemoryHandler(
            cloud,
            "i",
            required=["ami", "instance_type"],
            force_new=["ami", "subnet_id"],
            computed={"private_ip": fake_ip("10.0.0.0/8")},
        ),
    )
    registry.register(
        "aws_security_group",
        MemoryHandler(cloud, "sg", required=["vpc_id"], force_new=["vpc_id", "name"]),
    )

    return registry
