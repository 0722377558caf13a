"""Rebuild a ``Region`` model from what the provider currently holds."""

from __future__ import annotations

import asyncio
from typing import Any

from sye_fabric.aws.ec2 import RegionHandle, ipv6_association, subnet_ipv6_block
from sye_fabric.models import Region, SecurityGroupRole, Subnet
from sye_fabric.tags.tagging import NAME_TAG, core_tag_key, get_tag, has_tag


def to_subnet(cluster_id: str, raw: dict[str, Any]) -> Subnet:
    return Subnet(
        id=raw["SubnetId"],
        name=get_tag(raw.get("Tags"), NAME_TAG),
        zone=raw.get("AvailabilityZone", "")[-1:],
        ipv4_block=raw.get("CidrBlock", ""),
        ipv6_block=subnet_ipv6_block(raw),
        vpc_id=raw.get("VpcId", ""),
        core=has_tag(raw.get("Tags"), core_tag_key(cluster_id)),
    )


def cluster_groups(groups: list[dict[str, Any]]) -> dict[str, str]:
    """Map the four fixed group names to ids, ignoring the VPC's own default."""
    return {
        g["GroupName"]: g["GroupId"]
        for g in groups
        if SecurityGroupRole.from_group_name(g["GroupName"]) is not None
    }


async def load_region(handle: RegionHandle, cluster_id: str) -> Region | None:
    """Describe the cluster's network in *handle*'s region, or ``None``."""
    vpc = await handle.find_vpc(cluster_id)
    if vpc is None:
        return None
    vpc_id = vpc["VpcId"]

    subnets, groups, gateways, route_tables = await asyncio.gather(
        handle.find_subnets(vpc_id),
        handle.find_security_groups(vpc_id),
        handle.find_attached_gateways(vpc_id),
        handle.find_route_tables(cluster_id, vpc_id),
    )
    assoc = ipv6_association(vpc) or {}
    return Region(
        region_id=handle.region,
        vpc_id=vpc_id,
        ipv6_block=assoc.get("Ipv6CidrBlock", ""),
        internet_gateway_id=gateways[0]["InternetGatewayId"] if gateways else None,
        route_table_id=route_tables[0]["RouteTableId"] if route_tables else None,
        subnets=sorted((to_subnet(cluster_id, s) for s in subnets), key=lambda s: s.name),
        security_groups=cluster_groups(groups),
    )
