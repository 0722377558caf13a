"""Region provisioner: builds one region's share of the cluster network.

Creates, in dependency order:

1. a VPC with an Amazon-provided /56 IPv6 block (waits for association)
2. one subnet per availability zone, IPv4 ``10.0.(i*16).0/20`` and the
   i-th /64 of the VPC's IPv6 block
3. an internet gateway and a route table with default IPv4/IPv6 routes,
   associated with every subnet
4. the four fixed security groups with their static ingress rules

Steps 2, 3 and 4 only depend on the VPC and run concurrently.

Every step looks for its object first (by cluster tag or deterministic
name) and reuses it when it exists with the expected shape, so re-running
after a partial failure converges instead of duplicating.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sye_fabric.aws.ec2 import RegionHandle, ipv6_associated, ipv6_association
from sye_fabric.aws.session import AwsSession
from sye_fabric.errors import ProviderError, ShapeConflictError
from sye_fabric.models import (
    ANY_IPV4,
    ANY_IPV6,
    STATIC_INGRESS_RULES,
    Region,
    SecurityGroupRole,
    Subnet,
)
from sye_fabric.network.cidr import derive_zone_block, ipv4_zone_block
from sye_fabric.region.lookup import cluster_groups, to_subnet
from sye_fabric.tags.tagging import build_tags, subnet_name

logger = logging.getLogger(__name__)

ROUTE_TABLE_NAME = "sye-cluster-route-table"


class RegionProvisioner:
    """Idempotently build the network for one cluster region."""

    def __init__(self, session: AwsSession) -> None:
        self._session = session

    async def provision(self, cluster_id: str, region_id: str) -> Region:
        handle = self._session.region(region_id)

        zones = await handle.availability_zones()
        if not zones:
            raise ProviderError(f"{region_id}: no availability zones available")
        logger.info("%s: availability zones %s", region_id, ", ".join(zones))

        vpc = await self._ensure_vpc(handle, cluster_id)
        vpc_id = vpc["VpcId"]
        vpc_block = ipv6_association(vpc)["Ipv6CidrBlock"]

        subnets, (gateway_id, route_table), groups = await asyncio.gather(
            self._ensure_subnets(handle, cluster_id, vpc_id, vpc_block, zones),
            self._ensure_routing(handle, cluster_id, vpc_id),
            self._ensure_security_groups(handle, cluster_id, vpc_id),
        )

        associated = {
            a["SubnetId"] for a in route_table.get("Associations", []) if a.get("SubnetId")
        }
        await asyncio.gather(*(
            handle.associate_route_table(route_table["RouteTableId"], s.id)
            for s in subnets
            if s.id not in associated
        ))

        return Region(
            region_id=region_id,
            vpc_id=vpc_id,
            ipv6_block=vpc_block,
            internet_gateway_id=gateway_id,
            route_table_id=route_table["RouteTableId"],
            subnets=subnets,
            security_groups=groups,
        )

    # --- VPC ---

    async def _ensure_vpc(self, handle: RegionHandle, cluster_id: str) -> dict[str, Any]:
        cidr = self._session.config.vpc_cidr
        vpc = await handle.find_vpc(cluster_id)
        if vpc is None:
            vpc = await handle.create_vpc(cidr, build_tags(cluster_id, cluster_id))
            logger.info("%s: created VPC %s", handle.region, vpc["VpcId"])
        else:
            logger.info("%s: reusing VPC %s", handle.region, vpc["VpcId"])
            if vpc.get("CidrBlock") != cidr:
                raise ShapeConflictError(
                    f"{handle.region}: VPC {vpc['VpcId']} has IPv4 block "
                    f"{vpc.get('CidrBlock')}, expected {cidr}"
                )
            if ipv6_association(vpc) is None:
                raise ShapeConflictError(
                    f"{handle.region}: VPC {vpc['VpcId']} has no IPv6 block"
                )

        if not ipv6_associated(vpc):
            vpc_id = vpc["VpcId"]
            vpc = await handle.wait_for(
                lambda: handle.describe_vpc(vpc_id),
                ipv6_associated,
                f"IPv6 block association on {vpc_id}",
            )
        return vpc

    # --- Subnets ---

    async def _ensure_subnets(
        self,
        handle: RegionHandle,
        cluster_id: str,
        vpc_id: str,
        vpc_block: str,
        zones: list[str],
    ) -> list[Subnet]:
        return list(await asyncio.gather(*(
            self._ensure_subnet(handle, cluster_id, vpc_id, vpc_block, zone, index)
            for index, zone in enumerate(zones)
        )))

    async def _ensure_subnet(
        self,
        handle: RegionHandle,
        cluster_id: str,
        vpc_id: str,
        vpc_block: str,
        zone: str,
        index: int,
    ) -> Subnet:
        letter = zone[-1]
        name = subnet_name(cluster_id, letter)
        ipv4_block = ipv4_zone_block(index)
        ipv6_block = derive_zone_block(vpc_block, index)

        raw = await handle.find_subnet(vpc_id, name)
        if raw is None:
            raw = await handle.create_subnet(
                vpc_id, zone, ipv4_block, ipv6_block, build_tags(cluster_id, name),
            )
            logger.info("%s: created subnet %s %s %s", handle.region, name, ipv4_block, ipv6_block)
        else:
            existing = to_subnet(cluster_id, raw)
            if existing.ipv6_block != ipv6_block or existing.ipv4_block != ipv4_block:
                raise ShapeConflictError(
                    f"{handle.region}: subnet {name} has blocks "
                    f"{existing.ipv4_block} {existing.ipv6_block}, "
                    f"expected {ipv4_block} {ipv6_block}"
                )

        await handle.enable_public_ipv4(raw["SubnetId"])
        subnet = to_subnet(cluster_id, raw)
        return subnet.model_copy(update={
            "name": name, "zone": letter, "ipv4_block": ipv4_block,
            "ipv6_block": ipv6_block, "vpc_id": vpc_id,
        })

    # --- Gateway and routes ---

    async def _ensure_routing(
        self,
        handle: RegionHandle,
        cluster_id: str,
        vpc_id: str,
    ) -> tuple[str, dict[str, Any]]:
        gateway_id = await self._ensure_gateway(handle, cluster_id, vpc_id)

        tables = await handle.find_route_tables(cluster_id, vpc_id)
        if tables:
            table = tables[0]
        else:
            table = await handle.create_route_table(
                vpc_id, build_tags(cluster_id, ROUTE_TABLE_NAME),
            )
            logger.info("%s: created route table %s", handle.region, table["RouteTableId"])

        await asyncio.gather(
            handle.create_route(table["RouteTableId"], gateway_id, ANY_IPV4),
            handle.create_route(table["RouteTableId"], gateway_id, ANY_IPV6),
        )
        return gateway_id, table

    async def _ensure_gateway(self, handle: RegionHandle, cluster_id: str, vpc_id: str) -> str:
        attached = await handle.find_attached_gateways(vpc_id)
        if attached:
            return attached[0]["InternetGatewayId"]

        detached = [
            g for g in await handle.find_internet_gateways(cluster_id)
            if not g.get("Attachments")
        ]
        if detached:
            gateway_id = detached[0]["InternetGatewayId"]
            logger.info("%s: reattaching internet gateway %s", handle.region, gateway_id)
        else:
            gateway = await handle.create_internet_gateway(build_tags(cluster_id, cluster_id))
            gateway_id = gateway["InternetGatewayId"]
            logger.info("%s: created internet gateway %s", handle.region, gateway_id)
        await handle.attach_internet_gateway(gateway_id, vpc_id)
        return gateway_id

    # --- Security groups ---

    async def _ensure_security_groups(
        self,
        handle: RegionHandle,
        cluster_id: str,
        vpc_id: str,
    ) -> dict[str, str]:
        existing = cluster_groups(await handle.find_security_groups(vpc_id))
        ids = await asyncio.gather(*(
            self._ensure_security_group(handle, cluster_id, vpc_id, role, existing)
            for role in SecurityGroupRole
        ))
        return {role.group_name: gid for role, gid in zip(SecurityGroupRole, ids)}

    async def _ensure_security_group(
        self,
        handle: RegionHandle,
        cluster_id: str,
        vpc_id: str,
        role: SecurityGroupRole,
        existing: dict[str, str],
    ) -> str:
        group_id = existing.get(role.group_name)
        if group_id is None:
            group_id = await handle.create_security_group(
                vpc_id, role.group_name, role.value, build_tags(cluster_id, role.group_name),
            )
            logger.info("%s: created security group %s %s", handle.region, role.group_name, group_id)

        # One rule per call: a duplicate in a batch would reject the whole batch.
        for rule in STATIC_INGRESS_RULES[role]:
            await handle.authorize_ingress(group_id, [rule.to_ip_permission()])
        return group_id
