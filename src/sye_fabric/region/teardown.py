"""Region teardown: reverse of provisioning, in dependency order.

1. discover the core region (no election)
2. revoke this region's trust rules on the core's default group
3. delete the four security groups
4. delete the subnets
5. detach and delete the internet gateway
6. delete the cluster-tagged route tables
7. delete the VPC

Objects already gone at any step count as deleted, so a teardown that
failed half way can simply be run again.
"""

from __future__ import annotations

import asyncio
import logging

from sye_fabric.aws.ec2 import RegionHandle
from sye_fabric.aws.session import AwsSession
from sye_fabric.models import Region, TrustDirection
from sye_fabric.region.core import CoreRegionResolver
from sye_fabric.region.lookup import load_region
from sye_fabric.region.trust import TrustSynchronizer
from sye_fabric.tags.index import TagIndex

logger = logging.getLogger(__name__)


class RegionTeardown:
    """Delete one region's share of the cluster network."""

    def __init__(
        self,
        session: AwsSession,
        index: TagIndex,
        resolver: CoreRegionResolver,
        trust: TrustSynchronizer,
    ) -> None:
        self._session = session
        self._index = index
        self._resolver = resolver
        self._trust = trust

    async def teardown(self, cluster_id: str, region_id: str) -> bool:
        """Delete the region's network. Returns ``False`` if there was none."""
        handle = self._session.region(region_id)
        region = await load_region(handle, cluster_id)
        if region is None:
            logger.info("%s: cluster %s has no VPC here, nothing to delete", region_id, cluster_id)
            return False

        core = await self._resolver.discover(cluster_id)
        if core is not None and core.region_id != region_id:
            await self._trust.sync(cluster_id, region, core, TrustDirection.REMOVE)
        elif core is not None:
            await self._warn_orphaned_trust(cluster_id, region_id)

        await self._delete_network(handle, cluster_id, region)
        return True

    async def _delete_network(self, handle: RegionHandle, cluster_id: str, region: Region) -> None:
        vpc_id = region.vpc_id

        await asyncio.gather(*(
            handle.delete_security_group(group_id)
            for group_id in region.security_groups.values()
        ))
        logger.info("%s: deleted security groups %s", handle.region, ", ".join(region.security_groups))

        await asyncio.gather(*(handle.delete_subnet(s.id) for s in region.subnets))
        logger.info("%s: deleted %d subnets", handle.region, len(region.subnets))

        attached = await handle.find_attached_gateways(vpc_id)
        tagged = await handle.find_internet_gateways(cluster_id)
        gateway_ids = {g["InternetGatewayId"] for g in attached}
        gateway_ids.update(g["InternetGatewayId"] for g in tagged if not g.get("Attachments"))
        for gateway_id in sorted(gateway_ids):
            await handle.detach_internet_gateway(gateway_id, vpc_id)
            await handle.delete_internet_gateway(gateway_id)
            logger.info("%s: deleted internet gateway %s", handle.region, gateway_id)

        tables = await handle.find_route_tables(cluster_id, vpc_id)
        await asyncio.gather(*(handle.delete_route_table(t["RouteTableId"]) for t in tables))

        await handle.delete_vpc(vpc_id)
        logger.info("%s: deleted VPC %s", handle.region, vpc_id)

    async def _warn_orphaned_trust(self, cluster_id: str, region_id: str) -> None:
        others = [r for r in await self._index.regions(cluster_id) if r != region_id]
        if others:
            logger.warning(
                "cluster %s: deleting core region %s while %s remain; "
                "their trust rules for the core subnets are left in place",
                cluster_id, region_id, ", ".join(others),
            )
