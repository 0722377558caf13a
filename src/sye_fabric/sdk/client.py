"""Fabric: the public entry point for cluster network operations.

Usage::

    from sye_fabric import Fabric

    fabric = Fabric()
    region = asyncio.run(fabric.add_region("my-cluster", "eu-west-1"))

``add_region`` runs provisioning, then core-region discover-or-elect, then
trust synchronization. ``delete_region`` runs the teardown. Both can be
re-run after a partial failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sye_fabric.aws.session import AwsSession
from sye_fabric.config import FabricConfig
from sye_fabric.models import ClusterSummary, Region, TrustDirection
from sye_fabric.region.core import CoreRegionResolver
from sye_fabric.region.lookup import load_region
from sye_fabric.region.provisioner import RegionProvisioner
from sye_fabric.region.teardown import RegionTeardown
from sye_fabric.region.trust import TrustSynchronizer
from sye_fabric.tags.index import TagIndex

logger = logging.getLogger(__name__)


class Fabric:
    """Multi-region network fabric for one AWS account.

    Args:
        config: Loaded ``FabricConfig``; defaults apply when omitted.
        session: A ``boto3.Session``-compatible object. Built from
            ``config.profile`` when omitted.
    """

    def __init__(self, config: FabricConfig | None = None, session: Any = None) -> None:
        self._aws = AwsSession(config, session)
        self._index = TagIndex(self._aws)
        self._provisioner = RegionProvisioner(self._aws)
        self._resolver = CoreRegionResolver(self._aws, self._index)
        self._trust = TrustSynchronizer(self._aws)
        self._teardown = RegionTeardown(self._aws, self._index, self._resolver, self._trust)

    @property
    def index(self) -> TagIndex:
        return self._index

    async def add_region(self, cluster_id: str, region_id: str) -> Region:
        """Provision *region_id* and connect it to the cluster's core region."""
        logger.info("cluster %s: adding region %s", cluster_id, region_id)
        region = await self._provisioner.provision(cluster_id, region_id)
        core = await self._resolver.ensure(cluster_id, region)
        await self._trust.sync(cluster_id, region, core, TrustDirection.ADD)
        if core.region_id == region.region_id:
            return core
        return region

    async def delete_region(self, cluster_id: str, region_id: str) -> bool:
        """Tear down *region_id*. Returns ``False`` if it had no network."""
        logger.info("cluster %s: deleting region %s", cluster_id, region_id)
        return await self._teardown.teardown(cluster_id, region_id)

    async def core_region(self, cluster_id: str) -> Region | None:
        return await self._resolver.discover(cluster_id)

    async def get_region(self, cluster_id: str, region_id: str) -> Region | None:
        return await load_region(self._aws.region(region_id), cluster_id)

    async def show_cluster(self, cluster_id: str) -> ClusterSummary:
        """Describe every region of the cluster and name the core."""
        region_ids = await self._index.regions(cluster_id)
        regions, core = await asyncio.gather(
            asyncio.gather(*(self.get_region(cluster_id, r) for r in region_ids)),
            self._resolver.discover(cluster_id),
        )
        return ClusterSummary(
            cluster_id=cluster_id,
            core_region=core.region_id if core else None,
            regions=[r for r in regions if r is not None],
        )
