"""Tag index: cluster-scoped view of tagged cloud resources.

Backed by the Resource Groups Tagging API. Every cluster resource carries
``SyeClusterId=<cluster>``, so a scan filtered on that tag finds a
cluster's VPCs, subnets, gateways, route tables and security groups in
every region without hard-coded identifiers.

The index is never cached: each call scans the provider again, so results
are correct across process restarts and concurrent invocations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sye_fabric.aws.session import AwsSession
from sye_fabric.models import TaggedResource
from sye_fabric.tags.tagging import CLUSTER_ID_TAG, parse_arn

logger = logging.getLogger(__name__)

DISCOVERY_REGION = "us-east-1"


class TagIndex:
    """Read tags of every EC2 resource belonging to a cluster."""

    def __init__(self, session: AwsSession) -> None:
        self._session = session

    async def scan_regions(self) -> list[str]:
        """Regions to scan: from configuration, else every enabled region."""
        if self._session.config.regions:
            return list(self._session.config.regions)
        client = self._session.client("ec2", DISCOVERY_REGION)
        resp = await asyncio.to_thread(client.describe_regions)
        return [r["RegionName"] for r in resp.get("Regions", [])]

    async def resources(
        self,
        cluster_id: str,
        resource_type: str | None = None,
        region: str | None = None,
    ) -> list[TaggedResource]:
        """List the cluster's EC2 resources, optionally by type and region."""
        regions = [region] if region else await self.scan_regions()
        scans = await asyncio.gather(*(self._scan(cluster_id, r) for r in regions))
        found = [res for batch in scans for res in batch]
        if resource_type is not None:
            found = [res for res in found if res.resource_type == resource_type]
        logger.debug(
            "cluster %s: %d tagged %s resources in %d regions",
            cluster_id, len(found), resource_type or "ec2", len(regions),
        )
        return found

    async def regions(self, cluster_id: str) -> list[str]:
        """Regions holding at least one resource of the cluster."""
        found = await self.resources(cluster_id)
        return sorted({res.region for res in found})

    def get_tag(self, resource: TaggedResource, key: str) -> str | None:
        return resource.tags.get(key)

    async def set_tag(self, region: str, resource_id: str, key: str, value: str) -> None:
        await self._session.region(region).create_tags(
            resource_id, [{"Key": key, "Value": value}],
        )

    async def _scan(self, cluster_id: str, region: str) -> list[TaggedResource]:
        client = self._session.client("resourcegroupstaggingapi", region)
        return await asyncio.to_thread(self._scan_sync, client, cluster_id)

    @staticmethod
    def _scan_sync(client: Any, cluster_id: str) -> list[TaggedResource]:
        paginator = client.get_paginator("get_resources")
        found: list[TaggedResource] = []
        pages = paginator.paginate(
            TagFilters=[{"Key": CLUSTER_ID_TAG, "Values": [cluster_id]}],
        )
        for page in pages:
            for mapping in page.get("ResourceTagMappingList", []):
                arn = mapping["ResourceARN"]
                if not arn.startswith("arn:aws:ec2:"):
                    continue
                res_region, res_type, res_id = parse_arn(arn)
                found.append(TaggedResource(
                    arn=arn,
                    region=res_region,
                    resource_type=res_type,
                    resource_id=res_id,
                    tags={t["Key"]: t.get("Value", "") for t in mapping.get("Tags", [])},
                ))
        return found
