"""Cross-region trust synchronization.

IPv6 traffic between regions is only allowed between the core region and
each other region. For a non-core region R:

- the core's ``sye-default`` group gets one all-protocol IPv6 ingress rule
  per subnet block of R
- R's ``sye-default`` group gets one such rule per subnet block of the core

Rules are per subnet so that removing one region revokes exactly its own
rules and leaves every other region's rules in place.
"""

from __future__ import annotations

import asyncio
import logging

from sye_fabric.aws.session import AwsSession
from sye_fabric.errors import ShapeConflictError
from sye_fabric.models import IngressRule, Region, SecurityGroupRole, TrustDirection

logger = logging.getLogger(__name__)


class TrustSynchronizer:
    """Grant or revoke trust rules between a region and the core region."""

    def __init__(self, session: AwsSession) -> None:
        self._session = session

    async def sync(
        self,
        cluster_id: str,
        region: Region,
        core: Region,
        direction: TrustDirection,
    ) -> None:
        if region.region_id == core.region_id:
            logger.debug("cluster %s: %s is the core region, no trust rules", cluster_id, region.region_id)
            return

        logger.info(
            "cluster %s: %s trust between %s and core %s",
            cluster_id, direction.value, region.region_id, core.region_id,
        )
        # Both sides are attempted even if one fails; re-running converges.
        results = await asyncio.gather(
            self.apply(core, region.subnet_blocks, direction),
            self.apply(region, core.subnet_blocks, direction),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def apply(self, target: Region, blocks: list[str], direction: TrustDirection) -> None:
        """Add or remove one trust rule per block on *target*'s default group."""
        group_id = target.security_group_id(SecurityGroupRole.DEFAULT)
        if group_id is None:
            if direction == TrustDirection.REMOVE:
                return
            raise ShapeConflictError(
                f"{target.region_id}: no {SecurityGroupRole.DEFAULT.group_name} security group"
            )

        handle = self._session.region(target.region_id)
        if direction == TrustDirection.ADD:
            op = handle.authorize_ingress
        else:
            op = handle.revoke_ingress
        changed = await asyncio.gather(*(
            op(group_id, [IngressRule.trust(block).to_ip_permission()]) for block in blocks
        ))
        logger.debug(
            "%s: %s %d/%d trust rules on %s",
            target.region_id, direction.value, sum(changed), len(blocks), group_id,
        )
