"""Core region resolver.

Exactly one region of a cluster is its *core region*: the IPv6 trust
anchor every other region exchanges firewall rules with. The core is
recorded only as a ``SyeCore_<cluster>`` tag on each of its subnets;
there is no other registry.

Discovery scans the tag index. Election is claim-then-commit, read back
directly from EC2 in every scanned region:

1. tag the candidate's subnets with ``SyeCoreClaim_<cluster>``, valued
   with a UTC deadline
2. if some region already carries the core marker, it wins
3. otherwise the smallest claiming region id commits the core marker;
   other claimants defer and re-check on every poll
4. every claimant waits until a region has committed and no smaller
   region still holds a claim; the smallest committed region is the core
   and any other committer rolls its own marker back

The claim tag is always removed before returning. Claims past their
deadline belong to elections that died; they are ignored and deleted by
whichever region reads them next.
"""

from __future__ import annotations

import asyncio
import logging

from sye_fabric.aws.session import AwsSession
from sye_fabric.errors import CoreRegionConflictError, ProviderTimeoutError
from sye_fabric.models import Region
from sye_fabric.region.lookup import load_region
from sye_fabric.tags.index import TagIndex
from sye_fabric.tags.tagging import (
    claim_deadline,
    claim_expired,
    core_claim_tag_key,
    core_tag_key,
    get_tag,
    has_tag,
)

logger = logging.getLogger(__name__)

# Seconds; lower bound on how long a core claim stays valid.
CLAIM_TTL_FLOOR = 60.0


class CoreRegionResolver:
    """Discover or elect the core region of a cluster."""

    def __init__(self, session: AwsSession, index: TagIndex) -> None:
        self._session = session
        self._index = index

    async def discover(self, cluster_id: str) -> Region | None:
        """Return the current core region, or ``None`` if none is marked.

        Raises ``CoreRegionConflictError`` if more than one region is marked.
        """
        key = core_tag_key(cluster_id)
        subnets = await self._index.resources(cluster_id, resource_type="subnet")
        regions = sorted({s.region for s in subnets if key in s.tags})
        if not regions:
            logger.debug("cluster %s: no core region", cluster_id)
            return None
        if len(regions) > 1:
            raise CoreRegionConflictError(
                f"Cluster {cluster_id} has more than one core region: {', '.join(regions)}"
            )
        logger.debug("cluster %s: core region is %s", cluster_id, regions[0])
        return await load_region(self._session.region(regions[0]), cluster_id)

    async def ensure(self, cluster_id: str, candidate: Region) -> Region:
        """Return the core region, electing *candidate* if there is none."""
        existing = await self.discover(cluster_id)
        if existing is not None:
            logger.info("cluster %s: core region already exists in %s", cluster_id, existing.region_id)
            return existing
        return await self.elect(cluster_id, candidate)

    async def elect(self, cluster_id: str, candidate: Region) -> Region:
        claim_key = core_claim_tag_key(cluster_id)
        core_key = core_tag_key(cluster_id)
        me = candidate.region_id

        logger.info("cluster %s: %s claims the core region", cluster_id, me)
        await self._tag(candidate, claim_key, claim_deadline(self._claim_ttl()))
        try:
            try:
                _, committed = await self._settle(cluster_id, candidate)
            except ProviderTimeoutError as exc:
                claimed, _, _ = await self._read_marks(cluster_id, me)
                blocking = [r for r in claimed if r < me]
                if not blocking:
                    raise
                raise ProviderTimeoutError(
                    f"{exc}; core claim still held by {', '.join(blocking)}"
                ) from exc
            winner = committed[0]
            if me in committed and winner != me:
                logger.warning(
                    "cluster %s: %s and %s both committed as core, rolling back %s",
                    cluster_id, winner, me, me,
                )
                await self._untag(candidate, core_key)
        finally:
            await self._untag(candidate, claim_key)

        if winner == me:
            return candidate.model_copy(update={
                "subnets": [s.model_copy(update={"core": True}) for s in candidate.subnets],
            })

        logger.info("cluster %s: %s defers to core region %s", cluster_id, me, winner)
        core = await load_region(self._session.region(winner), cluster_id)
        if core is None:
            raise CoreRegionConflictError(
                f"Cluster {cluster_id}: core region {winner} has no network"
            )
        return core

    def _claim_ttl(self) -> float:
        """A claim outlives the longest settle wait of the region holding it."""
        config = self._session.config
        return max(CLAIM_TTL_FLOOR, 2 * config.poll_interval * config.poll_attempts)

    # --- Marker plumbing ---

    async def _tag(self, region: Region, key: str, value: str = "") -> None:
        handle = self._session.region(region.region_id)
        tag = [{"Key": key, "Value": value}]
        await asyncio.gather(*(handle.create_tags(s.id, tag) for s in region.subnets))

    async def _untag(self, region: Region, key: str) -> None:
        handle = self._session.region(region.region_id)
        await asyncio.gather(*(handle.delete_tags(s.id, [key]) for s in region.subnets))

    async def _read_marks(
        self, cluster_id: str, me: str,
    ) -> tuple[list[str], list[str], list[tuple[str, str]]]:
        """Return sorted ``(claiming regions, committed regions, expired claims)``.

        Read from EC2. Expired claims are ``(region, subnet id)`` pairs left by
        elections that never finished; they do not count as claims.
        """
        claim_key = core_claim_tag_key(cluster_id)
        core_key = core_tag_key(cluster_id)
        regions = sorted(set(await self._index.scan_regions()) | {me})
        found = await asyncio.gather(*(
            self._session.region(r).find_tagged_subnets(claim_key, core_key) for r in regions
        ))
        claimed, committed, expired = [], [], []
        for region, subnets in zip(regions, found):
            for subnet in subnets:
                tags = subnet.get("Tags")
                if not has_tag(tags, claim_key):
                    continue
                if region != me and claim_expired(get_tag(tags, claim_key)):
                    expired.append((region, subnet["SubnetId"]))
                elif region not in claimed:
                    claimed.append(region)
            if any(has_tag(s.get("Tags"), core_key) for s in subnets):
                committed.append(region)
        # Our own claim may not be visible yet; it was written.
        if me not in claimed:
            claimed = sorted([*claimed, me])
        return claimed, committed, expired

    async def _advance(self, cluster_id: str, candidate: Region) -> tuple[list[str], list[str]]:
        """One election round: clear expired claims, commit if *candidate* is first in line."""
        me = candidate.region_id
        claimed, committed, expired = await self._read_marks(cluster_id, me)
        if expired:
            await self._clear_claims(cluster_id, expired)
        if committed or claimed[0] != me:
            return claimed, committed

        await self._tag(candidate, core_tag_key(cluster_id))
        logger.info("cluster %s: %s committed as core region", cluster_id, me)
        claimed, committed, _ = await self._read_marks(cluster_id, me)
        if me not in committed:
            committed = sorted([*committed, me])
        return claimed, committed

    async def _settle(self, cluster_id: str, candidate: Region) -> tuple[list[str], list[str]]:
        """Wait until some region has committed and no smaller region still claims."""
        me = candidate.region_id
        handle = self._session.region(me)
        return await handle.wait_for(
            lambda: self._advance(cluster_id, candidate),
            lambda marks: bool(marks[1]) and marks[0][0] >= me,
            f"core region election of {cluster_id} to settle",
        )

    async def _clear_claims(self, cluster_id: str, expired: list[tuple[str, str]]) -> None:
        key = core_claim_tag_key(cluster_id)
        logger.warning(
            "cluster %s: removing expired core claims in %s",
            cluster_id, ", ".join(sorted({r for r, _ in expired})),
        )
        await asyncio.gather(*(
            self._session.region(region).delete_tags(subnet_id, [key])
            for region, subnet_id in expired
        ))
