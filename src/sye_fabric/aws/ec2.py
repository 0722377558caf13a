"""RegionHandle: async facade over one region's boto3 EC2 client.

boto3 is synchronous; every call is pushed to a worker thread with
``asyncio.to_thread`` so independent calls can be fanned out with
``asyncio.gather``.

Provider answers are sorted into three buckets:

- transient (throttling, dependency still draining, and on create calls
  an id that has not propagated yet): retried with the same fixed
  interval and ceiling as the IPv6 association poll
- tolerated (already exists / already absent): returned as ``None``
- anything else: raised as ``ProviderError``

``describe``/``find`` helpers return ``None`` or an empty list for objects
that do not exist; they never raise for "not found".
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from botocore.exceptions import ClientError

from sye_fabric.errors import ProviderError, ProviderTimeoutError, ShapeConflictError
from sye_fabric.tags.tagging import CLUSTER_ID_TAG, cluster_tag_key

logger = logging.getLogger(__name__)

TRANSIENT_CODES = frozenset({
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
    "DependencyViolation",
    "IncorrectState",
    "InternalError",
    "Unavailable",
})

DUPLICATE_CODES = frozenset({
    "InvalidPermission.Duplicate",
    "RouteAlreadyExists",
    "Resource.AlreadyAssociated",
    "InvalidGroup.Duplicate",
})

NOT_FOUND_CODES = frozenset({
    "InvalidPermission.NotFound",
    "InvalidGroup.NotFound",
    "InvalidGroupId.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidVpcID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidRouteTableID.NotFound",
    "Gateway.NotAttached",
})

# Ids returned by a create call can be unknown to the next call for a moment.
PROPAGATION_CODES = frozenset({
    "InvalidVpcID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidRouteTableID.NotFound",
    "InvalidGroupId.NotFound",
})


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _filters(**filters: str | list[str]) -> list[dict[str, Any]]:
    return [
        {"Name": name if name.startswith("tag:") else name.replace("_", "-"),
         "Values": value if isinstance(value, list) else [value]}
        for name, value in filters.items()
    ]


def _tag_spec(resource_type: str, tags: list[dict[str, str]]) -> list[dict[str, Any]]:
    return [{"ResourceType": resource_type, "Tags": tags}]


def ipv6_association(resource: dict[str, Any]) -> dict[str, Any] | None:
    """Return the first live IPv6 block association of a VPC or subnet."""
    for assoc in resource.get("Ipv6CidrBlockAssociationSet") or []:
        state = assoc.get("Ipv6CidrBlockState", {}).get("State")
        if state not in ("disassociating", "disassociated", "failed"):
            return assoc
    return None


def ipv6_associated(resource: dict[str, Any] | None) -> bool:
    if resource is None:
        return False
    assoc = ipv6_association(resource)
    return assoc is not None and assoc["Ipv6CidrBlockState"]["State"] == "associated"


def subnet_ipv6_block(subnet: dict[str, Any]) -> str:
    assoc = ipv6_association(subnet)
    return assoc.get("Ipv6CidrBlock", "") if assoc else ""


class RegionHandle:
    """Describe/create/delete virtual-network objects in one region."""

    def __init__(
        self,
        client: Any,
        region: str,
        poll_interval: float = 2.0,
        poll_attempts: int = 60,
    ) -> None:
        self._client = client
        self.region = region
        self._poll_interval = poll_interval
        self._poll_attempts = poll_attempts

    def __repr__(self) -> str:
        return f"RegionHandle({self.region!r})"

    # --- Call plumbing ---

    async def call(
        self,
        method: str,
        tolerate: frozenset[str] = frozenset(),
        retry: frozenset[str] = frozenset(),
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """Invoke ``client.<method>(**kwargs)`` in a worker thread.

        Returns ``None`` if the provider answers with a code in *tolerate*.
        Codes in *retry* are retried like the transient ones.
        """
        fn = getattr(self._client, method)
        for attempt in range(1, self._poll_attempts + 1):
            logger.debug("%s %s %s", self.region, method, kwargs)
            try:
                return await asyncio.to_thread(fn, **kwargs)
            except ClientError as exc:
                code = error_code(exc)
                if code in tolerate:
                    logger.debug("%s %s tolerated %s", self.region, method, code)
                    return None
                if code not in TRANSIENT_CODES and code not in retry:
                    raise ProviderError(
                        f"{self.region}: {method} failed: {exc}", code=code,
                    ) from exc
                if attempt == self._poll_attempts:
                    raise ProviderTimeoutError(
                        f"{self.region}: {method} still failing with {code} "
                        f"after {self._poll_attempts} attempts"
                    ) from exc
                logger.debug(
                    "%s %s transient %s (attempt %d/%d)",
                    self.region, method, code, attempt, self._poll_attempts,
                )
                await asyncio.sleep(self._poll_interval)
        raise AssertionError("unreachable")

    async def wait_for(
        self,
        fetch: Callable[[], Awaitable[Any]],
        predicate: Callable[[Any], bool],
        what: str,
    ) -> Any:
        """Poll *fetch* until *predicate* holds, with a fixed interval and ceiling."""
        for attempt in range(1, self._poll_attempts + 1):
            value = await fetch()
            if predicate(value):
                return value
            logger.debug("%s waiting for %s (%d/%d)", self.region, what, attempt, self._poll_attempts)
            await asyncio.sleep(self._poll_interval)
        raise ProviderTimeoutError(
            f"{self.region}: timed out waiting for {what} "
            f"after {self._poll_attempts} attempts"
        )

    # --- Tags ---

    async def create_tags(self, resource_id: str, tags: list[dict[str, str]]) -> None:
        await self.call("create_tags", Resources=[resource_id], Tags=tags)

    async def delete_tags(self, resource_id: str, keys: list[str]) -> None:
        await self.call(
            "delete_tags", Resources=[resource_id], Tags=[{"Key": k} for k in keys],
        )

    # --- Availability zones ---

    async def availability_zones(self) -> list[str]:
        """Return available zone names in provider order."""
        resp = await self.call(
            "describe_availability_zones", Filters=_filters(state="available"),
        )
        return [az["ZoneName"] for az in (resp or {}).get("AvailabilityZones", [])]

    # --- VPC ---

    async def find_vpc(self, cluster_id: str) -> dict[str, Any] | None:
        resp = await self.call(
            "describe_vpcs", Filters=_filters(tag_key=cluster_tag_key(cluster_id)),
        )
        vpcs = (resp or {}).get("Vpcs", [])
        if len(vpcs) > 1:
            ids = ", ".join(v["VpcId"] for v in vpcs)
            raise ShapeConflictError(
                f"{self.region}: expected at most one VPC for cluster {cluster_id}, found {ids}"
            )
        return vpcs[0] if vpcs else None

    async def describe_vpc(self, vpc_id: str) -> dict[str, Any] | None:
        resp = await self.call(
            "describe_vpcs", tolerate=NOT_FOUND_CODES, VpcIds=[vpc_id],
        )
        vpcs = (resp or {}).get("Vpcs", [])
        return vpcs[0] if vpcs else None

    async def create_vpc(self, cidr_block: str, tags: list[dict[str, str]]) -> dict[str, Any]:
        resp = await self.call(
            "create_vpc",
            CidrBlock=cidr_block,
            AmazonProvidedIpv6CidrBlock=True,
            TagSpecifications=_tag_spec("vpc", tags),
        )
        return resp["Vpc"]

    async def delete_vpc(self, vpc_id: str) -> None:
        await self.call("delete_vpc", tolerate=NOT_FOUND_CODES, VpcId=vpc_id)

    # --- Subnets ---

    async def find_subnets(self, vpc_id: str) -> list[dict[str, Any]]:
        resp = await self.call("describe_subnets", Filters=_filters(vpc_id=vpc_id))
        return (resp or {}).get("Subnets", [])

    async def find_subnet(self, vpc_id: str, name: str) -> dict[str, Any] | None:
        resp = await self.call(
            "describe_subnets",
            Filters=_filters(vpc_id=vpc_id, **{"tag:Name": name}),
        )
        subnets = (resp or {}).get("Subnets", [])
        if len(subnets) > 1:
            raise ShapeConflictError(f"{self.region}: more than one subnet named {name}")
        return subnets[0] if subnets else None

    async def find_tagged_subnets(self, *tag_keys: str) -> list[dict[str, Any]]:
        """Subnets carrying any of *tag_keys*."""
        resp = await self.call("describe_subnets", Filters=_filters(tag_key=list(tag_keys)))
        return (resp or {}).get("Subnets", [])

    async def create_subnet(
        self,
        vpc_id: str,
        zone_name: str,
        ipv4_block: str,
        ipv6_block: str,
        tags: list[dict[str, str]],
    ) -> dict[str, Any]:
        resp = await self.call(
            "create_subnet",
            retry=PROPAGATION_CODES,
            VpcId=vpc_id,
            AvailabilityZone=zone_name,
            CidrBlock=ipv4_block,
            Ipv6CidrBlock=ipv6_block,
            TagSpecifications=_tag_spec("subnet", tags),
        )
        return resp["Subnet"]

    async def enable_public_ipv4(self, subnet_id: str) -> None:
        await self.call(
            "modify_subnet_attribute",
            retry=PROPAGATION_CODES,
            SubnetId=subnet_id,
            MapPublicIpOnLaunch={"Value": True},
        )

    async def delete_subnet(self, subnet_id: str) -> None:
        await self.call("delete_subnet", tolerate=NOT_FOUND_CODES, SubnetId=subnet_id)

    # --- Internet gateway ---

    async def find_internet_gateways(self, cluster_id: str) -> list[dict[str, Any]]:
        resp = await self.call(
            "describe_internet_gateways",
            Filters=_filters(tag_key=cluster_tag_key(cluster_id)),
        )
        return (resp or {}).get("InternetGateways", [])

    async def find_attached_gateways(self, vpc_id: str) -> list[dict[str, Any]]:
        resp = await self.call(
            "describe_internet_gateways",
            Filters=_filters(**{"attachment.vpc-id": vpc_id}),
        )
        return (resp or {}).get("InternetGateways", [])

    async def create_internet_gateway(self, tags: list[dict[str, str]]) -> dict[str, Any]:
        resp = await self.call(
            "create_internet_gateway",
            TagSpecifications=_tag_spec("internet-gateway", tags),
        )
        return resp["InternetGateway"]

    async def attach_internet_gateway(self, gateway_id: str, vpc_id: str) -> None:
        await self.call(
            "attach_internet_gateway",
            retry=PROPAGATION_CODES,
            InternetGatewayId=gateway_id,
            VpcId=vpc_id,
        )

    async def detach_internet_gateway(self, gateway_id: str, vpc_id: str) -> None:
        await self.call(
            "detach_internet_gateway",
            tolerate=NOT_FOUND_CODES,
            InternetGatewayId=gateway_id,
            VpcId=vpc_id,
        )

    async def delete_internet_gateway(self, gateway_id: str) -> None:
        await self.call(
            "delete_internet_gateway", tolerate=NOT_FOUND_CODES, InternetGatewayId=gateway_id,
        )

    # --- Route tables ---

    async def find_route_tables(self, cluster_id: str, vpc_id: str) -> list[dict[str, Any]]:
        resp = await self.call(
            "describe_route_tables",
            Filters=_filters(vpc_id=vpc_id, **{f"tag:{CLUSTER_ID_TAG}": cluster_id}),
        )
        return (resp or {}).get("RouteTables", [])

    async def create_route_table(self, vpc_id: str, tags: list[dict[str, str]]) -> dict[str, Any]:
        resp = await self.call(
            "create_route_table",
            retry=PROPAGATION_CODES,
            VpcId=vpc_id,
            TagSpecifications=_tag_spec("route-table", tags),
        )
        return resp["RouteTable"]

    async def create_route(self, route_table_id: str, gateway_id: str, destination: str) -> None:
        key = "DestinationIpv6CidrBlock" if ":" in destination else "DestinationCidrBlock"
        await self.call(
            "create_route",
            tolerate=DUPLICATE_CODES,
            retry=PROPAGATION_CODES,
            RouteTableId=route_table_id,
            GatewayId=gateway_id,
            **{key: destination},
        )

    async def associate_route_table(self, route_table_id: str, subnet_id: str) -> None:
        await self.call(
            "associate_route_table",
            tolerate=DUPLICATE_CODES,
            retry=PROPAGATION_CODES,
            RouteTableId=route_table_id,
            SubnetId=subnet_id,
        )

    async def delete_route_table(self, route_table_id: str) -> None:
        await self.call(
            "delete_route_table", tolerate=NOT_FOUND_CODES, RouteTableId=route_table_id,
        )

    # --- Security groups ---

    async def find_security_groups(self, vpc_id: str) -> list[dict[str, Any]]:
        resp = await self.call(
            "describe_security_groups", Filters=_filters(vpc_id=vpc_id),
        )
        return (resp or {}).get("SecurityGroups", [])

    async def create_security_group(
        self,
        vpc_id: str,
        group_name: str,
        description: str,
        tags: list[dict[str, str]],
    ) -> str:
        resp = await self.call(
            "create_security_group",
            retry=PROPAGATION_CODES,
            VpcId=vpc_id,
            GroupName=group_name,
            Description=description,
            TagSpecifications=_tag_spec("security-group", tags),
        )
        return resp["GroupId"]

    async def authorize_ingress(self, group_id: str, permissions: list[dict[str, Any]]) -> bool:
        """Returns ``False`` if the rule was already present."""
        resp = await self.call(
            "authorize_security_group_ingress",
            tolerate=DUPLICATE_CODES,
            retry=PROPAGATION_CODES,
            GroupId=group_id,
            IpPermissions=permissions,
        )
        return resp is not None

    async def revoke_ingress(self, group_id: str, permissions: list[dict[str, Any]]) -> bool:
        """Returns ``False`` if the rule was already absent."""
        resp = await self.call(
            "revoke_security_group_ingress",
            tolerate=NOT_FOUND_CODES,
            GroupId=group_id,
            IpPermissions=permissions,
        )
        return resp is not None

    async def delete_security_group(self, group_id: str) -> None:
        await self.call(
            "delete_security_group", tolerate=NOT_FOUND_CODES, GroupId=group_id,
        )
