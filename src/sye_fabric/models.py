"""Core data models for sye-fabric.

Defines the schemas for:
- Security group roles and their static ingress rules
- Subnets and regions as discovered or created in the provider
- Tagged resources returned by the tag index
- Cluster summaries (what ``cluster-show`` prints)
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field

ANY_IPV4 = "0.0.0.0/0"
ANY_IPV6 = "::/0"

# --- Enums ---


class SecurityGroupRole(enum.StrEnum):
    DEFAULT = "default"
    EGRESS_PITCHER = "egress-pitcher"
    FRONTEND_BALANCER = "frontend-balancer"
    PLAYOUT_MANAGEMENT = "playout-management"

    @property
    def group_name(self) -> str:
        return f"sye-{self.value}"

    @classmethod
    def from_group_name(cls, group_name: str) -> SecurityGroupRole | None:
        for role in cls:
            if role.group_name == group_name:
                return role
        return None


class TrustDirection(enum.StrEnum):
    ADD = "add"
    REMOVE = "remove"


# --- Rules ---


class IngressRule(BaseModel):
    """One security-group ingress permission.

    Static rules use an IPv4 "any source" range. Trust rules use
    protocol ``-1`` (all) scoped to one remote subnet's IPv6 block.
    """

    protocol: str
    from_port: int | None = None
    to_port: int | None = None
    cidr_ipv4: str | None = None
    cidr_ipv6: str | None = None

    def to_ip_permission(self) -> dict[str, Any]:
        perm: dict[str, Any] = {"IpProtocol": self.protocol}
        if self.from_port is not None:
            perm["FromPort"] = self.from_port
            perm["ToPort"] = self.to_port if self.to_port is not None else self.from_port
        if self.cidr_ipv4 is not None:
            perm["IpRanges"] = [{"CidrIp": self.cidr_ipv4}]
        if self.cidr_ipv6 is not None:
            perm["Ipv6Ranges"] = [{"CidrIpv6": self.cidr_ipv6}]
        return perm

    @classmethod
    def tcp(cls, port: int) -> IngressRule:
        return cls(protocol="tcp", from_port=port, to_port=port, cidr_ipv4=ANY_IPV4)

    @classmethod
    def udp(cls, port: int) -> IngressRule:
        return cls(protocol="udp", from_port=port, to_port=port, cidr_ipv4=ANY_IPV4)

    @classmethod
    def trust(cls, ipv6_block: str) -> IngressRule:
        return cls(protocol="-1", cidr_ipv6=ipv6_block)


STATIC_INGRESS_RULES: dict[SecurityGroupRole, list[IngressRule]] = {
    SecurityGroupRole.DEFAULT: [IngressRule.tcp(22)],
    SecurityGroupRole.EGRESS_PITCHER: [IngressRule.udp(2123)],
    SecurityGroupRole.FRONTEND_BALANCER: [IngressRule.tcp(80), IngressRule.tcp(443)],
    SecurityGroupRole.PLAYOUT_MANAGEMENT: [IngressRule.tcp(81), IngressRule.tcp(4433)],
}


# --- Network objects ---


class Subnet(BaseModel):
    """One per-zone subnet of a region."""

    id: str
    name: str
    zone: str
    ipv4_block: str = ""
    ipv6_block: str = ""
    vpc_id: str = ""
    core: bool = False


class Region(BaseModel):
    """A cluster's network in one cloud region."""

    region_id: str
    vpc_id: str
    ipv6_block: str = ""
    internet_gateway_id: str | None = None
    route_table_id: str | None = None
    subnets: list[Subnet] = Field(default_factory=list)
    security_groups: dict[str, str] = Field(default_factory=dict)
    """Group name (``sye-default`` etc.) to group id."""

    @property
    def subnet_blocks(self) -> list[str]:
        return [s.ipv6_block for s in self.subnets if s.ipv6_block]

    def security_group_id(self, role: SecurityGroupRole) -> str | None:
        return self.security_groups.get(role.group_name)


class TaggedResource(BaseModel):
    """One entry from the provider's tag index."""

    arn: str
    region: str
    resource_type: str
    resource_id: str
    tags: dict[str, str] = Field(default_factory=dict)


class ClusterSummary(BaseModel):
    """Every region of a cluster and which one is the core."""

    cluster_id: str
    core_region: str | None = None
    regions: list[Region] = Field(default_factory=list)
