"""sye-fabric: multi-region IPv6 network fabric for Sye clusters on AWS."""

__version__ = "0.4.0"

from sye_fabric.config import FabricConfig, find_config, load_config
from sye_fabric.errors import (
    CoreRegionConflictError,
    FabricError,
    ProviderError,
    ProviderTimeoutError,
    ShapeConflictError,
)
from sye_fabric.models import (
    ClusterSummary,
    IngressRule,
    Region,
    SecurityGroupRole,
    Subnet,
    TaggedResource,
    TrustDirection,
)
from sye_fabric.network.cidr import (
    CidrError,
    InvalidAddress,
    InvalidPrefixLength,
    ZoneIndexOutOfRange,
    cidr_subset6,
    derive_zone_block,
    format_ipv6,
    parse_ipv6,
)
from sye_fabric.sdk.client import Fabric

__all__ = [
    "CidrError",
    "cidr_subset6",
    "ClusterSummary",
    "CoreRegionConflictError",
    "derive_zone_block",
    "Fabric",
    "FabricConfig",
    "FabricError",
    "find_config",
    "format_ipv6",
    "IngressRule",
    "InvalidAddress",
    "InvalidPrefixLength",
    "load_config",
    "parse_ipv6",
    "ProviderError",
    "ProviderTimeoutError",
    "Region",
    "SecurityGroupRole",
    "ShapeConflictError",
    "Subnet",
    "TaggedResource",
    "TrustDirection",
    "ZoneIndexOutOfRange",
    "__version__",
]
