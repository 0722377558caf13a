"""Shared fixtures: an in-memory stand-in for EC2 and the tagging API.

``FakeCloud`` keeps VPCs, subnets, gateways, route tables and security
groups for any number of regions and answers the subset of the EC2 and
Resource Groups Tagging API calls the fabric makes, including the error
codes AWS returns for duplicates, missing objects and dependency order.
"""

from __future__ import annotations

import functools
import itertools
import threading
from collections.abc import Callable
from typing import Any

import pytest
from botocore.exceptions import ClientError

from sye_fabric.aws.session import AwsSession
from sye_fabric.config import FabricConfig
from sye_fabric.sdk.client import Fabric

ACCOUNT = "123456789012"
REGIONS = ("eu-west-1", "us-east-1", "ap-south-1")


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _tag_dict(resource: dict[str, Any]) -> dict[str, str]:
    return {t["Key"]: t.get("Value", "") for t in resource.get("Tags", [])}


def _matches(resource: dict[str, Any], filters: list[dict[str, Any]] | None) -> bool:
    tags = _tag_dict(resource)
    for f in filters or []:
        name, values = f["Name"], f["Values"]
        if name == "tag-key":
            ok = any(k in tags for k in values)
        elif name.startswith("tag:"):
            ok = tags.get(name[4:]) in values
        elif name == "vpc-id":
            ok = resource.get("VpcId") in values
        elif name == "attachment.vpc-id":
            ok = any(a["VpcId"] in values for a in resource.get("Attachments", []))
        elif name == "state":
            ok = resource.get("State") in values
        else:
            raise AssertionError(f"unsupported filter {name}")
        if not ok:
            return False
    return True


def _rule_keys(permissions: list[dict[str, Any]]) -> set[tuple[Any, ...]]:
    keys = set()
    for p in permissions:
        base = (p["IpProtocol"], p.get("FromPort"), p.get("ToPort"))
        for r in p.get("IpRanges", []):
            keys.add((*base, r["CidrIp"]))
        for r in p.get("Ipv6Ranges", []):
            keys.add((*base, r["CidrIpv6"]))
    return keys


def _locked(fn: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(fn)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        self.cloud.calls.append((self.region, fn.__name__))
        with self.cloud.lock:
            return fn(self, *args, **kwargs)
    return wrapper


class FakeCloud:
    """State shared by every fake client, across all regions."""

    def __init__(self, regions: tuple[str, ...] = REGIONS, zones: str = "abc") -> None:
        self.lock = threading.RLock()
        self.calls: list[tuple[str, str]] = []
        self.zones = {r: [f"{r}{z}" for z in zones] for r in regions}
        self.association_delay = 1
        self.vpcs: dict[str, dict[str, dict[str, Any]]] = {r: {} for r in regions}
        self.subnets: dict[str, dict[str, dict[str, Any]]] = {r: {} for r in regions}
        self.gateways: dict[str, dict[str, dict[str, Any]]] = {r: {} for r in regions}
        self.route_tables: dict[str, dict[str, dict[str, Any]]] = {r: {} for r in regions}
        self.groups: dict[str, dict[str, dict[str, Any]]] = {r: {} for r in regions}
        self._ids = itertools.count(1)
        self._blocks = itertools.count(1)
        self._polls: dict[str, int] = {}

    def new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids):08x}"

    def new_ipv6_block(self) -> str:
        return f"2a05:d018:{next(self._blocks):x}:a800::/56"

    def tables(self, region: str) -> dict[str, dict[str, dict[str, Any]]]:
        return {
            "vpc": self.vpcs[region],
            "subnet": self.subnets[region],
            "internet-gateway": self.gateways[region],
            "route-table": self.route_tables[region],
            "security-group": self.groups[region],
        }

    def find(self, region: str, resource_id: str) -> dict[str, Any]:
        for table in self.tables(region).values():
            if resource_id in table:
                return table[resource_id]
        raise client_error("InvalidID")

    # --- Assertion helpers ---

    def group(self, region: str, group_name: str) -> dict[str, Any] | None:
        for g in self.groups[region].values():
            if g["GroupName"] == group_name:
                return g
        return None

    def trust_rules(self, region: str) -> set[str]:
        group = self.group(region, "sye-default")
        if group is None:
            return set()
        return {key[3] for key in group["Rules"] if key[0] == "-1"}

    def core_regions(self, cluster_id: str) -> set[str]:
        key = f"SyeCore_{cluster_id}"
        return {
            region
            for region, subnets in self.subnets.items()
            for s in subnets.values()
            if key in _tag_dict(s)
        }

    def subnet_blocks(self, region: str) -> set[str]:
        return {
            s["Ipv6CidrBlockAssociationSet"][0]["Ipv6CidrBlock"]
            for s in self.subnets[region].values()
        }

    def count(self, region: str) -> dict[str, int]:
        return {kind: len(table) for kind, table in self.tables(region).items()}


class FakeEc2:
    def __init__(self, cloud: FakeCloud, region: str) -> None:
        self.cloud = cloud
        self.region = region

    @staticmethod
    def _tags(spec: list[dict[str, Any]] | None) -> list[dict[str, str]]:
        return [dict(t) for s in spec or [] for t in s["Tags"]]

    @_locked
    def describe_regions(self) -> dict[str, Any]:
        return {"Regions": [{"RegionName": r} for r in self.cloud.vpcs]}

    @_locked
    def describe_availability_zones(self, Filters: Any = None) -> dict[str, Any]:
        return {"AvailabilityZones": [
            {"ZoneName": z, "State": "available"} for z in self.cloud.zones[self.region]
        ]}

    @_locked
    def create_tags(self, Resources: list[str], Tags: list[dict[str, str]]) -> dict[str, Any]:
        for rid in Resources:
            resource = self.cloud.find(self.region, rid)
            current = {t["Key"]: t for t in resource.setdefault("Tags", [])}
            for tag in Tags:
                current[tag["Key"]] = dict(tag)
            resource["Tags"] = list(current.values())
        return {}

    @_locked
    def delete_tags(self, Resources: list[str], Tags: list[dict[str, str]]) -> dict[str, Any]:
        keys = {t["Key"] for t in Tags}
        for rid in Resources:
            resource = self.cloud.find(self.region, rid)
            resource["Tags"] = [t for t in resource.get("Tags", []) if t["Key"] not in keys]
        return {}

    # --- VPC ---

    @_locked
    def create_vpc(self, CidrBlock: str, AmazonProvidedIpv6CidrBlock: bool,
                   TagSpecifications: Any = None) -> dict[str, Any]:
        vpc_id = self.cloud.new_id("vpc")
        vpc = {
            "VpcId": vpc_id,
            "CidrBlock": CidrBlock,
            "Tags": self._tags(TagSpecifications),
            "Ipv6CidrBlockAssociationSet": [{
                "Ipv6CidrBlock": self.cloud.new_ipv6_block(),
                "Ipv6CidrBlockState": {"State": "associating"},
            }],
        }
        self.cloud.vpcs[self.region][vpc_id] = vpc
        self.cloud._polls[vpc_id] = 0
        return {"Vpc": dict(vpc)}

    @_locked
    def describe_vpcs(self, Filters: Any = None, VpcIds: list[str] | None = None) -> dict[str, Any]:
        vpcs = self.cloud.vpcs[self.region]
        if VpcIds is not None:
            missing = [v for v in VpcIds if v not in vpcs]
            if missing:
                raise client_error("InvalidVpcID.NotFound", "DescribeVpcs")
            for vpc_id in VpcIds:
                self.cloud._polls[vpc_id] = self.cloud._polls.get(vpc_id, 0) + 1
                if self.cloud._polls[vpc_id] >= self.cloud.association_delay:
                    vpcs[vpc_id]["Ipv6CidrBlockAssociationSet"][0]["Ipv6CidrBlockState"] = {
                        "State": "associated",
                    }
            found = [vpcs[v] for v in VpcIds]
        else:
            found = [v for v in vpcs.values() if _matches(v, Filters)]
        return {"Vpcs": [dict(v) for v in found]}

    @_locked
    def delete_vpc(self, VpcId: str) -> dict[str, Any]:
        if VpcId not in self.cloud.vpcs[self.region]:
            raise client_error("InvalidVpcID.NotFound", "DeleteVpc")
        dependents = [
            r for kind, table in self.cloud.tables(self.region).items() if kind != "vpc"
            for r in table.values()
            if r.get("VpcId") == VpcId
            or any(a["VpcId"] == VpcId for a in r.get("Attachments", []))
        ]
        if dependents:
            raise client_error("DependencyViolation", "DeleteVpc")
        del self.cloud.vpcs[self.region][VpcId]
        return {}

    # --- Subnets ---

    @_locked
    def create_subnet(self, VpcId: str, AvailabilityZone: str, CidrBlock: str,
                      Ipv6CidrBlock: str, TagSpecifications: Any = None) -> dict[str, Any]:
        vpc = self.cloud.vpcs[self.region].get(VpcId)
        if vpc is None:
            raise client_error("InvalidVpcID.NotFound", "CreateSubnet")
        if vpc["Ipv6CidrBlockAssociationSet"][0]["Ipv6CidrBlockState"]["State"] != "associated":
            raise client_error("InvalidParameterValue", "CreateSubnet")
        for s in self.cloud.subnets[self.region].values():
            if s["VpcId"] == VpcId and s["CidrBlock"] == CidrBlock:
                raise client_error("InvalidSubnet.Conflict", "CreateSubnet")
        subnet_id = self.cloud.new_id("subnet")
        subnet = {
            "SubnetId": subnet_id,
            "VpcId": VpcId,
            "AvailabilityZone": AvailabilityZone,
            "CidrBlock": CidrBlock,
            "MapPublicIpOnLaunch": False,
            "Tags": self._tags(TagSpecifications),
            "Ipv6CidrBlockAssociationSet": [{
                "Ipv6CidrBlock": Ipv6CidrBlock,
                "Ipv6CidrBlockState": {"State": "associated"},
            }],
        }
        self.cloud.subnets[self.region][subnet_id] = subnet
        return {"Subnet": dict(subnet)}

    @_locked
    def describe_subnets(self, Filters: Any = None) -> dict[str, Any]:
        return {"Subnets": [
            dict(s) for s in self.cloud.subnets[self.region].values() if _matches(s, Filters)
        ]}

    @_locked
    def modify_subnet_attribute(self, SubnetId: str, MapPublicIpOnLaunch: dict[str, bool]) -> dict[str, Any]:
        self.cloud.subnets[self.region][SubnetId]["MapPublicIpOnLaunch"] = MapPublicIpOnLaunch["Value"]
        return {}

    @_locked
    def delete_subnet(self, SubnetId: str) -> dict[str, Any]:
        if self.cloud.subnets[self.region].pop(SubnetId, None) is None:
            raise client_error("InvalidSubnetID.NotFound", "DeleteSubnet")
        for table in self.cloud.route_tables[self.region].values():
            table["Associations"] = [
                a for a in table["Associations"] if a.get("SubnetId") != SubnetId
            ]
        return {}

    # --- Internet gateways ---

    @_locked
    def create_internet_gateway(self, TagSpecifications: Any = None) -> dict[str, Any]:
        gateway_id = self.cloud.new_id("igw")
        gateway = {
            "InternetGatewayId": gateway_id,
            "Attachments": [],
            "Tags": self._tags(TagSpecifications),
        }
        self.cloud.gateways[self.region][gateway_id] = gateway
        return {"InternetGateway": dict(gateway)}

    @_locked
    def describe_internet_gateways(self, Filters: Any = None) -> dict[str, Any]:
        return {"InternetGateways": [
            dict(g) for g in self.cloud.gateways[self.region].values() if _matches(g, Filters)
        ]}

    @_locked
    def attach_internet_gateway(self, InternetGatewayId: str, VpcId: str) -> dict[str, Any]:
        gateway = self.cloud.gateways[self.region][InternetGatewayId]
        if gateway["Attachments"]:
            raise client_error("Resource.AlreadyAssociated", "AttachInternetGateway")
        gateway["Attachments"] = [{"VpcId": VpcId, "State": "available"}]
        return {}

    @_locked
    def detach_internet_gateway(self, InternetGatewayId: str, VpcId: str) -> dict[str, Any]:
        gateway = self.cloud.gateways[self.region].get(InternetGatewayId)
        if gateway is None:
            raise client_error("InvalidInternetGatewayID.NotFound", "DetachInternetGateway")
        if not gateway["Attachments"]:
            raise client_error("Gateway.NotAttached", "DetachInternetGateway")
        gateway["Attachments"] = []
        return {}

    @_locked
    def delete_internet_gateway(self, InternetGatewayId: str) -> dict[str, Any]:
        gateway = self.cloud.gateways[self.region].get(InternetGatewayId)
        if gateway is None:
            raise client_error("InvalidInternetGatewayID.NotFound", "DeleteInternetGateway")
        if gateway["Attachments"]:
            raise client_error("DependencyViolation", "DeleteInternetGateway")
        del self.cloud.gateways[self.region][InternetGatewayId]
        return {}

    # --- Route tables ---

    @_locked
    def create_route_table(self, VpcId: str, TagSpecifications: Any = None) -> dict[str, Any]:
        table_id = self.cloud.new_id("rtb")
        table = {
            "RouteTableId": table_id,
            "VpcId": VpcId,
            "Routes": [],
            "Associations": [],
            "Tags": self._tags(TagSpecifications),
        }
        self.cloud.route_tables[self.region][table_id] = table
        return {"RouteTable": dict(table)}

    @_locked
    def describe_route_tables(self, Filters: Any = None) -> dict[str, Any]:
        return {"RouteTables": [
            dict(t) for t in self.cloud.route_tables[self.region].values() if _matches(t, Filters)
        ]}

    @_locked
    def create_route(self, RouteTableId: str, GatewayId: str, **destination: str) -> dict[str, Any]:
        table = self.cloud.route_tables[self.region][RouteTableId]
        dest = next(iter(destination.values()))
        if any(r["Destination"] == dest for r in table["Routes"]):
            raise client_error("RouteAlreadyExists", "CreateRoute")
        table["Routes"].append({"Destination": dest, "GatewayId": GatewayId})
        return {"Return": True}

    @_locked
    def associate_route_table(self, RouteTableId: str, SubnetId: str) -> dict[str, Any]:
        for table in self.cloud.route_tables[self.region].values():
            if any(a.get("SubnetId") == SubnetId for a in table["Associations"]):
                raise client_error("Resource.AlreadyAssociated", "AssociateRouteTable")
        table = self.cloud.route_tables[self.region][RouteTableId]
        assoc_id = self.cloud.new_id("rtbassoc")
        table["Associations"].append({"RouteTableAssociationId": assoc_id, "SubnetId": SubnetId})
        return {"AssociationId": assoc_id}

    @_locked
    def delete_route_table(self, RouteTableId: str) -> dict[str, Any]:
        table = self.cloud.route_tables[self.region].get(RouteTableId)
        if table is None:
            raise client_error("InvalidRouteTableID.NotFound", "DeleteRouteTable")
        if table["Associations"]:
            raise client_error("DependencyViolation", "DeleteRouteTable")
        del self.cloud.route_tables[self.region][RouteTableId]
        return {}

    # --- Security groups ---

    @_locked
    def create_security_group(self, VpcId: str, GroupName: str, Description: str,
                              TagSpecifications: Any = None) -> dict[str, Any]:
        for g in self.cloud.groups[self.region].values():
            if g["VpcId"] == VpcId and g["GroupName"] == GroupName:
                raise client_error("InvalidGroup.Duplicate", "CreateSecurityGroup")
        group_id = self.cloud.new_id("sg")
        self.cloud.groups[self.region][group_id] = {
            "GroupId": group_id,
            "GroupName": GroupName,
            "Description": Description,
            "VpcId": VpcId,
            "Rules": set(),
            "Tags": self._tags(TagSpecifications),
        }
        return {"GroupId": group_id}

    @_locked
    def describe_security_groups(self, Filters: Any = None) -> dict[str, Any]:
        return {"SecurityGroups": [
            {k: v for k, v in g.items() if k != "Rules"}
            for g in self.cloud.groups[self.region].values()
            if _matches(g, Filters)
        ]}

    @_locked
    def authorize_security_group_ingress(self, GroupId: str, IpPermissions: list[dict[str, Any]]) -> dict[str, Any]:
        group = self.cloud.groups[self.region].get(GroupId)
        if group is None:
            raise client_error("InvalidGroup.NotFound", "AuthorizeSecurityGroupIngress")
        keys = _rule_keys(IpPermissions)
        if keys & group["Rules"]:
            raise client_error("InvalidPermission.Duplicate", "AuthorizeSecurityGroupIngress")
        group["Rules"] |= keys
        return {"Return": True}

    @_locked
    def revoke_security_group_ingress(self, GroupId: str, IpPermissions: list[dict[str, Any]]) -> dict[str, Any]:
        group = self.cloud.groups[self.region].get(GroupId)
        if group is None:
            raise client_error("InvalidGroup.NotFound", "RevokeSecurityGroupIngress")
        keys = _rule_keys(IpPermissions)
        if not keys <= group["Rules"]:
            raise client_error("InvalidPermission.NotFound", "RevokeSecurityGroupIngress")
        group["Rules"] -= keys
        return {"Return": True}

    @_locked
    def delete_security_group(self, GroupId: str) -> dict[str, Any]:
        if self.cloud.groups[self.region].pop(GroupId, None) is None:
            raise client_error("InvalidGroup.NotFound", "DeleteSecurityGroup")
        return {}


class FakePaginator:
    def __init__(self, cloud: FakeCloud, region: str) -> None:
        self.cloud = cloud
        self.region = region

    def paginate(self, TagFilters: list[dict[str, Any]]) -> list[dict[str, Any]]:
        wanted = {f["Key"]: f["Values"] for f in TagFilters}
        mappings = []
        with self.cloud.lock:
            for kind, table in self.cloud.tables(self.region).items():
                for rid, resource in table.items():
                    tags = _tag_dict(resource)
                    if all(tags.get(k) in v for k, v in wanted.items()):
                        mappings.append({
                            "ResourceARN": f"arn:aws:ec2:{self.region}:{ACCOUNT}:{kind}/{rid}",
                            "Tags": [dict(t) for t in resource.get("Tags", [])],
                        })
        # Two pages, to exercise pagination.
        half = len(mappings) // 2
        return [{"ResourceTagMappingList": mappings[:half]},
                {"ResourceTagMappingList": mappings[half:]}]


class FakeTagging:
    def __init__(self, cloud: FakeCloud, region: str) -> None:
        self.cloud = cloud
        self.region = region

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "get_resources"
        return FakePaginator(self.cloud, self.region)


class FakeSession:
    """Stands in for ``boto3.Session`` with clients bound to a ``FakeCloud``."""

    def __init__(self, cloud: FakeCloud) -> None:
        self.cloud = cloud

    def client(self, service: str, region_name: str, **kwargs: Any) -> Any:
        if service == "ec2":
            return FakeEc2(self.cloud, region_name)
        if service == "resourcegroupstaggingapi":
            return FakeTagging(self.cloud, region_name)
        raise AssertionError(f"unexpected service {service}")


@pytest.fixture()
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture()
def fabric_config() -> FabricConfig:
    return FabricConfig(regions=REGIONS, poll_interval=0.0, poll_attempts=5)


@pytest.fixture()
def fabric(cloud: FakeCloud, fabric_config: FabricConfig) -> Fabric:
    return Fabric(fabric_config, session=FakeSession(cloud))


@pytest.fixture()
def aws(cloud: FakeCloud, fabric_config: FabricConfig) -> AwsSession:
    return AwsSession(fabric_config, FakeSession(cloud))
