"""Tag naming conventions shared by every cluster resource."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

CLUSTER_ID_TAG = "SyeClusterId"
NAME_TAG = "Name"
CLAIM_DEADLINE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def cluster_tag_key(cluster_id: str) -> str:
    """Per-cluster marker key, usable with EC2's ``tag-key`` filter."""
    return f"SyeCluster_{cluster_id}"


def core_tag_key(cluster_id: str) -> str:
    """Marker key applied to every subnet of the core region."""
    return f"SyeCore_{cluster_id}"


def core_claim_tag_key(cluster_id: str) -> str:
    """Transient tag a region holds while it runs for core region."""
    return f"SyeCoreClaim_{cluster_id}"


def claim_deadline(ttl: float, now: datetime | None = None) -> str:
    """Value for a core claim tag that lapses *ttl* seconds from *now*."""
    now = now or datetime.now(tz=UTC)
    return (now + timedelta(seconds=ttl)).strftime(CLAIM_DEADLINE_FORMAT)


def claim_expired(value: str, now: datetime | None = None) -> bool:
    """True once the deadline in *value* has passed.

    A claim without a readable deadline counts as expired.
    """
    try:
        deadline = datetime.strptime(value, CLAIM_DEADLINE_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return True
    return deadline <= (now or datetime.now(tz=UTC))


def subnet_name(cluster_id: str, zone: str) -> str:
    return f"{cluster_id}-{zone}"


def build_tags(
    cluster_id: str,
    name: str,
    extra: dict[str, str] | None = None,
) -> list[dict[str, str]]:
    """Build the EC2 tag list every cluster resource carries."""
    tags = [
        {"Key": NAME_TAG, "Value": name},
        {"Key": CLUSTER_ID_TAG, "Value": cluster_id},
        {"Key": cluster_tag_key(cluster_id), "Value": ""},
    ]
    for key, value in (extra or {}).items():
        tags.append({"Key": key, "Value": value})
    return tags


def tags_to_dict(tags: list[dict[str, Any]] | None) -> dict[str, str]:
    return {t["Key"]: t.get("Value", "") for t in tags or []}


def get_tag(tags: list[dict[str, Any]] | None, key: str) -> str:
    """Return the tag value, or ``""`` when the tag is absent."""
    return tags_to_dict(tags).get(key, "")


def has_tag(tags: list[dict[str, Any]] | None, key: str, value: str | None = None) -> bool:
    values = tags_to_dict(tags)
    if key not in values:
        return False
    return value is None or values[key] == value


def parse_arn(arn: str) -> tuple[str, str, str]:
    """Split an EC2 ARN into ``(region, resource_type, resource_id)``.

    ``arn:aws:ec2:eu-west-1:123456789012:subnet/subnet-0abc`` yields
    ``("eu-west-1", "subnet", "subnet-0abc")``.
    """
    parts = arn.split(":", 5)
    if len(parts) != 6 or parts[0] != "arn":
        raise ValueError(f"Not an ARN: {arn!r}")
    region = parts[3]
    resource = parts[5]
    if "/" in resource:
        resource_type, resource_id = resource.split("/", 1)
    else:
        resource_type, resource_id = resource, ""
    return region, resource_type, resource_id
