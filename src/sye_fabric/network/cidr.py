"""IPv6/IPv4 block arithmetic for per-zone subnets.

AWS hands every VPC a /56 IPv6 block. Each availability zone gets one /64
out of it, selected by writing the zone index into the 4th 16-bit group
(bits 48-63). IPv4 blocks are carved out of the VPC's ``10.0.0.0/16`` as
sixteen consecutive /20s.

Usage::

    derive_zone_block("2a05:d018:1d7:a800::/56", 2)
    # -> "2a05:d018:1d7:a802::/64"

All functions are pure: no I/O, no state.
"""

from __future__ import annotations

import re

VPC_PREFIX_LENGTH = 56
ZONE_PREFIX_LENGTH = 64
MAX_ZONE_INDEX = 255
MAX_IPV4_ZONES = 16

_GROUP_RE = re.compile(r"^[0-9a-fA-F]{1,4}$")
_TRAILING_ZEROS_RE = re.compile(r"(:0)+$")


class CidrError(ValueError):
    """Base class for malformed CIDR or address input."""


class InvalidAddress(CidrError):
    """Raised when an IPv6 address cannot be parsed into eight groups."""


class InvalidPrefixLength(CidrError):
    """Raised when a block does not have the prefix length a split requires."""


class ZoneIndexOutOfRange(CidrError):
    """Raised when a zone index does not fit the free bits of the split."""


def _parse_groups(part: str, address: str) -> list[int]:
    if part == "":
        return []
    groups = []
    for token in part.split(":"):
        if not _GROUP_RE.match(token):
            raise InvalidAddress(f"Invalid IPv6 group {token!r} in {address!r}")
        groups.append(int(token, 16))
    return groups


def parse_ipv6(address: str) -> list[int]:
    """Parse *address* into eight 16-bit integers.

    At most one ``::`` zero-compression run is honored; anything else
    (two runs, too many groups, non-hex groups) raises ``InvalidAddress``.
    """
    parts = address.split("::")
    if len(parts) > 2:
        raise InvalidAddress(f"More than one '::' in {address!r}")

    head = _parse_groups(parts[0], address)
    if len(parts) == 1:
        if len(head) != 8:
            raise InvalidAddress(f"Expected 8 groups in {address!r}, got {len(head)}")
        return head

    tail = _parse_groups(parts[1], address)
    if len(head) + len(tail) > 7:
        raise InvalidAddress(f"Too many groups around '::' in {address!r}")
    return head + [0] * (8 - len(head) - len(tail)) + tail


def format_ipv6(groups: list[int]) -> str:
    """Serialize eight groups as colon-hex.

    Only the trailing run of zero groups is collapsed into ``::``, so
    ``[1, 2, 3, 4, 0, 0, 0, 0]`` becomes ``"1:2:3:4::"`` while
    ``[0, 0, 0, 0, 0, 0, 0, 1]`` stays fully expanded.
    """
    if len(groups) != 8:
        raise InvalidAddress(f"Expected 8 groups, got {len(groups)}")
    for group in groups:
        if not 0 <= group <= 0xFFFF:
            raise InvalidAddress(f"Group out of range: {group}")
    text = ":".join(format(group, "x") for group in groups)
    return _TRAILING_ZEROS_RE.sub("::", text)


def split_cidr(block: str) -> tuple[str, int]:
    """Split ``address/length`` into its parts."""
    address, sep, length = block.partition("/")
    if not sep or not length.isdigit():
        raise InvalidPrefixLength(f"Missing or malformed prefix length in {block!r}")
    return address, int(length)


def derive_zone_block(block: str, zone_index: int) -> str:
    """Return the /64 for *zone_index* inside the cluster /56 *block*.

    The index is added to group 3 with integer addition; well-formed AWS
    blocks have a zero low byte there.
    """
    address, length = split_cidr(block)
    if length != VPC_PREFIX_LENGTH:
        raise InvalidPrefixLength(
            f"Expected a /{VPC_PREFIX_LENGTH} block, got /{length} in {block!r}"
        )
    if (
        not isinstance(zone_index, int)
        or isinstance(zone_index, bool)
        or not 0 <= zone_index <= MAX_ZONE_INDEX
    ):
        raise ZoneIndexOutOfRange(
            f"Zone index must be in [0, {MAX_ZONE_INDEX}], got {zone_index!r}"
        )

    groups = parse_ipv6(address)
    groups[3] += zone_index
    if groups[3] > 0xFFFF:
        raise InvalidAddress(f"Zone index {zone_index} overflows group 3 of {block!r}")
    return f"{format_ipv6(groups)}/{ZONE_PREFIX_LENGTH}"


cidr_subset6 = derive_zone_block


def ipv4_zone_block(zone_index: int) -> str:
    """Return ``10.0.(i*16).0/20`` for the *zone_index*-th zone."""
    if (
        not isinstance(zone_index, int)
        or isinstance(zone_index, bool)
        or not 0 <= zone_index < MAX_IPV4_ZONES
    ):
        raise ZoneIndexOutOfRange(
            f"IPv4 zone index must be in [0, {MAX_IPV4_ZONES - 1}], got {zone_index!r}"
        )
    return f"10.0.{zone_index * 16}.0/20"
