"""sye-fabric CLI: command-line interface for cluster network regions.

Commands:
    region-add      Build a region's network and connect it to the core region
    region-delete   Tear down a region's network
    cluster-show    Show every region of a cluster
    core-region     Show which region is the cluster's core region
    subnet-block    Print the /64 a zone index gets inside a /56
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from typing import Any

import click
import yaml
from botocore.exceptions import BotoCoreError

from sye_fabric import __version__
from sye_fabric.config import load_config
from sye_fabric.errors import FabricError
from sye_fabric.models import ClusterSummary, Region
from sye_fabric.network.cidr import CidrError, derive_zone_block


def _build_fabric(ctx: click.Context) -> Any:
    from sye_fabric.sdk.client import Fabric

    return Fabric(ctx.obj["config"])


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run *coro*, turning the first fatal error into exit code 1."""
    try:
        return asyncio.run(coro)
    except (FabricError, CidrError, BotoCoreError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _print_region(region: Region, core: bool) -> None:
    title = f"Region {region.region_id}" + (" (core)" if core else "")
    click.echo(click.style(title, bold=True))
    click.echo("=" * len(title))
    click.echo(f"  vpc:              {region.vpc_id}")
    click.echo(f"  ipv6 block:       {region.ipv6_block}")
    click.echo(f"  internet gateway: {region.internet_gateway_id or '-'}")
    click.echo(f"  route table:      {region.route_table_id or '-'}")
    click.echo("  subnets:")
    for s in region.subnets:
        click.echo(f"    {s.name:<24} {s.id:<26} {s.ipv4_block:<16} {s.ipv6_block}")
    click.echo("  security groups:")
    for name, group_id in sorted(region.security_groups.items()):
        click.echo(f"    {name:<24} {group_id}")


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to sye-fabric.yaml")
@click.option("--profile", default=None, help="AWS profile name")
@click.option("--endpoint-url", default=None, help="Override the AWS endpoint URL")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    profile: str | None,
    endpoint_url: str | None,
    verbose: bool,
) -> None:
    """sye-fabric: multi-region network fabric for Sye clusters on AWS."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        cfg = load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)
    ctx.obj = {"config": cfg.with_overrides(profile=profile, endpoint_url=endpoint_url)}


# --- region commands ---


@cli.command("region-add")
@click.argument("cluster_id")
@click.argument("region")
@click.pass_context
def region_add(ctx: click.Context, cluster_id: str, region: str) -> None:
    """Set up a new region for the cluster."""
    click.echo(f"Setting up region {region} for cluster {cluster_id}")
    fabric = _build_fabric(ctx)
    result: Region = _run(fabric.add_region(cluster_id, region))
    zones = ", ".join(s.zone for s in result.subnets)
    click.echo(f"  vpc {result.vpc_id} ({result.ipv6_block}), zones {zones}")
    click.echo(click.style("Done", fg="green", bold=True))


@cli.command("region-delete")
@click.argument("cluster_id")
@click.argument("region")
@click.pass_context
def region_delete(ctx: click.Context, cluster_id: str, region: str) -> None:
    """Delete a region from the cluster."""
    click.echo(f"Deleting region {region} for cluster {cluster_id}")
    fabric = _build_fabric(ctx)
    deleted = _run(fabric.delete_region(cluster_id, region))
    if not deleted:
        click.echo(f"  no network for cluster {cluster_id} in {region}")
    click.echo(click.style("Done", fg="green", bold=True))


# --- show commands ---


@cli.command("cluster-show")
@click.argument("cluster_id")
@click.option("--raw", is_flag=True, help="Show raw JSON format")
@click.pass_context
def cluster_show(ctx: click.Context, cluster_id: str, raw: bool) -> None:
    """Show all network resources used by a cluster."""
    fabric = _build_fabric(ctx)
    summary: ClusterSummary = _run(fabric.show_cluster(cluster_id))

    if raw:
        click.echo(json.dumps(summary.model_dump(mode="json"), indent=2))
        return

    if not summary.regions:
        click.echo(f"No regions for cluster {cluster_id}")
        return
    for region in summary.regions:
        click.echo("")
        _print_region(region, core=region.region_id == summary.core_region)


@cli.command("core-region")
@click.argument("cluster_id")
@click.pass_context
def core_region(ctx: click.Context, cluster_id: str) -> None:
    """Show the cluster's core region."""
    fabric = _build_fabric(ctx)
    core = _run(fabric.core_region(cluster_id))
    if core is None:
        click.echo(f"Cluster {cluster_id} has no core region")
        sys.exit(1)
    click.echo(core.region_id)


@cli.command("subnet-block")
@click.argument("block")
@click.argument("index", type=int)
def subnet_block(block: str, index: int) -> None:
    """Print the /64 for zone INDEX inside the /56 BLOCK."""
    try:
        click.echo(derive_zone_block(block, index))
    except CidrError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
