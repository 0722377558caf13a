"""Config file loading and auto-discovery for sye-fabric.

Searches for ``sye-fabric.yaml`` in the current directory and parent
directories and parses it into a ``FabricConfig``. Values given on the
command line take precedence over the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

CONFIG_FILENAME = "sye-fabric.yaml"

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_ATTEMPTS = 60
DEFAULT_VPC_CIDR = "10.0.0.0/16"


@dataclass(frozen=True)
class FabricConfig:
    """Parsed sye-fabric project configuration."""

    config_path: Path | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    regions: tuple[str, ...] = field(default_factory=tuple)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_attempts: int = DEFAULT_POLL_ATTEMPTS
    vpc_cidr: str = DEFAULT_VPC_CIDR

    def with_overrides(self, **overrides: object) -> FabricConfig:
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``sye-fabric.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> FabricConfig:
    """Load a sye-fabric config file.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Return an empty ``FabricConfig`` (all defaults).
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    elif auto_discover:
        config_path = find_config()

    if config_path is None:
        return FabricConfig()

    return _parse_config(config_path)


def _parse_config(config_path: Path) -> FabricConfig:
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ValueError(msg)

    regions = data.get("regions") or []
    if isinstance(regions, str) or not isinstance(regions, list):
        msg = f"'regions' must be a list in {config_path}"
        raise ValueError(msg)

    poll_attempts = int(data.get("poll_attempts", DEFAULT_POLL_ATTEMPTS))
    poll_interval = float(data.get("poll_interval", DEFAULT_POLL_INTERVAL))
    if poll_attempts < 1 or poll_interval < 0:
        msg = f"poll_attempts must be >= 1 and poll_interval >= 0 in {config_path}"
        raise ValueError(msg)

    return FabricConfig(
        config_path=config_path,
        profile=data.get("profile"),
        endpoint_url=data.get("endpoint_url"),
        regions=tuple(str(r) for r in regions),
        poll_interval=poll_interval,
        poll_attempts=poll_attempts,
        vpc_cidr=data.get("vpc_cidr", DEFAULT_VPC_CIDR),
    )
