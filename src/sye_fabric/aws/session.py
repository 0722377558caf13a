"""boto3 session and client construction.

One ``AwsSession`` is shared by every region an operation touches. Clients
are created lazily per ``(service, region)`` and reused; boto3 clients are
thread-safe, so the worker threads behind ``RegionHandle`` can share them.
"""

from __future__ import annotations

import threading
from typing import Any

import boto3
from botocore.config import Config

from sye_fabric.aws.ec2 import RegionHandle
from sye_fabric.config import FabricConfig

_BOTOCORE_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})


class AwsSession:
    """Builds region-scoped EC2 handles and tagging clients.

    Credential handling is left to boto3's default chain, optionally
    narrowed to a named profile.
    """

    def __init__(self, config: FabricConfig | None = None, session: Any = None) -> None:
        self.config = config or FabricConfig()
        if session is None:
            kwargs: dict[str, Any] = {}
            if self.config.profile:
                kwargs["profile_name"] = self.config.profile
            session = boto3.Session(**kwargs)
        self._session = session
        self._clients: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def client(self, service: str, region: str) -> Any:
        key = (service, region)
        with self._lock:
            if key not in self._clients:
                kwargs: dict[str, Any] = {"region_name": region, "config": _BOTOCORE_CONFIG}
                if self.config.endpoint_url:
                    kwargs["endpoint_url"] = self.config.endpoint_url
                self._clients[key] = self._session.client(service, **kwargs)
            return self._clients[key]

    def region(self, region: str) -> RegionHandle:
        return RegionHandle(
            self.client("ec2", region),
            region,
            poll_interval=self.config.poll_interval,
            poll_attempts=self.config.poll_attempts,
        )
