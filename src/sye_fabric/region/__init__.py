"""Region lifecycle: provisioning, core-region resolution, trust sync, teardown."""

from sye_fabric.region.core import CoreRegionResolver
from sye_fabric.region.provisioner import RegionProvisioner
from sye_fabric.region.teardown import RegionTeardown
from sye_fabric.region.trust import TrustSynchronizer

__all__ = [
    "CoreRegionResolver",
    "RegionProvisioner",
    "RegionTeardown",
    "TrustSynchronizer",
]
