"""Exception hierarchy for fabric operations.

Everything raised here is fatal for the current region's operation.
"Not found" and "already exists" answers from the provider are not
errors; they are handled where they occur.
"""

from __future__ import annotations


class FabricError(Exception):
    """Base class for fabric provisioning errors."""


class ProviderError(FabricError):
    """A provider call failed in a way that retrying will not fix."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code


class ProviderTimeoutError(FabricError):
    """A bounded wait on an asynchronous provider operation ran out."""


class ShapeConflictError(FabricError):
    """An existing object does not match the shape this cluster expects."""


class CoreRegionConflictError(FabricError):
    """More than one region carries the core marker for a cluster."""
