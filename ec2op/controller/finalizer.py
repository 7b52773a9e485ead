"""Deletion-blocking marker on Ec2Instance resources.

The marker is added and persisted before the first creation attempt and
removed and persisted only after termination is confirmed. Nothing else
touches it.
"""

from __future__ import annotations

from dataclasses import replace

from loguru import logger

from ec2op.api.model import FINALIZER, Ec2Instance
from ec2op.api.store import ResourceStore

log = logger.bind(component="finalizer")


class FinalizerGuard:
    def __init__(self, store: ResourceStore, marker: str = FINALIZER) -> None:
        self.store = store
        self.marker = marker

    def holds(self, resource: Ec2Instance) -> bool:
        return self.marker in resource.finalizers

    async def acquire(self, resource: Ec2Instance) -> Ec2Instance:
        """Add the marker and persist. No-op when already present."""
        if self.holds(resource):
            return resource
        updated = replace(resource, finalizers=(*resource.finalizers, self.marker))
        stored = await self.store.update(updated)
        log.debug("Finalizer added to {key}", key=resource.key)
        return stored

    async def release(self, resource: Ec2Instance) -> Ec2Instance:
        """Remove the marker and persist."""
        if not self.holds(resource):
            return resource
        updated = replace(
            resource,
            finalizers=tuple(f for f in resource.finalizers if f != self.marker),
        )
        stored = await self.store.update(updated)
        log.debug("Finalizer removed from {key}", key=resource.key)
        return stored
