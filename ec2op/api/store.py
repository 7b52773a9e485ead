"""Resource store interface and an in-memory implementation.

The store owns optimistic concurrency: every write carries the
``resource_version`` it was based on and fails with ConflictError when the
stored copy has moved on. A resource marked for deletion disappears as soon
as its last finalizer is removed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol, runtime_checkable

from loguru import logger

from ec2op.api.model import Ec2Instance, ResourceKey
from ec2op.core.exceptions import ConflictError, NotFoundError

log = logger.bind(component="store")

type ChangeListener = Callable[[ResourceKey], None]


@runtime_checkable
class ResourceStore(Protocol):
    async def get(self, key: ResourceKey) -> Ec2Instance: ...

    async def update(self, resource: Ec2Instance) -> Ec2Instance: ...

    async def update_status(self, resource: Ec2Instance) -> Ec2Instance: ...


class InMemoryStore:
    """Process-local ResourceStore.

    Listeners registered with ``watch`` are called with the key of every
    resource that changes, which is how the dispatcher learns about work.
    """

    def __init__(self) -> None:
        self._items: dict[ResourceKey, Ec2Instance] = {}
        self._listeners: list[ChangeListener] = []
        self._lock = asyncio.Lock()

    def watch(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, key: ResourceKey) -> None:
        for listener in self._listeners:
            listener(key)

    def _current(self, key: ResourceKey) -> Ec2Instance:
        stored = self._items.get(key)
        if stored is None:
            raise NotFoundError("Ec2Instance", str(key))
        return stored

    def _check_version(self, resource: Ec2Instance) -> Ec2Instance:
        stored = self._current(resource.key)
        if stored.resource_version != resource.resource_version:
            raise ConflictError(str(resource.key), resource.resource_version, stored.resource_version)
        return stored

    def _commit(self, resource: Ec2Instance) -> Ec2Instance:
        stored = replace(resource, resource_version=resource.resource_version + 1)
        if stored.deletion_requested and not stored.finalizers:
            del self._items[stored.key]
            log.debug("Dropped {key}: no finalizers left", key=stored.key)
        else:
            self._items[stored.key] = stored
        self._notify(stored.key)
        return stored

    async def get(self, key: ResourceKey) -> Ec2Instance:
        return self._current(key)

    async def list_keys(self) -> list[ResourceKey]:
        return sorted(self._items)

    async def create(self, resource: Ec2Instance) -> Ec2Instance:
        async with self._lock:
            if resource.key in self._items:
                raise ConflictError(str(resource.key), 0, self._items[resource.key].resource_version)
            stored = replace(resource, resource_version=1, deletion_requested=False)
            self._items[stored.key] = stored
        self._notify(stored.key)
        return stored

    async def update(self, resource: Ec2Instance) -> Ec2Instance:
        """Write metadata (finalizers). Status is left as stored."""
        async with self._lock:
            stored = self._check_version(resource)
            return self._commit(replace(
                resource,
                status=stored.status,
                deletion_requested=stored.deletion_requested,
            ))

    async def update_status(self, resource: Ec2Instance) -> Ec2Instance:
        """Write status only."""
        async with self._lock:
            stored = self._check_version(resource)
            return self._commit(replace(stored, status=resource.status))

    async def delete(self, key: ResourceKey) -> None:
        """Request deletion. Blocked while any finalizer is present."""
        async with self._lock:
            stored = self._current(key)
            if stored.deletion_requested:
                return
            self._commit(replace(stored, deletion_requested=True))


__all__ = [
    "ChangeListener",
    "InMemoryStore",
    "ResourceStore",
]
