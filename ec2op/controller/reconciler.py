"""Ec2Instance reconciler.

One pass loads the resource and takes exactly one of three branches:

    deletion requested  -> terminate remote instance, release finalizer
    status.instance_id "" -> acquire finalizer, create, record status
    status.instance_id set -> verify the instance is still running

The remote provider is the source of truth. Persisted status is a cache
that is refreshed on verification and cleared when the instance is gone,
which sends the next pass down the creation branch.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from loguru import logger

from ec2op.api.model import UNKNOWN_STATE, Ec2Instance, ResourceKey, Result
from ec2op.config import ControllerSettings
from ec2op.controller.finalizer import FinalizerGuard
from ec2op.controller.status import cleared, mark_unknown, project
from ec2op.core.exceptions import ConfigurationError, Ec2OpError, NotFoundError

if TYPE_CHECKING:
    from loguru import Logger

    from ec2op.api.store import ResourceStore
    from ec2op.providers.aws.provider import EC2Provider

log = logger.bind(component="reconciler")

_ADOPTABLE_STATES = ("pending", "running")


class InstanceReconciler:
    """Drives one Ec2Instance toward a running EC2 instance.

    Errors are raised, never swallowed; the dispatcher retries them with
    backoff. The returned Result is the requeue hint for successful passes.
    """

    def __init__(
        self,
        store: ResourceStore,
        provider: EC2Provider,
        settings: ControllerSettings | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.settings = settings or ControllerSettings()
        self.finalizers = FinalizerGuard(store, self.settings.finalizer)

    async def reconcile(self, key: ResourceKey) -> Result:
        rlog = log.bind(resource=str(key))

        try:
            resource = await self.store.get(key)
        except NotFoundError:
            rlog.info("Resource gone, nothing to reconcile")
            return Result()

        if resource.deletion_requested:
            return await self._delete(resource, rlog)

        if resource.status.is_empty:
            return await self._create(resource, rlog)

        return await self._verify(resource, rlog)

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def _delete(self, resource: Ec2Instance, rlog: Logger) -> Result:
        if not self.finalizers.holds(resource):
            rlog.debug("Deletion requested without finalizer, nothing to clean up")
            return Result()

        region = resource.spec.region
        try:
            targets = await self._termination_targets(resource)
            for instance_id in targets:
                await self.provider.terminate(instance_id, region)
        except Ec2OpError as e:
            rlog.error("Termination failed, keeping finalizer: {err}", err=e)
            raise

        await self.finalizers.release(resource)
        rlog.info("Remote cleanup done ({n} instances), finalizer released", n=len(targets))
        return Result()

    async def _termination_targets(self, resource: Ec2Instance) -> list[str]:
        """Instance in status plus any other live instance tagged for this resource."""
        targets = [resource.status.instance_id] if resource.status.instance_id else []
        owned = await self.provider.find_owned(resource.key, resource.spec.region)
        targets.extend(r.instance_id for r in owned if r.instance_id not in targets)
        return targets

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def _create(self, resource: Ec2Instance, rlog: Logger) -> Result:
        # Persisted before launching so a crash mid-create still blocks deletion
        resource = await self.finalizers.acquire(resource)
        region = resource.spec.region

        try:
            owned = await self.provider.find_owned(resource.key, region, states=_ADOPTABLE_STATES)
            if owned:
                rlog.info("Adopting existing instance {iid}", iid=owned[0].instance_id)
                if len(owned) > 1:
                    rlog.warning(
                        "Extra owned instances {extra} left running; they are terminated on deletion",
                        extra=[r.instance_id for r in owned[1:]],
                    )
                record = await self.provider.wait_running(owned[0].instance_id, region)
            else:
                rlog.info("Creating new instance")
                record = await self.provider.create(resource.spec, resource.key)
        except Ec2OpError as e:
            rlog.error("Failed to create EC2 instance: {err}", err=e)
            raise

        status = project(record)
        await self.store.update_status(replace(resource, status=status))
        rlog.info(
            "Instance {iid} is {state} (public ip: {ip})",
            iid=status.instance_id, state=status.state, ip=status.public_ip or "-",
        )
        return Result(requeue_after=self.settings.verify_delay)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    async def _verify(self, resource: Ec2Instance, rlog: Logger) -> Result:
        current = resource.status
        ilog = rlog.bind(instance_id=current.instance_id)

        try:
            record = await self.provider.describe(current.instance_id, resource.spec.region)
        except NotFoundError:
            ilog.info("Instance not running anymore, clearing status to recreate")
            return await self._heal(resource)
        except ConfigurationError:
            raise
        except Ec2OpError as e:
            if self.settings.on_describe_failure == "preserve":
                ilog.warning("Could not verify instance, marking state unknown: {err}", err=e)
                if current.state != UNKNOWN_STATE:
                    await self.store.update_status(replace(resource, status=mark_unknown(current)))
                raise
            ilog.warning("Could not verify instance, clearing status to recreate: {err}", err=e)
            return await self._heal(resource)

        observed = project(record)
        if observed == current:
            ilog.debug("Instance running and status up to date")
            return Result()

        if current.state == UNKNOWN_STATE:
            ilog.info("Instance reachable again, refreshing status")
        else:
            ilog.info("Instance details changed, refreshing status")
        await self.store.update_status(replace(resource, status=observed))
        return Result()

    async def _heal(self, resource: Ec2Instance) -> Result:
        await self.store.update_status(replace(resource, status=cleared()))
        return Result(requeue=True)


__all__ = ["InstanceReconciler"]
