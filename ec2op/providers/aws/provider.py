"""EC2 provider client.

Issues RunInstances / DescribeInstances / TerminateInstances and blocks,
bounded by fixed timeouts, until instances reach ``running`` or
``terminated``. Creation is not idempotent here: calling ``create`` twice
launches two instances. Callers own idempotency.

botocore failures are translated into the ec2op error taxonomy:

- credential, region and authorization failures -> ConfigurationError
- ``InvalidInstanceID.NotFound`` -> NotFoundError
- exceeded waits -> TimeoutError
- everything else -> TransientProviderError
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from string import ascii_lowercase
from typing import Any, Final

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    NoRegionError,
    PartialCredentialsError,
)
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ec2op.api.model import InstanceSpec, RemoteInstanceRecord, ResourceKey
from ec2op.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    ProvisioningError,
    TransientProviderError,
)
from ec2op.providers.wait import wait_for_ready

from .clients import EC2ClientFactory
from .config import AWS

log = logger.bind(component="ec2")

OWNER_TAG: Final[str] = "ec2op.io/owner"
LIVE_STATES: Final[tuple[str, ...]] = ("pending", "running", "stopping", "stopped")
TERMINAL_STATES: Final[frozenset[str]] = frozenset({"shutting-down", "terminated"})

_NOT_FOUND_CODES: Final[frozenset[str]] = frozenset({"InvalidInstanceID.NotFound"})
_THROTTLE_CODES: Final[frozenset[str]] = frozenset({
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
})
_AUTH_CODES: Final[frozenset[str]] = frozenset({
    "AuthFailure",
    "UnauthorizedOperation",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
    "ExpiredToken",
    "OptInRequired",
})


# =============================================================================
# Error translation
# =============================================================================


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def _is_throttled(e: BaseException) -> bool:
    return isinstance(e, ClientError) and _error_code(e) in _THROTTLE_CODES


@contextmanager
def _translated(operation: str, instance_id: str = "") -> Iterator[None]:
    try:
        yield
    except ClientError as e:
        code = _error_code(e)
        if code in _NOT_FOUND_CODES:
            raise NotFoundError("EC2 instance", instance_id) from e
        if code in _AUTH_CODES:
            raise ConfigurationError(f"{operation} rejected: {code}") from e
        raise TransientProviderError(operation, str(e), code) from e
    except (NoCredentialsError, PartialCredentialsError, NoRegionError) as e:
        raise ConfigurationError(f"{operation}: {e}") from e
    except BotoCoreError as e:
        raise TransientProviderError(operation, str(e)) from e


def _records(response: dict[str, Any]) -> list[RemoteInstanceRecord]:
    return [
        RemoteInstanceRecord.from_api(inst)
        for reservation in response.get("Reservations", [])
        for inst in reservation.get("Instances", [])
    ]


# =============================================================================
# Provider
# =============================================================================


class EC2Provider:
    """Remote provider client for a single EC2 instance at a time."""

    def __init__(self, ec2: EC2ClientFactory, config: AWS) -> None:
        self.ec2 = ec2
        self.config = config

    async def _call(self, fn: Callable[..., Awaitable[dict[str, Any]]], /, **kwargs: Any) -> dict[str, Any]:
        """Invoke an EC2 API method, backing off while throttled."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_throttled),
            stop=stop_after_attempt(self.config.request_attempts),
            wait=wait_exponential(multiplier=self.config.retry_base_delay, max=20),
            reraise=True,
        ):
            with attempt:
                return await fn(**kwargs)
        raise AssertionError("unreachable")

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(self, spec: InstanceSpec, owner: ResourceKey) -> RemoteInstanceRecord:
        """Launch one instance and wait until it is running.

        Returns the full record described after the instance is running.
        """
        region = spec.region or self.ec2.default_region
        log.info(
            "Launching {itype} from {ami} in {subnet} ({region}) for {owner}",
            itype=spec.instance_type, ami=spec.ami_id, subnet=spec.subnet,
            region=region, owner=owner,
        )

        with _translated("RunInstances"):
            async with self.ec2(region) as ec2:
                params = await self._run_params(ec2, spec, owner)
                response = await self._call(ec2.run_instances, **params)

        instances = response.get("Instances", [])
        if not instances:
            raise TransientProviderError("RunInstances", "no instances returned")

        instance_id = instances[0]["InstanceId"]
        log.info("Instance {iid} launched, waiting for running", iid=instance_id)
        return await self.wait_running(instance_id, region)

    async def _run_params(self, ec2: Any, spec: InstanceSpec, owner: ResourceKey) -> dict[str, Any]:
        tags = {"Name": owner.name, **spec.tags, OWNER_TAG: str(owner)}
        params: dict[str, Any] = {
            "ImageId": spec.ami_id,
            "InstanceType": spec.instance_type,
            "SubnetId": spec.subnet,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": k, "Value": v} for k, v in tags.items()],
                }
            ],
        }
        if spec.key_pair:
            params["KeyName"] = spec.key_pair

        mappings: list[dict[str, Any]] = []
        if spec.storage is not None:
            mappings.append({
                "DeviceName": await self._root_device_name(ec2, spec.ami_id),
                "Ebs": {
                    "VolumeSize": spec.storage.volume_size,
                    "VolumeType": spec.storage.volume_type,
                    "DeleteOnTermination": True,
                },
            })
        # /dev/sdf through /dev/sdp are the recommended data volume names
        for letter, extra in zip(ascii_lowercase[5:16], spec.additional_storage, strict=False):
            mappings.append({
                "DeviceName": f"/dev/sd{letter}",
                "Ebs": {
                    "VolumeSize": extra.volume_size,
                    "VolumeType": extra.volume_type,
                    "DeleteOnTermination": True,
                },
            })
        if mappings:
            params["BlockDeviceMappings"] = mappings
        return params

    async def _root_device_name(self, ec2: Any, ami_id: str) -> str:
        response = await self._call(ec2.describe_images, ImageIds=[ami_id])
        images = response.get("Images", [])
        if not images:
            raise TransientProviderError("DescribeImages", f"AMI {ami_id} not found")
        return images[0].get("RootDeviceName") or "/dev/xvda"

    # -------------------------------------------------------------------------
    # Describe
    # -------------------------------------------------------------------------

    async def describe(
        self,
        instance_id: str,
        region: str = "",
        *,
        states: Sequence[str] | None = ("running",),
    ) -> RemoteInstanceRecord:
        """Describe one instance, optionally filtered by lifecycle state.

        Raises:
            NotFoundError: EC2 does not know the id, or the state filter
                matched nothing.
        """
        kwargs: dict[str, Any] = {"InstanceIds": [instance_id]}
        if states:
            kwargs["Filters"] = [{"Name": "instance-state-name", "Values": list(states)}]

        with _translated("DescribeInstances", instance_id):
            async with self.ec2(region) as ec2:
                response = await self._call(ec2.describe_instances, **kwargs)

        records = _records(response)
        if not records:
            raise NotFoundError("EC2 instance", instance_id)
        return records[0]

    async def find_owned(
        self,
        owner: ResourceKey,
        region: str = "",
        *,
        states: Sequence[str] = LIVE_STATES,
    ) -> tuple[RemoteInstanceRecord, ...]:
        """Instances tagged as owned by ``owner``."""
        with _translated("DescribeInstances"):
            async with self.ec2(region) as ec2:
                response = await self._call(
                    ec2.describe_instances,
                    Filters=[
                        {"Name": f"tag:{OWNER_TAG}", "Values": [str(owner)]},
                        {"Name": "instance-state-name", "Values": list(states)},
                    ],
                )
        return tuple(sorted(_records(response), key=lambda r: r.instance_id))

    # -------------------------------------------------------------------------
    # Waits
    # -------------------------------------------------------------------------

    async def wait_running(self, instance_id: str, region: str = "") -> RemoteInstanceRecord:
        """Block until the instance is running, bounded by ``create_timeout``."""

        async def poll() -> RemoteInstanceRecord | None:
            try:
                record = await self.describe(instance_id, region, states=None)
            except NotFoundError:
                log.debug("Instance {iid} not visible yet", iid=instance_id)
                return None
            if record.state in TERMINAL_STATES:
                raise ProvisioningError(instance_id, record.state)
            return record

        return await wait_for_ready(
            poll_fn=poll,
            ready_check=lambda r: r.state == "running",
            timeout=self.config.create_timeout,
            interval=self.config.poll_interval,
            description=f"EC2 instance {instance_id} to be running",
        )

    async def wait_terminated(self, instance_id: str, region: str = "") -> None:
        """Block until the instance is terminated, bounded by ``terminate_timeout``."""

        async def poll() -> RemoteInstanceRecord:
            try:
                return await self.describe(instance_id, region, states=None)
            except NotFoundError:
                return RemoteInstanceRecord(instance_id=instance_id, state="terminated")

        await wait_for_ready(
            poll_fn=poll,
            ready_check=lambda r: r.state == "terminated",
            timeout=self.config.terminate_timeout,
            interval=self.config.poll_interval,
            description=f"EC2 instance {instance_id} to be terminated",
        )

    # -------------------------------------------------------------------------
    # Terminate
    # -------------------------------------------------------------------------

    async def terminate(self, instance_id: str, region: str = "") -> None:
        """Terminate an instance and wait for confirmation.

        An id EC2 no longer knows is treated as already terminated.
        """
        log.info("Terminating {iid}", iid=instance_id)
        try:
            with _translated("TerminateInstances", instance_id):
                async with self.ec2(region) as ec2:
                    response = await self._call(ec2.terminate_instances, InstanceIds=[instance_id])
        except NotFoundError:
            log.info("Instance {iid} already gone", iid=instance_id)
            return

        for change in response.get("TerminatingInstances", []):
            log.debug(
                "Instance {iid} {prev} -> {cur}",
                iid=change.get("InstanceId"),
                prev=change.get("PreviousState", {}).get("Name"),
                cur=change.get("CurrentState", {}).get("Name"),
            )

        await self.wait_terminated(instance_id, region)
        log.info("Instance {iid} terminated", iid=instance_id)


__all__ = [
    "EC2Provider",
    "LIVE_STATES",
    "OWNER_TAG",
]
