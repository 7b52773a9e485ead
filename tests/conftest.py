from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import Any

import pytest
from botocore.exceptions import ClientError
from loguru import logger

from ec2op.api.model import Ec2Instance, InstanceSpec, ResourceKey
from ec2op.api.store import InMemoryStore
from ec2op.config import ControllerSettings
from ec2op.controller.reconciler import InstanceReconciler
from ec2op.providers.aws import AWS, EC2ClientFactory, EC2Provider


def client_error(code: str, operation: str = "DescribeInstances") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} (test)"}}, operation)


class FakeEC2:
    """In-process stand-in for an aioboto3 EC2 client.

    Instances launch as ``pending`` and become ``running`` on the next
    describe; terminated instances go ``shutting-down`` then ``terminated``.
    Errors queued with ``fail(op, ...)`` are raised by the next calls to op.
    """

    def __init__(self) -> None:
        self.instances: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.regions: list[str] = []
        self.failures: dict[str, list[Exception]] = {}
        self.next_ids: list[str] = []
        self.public_ip: str | None = "1.2.3.4"
        self.stuck = False
        self.images = {"ami-1": {"ImageId": "ami-1", "RootDeviceName": "/dev/xvda"}}
        self._counter = 0

    def fail(self, operation: str, *errors: Exception) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def _record(self, operation: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _advance(self, inst: dict[str, Any]) -> None:
        if self.stuck:
            return
        match inst["State"]["Name"]:
            case "pending":
                inst["State"] = {"Name": "running"}
                if self.public_ip:
                    inst["PublicIpAddress"] = self.public_ip
                    inst["PublicDnsName"] = f"ec2-{self.public_ip.replace('.', '-')}.compute.amazonaws.com"
            case "shutting-down":
                inst["State"] = {"Name": "terminated"}
                inst.pop("PublicIpAddress", None)
                inst["PublicDnsName"] = ""

    def _matches(self, inst: dict[str, Any], filters: list[dict[str, Any]]) -> bool:
        tags = {t["Key"]: t["Value"] for t in inst.get("Tags", [])}
        for f in filters:
            name, values = f["Name"], f["Values"]
            if name == "instance-state-name" and inst["State"]["Name"] not in values:
                return False
            if name.startswith("tag:") and tags.get(name[4:]) not in values:
                return False
        return True

    def add_instance(
        self,
        instance_id: str,
        state: str = "running",
        tags: dict[str, str] | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        inst = {
            "InstanceId": instance_id,
            "State": {"Name": state},
            "PrivateIpAddress": "10.0.0.5",
            "PrivateDnsName": "ip-10-0-0-5.ec2.internal",
            "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
            **fields,
        }
        self.instances[instance_id] = inst
        return inst

    async def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("run_instances", kwargs)
        self._counter += 1
        instance_id = self.next_ids.pop(0) if self.next_ids else f"i-{self._counter:04d}"
        tags = {
            t["Key"]: t["Value"]
            for spec in kwargs.get("TagSpecifications", [])
            for t in spec["Tags"]
        }
        inst = self.add_instance(instance_id, state="pending", tags=tags, InstanceType=kwargs["InstanceType"])
        return {"Instances": [copy.deepcopy(inst)]}

    async def describe_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_instances", kwargs)
        ids = kwargs.get("InstanceIds")
        if ids:
            missing = [i for i in ids if i not in self.instances]
            if missing:
                raise client_error("InvalidInstanceID.NotFound")
            candidates = [self.instances[i] for i in ids]
        else:
            candidates = list(self.instances.values())

        for inst in candidates:
            self._advance(inst)

        found = [
            copy.deepcopy(inst)
            for inst in candidates
            if self._matches(inst, kwargs.get("Filters", []))
        ]
        return {"Reservations": [{"Instances": found}] if found else []}

    async def terminate_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("terminate_instances", kwargs)
        changes = []
        for instance_id in kwargs["InstanceIds"]:
            inst = self.instances.get(instance_id)
            if inst is None:
                raise client_error("InvalidInstanceID.NotFound", "TerminateInstances")
            previous = inst["State"]["Name"]
            if previous != "terminated":
                inst["State"] = {"Name": "shutting-down"}
            changes.append({
                "InstanceId": instance_id,
                "PreviousState": {"Name": previous},
                "CurrentState": dict(inst["State"]),
            })
        return {"TerminatingInstances": changes}

    async def describe_images(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_images", kwargs)
        return {"Images": [self.images[i] for i in kwargs["ImageIds"] if i in self.images]}

    def live(self) -> list[str]:
        return sorted(
            iid for iid, inst in self.instances.items()
            if inst["State"]["Name"] not in ("shutting-down", "terminated")
        )


def fake_factory(fake: FakeEC2, default_region: str = "us-east-1") -> EC2ClientFactory:
    @asynccontextmanager
    async def factory(region: str) -> AsyncIterator[FakeEC2]:
        fake.regions.append(region)
        yield fake

    return EC2ClientFactory(factory, default_region=default_region)


def make_resource(
    name: str = "web",
    namespace: str = "default",
    **spec: Any,
) -> Ec2Instance:
    fields = {"ami_id": "ami-1", "instance_type": "t3.micro", "subnet": "subnet-1", **spec}
    return Ec2Instance(key=ResourceKey(namespace, name), spec=InstanceSpec(**fields))


@pytest.fixture
def fake_ec2() -> FakeEC2:
    return FakeEC2()


@pytest.fixture
def aws_config() -> AWS:
    return AWS(
        region="us-east-1",
        create_timeout=5.0,
        terminate_timeout=5.0,
        poll_interval=0.0,
        retry_base_delay=0.0,
    )


@pytest.fixture
def ec2_provider(fake_ec2: FakeEC2, aws_config: AWS) -> EC2Provider:
    return EC2Provider(fake_factory(fake_ec2, aws_config.region), aws_config)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def reconciler(store: InMemoryStore, ec2_provider: EC2Provider) -> InstanceReconciler:
    return InstanceReconciler(store, ec2_provider, ControllerSettings(verify_delay=1.0))


@pytest.fixture
def warnings_logged() -> Iterator[list[str]]:
    """Messages ec2op logs at WARNING and above while the test runs."""
    messages: list[str] = []
    logger.enable("ec2op")
    hid = logger.add(lambda m: messages.append(m.record["message"]), level="WARNING", filter="ec2op")
    yield messages
    logger.remove(hid)
    logger.disable("ec2op")
