"""Ec2Instance resource model.

Immutable dataclasses for the declared spec, the observed status and the
provider-reported instance record. Updates go through ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Final

FINALIZER: Final[str] = "ec2instance.compute.cloud.com"
UNKNOWN_STATE: Final[str] = "Unknown"


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True, slots=True, order=True)
class ResourceKey:
    """Namespaced identity of an Ec2Instance resource."""

    namespace: str
    name: str

    @classmethod
    def parse(cls, value: str) -> ResourceKey:
        namespace, sep, name = value.partition("/")
        if not sep:
            return cls(namespace="default", name=namespace)
        return cls(namespace=namespace, name=name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Spec
# =============================================================================


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """EBS volume declaration."""

    volume_size: int
    volume_type: str = "gp3"

    def to_dict(self) -> dict[str, Any]:
        return {"volumeSize": self.volume_size, "volumeType": self.volume_type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageConfig:
        return cls(
            volume_size=int(data["volumeSize"]),
            volume_type=str(data.get("volumeType", "gp3")),
        )


@dataclass(frozen=True, slots=True)
class InstanceSpec:
    """Declared configuration of an instance.

    Read-only once created. The controller never compares it against a
    running instance.

    Args:
        ami_id: Image to launch.
        instance_type: EC2 instance type, e.g. ``t3.micro``.
        subnet: Subnet to launch into.
        key_pair: SSH key pair name. Empty means no key pair.
        region: Region override. Empty means the configured default region.
        tags: Extra tags applied to the instance.
        storage: Root volume. None keeps the AMI default.
        additional_storage: Extra EBS volumes.
    """

    ami_id: str
    instance_type: str
    subnet: str
    key_pair: str = ""
    region: str = ""
    tags: MappingProxyType[str, str] = field(default_factory=lambda: MappingProxyType({}))
    storage: StorageConfig | None = None
    additional_storage: tuple[StorageConfig, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "amiID": self.ami_id,
            "instanceType": self.instance_type,
            "subnet": self.subnet,
            "tags": dict(self.tags),
        }
        if self.key_pair:
            data["sshkey"] = self.key_pair
        if self.region:
            data["region"] = self.region
        if self.storage is not None:
            data["storage"] = self.storage.to_dict()
        if self.additional_storage:
            data["additionalStorage"] = [s.to_dict() for s in self.additional_storage]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstanceSpec:
        storage_raw = data.get("storage")
        match storage_raw:
            case {"volumeSize": _}:
                storage = StorageConfig.from_dict(storage_raw)
            case _:
                storage = None

        return cls(
            ami_id=str(data.get("amiID", "")),
            instance_type=str(data.get("instanceType", "")),
            subnet=str(data.get("subnet", "")),
            key_pair=str(data.get("sshkey", "")),
            region=str(data.get("region", "")),
            tags=MappingProxyType({str(k): str(v) for k, v in (data.get("tags") or {}).items()}),
            storage=storage,
            additional_storage=tuple(
                StorageConfig.from_dict(s) for s in data.get("additionalStorage") or ()
            ),
        )


# =============================================================================
# Status
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceStatus:
    """Observed state of the remote instance.

    Every field is a string. Absence is the empty string, never None.
    """

    instance_id: str = ""
    state: str = ""
    public_ip: str = ""
    private_ip: str = ""
    public_dns: str = ""
    private_dns: str = ""

    @property
    def is_empty(self) -> bool:
        return self.instance_id == ""

    def to_dict(self) -> dict[str, str]:
        return {
            "instanceID": self.instance_id,
            "state": self.state,
            "publicIP": self.public_ip,
            "privateIP": self.private_ip,
            "publicDNS": self.public_dns,
            "privateDNS": self.private_dns,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> InstanceStatus:
        data = data or {}
        return cls(
            instance_id=str(data.get("instanceID") or ""),
            state=str(data.get("state") or ""),
            public_ip=str(data.get("publicIP") or ""),
            private_ip=str(data.get("privateIP") or ""),
            public_dns=str(data.get("publicDNS") or ""),
            private_dns=str(data.get("privateDNS") or ""),
        )


# =============================================================================
# Resource
# =============================================================================


@dataclass(frozen=True, slots=True)
class Ec2Instance:
    """A declared compute instance and its observed status."""

    key: ResourceKey
    spec: InstanceSpec
    status: InstanceStatus = field(default_factory=InstanceStatus)
    finalizers: tuple[str, ...] = ()
    deletion_requested: bool = False
    resource_version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": {
                "namespace": self.key.namespace,
                "name": self.key.name,
                "finalizers": list(self.finalizers),
                "deletionRequested": self.deletion_requested,
                "resourceVersion": self.resource_version,
            },
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ec2Instance:
        meta = data.get("metadata", {})
        return cls(
            key=ResourceKey(
                namespace=str(meta.get("namespace", "default")),
                name=str(meta["name"]),
            ),
            spec=InstanceSpec.from_dict(data.get("spec", {})),
            status=InstanceStatus.from_dict(data.get("status")),
            finalizers=tuple(meta.get("finalizers") or ()),
            deletion_requested=bool(meta.get("deletionRequested", False)),
            resource_version=int(meta.get("resourceVersion", 0)),
        )


# =============================================================================
# Provider record
# =============================================================================


@dataclass(frozen=True, slots=True)
class RemoteInstanceRecord:
    """Instance description as reported by EC2.

    Address and DNS fields are optional: instances in private subnets have
    no public address, and EC2 reports DNS names it has not assigned as "".
    """

    instance_id: str
    state: str
    public_ip: str | None = None
    private_ip: str | None = None
    public_dns: str | None = None
    private_dns: str | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> RemoteInstanceRecord:
        """Build from one ``Reservations[].Instances[]`` item."""
        return cls(
            instance_id=raw["InstanceId"],
            state=raw.get("State", {}).get("Name", ""),
            public_ip=raw.get("PublicIpAddress"),
            private_ip=raw.get("PrivateIpAddress"),
            public_dns=raw.get("PublicDnsName"),
            private_dns=raw.get("PrivateDnsName"),
        )


# =============================================================================
# Requeue hint
# =============================================================================


@dataclass(frozen=True, slots=True)
class Result:
    """Requeue hint returned by a reconcile pass.

    ``Result()`` means done, ``requeue=True`` means retry with backoff and
    ``requeue_after`` means retry after that many seconds.
    """

    requeue: bool = False
    requeue_after: float | None = None

    @property
    def done(self) -> bool:
        return not self.requeue and self.requeue_after is None


__all__ = [
    "FINALIZER",
    "UNKNOWN_STATE",
    "Ec2Instance",
    "InstanceSpec",
    "InstanceStatus",
    "RemoteInstanceRecord",
    "ResourceKey",
    "Result",
    "StorageConfig",
]
