"""Resource model and store interfaces."""

from ec2op.api.model import (
    FINALIZER,
    UNKNOWN_STATE,
    Ec2Instance,
    InstanceSpec,
    InstanceStatus,
    RemoteInstanceRecord,
    ResourceKey,
    Result,
    StorageConfig,
)
from ec2op.api.store import InMemoryStore, ResourceStore

__all__ = [
    "FINALIZER",
    "UNKNOWN_STATE",
    "Ec2Instance",
    "InMemoryStore",
    "InstanceSpec",
    "InstanceStatus",
    "RemoteInstanceRecord",
    "ResourceKey",
    "ResourceStore",
    "Result",
    "StorageConfig",
]
