"""ec2op: reconcile declared Ec2Instance resources with EC2.

Example:
    import asyncio

    from ec2op import App, Ec2Instance, InMemoryStore, InstanceSpec, ResourceKey, load_settings

    store = InMemoryStore()
    await store.create(Ec2Instance(
        key=ResourceKey("default", "web"),
        spec=InstanceSpec(ami_id="ami-1", instance_type="t3.micro", subnet="subnet-1"),
    ))
    await App(settings=load_settings(), store=store).run()
"""

from ec2op.api import (
    FINALIZER,
    Ec2Instance,
    InMemoryStore,
    InstanceSpec,
    InstanceStatus,
    RemoteInstanceRecord,
    ResourceKey,
    ResourceStore,
    Result,
    StorageConfig,
)
from ec2op.app import App
from ec2op.config import ControllerSettings, Settings, load_settings
from ec2op.controller import Dispatcher, InstanceReconciler
from ec2op.core.exceptions import (
    ConfigurationError,
    ConflictError,
    Ec2OpError,
    NotFoundError,
    ProvisioningError,
    TimeoutError,
    TransientProviderError,
)
from ec2op.providers.aws import AWS, EC2Provider

__version__ = "0.1.0"

__all__ = [
    "AWS",
    "App",
    "ConfigurationError",
    "ConflictError",
    "ControllerSettings",
    "Dispatcher",
    "EC2Provider",
    "Ec2Instance",
    "Ec2OpError",
    "FINALIZER",
    "InMemoryStore",
    "InstanceReconciler",
    "InstanceSpec",
    "InstanceStatus",
    "NotFoundError",
    "ProvisioningError",
    "RemoteInstanceRecord",
    "ResourceKey",
    "ResourceStore",
    "Result",
    "Settings",
    "StorageConfig",
    "TimeoutError",
    "TransientProviderError",
    "load_settings",
]
