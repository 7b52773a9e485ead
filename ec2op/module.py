"""Central DI module for ec2op.

Binds the resource store, provider client, reconciler and dispatcher.
Combine with AWSModule, which provides the AWS config, the aioboto3
session and the region-keyed EC2 client factory.
"""

from __future__ import annotations

from injector import Binder, Module, provider, singleton

from .api.store import InMemoryStore, ResourceStore
from .config import ControllerSettings, Settings
from .controller.dispatcher import Dispatcher
from .controller.reconciler import InstanceReconciler
from .providers.aws import AWS, EC2ClientFactory, EC2Provider


class ControllerModule(Module):
    """Module providing the controller components.

    Usage:
        injector = Injector([AWSModule(settings.aws), ControllerModule(settings)])
        dispatcher = injector.get(Dispatcher)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: ResourceStore | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._store = store

    def configure(self, binder: Binder) -> None:
        binder.bind(Settings, to=self._settings)
        binder.bind(ControllerSettings, to=self._settings.controller)

    @singleton
    @provider
    def provide_store(self) -> ResourceStore:
        return self._store if self._store is not None else InMemoryStore()

    @singleton
    @provider
    def provide_provider(self, ec2: EC2ClientFactory, config: AWS) -> EC2Provider:
        return EC2Provider(ec2, config)

    @singleton
    @provider
    def provide_reconciler(
        self,
        store: ResourceStore,
        ec2_provider: EC2Provider,
        settings: ControllerSettings,
    ) -> InstanceReconciler:
        return InstanceReconciler(store, ec2_provider, settings)

    @singleton
    @provider
    def provide_dispatcher(
        self,
        reconciler: InstanceReconciler,
        settings: ControllerSettings,
    ) -> Dispatcher:
        return Dispatcher(
            reconciler.reconcile,
            workers=settings.workers,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )


__all__ = ["ControllerModule"]
