"""Application entry point: wires modules, logging and the dispatcher."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from injector import Injector, Module

from ec2op.api.store import InMemoryStore, ResourceStore
from ec2op.config import Settings
from ec2op.controller.dispatcher import Dispatcher
from ec2op.module import ControllerModule
from ec2op.observability.logging import _setup_logging, _teardown_logging
from ec2op.providers.aws import AWSModule


@dataclass
class App:
    """Runs the Ec2Instance controller until stopped.

    Example:
        app = App(settings=load_settings(), store=store)
        await app.run()

    Extra ``modules`` are installed last and override earlier bindings.
    """

    settings: Settings = field(default_factory=Settings)
    store: ResourceStore | None = None
    modules: Sequence[Module] = ()

    _injector: Injector | None = field(default=None, init=False, repr=False)

    @property
    def injector(self) -> Injector:
        if self._injector is None:
            self._injector = Injector([
                AWSModule(self.settings.aws),
                ControllerModule(self.settings, self.store),
                *self.modules,
            ])
        return self._injector

    @property
    def dispatcher(self) -> Dispatcher:
        return self.injector.get(Dispatcher)

    async def run(self) -> None:
        handler_ids = _setup_logging(self.settings.logging)
        try:
            dispatcher = self.dispatcher
            store = self.injector.get(ResourceStore)
            if isinstance(store, InMemoryStore):
                store.watch(dispatcher.enqueue)
                for key in await store.list_keys():
                    dispatcher.enqueue(key)
            await dispatcher.run()
        finally:
            _teardown_logging(handler_ids)

    def stop(self) -> None:
        self.dispatcher.stop()
