from app.core.config import settings
from app.platform.ports.event_bus import EventBusPort
from app.platform.ports.store import ClinicStorePort
from app.platform.adapters.bus_memory import InMemoryEventBus
from app.modules.realtime.hub import ChangeHub

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _store: ClinicStorePort | None = None
    _hub: ChangeHub | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            if settings.EVENT_BUS_PROVIDER == "redis":
                from app.platform.adapters.bus_redis import RedisEventBus
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = InMemoryEventBus()
        return cls._event_bus

    @classmethod
    def store(cls) -> ClinicStorePort:
        if cls._store is None:
            if settings.STORE_PROVIDER == "postgres":
                from app.core.db import SessionLocal
                from app.platform.adapters.store_sql import SqlStore
                cls._store = SqlStore(SessionLocal)
            else:
                from app.platform.adapters.store_memory import InMemoryStore
                cls._store = InMemoryStore(bus=cls.event_bus())
        return cls._store

    @classmethod
    def change_hub(cls) -> ChangeHub:
        if cls._hub is None:
            cls._hub = ChangeHub(cls.event_bus())
        return cls._hub

    @classmethod
    def override(cls, *, event_bus: EventBusPort | None = None, store: ClinicStorePort | None = None, hub: ChangeHub | None = None):
        # wiring hook for tests and embedding applications
        cls._event_bus = event_bus
        cls._store = store
        cls._hub = hub

registry = ProviderRegistry()
