import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from app.core.config import settings
from app.core.enums import Channel, Priority, Role
from app.modules.profiles.schemas import Actor
from app.modules.realtime.hub import ChangeHub
from app.platform.adapters.bus_memory import InMemoryEventBus
from app.platform.adapters.store_memory import InMemoryStore


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kw):
        self.now = self.now + timedelta(seconds=seconds, **kw)


def as_actor(profile) -> Actor:
    return Actor(id=profile.id, display_name=profile.full_name, role=profile.role)


async def _settle(*views, rounds: int = 25):
    """Let listener tasks and the refreshes they trigger run to completion."""
    for _ in range(2):
        for _ in range(rounds):
            await asyncio.sleep(0)
        for view in views:
            await view.settle()


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "LIVE_RETRY_BASE_SECONDS", 0.0)
    monkeypatch.setattr(settings, "CLINIC_TIMEZONE", "UTC")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest_asyncio.fixture
async def hub(bus):
    hub = ChangeHub(bus)
    yield hub
    await hub.close()


@pytest.fixture
def store(bus, clock):
    return InMemoryStore(bus=bus, clock=clock)


@pytest.fixture
def people(store):
    return {
        "patient": store.add_profile("Ana Souza", Role.patient),
        "other_patient": store.add_profile("Bruno Lima", Role.patient),
        "a1": store.add_profile("Carla Dias", Role.attendant),
        "a2": store.add_profile("Diego Reis", Role.attendant),
        "manager": store.add_profile("Elisa Prado", Role.manager),
    }


@pytest.fixture
def actors(people):
    return {key: as_actor(p) for key, p in people.items()}


@pytest.fixture
def open_conversation(store):
    async def _open(patient, channel: Channel = Channel.whatsapp, subject: str | None = None):
        return await store.create_conversation(patient_id=patient.id, channel=channel, subject=subject, priority=Priority.medium)

    return _open


@pytest.fixture
def settle():
    return _settle
