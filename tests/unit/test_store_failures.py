import uuid
from datetime import timedelta

import pytest

from app.core.enums import AppointmentStatus, Channel, Role
from app.core.errors import ConflictError, TransientNetworkError
from app.modules.appointments.schemas import AppointmentCreate
from app.modules.appointments.service import AppointmentService
from app.modules.conversations.directory import list_conversations
from app.modules.conversations.schemas import ConversationCreate
from app.modules.conversations.service import ConversationService
from app.modules.conversations.stream import list_messages_page, send_message
from app.modules.performance.service import PerformanceAggregator
from app.modules.profiles.schemas import Actor
from app.platform.adapters.store_memory import InMemoryStore


class DownStore(InMemoryStore):
    """Reads and writes fail once ``down`` is set, like a dropped database connection."""

    down = False

    def _check(self):
        if self.down:
            raise TransientNetworkError("database unreachable")

    async def get_profiles(self, ids):
        self._check()
        return await super().get_profiles(ids)

    async def list_conversations(self, policy):
        self._check()
        return await super().list_conversations(policy)

    async def get_conversation(self, conversation_id):
        self._check()
        return await super().get_conversation(conversation_id)

    async def compare_and_set_attendant(self, conversation_id, **kw):
        self._check()
        return await super().compare_and_set_attendant(conversation_id, **kw)

    async def conversations_created_since(self, since, **scope):
        self._check()
        return await super().conversations_created_since(since, **scope)

    async def get_appointment(self, appointment_id):
        self._check()
        return await super().get_appointment(appointment_id)


@pytest.fixture
def store(bus, clock):
    return DownStore(bus=bus, clock=clock)


@pytest.mark.asyncio
async def test_operations_return_transient_errors_instead_of_raising(store, people, actors, open_conversation, clock):
    conv = await open_conversation(people["patient"])
    appt, _ = await AppointmentService(store).schedule(actors["manager"], AppointmentCreate(
        patient_id=people["patient"].id, scheduled_at=clock() + timedelta(hours=2), title="Retorno",
    ))
    store.down = True

    results = [
        await send_message(store, actors["patient"], conv.id, "Olá"),
        await list_messages_page(store, actors["patient"], conv.id),
        await ConversationService(store).claim(actors["a1"], conv.id),
        await list_conversations(store, actors["manager"]),
        await PerformanceAggregator(store, clock).compute_daily(actors["a1"]),
        await PerformanceAggregator(store, clock).compute_team(actors["manager"]),
        await AppointmentService(store).schedule(actors["manager"], AppointmentCreate(
            patient_id=people["patient"].id, scheduled_at=clock() + timedelta(hours=3), title="Exame",
        )),
        await AppointmentService(store).change_status(actors["a1"], appt.id, AppointmentStatus.confirmed),
    ]
    for value, err in results:
        assert value is None
        assert isinstance(err, TransientNetworkError)
        assert err.status_code == 503


@pytest.mark.asyncio
async def test_patient_without_a_profile_gets_a_conflict(store):
    ghost = Actor(id=uuid.uuid4(), display_name="Nobody", role=Role.patient)
    conv, err = await ConversationService(store).open_conversation(ghost, ConversationCreate(channel=Channel.whatsapp))
    assert conv is None
    assert isinstance(err, ConflictError)


@pytest.mark.asyncio
async def test_failed_message_write_is_returned(store, people, actors, open_conversation, monkeypatch):
    conv = await open_conversation(people["patient"])

    async def unreachable(**kwargs):
        raise TransientNetworkError("database unreachable")

    monkeypatch.setattr(store, "insert_message", unreachable)
    msg, err = await send_message(store, actors["patient"], conv.id, "Olá")
    assert msg is None
    assert isinstance(err, TransientNetworkError)
