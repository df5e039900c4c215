import uuid
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable
from pydantic import BaseModel
from app.core.base import utcnow
from app.core.enums import AppointmentStatus, Channel, ConversationStatus, MessageStatus, Priority, Role
from app.core.errors import ConflictError
from app.modules.appointments.schemas import AppointmentOut
from app.modules.conversations.schemas import ConversationOut, MessageOut
from app.modules.conversations.visibility import VisibilityPolicy
from app.modules.profiles.schemas import ProfileOut
from app.modules.realtime.hub import topic_for
from app.modules.realtime.schemas import ChangeEvent
from app.platform.ports.event_bus import EventBusPort
from app.platform.ports.store import ClinicStorePort

log = logging.getLogger("store.memory")

def _msg_key(m: MessageOut):
    return (m.created_at, str(m.id))

class InMemoryStore(ClinicStorePort):
    """Process-local store for local runs and tests.

    Rows are held as schema objects and handed out as copies. Every write is
    announced on the bus like the database change feed would.
    """

    def __init__(self, bus: EventBusPort | None = None, clock: Callable[[], datetime] = utcnow):
        self.bus = bus
        self.clock = clock
        self.profiles: dict[uuid.UUID, ProfileOut] = {}
        self.conversations: dict[uuid.UUID, ConversationOut] = {}
        self.messages: dict[uuid.UUID, MessageOut] = {}
        self.appointments: dict[uuid.UUID, AppointmentOut] = {}

    async def _emit(self, table: str, type_: str, row: BaseModel):
        if self.bus is None:
            return
        event = ChangeEvent(table=table, type=type_, record=row.model_dump(mode="json"), commit_timestamp=self.clock())
        await self.bus.publish(topic_for(table), key=str(row.id), value=event.model_dump(mode="json"))

    # ---- seeding ----

    def add_profile(self, full_name: str, role: Role, *, email: str | None = None, id: uuid.UUID | None = None, is_active: bool = True) -> ProfileOut:
        pid = id or uuid.uuid4()
        p = ProfileOut(id=pid, full_name=full_name, email=email or f"{pid.hex[:8]}@clinic.local", role=role, is_active=is_active)
        self.profiles[pid] = p
        return p.model_copy()

    # ---- profiles ----

    async def get_profiles(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProfileOut]:
        return {i: self.profiles[i].model_copy() for i in set(ids) if i in self.profiles}

    async def list_staff(self) -> list[ProfileOut]:
        staff = [p for p in self.profiles.values() if p.is_active and p.role in (Role.attendant, Role.manager)]
        return [p.model_copy() for p in sorted(staff, key=lambda p: (p.full_name, str(p.id)))]

    # ---- conversations ----

    async def list_conversations(self, policy: VisibilityPolicy) -> list[ConversationOut]:
        rows = [c for c in self.conversations.values() if policy.allows(c)]
        rows.sort(key=lambda c: str(c.id))
        rows.sort(key=lambda c: c.last_message_at, reverse=True)
        return [c.model_copy() for c in rows]

    async def get_conversation(self, conversation_id: uuid.UUID) -> ConversationOut | None:
        c = self.conversations.get(conversation_id)
        return c.model_copy() if c else None

    async def create_conversation(self, *, patient_id: uuid.UUID, channel: Channel, subject: str | None, priority: Priority) -> ConversationOut:
        if patient_id not in self.profiles:
            raise ConflictError("patient profile does not exist")
        now = self.clock()
        c = ConversationOut(
            id=uuid.uuid4(), patient_id=patient_id, attendant_id=None, channel=channel,
            status=ConversationStatus.open, priority=priority, subject=subject,
            created_at=now, last_message_at=now,
        )
        self.conversations[c.id] = c
        await self._emit("conversations", "INSERT", c)
        return c.model_copy()

    async def _update_conversation(self, conversation_id: uuid.UUID, **changes) -> ConversationOut:
        c = self.conversations[conversation_id].model_copy(update=changes)
        self.conversations[conversation_id] = c
        await self._emit("conversations", "UPDATE", c)
        return c.model_copy()

    async def compare_and_set_attendant(self, conversation_id: uuid.UUID, *, expected: uuid.UUID | None, new: uuid.UUID | None, status: ConversationStatus) -> ConversationOut | None:
        # check and write happen without a suspension point in between
        c = self.conversations.get(conversation_id)
        if c is None or c.attendant_id != expected:
            return None
        return await self._update_conversation(conversation_id, attendant_id=new, status=status)

    async def set_attendant(self, conversation_id: uuid.UUID, *, new: uuid.UUID | None, status: ConversationStatus) -> ConversationOut | None:
        if conversation_id not in self.conversations:
            return None
        return await self._update_conversation(conversation_id, attendant_id=new, status=status)

    async def set_status(self, conversation_id: uuid.UUID, status: ConversationStatus) -> ConversationOut | None:
        if conversation_id not in self.conversations:
            return None
        return await self._update_conversation(conversation_id, status=status)

    async def conversations_created_since(self, since: datetime, *, attendant_id: uuid.UUID | None = None, patient_id: uuid.UUID | None = None) -> list[ConversationOut]:
        rows = [c for c in self.conversations.values() if c.created_at >= since]
        if attendant_id is not None:
            rows = [c for c in rows if c.attendant_id == attendant_id]
        if patient_id is not None:
            rows = [c for c in rows if c.patient_id == patient_id]
        return [c.model_copy() for c in sorted(rows, key=lambda c: (c.created_at, str(c.id)))]

    # ---- messages ----

    def _thread(self, conversation_id: uuid.UUID) -> list[MessageOut]:
        return sorted((m for m in self.messages.values() if m.conversation_id == conversation_id), key=_msg_key)

    async def latest_messages(self, conversation_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, MessageOut]:
        out = {}
        for cid in set(conversation_ids):
            thread = self._thread(cid)
            if thread:
                out[cid] = thread[-1].model_copy()
        return out

    async def list_messages(self, conversation_id: uuid.UUID, *, after: tuple[datetime, uuid.UUID] | None = None, limit: int | None = None) -> list[MessageOut]:
        thread = self._thread(conversation_id)
        if after is not None:
            pos = (after[0], str(after[1]))
            thread = [m for m in thread if _msg_key(m) > pos]
        if limit is not None:
            thread = thread[:limit]
        return [m.model_copy() for m in thread]

    async def messages_for(self, conversation_ids: Iterable[uuid.UUID]) -> list[MessageOut]:
        ids = set(conversation_ids)
        rows = [m for m in self.messages.values() if m.conversation_id in ids]
        return [m.model_copy() for m in sorted(rows, key=_msg_key)]

    async def insert_message(self, *, conversation_id: uuid.UUID, sender_id: uuid.UUID | None, content: str, channel: Channel, message_type: str = "text") -> MessageOut:
        conv = self.conversations.get(conversation_id)
        if conv is None:
            raise ConflictError("conversation does not exist")
        created = self.clock()
        thread = self._thread(conversation_id)
        if thread and created <= thread[-1].created_at:
            # keep the per-conversation order strict even when the clock stalls
            created = thread[-1].created_at + timedelta(microseconds=1)
        m = MessageOut(
            id=uuid.uuid4(), conversation_id=conversation_id, sender_id=sender_id, content=content,
            channel=channel, message_type=message_type, status=MessageStatus.sent, created_at=created,
        )
        self.messages[m.id] = m
        await self._emit("messages", "INSERT", m)
        await self._update_conversation(conversation_id, last_message_at=max(conv.last_message_at, created))
        return m.model_copy()

    # ---- appointments ----

    async def list_appointments(self, patient_id: uuid.UUID, *, after: datetime) -> list[AppointmentOut]:
        rows = [a for a in self.appointments.values() if a.patient_id == patient_id and a.scheduled_at > after]
        return [a.model_copy() for a in sorted(rows, key=lambda a: (a.scheduled_at, str(a.id)))]

    async def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentOut | None:
        a = self.appointments.get(appointment_id)
        return a.model_copy() if a else None

    async def create_appointment(self, **data) -> AppointmentOut:
        if data.get("patient_id") not in self.profiles:
            raise ConflictError("patient profile does not exist")
        now = self.clock()
        a = AppointmentOut(id=uuid.uuid4(), status=AppointmentStatus.scheduled, created_at=now, updated_at=now, **data)
        self.appointments[a.id] = a
        await self._emit("appointments", "INSERT", a)
        return a.model_copy()

    async def set_appointment_status(self, appointment_id: uuid.UUID, status: AppointmentStatus, *, expected: AppointmentStatus) -> AppointmentOut | None:
        # check and write happen without a suspension point in between
        a = self.appointments.get(appointment_id)
        if a is None or a.status != expected:
            return None
        a = a.model_copy(update={"status": status, "updated_at": self.clock()})
        self.appointments[appointment_id] = a
        await self._emit("appointments", "UPDATE", a)
        return a.model_copy()
