import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Iterable
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.core.base import utcnow
from app.core.enums import AppointmentStatus, Channel, ConversationStatus, MessageStatus, Priority
from app.core.errors import ConflictError, TransientNetworkError
from app.modules.appointments.repository import AppointmentRepository
from app.modules.appointments.schemas import AppointmentOut
from app.modules.conversations.repository import ConversationRepository, MessageRepository
from app.modules.conversations.schemas import ConversationOut, MessageOut
from app.modules.conversations.visibility import VisibilityPolicy
from app.modules.events.outbox import OutboxRepository
from app.modules.profiles.repository import ProfileRepository
from app.modules.profiles.schemas import ProfileOut
from app.platform.ports.store import ClinicStorePort

log = logging.getLogger("store.sql")

class SqlStore(ClinicStorePort):
    """PostgreSQL store. Each call runs in its own session; writes commit
    together with their outbox rows so the change feed never misses one."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_factory() as s:
                yield s
        except IntegrityError as e:
            raise ConflictError(f"constraint violated: {e.orig}") from e
        except (SQLAlchemyError, OSError) as e:
            log.warning(f"store call failed: {e}")
            raise TransientNetworkError(str(e)) from e

    async def _record(self, s: AsyncSession, table: str, event_type: str, row: BaseModel):
        await OutboxRepository(s).enqueue(table=table, event_type=event_type, row_id=row.id, record=row.model_dump(mode="json"))

    # ---- profiles ----

    async def get_profiles(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProfileOut]:
        async with self._session() as s:
            rows = await ProfileRepository(s).get_many(ids)
            return {r.id: ProfileOut.model_validate(r) for r in rows}

    async def list_staff(self) -> list[ProfileOut]:
        async with self._session() as s:
            return [ProfileOut.model_validate(r) for r in await ProfileRepository(s).list_staff()]

    # ---- conversations ----

    async def list_conversations(self, policy: VisibilityPolicy) -> list[ConversationOut]:
        async with self._session() as s:
            return [ConversationOut.model_validate(r) for r in await ConversationRepository(s).list_visible(policy)]

    async def get_conversation(self, conversation_id: uuid.UUID) -> ConversationOut | None:
        async with self._session() as s:
            obj = await ConversationRepository(s).get(conversation_id)
            return ConversationOut.model_validate(obj) if obj else None

    async def create_conversation(self, *, patient_id: uuid.UUID, channel: Channel, subject: str | None, priority: Priority) -> ConversationOut:
        now = utcnow()
        async with self._session() as s:
            obj = await ConversationRepository(s).create(
                patient_id=patient_id, channel=channel, subject=subject, priority=priority,
                status=ConversationStatus.open, created_at=now, last_message_at=now,
            )
            out = ConversationOut.model_validate(obj)
            await self._record(s, "conversations", "INSERT", out)
            await s.commit()
            return out

    async def _conditional(self, conversation_id: uuid.UUID, fn) -> ConversationOut | None:
        async with self._session() as s:
            obj = await fn(ConversationRepository(s))
            if obj is None:
                await s.rollback()
                return None
            out = ConversationOut.model_validate(obj)
            await self._record(s, "conversations", "UPDATE", out)
            await s.commit()
            return out

    async def compare_and_set_attendant(self, conversation_id: uuid.UUID, *, expected: uuid.UUID | None, new: uuid.UUID | None, status: ConversationStatus) -> ConversationOut | None:
        return await self._conditional(conversation_id, lambda repo: repo.compare_and_set_attendant(conversation_id, expected, new, status))

    async def set_attendant(self, conversation_id: uuid.UUID, *, new: uuid.UUID | None, status: ConversationStatus) -> ConversationOut | None:
        return await self._conditional(conversation_id, lambda repo: repo.update_where(conversation_id, attendant_id=new, status=status))

    async def set_status(self, conversation_id: uuid.UUID, status: ConversationStatus) -> ConversationOut | None:
        return await self._conditional(conversation_id, lambda repo: repo.update_where(conversation_id, status=status))

    async def conversations_created_since(self, since: datetime, *, attendant_id: uuid.UUID | None = None, patient_id: uuid.UUID | None = None) -> list[ConversationOut]:
        async with self._session() as s:
            rows = await ConversationRepository(s).created_since(since, attendant_id=attendant_id, patient_id=patient_id)
            return [ConversationOut.model_validate(r) for r in rows]

    # ---- messages ----

    async def latest_messages(self, conversation_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, MessageOut]:
        async with self._session() as s:
            rows = await MessageRepository(s).latest_per_conversation(list(set(conversation_ids)))
            return {r.conversation_id: MessageOut.model_validate(r) for r in rows}

    async def list_messages(self, conversation_id: uuid.UUID, *, after: tuple[datetime, uuid.UUID] | None = None, limit: int | None = None) -> list[MessageOut]:
        async with self._session() as s:
            rows = await MessageRepository(s).list_for_conversation(conversation_id, after=after, limit=limit)
            return [MessageOut.model_validate(r) for r in rows]

    async def messages_for(self, conversation_ids: Iterable[uuid.UUID]) -> list[MessageOut]:
        async with self._session() as s:
            rows = await MessageRepository(s).list_for_conversations(list(set(conversation_ids)))
            return [MessageOut.model_validate(r) for r in rows]

    async def insert_message(self, *, conversation_id: uuid.UUID, sender_id: uuid.UUID | None, content: str, channel: Channel, message_type: str = "text") -> MessageOut:
        async with self._session() as s:
            msg = await MessageRepository(s).create(
                conversation_id=conversation_id, sender_id=sender_id, content=content,
                channel=channel, message_type=message_type, status=MessageStatus.sent,
            )
            out = MessageOut.model_validate(msg)
            await self._record(s, "messages", "INSERT", out)
            conv = await ConversationRepository(s).touch_last_message(conversation_id, msg.created_at)
            if conv is not None:
                await self._record(s, "conversations", "UPDATE", ConversationOut.model_validate(conv))
            await s.commit()
            return out

    # ---- appointments ----

    async def list_appointments(self, patient_id: uuid.UUID, *, after: datetime) -> list[AppointmentOut]:
        async with self._session() as s:
            return [AppointmentOut.model_validate(r) for r in await AppointmentRepository(s).list_upcoming(patient_id, after)]

    async def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentOut | None:
        async with self._session() as s:
            obj = await AppointmentRepository(s).get(appointment_id)
            return AppointmentOut.model_validate(obj) if obj else None

    async def create_appointment(self, **data) -> AppointmentOut:
        now = utcnow()
        async with self._session() as s:
            obj = await AppointmentRepository(s).create(status=AppointmentStatus.scheduled, created_at=now, updated_at=now, **data)
            out = AppointmentOut.model_validate(obj)
            await self._record(s, "appointments", "INSERT", out)
            await s.commit()
            return out

    async def set_appointment_status(self, appointment_id: uuid.UUID, status: AppointmentStatus, *, expected: AppointmentStatus) -> AppointmentOut | None:
        async with self._session() as s:
            obj = await AppointmentRepository(s).update_status_where(appointment_id, expected, status)
            if obj is None:
                await s.rollback()
                return None
            out = AppointmentOut.model_validate(obj)
            await self._record(s, "appointments", "UPDATE", out)
            await s.commit()
            return out
