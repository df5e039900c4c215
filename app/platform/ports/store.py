import uuid
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable
from app.core.enums import AppointmentStatus, Channel, ConversationStatus, Priority
from app.modules.appointments.schemas import AppointmentOut
from app.modules.conversations.schemas import ConversationOut, MessageOut
from app.modules.conversations.visibility import VisibilityPolicy
from app.modules.profiles.schemas import ProfileOut

@runtime_checkable
class ClinicStorePort(Protocol):
    """Backing store of the clinic console.

    Writes announce themselves on the change feed. Failures surface as
    ``TransientNetworkError`` (unreachable) or ``ConflictError`` (constraint).
    """

    # ---- profiles ----
    async def get_profiles(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProfileOut]: ...
    async def list_staff(self) -> list[ProfileOut]: ...

    # ---- conversations ----
    async def list_conversations(self, policy: VisibilityPolicy) -> list[ConversationOut]: ...
    async def get_conversation(self, conversation_id: uuid.UUID) -> ConversationOut | None: ...
    async def create_conversation(self, *, patient_id: uuid.UUID, channel: Channel, subject: str | None, priority: Priority) -> ConversationOut: ...
    async def compare_and_set_attendant(self, conversation_id: uuid.UUID, *, expected: uuid.UUID | None, new: uuid.UUID | None, status: ConversationStatus) -> ConversationOut | None:
        """Set attendant and status only if the current attendant is ``expected``; None when the condition fails."""
        ...
    async def set_attendant(self, conversation_id: uuid.UUID, *, new: uuid.UUID | None, status: ConversationStatus) -> ConversationOut | None: ...
    async def set_status(self, conversation_id: uuid.UUID, status: ConversationStatus) -> ConversationOut | None: ...
    async def conversations_created_since(self, since: datetime, *, attendant_id: uuid.UUID | None = None, patient_id: uuid.UUID | None = None) -> list[ConversationOut]: ...

    # ---- messages ----
    async def latest_messages(self, conversation_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, MessageOut]: ...
    async def list_messages(self, conversation_id: uuid.UUID, *, after: tuple[datetime, uuid.UUID] | None = None, limit: int | None = None) -> list[MessageOut]: ...
    async def messages_for(self, conversation_ids: Iterable[uuid.UUID]) -> list[MessageOut]: ...
    async def insert_message(self, *, conversation_id: uuid.UUID, sender_id: uuid.UUID | None, content: str, channel: Channel, message_type: str = "text") -> MessageOut: ...

    # ---- appointments ----
    async def list_appointments(self, patient_id: uuid.UUID, *, after: datetime) -> list[AppointmentOut]: ...
    async def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentOut | None: ...
    async def create_appointment(self, **data) -> AppointmentOut: ...
    async def set_appointment_status(self, appointment_id: uuid.UUID, status: AppointmentStatus, *, expected: AppointmentStatus) -> AppointmentOut | None:
        """Conditional: applies only while the row still has ``expected``; None otherwise."""
        ...
