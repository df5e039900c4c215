import uuid
import logging
from app.core.enums import ConversationStatus, Role
from app.core.errors import ConflictError, CoreError, NotFoundError, PermissionDeniedError, ValidationError, returns_errors
from app.core.security import ensure_actor
from app.modules.conversations.schemas import ConversationCreate, ConversationOut
from app.modules.conversations.visibility import visibility_for
from app.modules.profiles.schemas import Actor
from app.platform.ports.store import ClinicStorePort

log = logging.getLogger(__name__)

Result = tuple[ConversationOut | None, CoreError | None]

class ConversationService:
    """Conversation commands. Every call takes the acting party explicitly."""

    def __init__(self, store: ClinicStorePort):
        self.store = store

    @returns_errors
    async def get_visible(self, actor: Actor, conversation_id: uuid.UUID) -> Result:
        # invisible rows answer exactly like missing ones
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or not visibility_for(actor).allows(conv):
            return None, NotFoundError("conversation not found")
        return conv, None

    @returns_errors
    async def open_conversation(self, actor: Actor, payload: ConversationCreate) -> Result:
        actor = ensure_actor(actor)
        if actor.role != Role.patient:
            return None, PermissionDeniedError("only patients open conversations")
        conv = await self.store.create_conversation(
            patient_id=actor.id, channel=payload.channel, subject=payload.subject, priority=payload.priority,
        )
        return conv, None

    @returns_errors
    async def claim(self, actor: Actor, conversation_id: uuid.UUID) -> Result:
        actor = ensure_actor(actor)
        if actor.role != Role.attendant:
            return None, PermissionDeniedError("only attendants claim conversations")
        conv = await self.store.compare_and_set_attendant(
            conversation_id, expected=None, new=actor.id, status=ConversationStatus.assigned,
        )
        if conv is not None:
            log.info(f"conversation {conversation_id} claimed by {actor.id}")
            return conv, None
        return None, await self._lost_race(conversation_id, "conversation already claimed")

    @returns_errors
    async def release(self, actor: Actor, conversation_id: uuid.UUID) -> Result:
        actor = ensure_actor(actor)
        if actor.role != Role.attendant:
            return None, PermissionDeniedError("only the claiming attendant releases a conversation")
        conv = await self.store.compare_and_set_attendant(
            conversation_id, expected=actor.id, new=None, status=ConversationStatus.open,
        )
        if conv is not None:
            return conv, None
        return None, await self._lost_race(conversation_id, "conversation is not assigned to you")

    @returns_errors
    async def assign(self, actor: Actor, conversation_id: uuid.UUID, attendant_id: uuid.UUID | None) -> Result:
        actor = ensure_actor(actor)
        if actor.role != Role.manager:
            return None, PermissionDeniedError("only managers reassign conversations")
        if attendant_id is not None:
            profiles = await self.store.get_profiles([attendant_id])
            target = profiles.get(attendant_id)
            if target is None or target.role not in (Role.attendant, Role.manager):
                return None, NotFoundError("attendant not found")
        status = ConversationStatus.assigned if attendant_id else ConversationStatus.open
        conv = await self.store.set_attendant(conversation_id, new=attendant_id, status=status)
        if conv is None:
            return None, NotFoundError("conversation not found")
        return conv, None

    @returns_errors
    async def set_status(self, actor: Actor, conversation_id: uuid.UUID, status: ConversationStatus) -> Result:
        actor = ensure_actor(actor)
        if actor.role == Role.patient:
            return None, PermissionDeniedError("patients cannot change conversation status")
        conv, err = await self.get_visible(actor, conversation_id)
        if err:
            return None, err
        if actor.role == Role.attendant and conv.attendant_id != actor.id:
            return None, PermissionDeniedError("claim the conversation first")
        if status == ConversationStatus.assigned and conv.attendant_id is None:
            return None, ValidationError("an unassigned conversation cannot be marked assigned")
        updated = await self.store.set_status(conversation_id, status)
        if updated is None:
            return None, NotFoundError("conversation not found")
        return updated, None

    async def _lost_race(self, conversation_id: uuid.UUID, message: str) -> CoreError:
        current = await self.store.get_conversation(conversation_id)
        if current is None:
            return NotFoundError("conversation not found")
        log.info(f"conditional update on {conversation_id} lost: {message}")
        return ConflictError(message, current=current)
