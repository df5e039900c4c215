"""Which conversations an actor may observe.

One policy per role, picked by the actor's role tag. Each policy answers the
same question twice: ``allows`` for a row already in hand and ``clause`` for a
store query. The two must stay equivalent, and both mirror the server-side
access policy:

- patient: conversations they own
- attendant: unassigned conversations and the ones they claimed
- manager: everything
"""
import uuid
from dataclasses import dataclass
from typing import Protocol
from sqlalchemy import or_, true
from app.core.enums import Role
from app.core.security import ensure_actor
from app.modules.conversations.models import Conversation
from app.modules.profiles.schemas import Actor

class VisibilityPolicy(Protocol):
    actor_id: uuid.UUID

    def allows(self, conversation) -> bool: ...

    def clause(self): ...

@dataclass(frozen=True)
class PatientScope:
    actor_id: uuid.UUID

    def allows(self, conversation) -> bool:
        return conversation.patient_id == self.actor_id

    def clause(self):
        return Conversation.patient_id == self.actor_id

@dataclass(frozen=True)
class AttendantScope:
    actor_id: uuid.UUID

    def allows(self, conversation) -> bool:
        return conversation.attendant_id is None or conversation.attendant_id == self.actor_id

    def clause(self):
        return or_(Conversation.attendant_id.is_(None), Conversation.attendant_id == self.actor_id)

@dataclass(frozen=True)
class ManagerScope:
    actor_id: uuid.UUID

    def allows(self, conversation) -> bool:
        return True

    def clause(self):
        return true()

POLICIES: dict[Role, type] = {
    Role.patient: PatientScope,
    Role.attendant: AttendantScope,
    Role.manager: ManagerScope,
}

def visibility_for(actor: Actor | None) -> VisibilityPolicy:
    actor = ensure_actor(actor)
    return POLICIES[actor.role](actor.id)
