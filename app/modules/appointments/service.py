import uuid
import logging
from datetime import datetime, timezone

from app.core.enums import AppointmentStatus, Role
from app.core.errors import ConflictError, CoreError, NotFoundError, PermissionDeniedError, ValidationError, returns_errors
from app.core.security import ensure_actor
from app.modules.appointments.schemas import AppointmentCreate, AppointmentOut
from app.modules.profiles.schemas import Actor
from app.platform.ports.store import ClinicStorePort

logger = logging.getLogger(__name__)

S = AppointmentStatus
VALID_NEXT = {
    S.scheduled: {S.confirmed, S.in_progress, S.cancelled, S.no_show},
    S.confirmed: {S.in_progress, S.cancelled, S.no_show},
    S.in_progress: {S.completed, S.cancelled},
    S.completed: set(),
    S.cancelled: set(),
    S.no_show: set(),
}

STAFF = {Role.attendant, Role.manager}

def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None: return dt.replace(tzinfo=timezone.utc)
    return dt

class AppointmentService:
    def __init__(self, store: ClinicStorePort):
        self.store = store

    @returns_errors
    async def schedule(self, actor: Actor, payload: AppointmentCreate) -> tuple[AppointmentOut | None, CoreError | None]:
        actor = ensure_actor(actor)
        if actor.role not in STAFF:
            return None, PermissionDeniedError("only staff schedule appointments")

        missing = [name for name in ("patient_id", "scheduled_at") if getattr(payload, name) is None]
        if not (payload.title or "").strip():
            missing.append("title")
        if missing:
            return None, ValidationError(f"missing required fields: {', '.join(missing)}")
        if payload.duration_minutes <= 0:
            return None, ValidationError("duration_minutes must be positive")

        wanted = {payload.patient_id} | ({payload.attendant_id} if payload.attendant_id else set())
        profiles = await self.store.get_profiles(wanted)
        patient = profiles.get(payload.patient_id)
        if patient is None or patient.role != Role.patient:
            return None, NotFoundError("patient not found")
        if payload.attendant_id and payload.attendant_id not in profiles:
            return None, NotFoundError("attendant not found")

        obj = await self.store.create_appointment(
            patient_id=payload.patient_id,
            attendant_id=payload.attendant_id,
            scheduled_at=_aware(payload.scheduled_at),
            duration_minutes=payload.duration_minutes,
            title=payload.title.strip(),
            description=payload.description,
            notes=payload.notes,
        )
        logger.info(f"appointment {obj.id} scheduled for patient {obj.patient_id} at {obj.scheduled_at.isoformat()}")
        return obj, None

    @returns_errors
    async def change_status(self, actor: Actor, appointment_id: uuid.UUID, status: AppointmentStatus) -> tuple[AppointmentOut | None, CoreError | None]:
        actor = ensure_actor(actor)
        obj = await self.store.get_appointment(appointment_id)
        if obj is None or (actor.role == Role.patient and obj.patient_id != actor.id):
            return None, NotFoundError("appointment not found")
        # patients may only cancel their own bookings
        if actor.role == Role.patient and status != S.cancelled:
            return None, PermissionDeniedError("patients can only cancel appointments")
        if status not in VALID_NEXT[obj.status]:
            return None, ValidationError(f"invalid transition {obj.status.value} -> {status.value}")
        updated = await self.store.set_appointment_status(appointment_id, status, expected=obj.status)
        if updated is not None:
            return updated, None
        current = await self.store.get_appointment(appointment_id)
        if current is None:
            return None, NotFoundError("appointment not found")
        logger.info(f"status change on appointment {appointment_id} lost: now {current.status.value}")
        return None, ConflictError("appointment changed concurrently", current=current)
