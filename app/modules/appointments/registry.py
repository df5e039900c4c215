import uuid
from datetime import datetime
from typing import Callable
from app.core.base import utcnow
from app.core.enums import Role
from app.core.errors import CoreError, PermissionDeniedError, returns_errors
from app.modules.appointments.schemas import AppointmentOut, AppointmentView
from app.modules.profiles.schemas import Actor
from app.modules.realtime.hub import ChangeHub, RowFilter
from app.modules.realtime.live import LiveView
from app.platform.ports.store import ClinicStorePort

@returns_errors
async def list_upcoming(store: ClinicStorePort, patient_id: uuid.UUID, now: datetime) -> tuple[list[AppointmentView] | None, CoreError | None]:
    rows: list[AppointmentOut] = await store.list_appointments(patient_id, after=now)
    staff = {a.attendant_id for a in rows if a.attendant_id}
    names = {pid: p.full_name for pid, p in (await store.get_profiles(staff)).items()}
    return [AppointmentView(**a.model_dump(), attendant_name=names.get(a.attendant_id) if a.attendant_id else None) for a in rows], None

class AppointmentRegistry(LiveView[list[AppointmentView]]):
    """Upcoming appointments of one patient, soonest first."""

    def __init__(self, store: ClinicStorePort, hub: ChangeHub, actor: Actor | None, patient_id: uuid.UUID, *, clock: Callable[[], datetime] = utcnow, **kw):
        super().__init__(hub, actor, **kw)
        self.store = store
        self.patient_id = patient_id
        self.clock = clock

    def _subscriptions(self):
        return [("appointments", None, RowFilter("patient_id", self.patient_id))]

    async def _authorize(self) -> CoreError | None:
        if self.actor.role == Role.patient and self.actor.id != self.patient_id:
            return PermissionDeniedError("patients only see their own appointments")
        return None

    async def _fetch(self) -> list[AppointmentView]:
        # "upcoming" is evaluated at fetch time
        items, err = await list_upcoming(self.store, self.patient_id, self.clock())
        if err:
            raise err
        return items

    @property
    def appointments(self) -> list[AppointmentView]:
        return list(self.snapshot or [])
