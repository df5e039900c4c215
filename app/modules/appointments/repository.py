import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from app.core.base import utcnow
from app.core.enums import AppointmentStatus
from app.modules.appointments.models import Appointment

class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Appointment:
        obj = Appointment(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, appt_id: uuid.UUID) -> Appointment | None:
        res = await self.session.execute(select(Appointment).where(Appointment.id == appt_id))
        return res.scalar_one_or_none()

    async def list_upcoming(self, patient_id: uuid.UUID, after: datetime) -> Sequence[Appointment]:
        cond = [Appointment.patient_id == patient_id, Appointment.scheduled_at > after]
        q = select(Appointment).where(and_(*cond)).order_by(Appointment.scheduled_at.asc(), Appointment.id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def update_status_where(self, appt_id: uuid.UUID, expected: AppointmentStatus, status: AppointmentStatus) -> Appointment | None:
        # UPDATE ... WHERE status = :expected RETURNING; None when the row moved on
        q = (
            update(Appointment)
            .where(Appointment.id == appt_id, Appointment.status == expected)
            .values(status=status, updated_at=utcnow())
            .returning(Appointment)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()
