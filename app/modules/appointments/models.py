import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, ForeignKey, Enum, Integer, Text
from app.core.base import Base, TimestampedMixin
from app.core.enums import AppointmentStatus

class Appointment(Base, TimestampedMixin):
    __tablename__ = "appointments"

    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), index=True)
    attendant_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)

    # Scheduling
    scheduled_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    status: Mapped[AppointmentStatus] = mapped_column(Enum(AppointmentStatus, name="appointment_status"), default=AppointmentStatus.scheduled)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
