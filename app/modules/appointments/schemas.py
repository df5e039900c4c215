from pydantic import BaseModel, ConfigDict
import uuid
from datetime import datetime
from app.core.enums import AppointmentStatus

# ---- Appointments ----

class AppointmentCreate(BaseModel):
    # presence and shape are checked by AppointmentService so that a
    # missing field comes back as a ValidationError value, not a raise
    patient_id: uuid.UUID | None = None
    scheduled_at: datetime | None = None
    title: str | None = None
    duration_minutes: int = 30
    attendant_id: uuid.UUID | None = None
    description: str | None = None
    notes: str | None = None

class AppointmentStatusChange(BaseModel):
    status: AppointmentStatus

class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    patient_id: uuid.UUID
    attendant_id: uuid.UUID | None = None
    scheduled_at: datetime
    duration_minutes: int = 30
    status: AppointmentStatus
    title: str
    description: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

class AppointmentView(AppointmentOut):
    attendant_name: str | None = None
