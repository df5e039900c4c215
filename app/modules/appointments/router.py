import uuid
from fastapi import APIRouter, Depends
from app.core.base import utcnow
from app.core.enums import Role
from app.core.errors import PermissionDeniedError, ValidationError, to_http
from app.core.security import get_actor
from app.modules.appointments.registry import list_upcoming
from app.modules.appointments.schemas import AppointmentCreate, AppointmentOut, AppointmentStatusChange, AppointmentView
from app.modules.appointments.service import AppointmentService
from app.modules.profiles.schemas import Actor
from app.platform.ports.store import ClinicStorePort
from app.platform.provider_registry import registry

router = APIRouter()

def get_store() -> ClinicStorePort:
    return registry.store()

def svc(store: ClinicStorePort = Depends(get_store)) -> AppointmentService:
    return AppointmentService(store)

# ---- Appointments ----

@router.get("/appointments", response_model=list[AppointmentView])
async def get_upcoming_appointments(
    patient_id: uuid.UUID | None = None,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
):
    if actor.role == Role.patient:
        patient_id = patient_id or actor.id
        if patient_id != actor.id:
            raise to_http(PermissionDeniedError("patients only see their own appointments"))
    elif patient_id is None:
        raise to_http(ValidationError("patient_id is required"))
    items, err = await list_upcoming(store, patient_id, utcnow())
    if err:
        raise to_http(err)
    return items

@router.post("/appointments", response_model=AppointmentOut, status_code=201)
async def schedule_appointment(
    payload: AppointmentCreate,
    actor: Actor = Depends(get_actor),
    service: AppointmentService = Depends(svc),
):
    obj, err = await service.schedule(actor, payload)
    if err:
        raise to_http(err)
    return obj

@router.post("/appointments/{appointment_id}/status", response_model=AppointmentOut)
async def change_appointment_status(
    appointment_id: uuid.UUID,
    payload: AppointmentStatusChange,
    actor: Actor = Depends(get_actor),
    service: AppointmentService = Depends(svc),
):
    obj, err = await service.change_status(actor, appointment_id, payload.status)
    if err:
        raise to_http(err)
    return obj
