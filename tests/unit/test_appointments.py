import asyncio
from datetime import timedelta

import pytest

from app.core.enums import AppointmentStatus
from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.modules.appointments.registry import AppointmentRegistry, list_upcoming
from app.modules.appointments.schemas import AppointmentCreate
from app.modules.appointments.service import AppointmentService


def booking(people, clock, hours: float, **kw) -> AppointmentCreate:
    data = dict(
        patient_id=people["patient"].id,
        attendant_id=people["a1"].id,
        scheduled_at=clock() + timedelta(hours=hours),
        title="Consulta",
    )
    data.update(kw)
    return AppointmentCreate(**data)


@pytest.mark.asyncio
async def test_upcoming_excludes_past_and_sorts_soonest_first(store, people, actors, clock):
    service = AppointmentService(store)
    for hours in (48, -2, 3):
        _, err = await service.schedule(actors["a1"], booking(people, clock, hours))
        assert err is None
    await service.schedule(actors["a1"], booking(people, clock, 5, patient_id=people["other_patient"].id))

    upcoming, err = await list_upcoming(store, people["patient"].id, clock())
    assert err is None
    assert [a.scheduled_at - clock() for a in upcoming] == [timedelta(hours=3), timedelta(hours=48)]
    assert all(a.attendant_name == "Carla Dias" for a in upcoming)


@pytest.mark.asyncio
async def test_schedule_validates_input(store, people, actors, clock):
    service = AppointmentService(store)

    _, err = await service.schedule(actors["a1"], AppointmentCreate(title="  "))
    assert isinstance(err, ValidationError)
    assert "patient_id" in err.message and "scheduled_at" in err.message and "title" in err.message

    _, err = await service.schedule(actors["a1"], booking(people, clock, 1, duration_minutes=0))
    assert isinstance(err, ValidationError)

    _, err = await service.schedule(actors["a1"], booking(people, clock, 1, patient_id=people["a2"].id))
    assert isinstance(err, NotFoundError)

    _, err = await service.schedule(actors["patient"], booking(people, clock, 1))
    assert isinstance(err, PermissionDeniedError)


@pytest.mark.asyncio
async def test_status_transitions(store, people, actors, clock):
    service = AppointmentService(store)
    appt, _ = await service.schedule(actors["manager"], booking(people, clock, 2))
    assert appt.status == AppointmentStatus.scheduled

    appt, err = await service.change_status(actors["a1"], appt.id, AppointmentStatus.confirmed)
    assert err is None and appt.status == AppointmentStatus.confirmed

    _, err = await service.change_status(actors["a1"], appt.id, AppointmentStatus.completed)
    assert isinstance(err, ValidationError)

    _, err = await service.change_status(actors["patient"], appt.id, AppointmentStatus.in_progress)
    assert isinstance(err, PermissionDeniedError)

    _, err = await service.change_status(actors["other_patient"], appt.id, AppointmentStatus.cancelled)
    assert isinstance(err, NotFoundError)

    appt, err = await service.change_status(actors["patient"], appt.id, AppointmentStatus.cancelled)
    assert err is None and appt.status == AppointmentStatus.cancelled

    _, err = await service.change_status(actors["manager"], appt.id, AppointmentStatus.confirmed)
    assert isinstance(err, ValidationError)


@pytest.mark.asyncio
async def test_concurrent_transitions_one_wins(store, people, actors, clock, monkeypatch):
    service = AppointmentService(store)
    appt, _ = await service.schedule(actors["manager"], booking(people, clock, 1))
    await service.change_status(actors["a1"], appt.id, AppointmentStatus.in_progress)

    # both callers read in_progress before either writes
    read = store.get_appointment

    async def slow_get(appointment_id):
        row = await read(appointment_id)
        await asyncio.sleep(0)
        return row

    monkeypatch.setattr(store, "get_appointment", slow_get)
    done, cancelled = await asyncio.gather(
        service.change_status(actors["a1"], appt.id, AppointmentStatus.completed),
        service.change_status(actors["a2"], appt.id, AppointmentStatus.cancelled),
    )
    results = [done, cancelled]
    winners = [r for r, err in results if err is None]
    losers = [err for r, err in results if err is not None]
    assert len(winners) == 1 and len(losers) == 1
    assert isinstance(losers[0], ConflictError)
    assert losers[0].current.status == winners[0].status
    assert (await read(appt.id)).status == winners[0].status


@pytest.mark.asyncio
async def test_registry_follows_new_bookings(store, hub, people, actors, clock, settle):
    registry = AppointmentRegistry(store, hub, actors["patient"], people["patient"].id, clock=clock)
    items, err = await registry.open()
    assert err is None and items == []

    service = AppointmentService(store)
    appt, _ = await service.schedule(actors["a1"], booking(people, clock, 24))
    await service.schedule(actors["a1"], booking(people, clock, 24, patient_id=people["other_patient"].id))
    await settle(registry)
    assert [a.id for a in registry.appointments] == [appt.id]
    await registry.close()


@pytest.mark.asyncio
async def test_registry_is_private_to_the_patient(store, hub, people, actors, clock):
    registry = AppointmentRegistry(store, hub, actors["patient"], people["other_patient"].id, clock=clock)
    items, err = await registry.open()
    assert items is None
    assert isinstance(err, PermissionDeniedError)

    staff_view = AppointmentRegistry(store, hub, actors["a2"], people["other_patient"].id, clock=clock)
    items, err = await staff_view.open()
    assert err is None and items == []
    await staff_view.close()
