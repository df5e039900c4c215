import uuid

import pytest

from app.core.enums import Role
from app.core.errors import SessionError
from app.modules.conversations.visibility import AttendantScope, ManagerScope, PatientScope, visibility_for
from app.modules.profiles.schemas import Actor


class Row:
    def __init__(self, patient_id, attendant_id=None):
        self.patient_id = patient_id
        self.attendant_id = attendant_id


ME = uuid.uuid4()
SOMEONE = uuid.uuid4()

# (role, patient_id, attendant_id, visible)
CASES = [
    (Role.patient, ME, None, True),
    (Role.patient, ME, SOMEONE, True),
    (Role.patient, SOMEONE, None, False),
    (Role.patient, SOMEONE, ME, False),
    (Role.attendant, SOMEONE, None, True),
    (Role.attendant, SOMEONE, ME, True),
    (Role.attendant, SOMEONE, uuid.uuid4(), False),
    (Role.manager, SOMEONE, None, True),
    (Role.manager, SOMEONE, uuid.uuid4(), True),
    (Role.manager, ME, ME, True),
]


@pytest.mark.parametrize("role,patient_id,attendant_id,visible", CASES)
def test_visibility_by_role_and_ownership(role, patient_id, attendant_id, visible):
    policy = visibility_for(Actor(id=ME, role=role))
    assert policy.allows(Row(patient_id, attendant_id)) is visible


def test_policy_variant_follows_role():
    assert isinstance(visibility_for(Actor(id=ME, role=Role.patient)), PatientScope)
    assert isinstance(visibility_for(Actor(id=ME, role=Role.attendant)), AttendantScope)
    assert isinstance(visibility_for(Actor(id=ME, role=Role.manager)), ManagerScope)


def test_no_actor_is_a_session_error():
    with pytest.raises(SessionError):
        visibility_for(None)


def test_policies_render_sql_clauses():
    clause = str(visibility_for(Actor(id=ME, role=Role.attendant)).clause())
    assert "attendant_id IS NULL" in clause
    assert "patient_id" in str(visibility_for(Actor(id=ME, role=Role.patient)).clause())
