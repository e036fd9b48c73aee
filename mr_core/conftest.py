# mr_core/conftest.py
import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

from mr_core.common.actors import resolve_actor
from mr_core.common.permissions import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT
from mr_core.patients.models import Patient


def _user_with_role(username: str, role: str | None):
    User = get_user_model()
    user = User.objects.create_user(username=username, password="testpass", is_active=True)
    if role:
        group, _ = Group.objects.get_or_create(name=role)
        user.groups.add(group)
    return user


def _client_for(user) -> APIClient:
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def doctor_user(db):
    return _user_with_role("dr_house", ROLE_DOCTOR)


@pytest.fixture
def other_doctor_user(db):
    return _user_with_role("dr_wilson", ROLE_DOCTOR)


@pytest.fixture
def records_admin_user(db):
    return _user_with_role("records_admin", ROLE_ADMIN)


@pytest.fixture
def patient_user(db):
    return _user_with_role("jane_portal", ROLE_PATIENT)


@pytest.fixture
def other_patient_user(db):
    return _user_with_role("john_portal", ROLE_PATIENT)


@pytest.fixture
def patient(db, patient_user):
    return Patient.objects.create(
        full_name="Jane Doe",
        email="jane@example.com",
        mrn="MRN-TEST-001",
        portal_user=patient_user,
    )


@pytest.fixture
def other_patient(db, other_patient_user):
    return Patient.objects.create(
        full_name="John Roe",
        email="john@example.com",
        mrn="MRN-TEST-002",
        portal_user=other_patient_user,
    )


@pytest.fixture
def doctor(doctor_user):
    return resolve_actor(doctor_user)


@pytest.fixture
def other_doctor(other_doctor_user):
    return resolve_actor(other_doctor_user)


@pytest.fixture
def admin(records_admin_user):
    return resolve_actor(records_admin_user)


@pytest.fixture
def patient_actor(patient):
    return resolve_actor(patient.portal_user)


@pytest.fixture
def other_patient_actor(other_patient):
    return resolve_actor(other_patient.portal_user)


@pytest.fixture
def doctor_client(doctor_user):
    return _client_for(doctor_user)


@pytest.fixture
def records_admin_client(records_admin_user):
    return _client_for(records_admin_user)


@pytest.fixture
def patient_client(patient):
    return _client_for(patient.portal_user)


@pytest.fixture
def other_patient_client(other_patient):
    return _client_for(other_patient.portal_user)


@pytest.fixture
def record(patient, doctor):
    """A record for `patient` with version 1 content "A"."""
    from mr_core.records.services.record_service import RecordService

    result = RecordService.create_record(
        patient_id=patient.id,
        title="Initial Consultation",
        description="First visit",
        tags=["cardiology"],
        content="A",
        actor=doctor,
    )
    return result["record"]
