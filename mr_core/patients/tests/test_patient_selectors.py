# mr_core/patients/tests/test_patient_selectors.py
import uuid

import pytest

from mr_core.patients.selectors import get_patient_for_user, patient_exists, patient_summary

pytestmark = [pytest.mark.django_db]


def test_patient_exists(patient):
    assert patient_exists(patient_id=patient.id)
    assert not patient_exists(patient_id=uuid.uuid4())


def test_portal_user_link(patient, doctor_user):
    assert get_patient_for_user(user_id=patient.portal_user_id) == patient
    assert get_patient_for_user(user_id=doctor_user.id) is None


def test_summary(patient):
    assert patient_summary(patient) == {
        "id": str(patient.id),
        "name": "Jane Doe",
        "email": "jane@example.com",
        "phone": "",
        "mrn": "MRN-TEST-001",
    }
    assert patient_summary(None) is None
