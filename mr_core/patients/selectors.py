# mr_core/patients/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from mr_core.patients.models import Patient


def patient_exists(*, patient_id: UUID) -> bool:
    return Patient.objects.filter(id=patient_id).exists()


def get_patient(*, patient_id: UUID) -> Optional[Patient]:
    return Patient.objects.filter(id=patient_id).first()


def get_patient_for_user(*, user_id: int) -> Optional[Patient]:
    return Patient.objects.filter(portal_user_id=user_id).first()


def patient_summary(patient: Optional[Patient]) -> Optional[dict]:
    """Compact projection used to enrich record responses and backups."""
    if patient is None:
        return None
    return {
        "id": str(patient.id),
        "name": patient.full_name,
        "email": patient.email,
        "phone": patient.phone,
        "mrn": patient.mrn,
    }
