# mr_core/patients/models.py
from django.conf import settings
from django.db import models

from mr_core.common.models import UUIDModel


class Patient(UUIDModel):
    """
    Patient directory entry. Records hang off a patient; the optional
    portal_user link is the Django user that signs in as this patient.
    """
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=32, blank=True)

    # medical record number
    mrn = models.CharField(max_length=64, unique=True)

    portal_user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="patient_profile",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "patients_patient"
        indexes = [
            models.Index(fields=["full_name"]),
            models.Index(fields=["phone"]),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"
