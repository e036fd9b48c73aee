# mr_core/records/models.py
from __future__ import annotations

import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from mr_core.common.models import UUIDModel, external_id
from mr_core.patients.models import Patient


def new_record_id() -> str:
    return external_id("REC")


def new_version_id() -> str:
    return external_id("VER")


class MedicalRecord(UUIDModel):
    """
    A titled folder of medical content owned by exactly one patient.

    Content lives in RecordVersion rows; current_version points at the
    latest approved one. Records are soft-deleted and restorable, never
    hard-deleted by the service layer.
    """
    record_id = models.CharField(max_length=64, unique=True, default=new_record_id, editable=False)

    # never reassigned after creation
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="medical_records")

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    tags = models.JSONField(default=list, blank=True)

    current_version = models.ForeignKey(
        "RecordVersion",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    created_by_user_id = models.BigIntegerField()
    last_modified_by_user_id = models.BigIntegerField(null=True, blank=True)

    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by_user_id = models.BigIntegerField(null=True, blank=True)

    # [{file_name, file_url, file_size, mime_type, uploaded_at, uploaded_by}]
    attachments = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = "records_medical_record"
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(is_deleted=False, deleted_at__isnull=True, deleted_by_user_id__isnull=True)
                    | Q(is_deleted=True, deleted_at__isnull=False, deleted_by_user_id__isnull=False)
                ),
                name="ck_record_soft_delete_triple",
            ),
        ]
        indexes = [
            models.Index(fields=["patient", "is_deleted"], name="ix_record_patient_active"),
            models.Index(fields=["created_by_user_id", "is_deleted"], name="ix_record_author_active"),
        ]

    def __str__(self) -> str:
        return f"{self.record_id} {self.title}"


class RecordVersion(models.Model):
    """
    Immutable content snapshot. Corrections are new versions, never edits.
    version_number is gapless per record, starting at 1.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    version_id = models.CharField(max_length=64, unique=True, default=new_version_id, editable=False)

    record = models.ForeignKey(MedicalRecord, on_delete=models.PROTECT, related_name="versions")
    version_number = models.PositiveIntegerField()

    content = models.TextField()
    content_hash = models.CharField(max_length=64)
    content_size = models.PositiveIntegerField()
    change_description = models.TextField(blank=True, default="")

    created_by_user_id = models.BigIntegerField()

    is_approved = models.BooleanField(default=False)
    approved_by_user_id = models.BigIntegerField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)

    previous_version = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "records_record_version"
        constraints = [
            models.UniqueConstraint(
                fields=["record", "version_number"],
                name="uq_record_version_number",
            ),
        ]
        indexes = [
            models.Index(fields=["record", "-version_number"], name="ix_version_record_number"),
            models.Index(fields=["content_hash"], name="ix_version_content_hash"),
        ]

    def __str__(self) -> str:
        return f"{self.version_id} v{self.version_number}"

    def save(self, *args, **kwargs):
        # UUID PK exists even before first save, so use _state.adding
        if not self._state.adding:
            raise ValidationError("RecordVersion is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("RecordVersion is immutable and cannot be deleted.")
