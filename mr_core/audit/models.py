# mr_core/audit/models.py
import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from mr_core.common.actors import ActorRole
from mr_core.common.models import external_id


def new_audit_id() -> str:
    return external_id("AUDIT")


class AuditAction(models.TextChoices):
    CREATE_RECORD = "CREATE_RECORD", "Created medical record"
    READ_RECORD = "READ_RECORD", "Viewed medical record"
    UPDATE_RECORD = "UPDATE_RECORD", "Updated medical record"
    DELETE_RECORD = "DELETE_RECORD", "Deleted medical record"
    RESTORE_RECORD = "RESTORE_RECORD", "Restored medical record"
    CREATE_VERSION = "CREATE_VERSION", "Created new version"
    VIEW_VERSION = "VIEW_VERSION", "Viewed version"
    BACKUP_RECORD = "BACKUP_RECORD", "Backed up record"
    UPLOAD_ATTACHMENT = "UPLOAD_ATTACHMENT", "Uploaded attachment"
    DELETE_ATTACHMENT = "DELETE_ATTACHMENT", "Deleted attachment"
    ACCESS_PATIENT_RECORDS = "ACCESS_PATIENT_RECORDS", "Accessed patient records"
    VIEW_AUDIT_TRAIL = "VIEW_AUDIT_TRAIL", "Viewed audit trail"
    LIST_BACKUPS = "LIST_BACKUPS", "Listed backups"
    EXPORT_PATIENT_HISTORY = "EXPORT_PATIENT_HISTORY", "Exported patient history"


class ResourceType(models.TextChoices):
    RECORD = "RECORD", "Record"
    VERSION = "VERSION", "Version"
    PATIENT = "PATIENT", "Patient"
    ATTACHMENT = "ATTACHMENT", "Attachment"
    ACTOR = "ACTOR", "Actor"
    BACKUP = "BACKUP", "Backup"


class AuditEntry(models.Model):
    """
    Immutable audit fact: one row per medical-records operation, success or failure.
    Written once by AuditService.log_action, never updated or deleted.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    audit_id = models.CharField(max_length=64, unique=True, default=new_audit_id, editable=False)

    action = models.CharField(max_length=32, choices=AuditAction.choices)
    resource_type = models.CharField(max_length=16, choices=ResourceType.choices)
    resource_id = models.CharField(max_length=128)

    # Nullable: a failed lookup may not know whose data was touched
    patient_id = models.UUIDField(null=True, blank=True)

    performed_by = models.CharField(max_length=128)
    performed_by_type = models.CharField(max_length=16, choices=ActorRole.choices)

    details = models.JSONField(default=dict, blank=True)
    session_info = models.JSONField(default=dict, blank=True)

    timestamp = models.DateTimeField(default=timezone.now, db_index=True)
    success = models.BooleanField(default=True)
    error_message = models.TextField(null=True, blank=True)
    duration_ms = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        db_table = "audit_entry"
        ordering = ["-timestamp"]
        indexes = [
            models.Index(fields=["patient_id", "-timestamp"], name="ix_audit_patient_ts"),
            models.Index(fields=["performed_by", "-timestamp"], name="ix_audit_actor_ts"),
            models.Index(fields=["action", "-timestamp"], name="ix_audit_action_ts"),
            models.Index(fields=["resource_type", "resource_id", "-timestamp"], name="ix_audit_resource_ts"),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.resource_type}:{self.resource_id} by {self.performed_by}"

    def describe(self) -> str:
        """Human-readable line, e.g. 'Created medical record "Checkup" (v2)'."""
        try:
            description = AuditAction(self.action).label
        except ValueError:
            description = str(self.action)

        details = self.details or {}
        if details.get("record_title"):
            description += f' "{details["record_title"]}"'
        if details.get("version_number"):
            description += f' (v{details["version_number"]})'
        return description

    def save(self, *args, **kwargs):
        # UUID PK exists even before first save, so use _state.adding
        if not self._state.adding:
            raise ValidationError("AuditEntry is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("AuditEntry is immutable and cannot be deleted.")
