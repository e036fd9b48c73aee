# mr_core/records/services/records.py
from __future__ import annotations

from typing import Iterable, List, Optional
from uuid import UUID

from django.db.models import QuerySet
from django.utils import timezone

from mr_core.patients.selectors import patient_exists
from mr_core.records.exceptions import RecordConflict, RecordNotFound, RecordValidationError
from mr_core.records.models import MedicalRecord, RecordVersion

MAX_TITLE_LENGTH = 200
MAX_RECORD_ID_LENGTH = 64


def parse_patient_id(value) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise RecordValidationError("Invalid patient ID format", details={"patient_id": str(value)})


def check_record_id(value) -> str:
    record_id = str(value or "").strip()
    if not record_id or len(record_id) > MAX_RECORD_ID_LENGTH:
        raise RecordValidationError("Invalid record ID format", details={"record_id": str(value)})
    return record_id


def normalize_tags(tags: Optional[Iterable]) -> List[str]:
    """Stripped, non-empty, de-duplicated; first occurrence wins the order."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [tags]

    out: List[str] = []
    for tag in tags:
        value = str(tag).strip()
        if value and value not in out:
            out.append(value)
    return out


def _clean_title(title) -> str:
    value = str(title or "").strip()
    if not value:
        raise RecordValidationError("Title is required")
    if len(value) > MAX_TITLE_LENGTH:
        raise RecordValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return value


def create_record(
    *,
    patient_id,
    title: str,
    description: str = "",
    tags: Optional[Iterable] = None,
    created_by_user_id: int,
) -> MedicalRecord:
    pid = parse_patient_id(patient_id)
    title = _clean_title(title)

    if not patient_exists(patient_id=pid):
        raise RecordNotFound("Patient not found", details={"patient_id": str(pid)})

    return MedicalRecord.objects.create(
        patient_id=pid,
        title=title,
        description=(description or "").strip(),
        tags=normalize_tags(tags),
        created_by_user_id=int(created_by_user_id),
        last_modified_by_user_id=int(created_by_user_id),
    )


def find_active(**filters) -> QuerySet[MedicalRecord]:
    # is_deleted is always conjoined, callers cannot override it
    filters.pop("is_deleted", None)
    return MedicalRecord.objects.filter(**filters).filter(is_deleted=False)


def get_record(*, record_id: str, include_deleted: bool = False, for_update: bool = False) -> MedicalRecord:
    record_id = check_record_id(record_id)
    qs = MedicalRecord.objects.select_related("patient", "current_version")
    if for_update:
        qs = qs.select_for_update(of=("self",))
    if not include_deleted:
        qs = qs.filter(is_deleted=False)

    record = qs.filter(record_id=record_id).first()
    if record is None:
        raise RecordNotFound("Medical record not found", details={"record_id": record_id})
    return record


def get_active_record(*, record_id: str, for_update: bool = False) -> MedicalRecord:
    return get_record(record_id=record_id, for_update=for_update)


def soft_delete(record: MedicalRecord, *, deleted_by_user_id: int) -> MedicalRecord:
    if record.is_deleted:
        raise RecordConflict("Medical record is already deleted", details={"record_id": record.record_id})

    record.is_deleted = True
    record.deleted_at = timezone.now()
    record.deleted_by_user_id = int(deleted_by_user_id)
    record.save(update_fields=["is_deleted", "deleted_at", "deleted_by_user_id", "updated_at"])
    return record


def restore(record: MedicalRecord) -> MedicalRecord:
    record.is_deleted = False
    record.deleted_at = None
    record.deleted_by_user_id = None
    record.save(update_fields=["is_deleted", "deleted_at", "deleted_by_user_id", "updated_at"])
    return record


def update_metadata(
    record: MedicalRecord,
    *,
    modified_by_user_id: int,
    title: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[Iterable] = None,
) -> List[str]:
    """
    Apply only the supplied fields that actually differ.
    Returns the changed field names; nothing is written when the list is empty.
    """
    changed: List[str] = []

    if title is not None:
        new_title = _clean_title(title)
        if new_title != record.title:
            record.title = new_title
            changed.append("title")

    if description is not None:
        new_description = str(description).strip()
        if new_description != record.description:
            record.description = new_description
            changed.append("description")

    if tags is not None:
        new_tags = normalize_tags(tags)
        if new_tags != list(record.tags or []):
            record.tags = new_tags
            changed.append("tags")

    if not changed:
        return changed

    record.last_modified_by_user_id = int(modified_by_user_id)
    record.save(update_fields=[*changed, "last_modified_by_user_id", "updated_at"])
    return changed


def set_current_version(record: MedicalRecord, version: RecordVersion, *, modified_by_user_id: int) -> MedicalRecord:
    if version.record_id != record.pk:
        raise RecordConflict(
            "Version does not belong to this record",
            details={"record_id": record.record_id, "version_id": version.version_id},
        )

    record.current_version = version
    record.last_modified_by_user_id = int(modified_by_user_id)
    record.save(update_fields=["current_version", "last_modified_by_user_id", "updated_at"])
    return record


def add_attachment(record: MedicalRecord, *, attachment: dict, user_id: int) -> dict:
    file_name = str(attachment.get("file_name") or "").strip()
    file_url = str(attachment.get("file_url") or "").strip()
    if not file_name or not file_url:
        raise RecordValidationError("file_name and file_url are required")

    attachments = list(record.attachments or [])
    if any(a.get("file_name") == file_name for a in attachments):
        raise RecordConflict("An attachment with this file name already exists", details={"file_name": file_name})

    entry = {
        "file_name": file_name,
        "file_url": file_url,
        "file_size": attachment.get("file_size"),
        "mime_type": attachment.get("mime_type") or "",
        "uploaded_at": timezone.now().isoformat(),
        "uploaded_by": str(user_id),
    }
    attachments.append(entry)

    record.attachments = attachments
    record.last_modified_by_user_id = int(user_id)
    record.save(update_fields=["attachments", "last_modified_by_user_id", "updated_at"])
    return entry


def remove_attachment(record: MedicalRecord, *, file_name: str, user_id: int) -> dict:
    attachments = list(record.attachments or [])
    for idx, a in enumerate(attachments):
        if a.get("file_name") == file_name:
            removed = attachments.pop(idx)
            break
    else:
        raise RecordNotFound("Attachment not found", details={"file_name": file_name})

    record.attachments = attachments
    record.last_modified_by_user_id = int(user_id)
    record.save(update_fields=["attachments", "last_modified_by_user_id", "updated_at"])
    return removed
