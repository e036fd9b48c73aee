# mr_core/records/selectors.py
from __future__ import annotations

from typing import List, Tuple
from uuid import UUID

from django.conf import settings
from django.db.models import QuerySet

from mr_core.audit.models import AuditEntry
from mr_core.common.api.pagination import page_meta
from mr_core.records.backup import backup_statistics
from mr_core.records.models import MedicalRecord, RecordVersion


def patient_records_queryset(*, patient_id: UUID, include_deleted: bool = False) -> QuerySet[MedicalRecord]:
    qs = MedicalRecord.objects.filter(patient_id=patient_id)
    if not include_deleted:
        qs = qs.filter(is_deleted=False)
    return qs.select_related("patient", "current_version").order_by("-created_at")


def list_patient_records(
    *,
    patient_id: UUID,
    page: int = 1,
    limit: int = 20,
    include_deleted: bool = False,
) -> Tuple[List[MedicalRecord], dict]:
    qs = patient_records_queryset(patient_id=patient_id, include_deleted=include_deleted)
    total = qs.count()
    offset = (page - 1) * limit
    return list(qs[offset:offset + limit]), page_meta(page=page, limit=limit, total=total)


def active_records_queryset() -> QuerySet[MedicalRecord]:
    return (
        MedicalRecord.objects.filter(is_deleted=False)
        .select_related("patient", "current_version")
        .order_by("-created_at")
    )


def records_health() -> dict:
    return {
        "records": MedicalRecord.objects.count(),
        "active_records": MedicalRecord.objects.filter(is_deleted=False).count(),
        "versions": RecordVersion.objects.count(),
        "audit_entries": AuditEntry.objects.count(),
        "backup_enabled": bool(settings.RECORDS_BACKUP_ENABLED),
        "backup": backup_statistics(),
    }
