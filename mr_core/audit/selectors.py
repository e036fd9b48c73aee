# mr_core/audit/selectors.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from django.conf import settings
from django.db.models import Count, Max, Q, QuerySet
from django.utils import timezone

from mr_core.audit.models import AuditEntry
from mr_core.common.api.pagination import page_meta


def list_audit_entries(
    *,
    patient_id: UUID | None = None,
    performed_by: str | None = None,
    actions: Optional[Iterable[str]] = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> QuerySet[AuditEntry]:
    qs = AuditEntry.objects.all()

    if patient_id is not None:
        qs = qs.filter(patient_id=patient_id)
    if performed_by is not None:
        qs = qs.filter(performed_by=performed_by)

    actions = [a for a in (actions or []) if a]
    if actions:
        qs = qs.filter(action__in=actions)

    if start_date is not None:
        qs = qs.filter(timestamp__gte=start_date)
    if end_date is not None:
        qs = qs.filter(timestamp__lte=end_date)

    return qs.order_by("-timestamp")


def patient_audit_trail(
    *,
    patient_id: UUID,
    limit: int | None = None,
    page: int = 1,
    actions: Optional[Iterable[str]] = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> Tuple[List[AuditEntry], dict]:
    """
    One page of the patient's ledger, newest first, plus
    { page, limit, total, pages }.
    """
    limit = limit or settings.RECORDS_AUDIT_DEFAULT_LIMIT
    qs = list_audit_entries(
        patient_id=patient_id,
        actions=actions,
        start_date=start_date,
        end_date=end_date,
    )
    total = qs.count()
    offset = (page - 1) * limit
    entries = list(qs[offset:offset + limit])
    return entries, page_meta(page=page, limit=limit, total=total)


def record_audit_trail(*, record_id: str, limit: int | None = None) -> List[AuditEntry]:
    # Version/attachment entries carry the owning record id in details
    limit = limit or settings.RECORDS_AUDIT_DEFAULT_LIMIT
    qs = AuditEntry.objects.filter(
        Q(resource_id=record_id) | Q(details__record_id=record_id)
    ).order_by("-timestamp")
    return list(qs[:limit])


def actor_activity(
    *,
    actor_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> List[dict]:
    """
    Per-action counts for one actor with the last time each was performed.
    Defaults to the trailing RECORDS_ACTIVITY_WINDOW_DAYS.
    """
    end_date = end_date or timezone.now()
    start_date = start_date or end_date - timedelta(days=settings.RECORDS_ACTIVITY_WINDOW_DAYS)

    rows = (
        AuditEntry.objects.filter(
            performed_by=actor_id,
            timestamp__gte=start_date,
            timestamp__lte=end_date,
        )
        .order_by()
        .values("action")
        .annotate(count=Count("id"), last_performed=Max("timestamp"))
        .order_by("-count", "action")
    )
    return [
        {"action": r["action"], "count": r["count"], "last_performed": r["last_performed"]}
        for r in rows
    ]
