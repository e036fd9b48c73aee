# mr_core/records/services/versions.py
from __future__ import annotations

import logging
from typing import List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from mr_core.records.exceptions import RecordConflict, RecordValidationError
from mr_core.records.hashing import content_hash, content_size, verify_integrity
from mr_core.records.models import MedicalRecord, RecordVersion

logger = logging.getLogger(__name__)

MAX_ALLOCATION_ATTEMPTS = 3

__all__ = [
    "create_new_version",
    "get_latest_version",
    "get_version_history",
    "get_version",
    "get_diff_with_previous",
    "verify_integrity",
]


def _head(*, record_pk) -> Optional[RecordVersion]:
    return (
        RecordVersion.objects.filter(record_id=record_pk)
        .order_by("-version_number")
        .first()
    )


@transaction.atomic
def create_new_version(
    *,
    record: MedicalRecord,
    content: str,
    author_user_id: int,
    change_description: str = "",
) -> RecordVersion:
    """
    Append the next version to the record's chain.

    Appenders for the same record serialize on a row lock of the parent
    record; the (record, version_number) unique constraint backs that up
    where row locks are unavailable, and a collision re-reads the head and
    retries.
    """
    if content is None or not str(content).strip():
        raise RecordValidationError("Content cannot be empty")

    # serialize appenders on the parent record row
    MedicalRecord.objects.select_for_update().filter(pk=record.pk).first()

    now = timezone.now()
    digest = content_hash(content)
    size = content_size(content)

    for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
        head = _head(record_pk=record.pk)
        number = (head.version_number if head else 0) + 1

        try:
            # savepoint: a collision must not abort the outer transaction
            with transaction.atomic():
                return RecordVersion.objects.create(
                    record=record,
                    version_number=number,
                    content=content,
                    content_hash=digest,
                    content_size=size,
                    change_description=change_description or "",
                    created_by_user_id=int(author_user_id),
                    is_approved=True,
                    approved_by_user_id=int(author_user_id),
                    approved_at=now,
                    previous_version=head,
                )
        except IntegrityError:
            logger.warning(
                "Version number %s already taken for record %s (attempt %s/%s)",
                number,
                record.record_id,
                attempt,
                MAX_ALLOCATION_ATTEMPTS,
            )

    raise RecordConflict(
        "Could not allocate a version number, concurrent updates in progress",
        details={"record_id": record.record_id},
    )


def get_latest_version(record: MedicalRecord) -> Optional[RecordVersion]:
    return _head(record_pk=record.pk)


def get_version_history(record: MedicalRecord, limit: int | None = None) -> List[RecordVersion]:
    """Newest first, content omitted."""
    limit = limit or settings.RECORDS_HISTORY_DEFAULT_LIMIT
    qs = (
        RecordVersion.objects.filter(record=record)
        .select_related("previous_version")
        .defer("content", "previous_version__content")
        .order_by("-version_number")
    )
    return list(qs[:limit])


def get_version(record: MedicalRecord, version_number: int) -> Optional[RecordVersion]:
    return RecordVersion.objects.filter(record=record, version_number=version_number).first()


def get_diff_with_previous(version: RecordVersion) -> Optional[dict]:
    if version.previous_version_id is None:
        return None

    previous = RecordVersion.objects.get(pk=version.previous_version_id)
    return {
        "previous_version": previous.version_number,
        "current_version": version.version_number,
        "previous_content": previous.content,
        "current_content": version.content,
        "change_description": version.change_description,
    }
