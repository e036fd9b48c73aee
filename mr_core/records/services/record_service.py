# mr_core/records/services/record_service.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from django.conf import settings
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from mr_core.audit import selectors as audit_selectors
from mr_core.audit.models import AuditAction, ResourceType
from mr_core.audit.services import AuditService
from mr_core.common.actors import Actor
from mr_core.common.api.pagination import DefaultPagination, page_window
from mr_core.common.events import publish
from mr_core.patients.selectors import get_patient, patient_exists
from mr_core.records import backup as backup_channel
from mr_core.records.exceptions import (
    AccessDenied,
    BackupError,
    RecordConflict,
    RecordNotFound,
    RecordOperationError,
    RecordsError,
    RecordValidationError,
)
from mr_core.records.filters import RecordSearchFilter
from mr_core.records.models import MedicalRecord, RecordVersion
from mr_core.records.selectors import active_records_queryset, list_patient_records
from mr_core.records.services import records as record_store
from mr_core.records.services import versions as version_store
from mr_core.records.services.access import GateAction, ensure_allowed
from mr_core.records.subscribers import VERSION_CREATED, version_created_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AuditContext:
    """Mutable audit facts, filled in by an operation as it learns them."""
    action: str
    resource_type: str
    resource_id: str
    patient_id: Any = None
    details: Dict[str, Any] = field(default_factory=dict)
    # (event name, payload) pairs published once the entry is written
    events: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _audit(actor: Actor, ctx: AuditContext, started: float, *, success: bool, error: str | None = None) -> None:
    AuditService.log_action(
        action=ctx.action,
        resource_type=ctx.resource_type,
        resource_id=ctx.resource_id,
        actor=actor,
        patient_id=ctx.patient_id,
        details=ctx.details,
        success=success,
        error_message=error,
        duration_ms=_elapsed_ms(started),
    )


def _publish_events(ctx: AuditContext) -> None:
    for name, payload in ctx.events:
        transaction.on_commit(partial(publish, name, payload), robust=True)


def _check_input(errors) -> None:
    """Request-shape errors found at the API boundary fail inside the audited operation."""
    if errors:
        raise RecordValidationError("Invalid request data", details=dict(errors))


def _ensure_allowed_or_audit(actor: Actor, ctx: AuditContext, action: GateAction, **kwargs) -> None:
    """Gate for reads that are not audited themselves: only a denial reaches the ledger."""
    started = time.monotonic()
    try:
        ensure_allowed(actor, action, **kwargs)
    except AccessDenied as e:
        ctx.details.setdefault("reason", (e.details or {}).get("reason"))
        _audit(actor, ctx, started, success=False, error=AccessDenied.AUDIT_MESSAGE)
        raise


def _execute(*, actor: Actor, ctx: AuditContext, verb: str, op: Callable[[], T]) -> T:
    """
    Run `op` in a transaction, then write exactly one audit entry for it.

    The audit write happens after the transaction has ended, so a failed
    operation is still recorded. Unknown exceptions are reported to the
    caller as RecordOperationError("Failed to <verb>"). Events queued on
    `ctx` (backups) are published only after the entry is written, so their
    cost is never part of the operation's duration.
    """
    started = time.monotonic()
    try:
        with transaction.atomic():
            result = op()
    except AccessDenied as e:
        ctx.details.setdefault("reason", (e.details or {}).get("reason"))
        _audit(actor, ctx, started, success=False, error=AccessDenied.AUDIT_MESSAGE)
        raise
    except RecordsError as e:
        _audit(actor, ctx, started, success=False, error=e.message)
        raise
    except Exception as e:
        logger.exception("Failed to %s (actor=%s)", verb, actor.id)
        _audit(actor, ctx, started, success=False, error=str(e) or e.__class__.__name__)
        raise RecordOperationError(f"Failed to {verb}") from e

    _audit(actor, ctx, started, success=True)
    _publish_events(ctx)
    return result


def _parse_version_number(value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise RecordValidationError("Invalid version number", details={"version_number": str(value)})
    if number < 1:
        raise RecordValidationError("Invalid version number", details={"version_number": str(value)})
    return number


def _append_version(
    ctx: AuditContext,
    *,
    record: MedicalRecord,
    content: str,
    change_description: str,
    actor: Actor,
) -> RecordVersion:
    version = version_store.create_new_version(
        record=record,
        content=content,
        author_user_id=actor.user_id,
        change_description=change_description,
    )
    record_store.set_current_version(record, version, modified_by_user_id=actor.user_id)
    ctx.events.append((VERSION_CREATED, version_created_payload(record=record, version=version, actor=actor)))
    return version


def _load_record(ctx: AuditContext, record_id, *, include_deleted: bool = False, for_update: bool = False) -> MedicalRecord:
    record = record_store.get_record(record_id=record_id, include_deleted=include_deleted, for_update=for_update)
    ctx.patient_id = record.patient_id
    ctx.details.setdefault("record_id", record.record_id)
    ctx.details.setdefault("record_title", record.title)
    return record


class RecordService:
    """
    Orchestrates medical-record operations:
    validate -> authorize -> data operation -> one audit entry (success or failure).
    """

    @staticmethod
    def create_record(
        *,
        patient_id,
        title: str,
        actor: Actor,
        description: str = "",
        tags: Optional[Iterable[str]] = None,
        content: Optional[str] = None,
        change_description: str = "",
        input_errors=None,
    ) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.CREATE_RECORD, ResourceType.RECORD, str(patient_id))

        def op():
            _check_input(input_errors)
            pid = record_store.parse_patient_id(patient_id)
            ctx.patient_id = pid
            ensure_allowed(actor, GateAction.CREATE, patient_id=pid)

            record = record_store.create_record(
                patient_id=pid,
                title=title,
                description=description,
                tags=tags,
                created_by_user_id=actor.user_id,
            )
            ctx.resource_id = record.record_id
            ctx.details.update({"record_id": record.record_id, "record_title": record.title})

            version = None
            if content:
                version = _append_version(
                    ctx,
                    record=record,
                    content=content,
                    change_description=change_description or "Initial version",
                    actor=actor,
                )
                ctx.details["version_number"] = version.version_number

            ctx.details["has_initial_content"] = version is not None
            return {"record": record, "version": version}

        result = _execute(actor=actor, ctx=ctx, verb="create medical record", op=op)
        logger.info("Record %s created by %s", result["record"].record_id, actor.id)
        return result

    @staticmethod
    def get_patient_records(
        *,
        patient_id,
        actor: Actor,
        page=1,
        limit=None,
        include_deleted: bool = False,
        input_errors=None,
    ) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.ACCESS_PATIENT_RECORDS, ResourceType.PATIENT, str(patient_id))

        def op():
            _check_input(input_errors)
            pid = record_store.parse_patient_id(patient_id)
            ctx.patient_id = pid
            ensure_allowed(actor, GateAction.READ, patient_id=pid)

            if not patient_exists(patient_id=pid):
                raise RecordNotFound("Patient not found", details={"patient_id": str(pid)})

            p, n = page_window(page, limit, default_limit=DefaultPagination.page_size)
            show_deleted = bool(include_deleted) and actor.is_doctor
            records, pagination = list_patient_records(
                patient_id=pid, page=p, limit=n, include_deleted=show_deleted
            )
            ctx.details.update({"count": len(records), "include_deleted": show_deleted, "page": p})
            return {"records": records, "pagination": pagination}

        return _execute(actor=actor, ctx=ctx, verb="fetch medical records", op=op)

    @staticmethod
    def get_record(*, record_id, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.READ_RECORD, ResourceType.RECORD, str(record_id))

        def op():
            record = _load_record(ctx, record_id)
            ensure_allowed(actor, GateAction.READ, record=record)

            latest = record.current_version or version_store.get_latest_version(record)
            if latest is not None:
                ctx.details["version_number"] = latest.version_number
            return {"record": record, "latest_version": latest}

        return _execute(actor=actor, ctx=ctx, verb="fetch medical record", op=op)

    @staticmethod
    def update_record(
        *,
        record_id,
        actor: Actor,
        content: Optional[str] = None,
        change_description: str = "",
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        input_errors=None,
    ) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.UPDATE_RECORD, ResourceType.RECORD, str(record_id))

        def op():
            _check_input(input_errors)
            record = _load_record(ctx, record_id, for_update=True)
            ensure_allowed(actor, GateAction.UPDATE, record=record)

            changed = record_store.update_metadata(
                record,
                modified_by_user_id=actor.user_id,
                title=title,
                description=description,
                tags=tags,
            )

            new_version = None
            # None / "" means "content unchanged"
            if content not in (None, ""):
                current = record.current_version or version_store.get_latest_version(record)
                if current is None or current.content != content:
                    new_version = _append_version(
                        ctx,
                        record=record,
                        content=content,
                        change_description=change_description or "",
                        actor=actor,
                    )

            ctx.details.update({
                "record_title": record.title,
                "changed_fields": changed,
                "content_updated": new_version is not None,
            })
            if new_version is not None:
                ctx.details["version_number"] = new_version.version_number
                ctx.details["change_description"] = new_version.change_description

            return {
                "record": record,
                "new_version": new_version,
                "record_updated": bool(changed),
                "content_updated": new_version is not None,
            }

        result = _execute(actor=actor, ctx=ctx, verb="update medical record", op=op)
        if result["record_updated"] or result["content_updated"]:
            logger.info("Record %s updated by %s", result["record"].record_id, actor.id)
        return result

    @staticmethod
    def delete_record(*, record_id, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.DELETE_RECORD, ResourceType.RECORD, str(record_id))

        def op():
            record = _load_record(ctx, record_id, include_deleted=True, for_update=True)
            ensure_allowed(actor, GateAction.DELETE, record=record)
            record_store.soft_delete(record, deleted_by_user_id=actor.user_id)
            return {"success": True}

        result = _execute(actor=actor, ctx=ctx, verb="delete medical record", op=op)
        logger.info("Record %s soft-deleted by %s", record_id, actor.id)
        return result

    @staticmethod
    def restore_record(*, record_id, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.RESTORE_RECORD, ResourceType.RECORD, str(record_id))

        def op():
            record = _load_record(ctx, record_id, include_deleted=True, for_update=True)
            ensure_allowed(actor, GateAction.RESTORE, record=record)
            if not record.is_deleted:
                raise RecordConflict("Medical record is not deleted", details={"record_id": record.record_id})
            record_store.restore(record)
            return {"record": record}

        result = _execute(actor=actor, ctx=ctx, verb="restore medical record", op=op)
        logger.info("Record %s restored by %s", record_id, actor.id)
        return result

    @staticmethod
    def get_version_history(*, record_id, actor: Actor, limit=None) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.VIEW_VERSION, ResourceType.RECORD, str(record_id))

        def op():
            record = _load_record(ctx, record_id)
            ensure_allowed(actor, GateAction.READ, record=record)

            _, n = page_window(1, limit, default_limit=settings.RECORDS_HISTORY_DEFAULT_LIMIT)
            versions = version_store.get_version_history(record, n)
            ctx.details.update({"history": True, "count": len(versions)})
            return {"versions": versions}

        return _execute(actor=actor, ctx=ctx, verb="fetch version history", op=op)

    @staticmethod
    def get_version(*, record_id, version_number, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.VIEW_VERSION, ResourceType.VERSION, str(record_id))

        def op():
            number = _parse_version_number(version_number)
            ctx.details["version_number"] = number
            record = _load_record(ctx, record_id)
            ensure_allowed(actor, GateAction.READ, record=record)

            version = version_store.get_version(record, number)
            if version is None:
                raise RecordNotFound("Version not found", details={"version_number": number})

            ctx.resource_id = version.version_id
            valid = version_store.verify_integrity(version)
            ctx.details["integrity_valid"] = valid
            if not valid:
                logger.warning("Integrity check failed for %s v%s", record.record_id, number)
            return {"version": version, "integrity_valid": valid}

        return _execute(actor=actor, ctx=ctx, verb="fetch version", op=op)

    @staticmethod
    def get_version_diff(*, record_id, version_number, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.VIEW_VERSION, ResourceType.VERSION, str(record_id))

        def op():
            number = _parse_version_number(version_number)
            ctx.details.update({"version_number": number, "diff": True})
            record = _load_record(ctx, record_id)
            ensure_allowed(actor, GateAction.READ, record=record)

            version = version_store.get_version(record, number)
            if version is None:
                raise RecordNotFound("Version not found", details={"version_number": number})

            ctx.resource_id = version.version_id
            return {"diff": version_store.get_diff_with_previous(version)}

        return _execute(actor=actor, ctx=ctx, verb="fetch version diff", op=op)

    @staticmethod
    def get_record_audit_trail(*, record_id, actor: Actor, limit=None) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.VIEW_AUDIT_TRAIL, ResourceType.RECORD, str(record_id))

        def op():
            # deleted records keep their forensic trail
            record = _load_record(ctx, record_id, include_deleted=True)
            ensure_allowed(actor, GateAction.VIEW_AUDIT, record=record)

            _, n = page_window(1, limit, default_limit=settings.RECORDS_AUDIT_DEFAULT_LIMIT, max_limit=500)
            trail = audit_selectors.record_audit_trail(record_id=record.record_id, limit=n)
            ctx.details["count"] = len(trail)
            return {"audit_trail": trail}

        return _execute(actor=actor, ctx=ctx, verb="fetch audit trail", op=op)

    @staticmethod
    def get_patient_audit_trail(
        *,
        patient_id,
        actor: Actor,
        page=1,
        limit=None,
        actions: Optional[Iterable[str]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        input_errors=None,
    ) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.VIEW_AUDIT_TRAIL, ResourceType.PATIENT, str(patient_id))

        def op():
            _check_input(input_errors)
            pid = record_store.parse_patient_id(patient_id)
            ctx.patient_id = pid
            ensure_allowed(actor, GateAction.VIEW_AUDIT, patient_id=pid)

            p, n = page_window(page, limit, default_limit=settings.RECORDS_AUDIT_DEFAULT_LIMIT, max_limit=500)
            trail, pagination = audit_selectors.patient_audit_trail(
                patient_id=pid,
                limit=n,
                page=p,
                actions=actions,
                start_date=start_date,
                end_date=end_date,
            )
            ctx.details.update({"count": len(trail), "page": p, "actions": list(actions or [])})
            return {"audit_trail": trail, "pagination": pagination}

        return _execute(actor=actor, ctx=ctx, verb="fetch audit trail", op=op)

    @staticmethod
    def get_actor_activity(
        *,
        actor_id: str,
        requester: Actor,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        # Reads the ledger about an actor, not patient data: only a denial is audited
        ctx = AuditContext(
            AuditAction.VIEW_AUDIT_TRAIL,
            ResourceType.ACTOR,
            str(actor_id),
            details={"activity": True},
        )
        _ensure_allowed_or_audit(requester, ctx, GateAction.VIEW_ACTIVITY, target_actor_id=str(actor_id))

        end_date = end_date or timezone.now()
        start_date = start_date or end_date - timedelta(days=settings.RECORDS_ACTIVITY_WINDOW_DAYS)
        activity = audit_selectors.actor_activity(actor_id=str(actor_id), start_date=start_date, end_date=end_date)
        return {
            "actor_id": str(actor_id),
            "start_date": start_date,
            "end_date": end_date,
            "activity": activity,
        }

    @staticmethod
    def search_records(*, params: Dict[str, Any], actor: Actor) -> QuerySet[MedicalRecord]:
        """
        Filtered queryset of active records; the caller paginates it.
        """
        ctx = AuditContext(
            AuditAction.ACCESS_PATIENT_RECORDS,
            ResourceType.PATIENT,
            str(params.get("patient_id") or "search"),
        )

        def op():
            ensure_allowed(actor, GateAction.SEARCH)

            fs = RecordSearchFilter(data=params, queryset=active_records_queryset())
            if not fs.is_valid():
                raise RecordValidationError("Invalid search parameters", details=fs.errors.get_json_data())

            ctx.patient_id = fs.form.cleaned_data.get("patient_id")
            qs = fs.qs
            ctx.details.update({
                "search": {k: str(v) for k, v in params.items() if v not in (None, "")},
                "total": qs.count(),
            })
            return qs

        return _execute(actor=actor, ctx=ctx, verb="search medical records", op=op)

    @staticmethod
    def backup_record(*, record_id, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.BACKUP_RECORD, ResourceType.RECORD, str(record_id))

        def op():
            record = _load_record(ctx, record_id)
            ensure_allowed(actor, GateAction.BACKUP, record=record)

            storage = backup_channel.get_backup_storage()
            if storage is None:
                raise RecordConflict("Backup is not enabled")

            version = record.current_version or version_store.get_latest_version(record)
            if version is None:
                raise RecordConflict("Medical record has no content to back up")

            ctx.details.update({"version_number": version.version_number, "triggered_by": "manual"})
            try:
                stored = backup_channel.backup_version(
                    record=record, version=version, storage=storage, triggered_by=actor.id
                )
            except BackupError as e:
                logger.warning("Manual backup of %s failed: %s", record.record_id, e.message)
                raise RecordOperationError("Backup failed", details={"reason": e.message}) from e

            ctx.details["backup_path"] = stored.path
            return {"backup": stored.as_dict(), "version_number": version.version_number}

        return _execute(actor=actor, ctx=ctx, verb="back up medical record", op=op)

    @staticmethod
    def list_patient_backups(*, patient_id, actor: Actor, limit=None, input_errors=None) -> Dict[str, Any]:
        """Stored snapshots under the patient's folder, newest first. Empty when backups are off."""
        ctx = AuditContext(AuditAction.LIST_BACKUPS, ResourceType.PATIENT, str(patient_id))

        def op():
            _check_input(input_errors)
            pid = record_store.parse_patient_id(patient_id)
            ctx.patient_id = pid
            ensure_allowed(actor, GateAction.BACKUP, patient_id=pid)

            patient = get_patient(patient_id=pid)
            if patient is None:
                raise RecordNotFound("Patient not found", details={"patient_id": str(pid)})

            storage = backup_channel.get_backup_storage()
            backups = []
            if storage is not None:
                _, n = page_window(1, limit, default_limit=settings.RECORDS_BACKUP_LIST_LIMIT, max_limit=1000)
                try:
                    backups = backup_channel.list_patient_backups(patient=patient, storage=storage, limit=n)
                except BackupError as e:
                    raise RecordOperationError("Failed to list backups", details={"reason": e.message}) from e

            ctx.details["count"] = len(backups)
            return {"backups": backups, "total_count": len(backups), "backup_enabled": storage is not None}

        return _execute(actor=actor, ctx=ctx, verb="list backups", op=op)

    @staticmethod
    def export_patient_history(*, patient_id, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.EXPORT_PATIENT_HISTORY, ResourceType.PATIENT, str(patient_id))

        def op():
            pid = record_store.parse_patient_id(patient_id)
            ctx.patient_id = pid
            ensure_allowed(actor, GateAction.EXPORT, patient_id=pid)

            patient = get_patient(patient_id=pid)
            if patient is None:
                raise RecordNotFound("Patient not found", details={"patient_id": str(pid)})

            storage = backup_channel.get_backup_storage()
            if storage is None:
                raise RecordConflict("Backup is not enabled")

            try:
                exported = backup_channel.export_patient_history(
                    patient=patient, storage=storage, triggered_by=actor.id
                )
            except BackupError as e:
                logger.warning("Export for patient %s failed: %s", pid, e.message)
                raise RecordOperationError("Export failed", details={"reason": e.message}) from e

            ctx.details.update({
                "export_path": exported["path"],
                "total_records": exported["total_records"],
                "total_versions": exported["total_versions"],
            })
            return {"export": exported}

        result = _execute(actor=actor, ctx=ctx, verb="export patient history", op=op)
        logger.info("Patient %s history exported by %s", patient_id, actor.id)
        return result

    @staticmethod
    def get_backup_statistics(*, actor: Actor) -> Dict[str, Any]:
        # Storage health, no patient data: only a denial is audited
        ctx = AuditContext(AuditAction.LIST_BACKUPS, ResourceType.BACKUP, "statistics")
        _ensure_allowed_or_audit(actor, ctx, GateAction.VIEW_BACKUP_STATS)
        return {"statistics": backup_channel.backup_statistics()}

    @staticmethod
    def add_attachment(*, record_id, attachment: Dict[str, Any], actor: Actor, input_errors=None) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.UPLOAD_ATTACHMENT, ResourceType.ATTACHMENT, str(record_id))

        def op():
            _check_input(input_errors)
            record = _load_record(ctx, record_id, for_update=True)
            ensure_allowed(actor, GateAction.MANAGE_ATTACHMENTS, record=record)
            ctx.details["file_name"] = attachment.get("file_name")
            entry = record_store.add_attachment(record, attachment=attachment, user_id=actor.user_id)
            return {"attachment": entry, "record": record}

        return _execute(actor=actor, ctx=ctx, verb="add attachment", op=op)

    @staticmethod
    def remove_attachment(*, record_id, file_name: str, actor: Actor) -> Dict[str, Any]:
        ctx = AuditContext(AuditAction.DELETE_ATTACHMENT, ResourceType.ATTACHMENT, str(record_id))

        def op():
            record = _load_record(ctx, record_id, for_update=True)
            ensure_allowed(actor, GateAction.MANAGE_ATTACHMENTS, record=record)
            ctx.details["file_name"] = file_name
            removed = record_store.remove_attachment(record, file_name=file_name, user_id=actor.user_id)
            return {"attachment": removed, "record": record}

        return _execute(actor=actor, ctx=ctx, verb="remove attachment", op=op)
