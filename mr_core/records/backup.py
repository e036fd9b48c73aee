# mr_core/records/backup.py
"""
Backup side channel: JSON snapshots of record versions in object storage,
plus per-patient listing, complete-history exports and bucket statistics.

Automatic backups run after the transaction that created a version has
committed (see subscribers.py) and never raise. Manual backups go through
RecordService.backup_record and surface failures to the caller.
"""
from __future__ import annotations

import io
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

import urllib3
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone
from minio import Minio
from minio.error import S3Error

from mr_core.audit.models import AuditAction, ResourceType
from mr_core.audit.services import AuditService
from mr_core.common.actors import Actor
from mr_core.records.exceptions import BackupError, ContentIntegrityError
from mr_core.records.hashing import verify_integrity
from mr_core.records.models import MedicalRecord, RecordVersion

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = "1.0"
EXPORT_FOLDER = "exports"

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


@dataclass(frozen=True)
class StoredBackup:
    path: str
    size: int

    def as_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "size": self.size}


def sanitize_folder_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        return "unknown"
    value = name.strip().lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)
    value = re.sub(r"\s+", "_", value)
    value = re.sub(r"-+", "_", value)
    return value[:50] or "unknown"


def patient_backup_prefix(patient) -> str:
    return f"{sanitize_folder_name(patient.full_name)}_{str(patient.id)[:8]}/"


def backup_object_path(*, patient, record_id: str, version_number: int, now: Optional[datetime] = None) -> str:
    """{sanitized_patient_name}_{uuid8}/{record_id}_v{n}_{timestamp}.json"""
    now = now or timezone.now()
    folder = patient_backup_prefix(patient).rstrip("/")
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{folder}/{record_id}_v{version_number}_{stamp}.json"


def build_snapshot(
    *,
    record: MedicalRecord,
    version: RecordVersion,
    triggered_by: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or timezone.now()
    patient = record.patient
    return {
        "backup": {
            "timestamp": now.isoformat(),
            "triggered_by": triggered_by,
            "format_version": SNAPSHOT_FORMAT_VERSION,
            "object_path": backup_object_path(
                patient=patient,
                record_id=record.record_id,
                version_number=version.version_number,
                now=now,
            ),
        },
        "record": _record_section(record),
        "patient": _patient_section(patient),
        "version": _version_section(version),
    }


def _record_section(record: MedicalRecord) -> Dict[str, Any]:
    return {
        "record_id": record.record_id,
        "title": record.title,
        "description": record.description,
        "tags": list(record.tags or []),
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "created_by": record.created_by_user_id,
        "last_modified_by": record.last_modified_by_user_id,
    }


def _patient_section(patient) -> Dict[str, Any]:
    return {
        "id": str(patient.id),
        "name": patient.full_name,
        "email": patient.email,
        "date_of_birth": patient.date_of_birth,
        "gender": patient.gender,
    }


def _version_section(version: RecordVersion) -> Dict[str, Any]:
    return {
        "version_id": version.version_id,
        "version_number": version.version_number,
        "content": version.content,
        "content_hash": version.content_hash,
        "content_size": version.content_size,
        "change_description": version.change_description,
        "created_at": version.created_at,
        "created_by": version.created_by_user_id,
        "is_approved": version.is_approved,
        "approved_by": version.approved_by_user_id,
        "approved_at": version.approved_at,
    }


def export_object_path(*, patient, now: Optional[datetime] = None) -> str:
    """exports/{patient_uuid}/complete-history-{timestamp}.json"""
    now = now or timezone.now()
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{EXPORT_FOLDER}/{patient.id}/complete-history-{stamp}.json"


def build_patient_export(*, patient, triggered_by: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Every active record of the patient with its version chain, newest version first."""
    now = now or timezone.now()
    records = MedicalRecord.objects.filter(patient=patient, is_deleted=False).order_by("created_at")

    history = []
    total_versions = 0
    for record in records:
        versions = list(RecordVersion.objects.filter(record=record).order_by("-version_number"))
        total_versions += len(versions)
        history.append({
            "record": {**_record_section(record), "attachments": list(record.attachments or [])},
            "versions": [{**_version_section(v), "integrity_valid": verify_integrity(v)} for v in versions],
        })

    return {
        "export": {
            "timestamp": now.isoformat(),
            "triggered_by": triggered_by,
            "format": "json",
            "format_version": SNAPSHOT_FORMAT_VERSION,
            "object_path": export_object_path(patient=patient, now=now),
            "total_records": len(history),
            "total_versions": total_versions,
        },
        "patient": _patient_section(patient),
        "medical_history": history,
    }


class MinioBackupStorage:
    """Stores snapshots as JSON objects in a MinIO / S3-compatible bucket."""

    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls) -> "MinioBackupStorage":
        timeout = settings.RECORDS_BACKUP_TIMEOUT_SECONDS
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(connect=timeout, read=timeout),
            retries=urllib3.Retry(total=2, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
        )
        client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_USE_SSL,
            http_client=http_client,
        )
        return cls(client, settings.RECORDS_BACKUP_BUCKET)

    def store(self, snapshot: Dict[str, Any]) -> StoredBackup:
        return self.store_document(snapshot["backup"]["object_path"], snapshot)

    def store_document(self, path: str, document: Dict[str, Any]) -> StoredBackup:
        data = json.dumps(document, cls=DjangoJSONEncoder, indent=2).encode("utf-8")

        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=path,
                data=io.BytesIO(data),
                length=len(data),
                content_type="application/json",
            )
        except S3Error as e:
            raise BackupError(f"Failed to store backup: {e}", details={"path": path}) from e

        return StoredBackup(path=path, size=len(data))

    def list_objects(self, prefix: str = "", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Objects under `prefix`, newest first, at most `limit` of them."""
        try:
            if not self.client.bucket_exists(self.bucket):
                return []
            objects = [
                {
                    "path": obj.object_name,
                    "size": obj.size or 0,
                    "last_modified": obj.last_modified,
                    "etag": obj.etag,
                }
                for obj in self.client.list_objects(self.bucket, prefix=prefix, recursive=True)
            ]
        except S3Error as e:
            raise BackupError(f"Failed to list backups: {e}", details={"prefix": prefix}) from e

        objects.sort(key=lambda o: o["last_modified"] or _EPOCH, reverse=True)
        return objects[:limit] if limit else objects

    def statistics(self) -> Dict[str, Any]:
        objects = self.list_objects()
        return {
            "enabled": True,
            "bucket": self.bucket,
            "total_objects": len(objects),
            "total_size": sum(o["size"] for o in objects),
            "last_backup": objects[0]["last_modified"] if objects else None,
        }


def get_backup_storage() -> Optional[MinioBackupStorage]:
    if not settings.RECORDS_BACKUP_ENABLED:
        return None
    return MinioBackupStorage.from_settings()


def backup_version(*, record: MedicalRecord, version: RecordVersion, storage, triggered_by: str) -> StoredBackup:
    """Integrity-checked snapshot + store. Raises BackupError."""
    try:
        if not verify_integrity(version):
            raise ContentIntegrityError(
                "Content hash mismatch, refusing to back up",
                details={"version_id": version.version_id},
            )
        snapshot = build_snapshot(record=record, version=version, triggered_by=triggered_by)
        return storage.store(snapshot)
    except BackupError:
        raise
    except Exception as e:
        raise BackupError(f"Backup failed: {e}") from e


def list_patient_backups(*, patient, storage, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return storage.list_objects(patient_backup_prefix(patient), limit=limit or settings.RECORDS_BACKUP_LIST_LIMIT)


def export_patient_history(*, patient, storage, triggered_by: str) -> Dict[str, Any]:
    """Build and store the complete history export. Raises BackupError."""
    try:
        document = build_patient_export(patient=patient, triggered_by=triggered_by)
        stored = storage.store_document(document["export"]["object_path"], document)
    except BackupError:
        raise
    except Exception as e:
        raise BackupError(f"Export failed: {e}") from e

    return {
        **stored.as_dict(),
        "total_records": document["export"]["total_records"],
        "total_versions": document["export"]["total_versions"],
    }


def backup_statistics() -> Dict[str, Any]:
    """Bucket summary for the health check; storage errors are reported, not raised."""
    storage = get_backup_storage()
    if storage is None:
        return {"enabled": False}
    try:
        return storage.statistics()
    except BackupError as e:
        logger.warning("Backup statistics unavailable: %s", e.message)
        return {"enabled": True, "bucket": storage.bucket, "error": e.message}


def run_version_backup(*, record_pk, version_pk, actor: Actor) -> Optional[StoredBackup]:
    """
    Automatic backup after a committed content update.
    Never raises: failures are logged and recorded as a failed BACKUP_RECORD entry.
    """
    storage = get_backup_storage()
    if storage is None:
        logger.debug("Backup disabled, skipping version %s", version_pk)
        return None

    started = time.monotonic()
    record = MedicalRecord.objects.select_related("patient").filter(pk=record_pk).first()
    version = RecordVersion.objects.filter(pk=version_pk).first()
    if record is None or version is None:
        logger.warning("Backup skipped, record %s / version %s no longer exists", record_pk, version_pk)
        return None

    details = {
        "record_id": record.record_id,
        "record_title": record.title,
        "version_number": version.version_number,
        "triggered_by": "automatic",
    }

    try:
        stored = backup_version(record=record, version=version, storage=storage, triggered_by=actor.id)
    except BackupError as e:
        logger.warning("Backup of %s v%s failed: %s", record.record_id, version.version_number, e.message)
        AuditService.log_action(
            action=AuditAction.BACKUP_RECORD,
            resource_type=ResourceType.RECORD,
            resource_id=record.record_id,
            actor=actor,
            patient_id=record.patient_id,
            details=details,
            success=False,
            error_message=e.message,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return None

    logger.info("Backed up %s v%s to %s", record.record_id, version.version_number, stored.path)
    AuditService.log_action(
        action=AuditAction.BACKUP_RECORD,
        resource_type=ResourceType.RECORD,
        resource_id=record.record_id,
        actor=actor,
        patient_id=record.patient_id,
        details={**details, "backup_path": stored.path, "backup_size": stored.size},
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return stored
