# mr_core/records/tests/test_backup.py
from datetime import datetime, timezone as dt_timezone
from types import SimpleNamespace
from unittest import mock

import pytest

from mr_core.audit.models import AuditAction, AuditEntry
from mr_core.records import backup
from mr_core.records.exceptions import BackupError
from mr_core.records.models import RecordVersion


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Jane Doe", "jane_doe"),
        ("  Mary-Jane   Watson ", "mary_jane_watson"),
        ("Émile O'Brien", "mile_obrien"),
        ("!!!", "unknown"),
        ("", "unknown"),
        (None, "unknown"),
        ("x" * 80, "x" * 50),
    ],
)
def test_sanitize_folder_name(name, expected):
    assert backup.sanitize_folder_name(name) == expected


def test_backup_object_path_layout():
    patient = SimpleNamespace(full_name="Jane Doe", id="a1b2c3d4-0000-4000-8000-000000000000")
    now = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=dt_timezone.utc)

    path = backup.backup_object_path(patient=patient, record_id="REC-1-abc", version_number=3, now=now)

    assert path == "jane_doe_a1b2c3d4/REC-1-abc_v3_2024-01-02T03-04-05-678000.json"


def test_get_backup_storage_respects_setting(settings):
    settings.RECORDS_BACKUP_ENABLED = False
    assert backup.get_backup_storage() is None

    settings.RECORDS_BACKUP_ENABLED = True
    settings.RECORDS_BACKUP_BUCKET = "test-bucket"
    storage = backup.get_backup_storage()
    assert isinstance(storage, backup.MinioBackupStorage)
    assert storage.bucket == "test-bucket"


def test_minio_storage_creates_bucket_and_puts_json():
    client = mock.Mock()
    client.bucket_exists.return_value = False
    storage = backup.MinioBackupStorage(client, "records")
    snapshot = {"backup": {"object_path": "jane_doe_a1b2c3d4/REC-1_v1_t.json"}, "version": {"content": "A"}}

    stored = storage.store(snapshot)

    client.make_bucket.assert_called_once_with("records")
    kwargs = client.put_object.call_args.kwargs
    assert kwargs["bucket_name"] == "records"
    assert kwargs["object_name"] == "jane_doe_a1b2c3d4/REC-1_v1_t.json"
    assert kwargs["content_type"] == "application/json"
    assert kwargs["length"] == stored.size
    assert stored.path == "jane_doe_a1b2c3d4/REC-1_v1_t.json"


@pytest.mark.django_db
def test_snapshot_sections(record):
    version = RecordVersion.objects.get(record=record, version_number=1)

    snap = backup.build_snapshot(record=record, version=version, triggered_by="7")

    assert set(snap) == {"backup", "record", "patient", "version"}
    assert snap["backup"]["triggered_by"] == "7"
    assert snap["backup"]["object_path"].startswith("jane_doe_")
    assert snap["patient"]["name"] == "Jane Doe"
    assert snap["version"]["content_hash"] == version.content_hash


@pytest.mark.django_db
def test_backup_refuses_tampered_content(record):
    version = RecordVersion.objects.get(record=record, version_number=1)
    RecordVersion.objects.filter(pk=version.pk).update(content="tampered")
    version.refresh_from_db()
    storage = mock.Mock()

    with pytest.raises(BackupError):
        backup.backup_version(record=record, version=version, storage=storage, triggered_by="7")

    storage.store.assert_not_called()


@pytest.mark.django_db
def test_run_version_backup_absorbs_failures(record, doctor, monkeypatch):
    version = RecordVersion.objects.get(record=record, version_number=1)
    failing = mock.Mock()
    failing.store.side_effect = RuntimeError("network unreachable")
    monkeypatch.setattr(backup, "get_backup_storage", lambda: failing)

    assert backup.run_version_backup(record_pk=record.pk, version_pk=version.pk, actor=doctor) is None

    entry = AuditEntry.objects.filter(action=AuditAction.BACKUP_RECORD).get()
    assert entry.success is False
    assert "network unreachable" in entry.error_message


@pytest.mark.django_db
def test_run_version_backup_is_a_noop_when_disabled(record, doctor):
    version = RecordVersion.objects.get(record=record, version_number=1)

    assert backup.run_version_backup(record_pk=record.pk, version_pk=version.pk, actor=doctor) is None
    assert not AuditEntry.objects.filter(action=AuditAction.BACKUP_RECORD).exists()


def test_minio_client_uses_bounded_timeout(settings):
    settings.RECORDS_BACKUP_TIMEOUT_SECONDS = 2.5

    with mock.patch.object(backup, "Minio") as minio_cls:
        backup.MinioBackupStorage.from_settings()

    http_client = minio_cls.call_args.kwargs["http_client"]
    timeout = http_client.connection_pool_kw["timeout"]
    assert timeout.connect_timeout == 2.5
    assert timeout.read_timeout == 2.5


def _stored_object(name, size, minute):
    return SimpleNamespace(
        object_name=name,
        size=size,
        last_modified=datetime(2024, 1, 2, 3, minute, tzinfo=dt_timezone.utc),
        etag=f"etag-{minute}",
    )


def test_list_objects_newest_first_and_limited():
    client = mock.Mock()
    client.bucket_exists.return_value = True
    client.list_objects.return_value = [
        _stored_object("jane_doe_a1b2c3d4/REC-1_v1.json", 10, 1),
        _stored_object("jane_doe_a1b2c3d4/REC-1_v3.json", 30, 3),
        _stored_object("jane_doe_a1b2c3d4/REC-1_v2.json", 20, 2),
    ]
    storage = backup.MinioBackupStorage(client, "records")

    objects = storage.list_objects("jane_doe_a1b2c3d4/", limit=2)

    client.list_objects.assert_called_once_with("records", prefix="jane_doe_a1b2c3d4/", recursive=True)
    assert [o["path"] for o in objects] == [
        "jane_doe_a1b2c3d4/REC-1_v3.json",
        "jane_doe_a1b2c3d4/REC-1_v2.json",
    ]
    assert objects[0]["size"] == 30
    assert objects[0]["etag"] == "etag-3"


def test_list_objects_without_bucket_is_empty():
    client = mock.Mock()
    client.bucket_exists.return_value = False

    assert backup.MinioBackupStorage(client, "records").list_objects("x/") == []
    client.list_objects.assert_not_called()


def test_list_patient_backups_uses_patient_folder(settings):
    settings.RECORDS_BACKUP_LIST_LIMIT = 5
    patient = SimpleNamespace(full_name="Jane Doe", id="a1b2c3d4-0000-4000-8000-000000000000")
    storage = mock.Mock()
    storage.list_objects.return_value = []

    backup.list_patient_backups(patient=patient, storage=storage)

    storage.list_objects.assert_called_once_with("jane_doe_a1b2c3d4/", limit=5)


def test_statistics_summarize_bucket():
    client = mock.Mock()
    client.bucket_exists.return_value = True
    client.list_objects.return_value = [_stored_object("a.json", 10, 1), _stored_object("b.json", 32, 7)]

    stats = backup.MinioBackupStorage(client, "records").statistics()

    assert stats["enabled"] is True
    assert stats["bucket"] == "records"
    assert stats["total_objects"] == 2
    assert stats["total_size"] == 42
    assert stats["last_backup"] == datetime(2024, 1, 2, 3, 7, tzinfo=dt_timezone.utc)


def test_backup_statistics_when_disabled():
    assert backup.backup_statistics() == {"enabled": False}


def test_backup_statistics_reports_storage_errors(monkeypatch):
    storage = mock.Mock(bucket="records")
    storage.statistics.side_effect = BackupError("Failed to list backups: AccessDenied")
    monkeypatch.setattr(backup, "get_backup_storage", lambda: storage)

    stats = backup.backup_statistics()

    assert stats == {"enabled": True, "bucket": "records", "error": "Failed to list backups: AccessDenied"}


def test_export_object_path_layout():
    patient = SimpleNamespace(id="a1b2c3d4-0000-4000-8000-000000000000")
    now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt_timezone.utc)

    path = backup.export_object_path(patient=patient, now=now)

    assert path == "exports/a1b2c3d4-0000-4000-8000-000000000000/complete-history-2024-01-02T03-04-05-000000.json"


@pytest.mark.django_db
def test_patient_export_covers_active_records_and_versions(record, patient, doctor):
    from mr_core.records.services.record_service import RecordService

    RecordService.update_record(record_id=record.record_id, content="B", actor=doctor)
    removed = RecordService.create_record(patient_id=patient.id, title="Duplicate", content="X", actor=doctor)
    RecordService.delete_record(record_id=removed["record"].record_id, actor=doctor)

    document = backup.build_patient_export(patient=patient, triggered_by="7")

    assert document["export"]["total_records"] == 1
    assert document["export"]["total_versions"] == 2
    assert document["export"]["object_path"].startswith(f"exports/{patient.id}/complete-history-")
    assert document["patient"]["name"] == "Jane Doe"
    history = document["medical_history"][0]
    assert history["record"]["record_id"] == record.record_id
    assert [v["version_number"] for v in history["versions"]] == [2, 1]
    assert all(v["integrity_valid"] for v in history["versions"])


@pytest.mark.django_db
def test_export_patient_history_stores_document(record, patient):
    storage = mock.Mock()
    storage.store_document.side_effect = lambda path, document: backup.StoredBackup(path=path, size=99)

    exported = backup.export_patient_history(patient=patient, storage=storage, triggered_by="7")

    path, document = storage.store_document.call_args.args
    assert path == document["export"]["object_path"]
    assert exported == {"path": path, "size": 99, "total_records": 1, "total_versions": 1}


@pytest.mark.django_db
def test_export_patient_history_wraps_storage_failures(record, patient):
    storage = mock.Mock()
    storage.store_document.side_effect = ConnectionError("minio down")

    with pytest.raises(BackupError, match="Export failed: minio down"):
        backup.export_patient_history(patient=patient, storage=storage, triggered_by="7")
