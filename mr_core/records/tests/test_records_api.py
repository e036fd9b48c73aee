# mr_core/records/tests/test_records_api.py
import uuid

import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework.test import APIClient

from mr_core.audit.models import AuditAction, AuditEntry
from mr_core.records import backup
from mr_core.records.backup import StoredBackup

pytestmark = [pytest.mark.django_db]


def _create(client, patient_id, **body):
    url = reverse("records:patient-records", kwargs={"patient_id": str(patient_id)})
    return client.post(url, body, format="json")


def _assert_envelope(res, status_code: int, code: str):
    assert res.status_code == status_code
    body = res.json()
    assert body["error"]["code"] == code
    assert body["error"]["message"]
    assert body["error"]["request_id"]


def test_doctor_creates_record_with_initial_version(doctor_client, patient):
    res = _create(doctor_client, patient.id, title="Initial Consultation", content="A", tags=["cardiology"])

    assert res.status_code == 201
    data = res.json()
    assert data["record"]["record_id"].startswith("REC-")
    assert data["record"]["patient"]["name"] == "Jane Doe"
    assert data["record"]["current_version_number"] == 1
    assert data["version"]["version_number"] == 1
    assert data["version"]["content"] == "A"


def test_create_with_malformed_patient_id_is_400_and_audited(doctor_client):
    res = _create(doctor_client, "not-a-uuid", title="x")

    _assert_envelope(res, 400, "validation_error")
    entry = AuditEntry.objects.get()
    assert entry.success is False
    assert entry.resource_id == "not-a-uuid"


def test_create_for_unknown_patient_is_404(doctor_client):
    _assert_envelope(_create(doctor_client, uuid.uuid4(), title="x"), 404, "not_found")


def test_create_without_title_is_400(doctor_client, patient):
    _assert_envelope(_create(doctor_client, patient.id, content="A"), 400, "validation_error")


def test_patient_cannot_create(patient_client, patient):
    _assert_envelope(_create(patient_client, patient.id, title="self-diagnosis"), 403, "permission_denied")


def test_user_without_role_is_rejected_before_service(db):
    user = get_user_model().objects.create_user(username="nobody", password="x")
    c = APIClient()
    c.force_authenticate(user=user)

    res = c.get(reverse("records:record-detail", kwargs={"record_id": "REC-1-abc"}))

    _assert_envelope(res, 403, "permission_denied")
    assert AuditEntry.objects.count() == 0


def test_anonymous_is_401():
    res = APIClient().get(reverse("records:record-detail", kwargs={"record_id": "REC-1-abc"}))

    _assert_envelope(res, 401, "not_authenticated")


def test_get_record_owner_vs_stranger(record, patient_client, other_patient_client):
    url = reverse("records:record-detail", kwargs={"record_id": record.record_id})

    ok = patient_client.get(url)
    assert ok.status_code == 200
    assert ok.json()["latest_version"]["content"] == "A"

    _assert_envelope(other_patient_client.get(url), 403, "permission_denied")


def test_list_patient_records_paginates(doctor_client, patient, record):
    url = reverse("records:patient-records", kwargs={"patient_id": str(patient.id)})

    res = doctor_client.get(url, {"page": 1, "limit": 5})

    assert res.status_code == 200
    data = res.json()
    assert [r["record_id"] for r in data["records"]] == [record.record_id]
    assert data["pagination"] == {"page": 1, "limit": 5, "total": 1, "pages": 1}


def test_update_creates_version_only_when_content_changes(doctor_client, record):
    url = reverse("records:record-detail", kwargs={"record_id": record.record_id})

    changed = doctor_client.put(url, {"content": "B", "change_description": "lab results in"}, format="json")
    assert changed.status_code == 200
    assert changed.json()["content_updated"] is True
    assert changed.json()["new_version"]["version_number"] == 2

    same = doctor_client.patch(url, {"content": "B"}, format="json")
    assert same.status_code == 200
    assert same.json()["content_updated"] is False
    assert same.json()["new_version"] is None


def test_delete_then_double_delete_then_restore(doctor_client, record):
    url = reverse("records:record-detail", kwargs={"record_id": record.record_id})

    first = doctor_client.delete(url)
    assert first.status_code == 200
    assert first.json() == {"success": True}

    _assert_envelope(doctor_client.delete(url), 409, "conflict")
    _assert_envelope(doctor_client.get(url), 404, "not_found")

    restore = doctor_client.post(reverse("records:record-restore", kwargs={"record_id": record.record_id}))
    assert restore.status_code == 200
    assert restore.json()["record"]["is_deleted"] is False


def test_version_endpoints(doctor_client, record):
    doctor_client.put(
        reverse("records:record-detail", kwargs={"record_id": record.record_id}),
        {"content": "B"},
        format="json",
    )

    history = doctor_client.get(reverse("records:record-versions", kwargs={"record_id": record.record_id}))
    assert history.status_code == 200
    versions = history.json()["versions"]
    assert [v["version_number"] for v in versions] == [2, 1]
    assert "content" not in versions[0]
    assert versions[0]["previous_version_id"] == versions[1]["version_id"]

    detail = doctor_client.get(
        reverse("records:record-version-detail", kwargs={"record_id": record.record_id, "version_number": "2"})
    )
    assert detail.status_code == 200
    assert detail.json()["integrity_valid"] is True
    assert detail.json()["version"]["content"] == "B"

    diff = doctor_client.get(
        reverse("records:record-version-diff", kwargs={"record_id": record.record_id, "version_number": "2"})
    )
    assert diff.json()["diff"]["previous_content"] == "A"
    assert diff.json()["diff"]["current_content"] == "B"

    first = doctor_client.get(
        reverse("records:record-version-diff", kwargs={"record_id": record.record_id, "version_number": "1"})
    )
    assert first.json()["diff"] is None


def test_bad_version_number_is_400(doctor_client, record):
    res = doctor_client.get(
        reverse("records:record-version-detail", kwargs={"record_id": record.record_id, "version_number": "abc"})
    )

    _assert_envelope(res, 400, "validation_error")


def test_attachments(doctor_client, record):
    url = reverse("records:record-attachments", kwargs={"record_id": record.record_id})
    body = {"file_name": "xray.png", "file_url": "https://files.example/xray.png", "mime_type": "image/png"}

    created = doctor_client.post(url, body, format="json")
    assert created.status_code == 201
    assert created.json()["record"]["attachments"][0]["file_name"] == "xray.png"

    _assert_envelope(doctor_client.post(url, body, format="json"), 409, "conflict")

    detail = reverse(
        "records:record-attachment-detail",
        kwargs={"record_id": record.record_id, "file_name": "xray.png"},
    )
    assert doctor_client.delete(detail).status_code == 200
    _assert_envelope(doctor_client.delete(detail), 404, "not_found")


def test_search_is_paginated(doctor_client, patient, record):
    res = doctor_client.get(reverse("records:record-search"), {"query": "consult", "patient_id": str(patient.id)})

    assert res.status_code == 200
    data = res.json()
    assert data["count"] == 1
    assert data["results"][0]["record_id"] == record.record_id


def test_search_forbidden_for_patients(patient_client):
    _assert_envelope(patient_client.get(reverse("records:record-search")), 403, "permission_denied")


def test_manual_backup_disabled_is_conflict(doctor_client, record):
    res = doctor_client.post(reverse("records:record-backup", kwargs={"record_id": record.record_id}))

    _assert_envelope(res, 409, "conflict")


def test_health_is_public(record):
    res = APIClient().get(reverse("records:health"))

    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "ok"
    assert data["records"] == 1
    assert data["versions"] == 1
    assert data["backup_enabled"] is False
    assert data["backup"] == {"enabled": False}


# ----------------------------
# Rejected bodies still reach the ledger
# ----------------------------
def test_update_with_malformed_body_is_400_and_audited(doctor_client, record):
    url = reverse("records:record-detail", kwargs={"record_id": record.record_id})

    res = doctor_client.put(url, {"tags": 5}, format="json")

    _assert_envelope(res, 400, "validation_error")
    assert "tags" in res.json()["error"]["details"]
    entry = AuditEntry.objects.get(action=AuditAction.UPDATE_RECORD)
    assert entry.success is False
    assert entry.error_message == "Invalid request data"


def test_create_with_malformed_tags_is_400_and_audited(doctor_client, patient):
    res = _create(doctor_client, patient.id, title="x", tags="cardiology")

    _assert_envelope(res, 400, "validation_error")
    entry = AuditEntry.objects.get(action=AuditAction.CREATE_RECORD)
    assert entry.success is False
    assert entry.patient_id is None


def test_attachment_without_url_is_400_and_audited(doctor_client, record):
    url = reverse("records:record-attachments", kwargs={"record_id": record.record_id})

    res = doctor_client.post(url, {"file_name": "xray.png"}, format="json")

    _assert_envelope(res, 400, "validation_error")
    entry = AuditEntry.objects.get(action=AuditAction.UPLOAD_ATTACHMENT)
    assert entry.success is False


def test_bad_include_deleted_is_400_and_audited(doctor_client, patient):
    url = reverse("records:patient-records", kwargs={"patient_id": str(patient.id)})

    res = doctor_client.get(url, {"include_deleted": "maybe"})

    _assert_envelope(res, 400, "validation_error")
    assert AuditEntry.objects.get(action=AuditAction.ACCESS_PATIENT_RECORDS).success is False


def test_oversized_patient_id_is_audited_clipped(doctor_client):
    res = _create(doctor_client, "p" * 300, title="x")

    _assert_envelope(res, 400, "validation_error")
    entry = AuditEntry.objects.get()
    assert entry.success is False
    assert entry.resource_id == "p" * 128


# ----------------------------
# Patient backups, exports, statistics
# ----------------------------
class _Storage:
    bucket = "records"

    def __init__(self):
        self.documents = {}

    def store_document(self, path, document):
        self.documents[path] = document
        return StoredBackup(path=path, size=100)

    def list_objects(self, prefix="", limit=None):
        return [
            {"path": p, "size": 100, "last_modified": None, "etag": "e1"}
            for p in self.documents
            if p.startswith(prefix)
        ]

    def statistics(self):
        return {"enabled": True, "bucket": self.bucket, "total_objects": len(self.documents)}


def test_patient_backups_endpoint(doctor_client, patient):
    res = doctor_client.get(reverse("records:patient-backups", kwargs={"patient_id": str(patient.id)}))

    assert res.status_code == 200
    assert res.json() == {"backups": [], "total_count": 0, "backup_enabled": False}


def test_patient_backups_rejects_bad_limit(doctor_client, patient):
    url = reverse("records:patient-backups", kwargs={"patient_id": str(patient.id)})

    _assert_envelope(doctor_client.get(url, {"limit": "0"}), 400, "validation_error")
    assert AuditEntry.objects.get(action=AuditAction.LIST_BACKUPS).success is False


def test_patient_backups_forbidden_for_patient_and_admin(patient_client, records_admin_client, patient):
    url = reverse("records:patient-backups", kwargs={"patient_id": str(patient.id)})

    _assert_envelope(patient_client.get(url), 403, "permission_denied")
    _assert_envelope(records_admin_client.get(url), 403, "permission_denied")


def test_export_then_list(doctor_client, patient, record, monkeypatch):
    storage = _Storage()
    monkeypatch.setattr(backup, "get_backup_storage", lambda: storage)

    exported = doctor_client.post(reverse("records:patient-export", kwargs={"patient_id": str(patient.id)}))

    assert exported.status_code == 200
    export = exported.json()["export"]
    assert export["total_records"] == 1
    assert export["total_versions"] == 1
    assert export["size"] == 100

    # exports live outside the patient's backup folder
    listed = doctor_client.get(reverse("records:patient-backups", kwargs={"patient_id": str(patient.id)}))
    assert listed.json()["total_count"] == 0
    assert listed.json()["backup_enabled"] is True


def test_export_disabled_is_conflict(doctor_client, patient):
    res = doctor_client.post(reverse("records:patient-export", kwargs={"patient_id": str(patient.id)}))

    _assert_envelope(res, 409, "conflict")


def test_export_forbidden_for_patient(patient_client, patient):
    res = patient_client.post(reverse("records:patient-export", kwargs={"patient_id": str(patient.id)}))

    _assert_envelope(res, 403, "permission_denied")


def test_backup_stats_for_doctor_and_admin(doctor_client, records_admin_client, patient_client, monkeypatch):
    monkeypatch.setattr(backup, "get_backup_storage", lambda: _Storage())
    url = reverse("records:backup-stats")

    for client in (doctor_client, records_admin_client):
        res = client.get(url)
        assert res.status_code == 200
        assert res.json()["statistics"] == {"enabled": True, "bucket": "records", "total_objects": 0}

    _assert_envelope(patient_client.get(url), 403, "permission_denied")


def test_health_reports_backup_statistics(monkeypatch):
    monkeypatch.setattr(backup, "get_backup_storage", lambda: _Storage())

    data = APIClient().get(reverse("records:health")).json()

    assert data["backup"]["enabled"] is True
    assert data["backup"]["bucket"] == "records"
