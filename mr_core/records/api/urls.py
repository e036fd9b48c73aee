# mr_core/records/api/urls.py
from __future__ import annotations

from django.urls import path

from mr_core.records.api.views import (
    BackupStatisticsView,
    PatientBackupsView,
    PatientExportView,
    PatientRecordsView,
    RecordAttachmentDetailView,
    RecordAttachmentsView,
    RecordBackupView,
    RecordDetailView,
    RecordRestoreView,
    RecordSearchView,
    RecordsHealthView,
    RecordVersionDetailView,
    RecordVersionDiffView,
    RecordVersionsView,
)

app_name = "records"

# Identifiers are plain strings: malformed ids must reach RecordService
# validation (and the audit ledger) instead of failing URL resolution.
urlpatterns = [
    path("patients/<str:patient_id>/records/", PatientRecordsView.as_view(), name="patient-records"),
    path("patients/<str:patient_id>/backups/", PatientBackupsView.as_view(), name="patient-backups"),
    path("patients/<str:patient_id>/export/", PatientExportView.as_view(), name="patient-export"),
    path("records/<str:record_id>/", RecordDetailView.as_view(), name="record-detail"),
    path("records/<str:record_id>/restore/", RecordRestoreView.as_view(), name="record-restore"),
    path("records/<str:record_id>/versions/", RecordVersionsView.as_view(), name="record-versions"),
    path(
        "records/<str:record_id>/versions/<str:version_number>/",
        RecordVersionDetailView.as_view(),
        name="record-version-detail",
    ),
    path(
        "records/<str:record_id>/versions/<str:version_number>/diff/",
        RecordVersionDiffView.as_view(),
        name="record-version-diff",
    ),
    path("records/<str:record_id>/backup/", RecordBackupView.as_view(), name="record-backup"),
    path("records/<str:record_id>/attachments/", RecordAttachmentsView.as_view(), name="record-attachments"),
    path(
        "records/<str:record_id>/attachments/<str:file_name>/",
        RecordAttachmentDetailView.as_view(),
        name="record-attachment-detail",
    ),
    path("backups/stats/", BackupStatisticsView.as_view(), name="backup-stats"),
    path("search/", RecordSearchView.as_view(), name="record-search"),
    path("health/", RecordsHealthView.as_view(), name="health"),
]
