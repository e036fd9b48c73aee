# mr_core/audit/api/urls.py
from __future__ import annotations

from django.urls import path

from mr_core.audit.api.views import ActorActivityView, PatientAuditTrailView, RecordAuditTrailView

app_name = "audit"

urlpatterns = [
    path("patients/<str:patient_id>/audit/", PatientAuditTrailView.as_view(), name="patient-audit"),
    path("records/<str:record_id>/audit/", RecordAuditTrailView.as_view(), name="record-audit"),
    path("actors/<str:actor_id>/activity/", ActorActivityView.as_view(), name="actor-activity"),
]
