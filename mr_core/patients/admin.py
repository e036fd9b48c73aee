# mr_core/patients/admin.py
from django.contrib import admin

from mr_core.patients.models import Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = (
        "full_name",
        "mrn",
        "phone",
        "email",
        "portal_user",
        "created_at",
    )
    search_fields = ("full_name", "mrn", "phone", "email")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at",)
