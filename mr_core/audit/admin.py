# mr_core/audit/admin.py
from django.contrib import admin

from mr_core.audit.models import AuditEntry


@admin.register(AuditEntry)
class AuditEntryAdmin(admin.ModelAdmin):
    list_display = (
        "audit_id",
        "action",
        "resource_type",
        "resource_id",
        "patient_id",
        "performed_by",
        "performed_by_type",
        "success",
        "timestamp",
    )
    list_filter = ("action", "resource_type", "performed_by_type", "success")
    search_fields = ("audit_id", "resource_id", "performed_by")
    ordering = ("-timestamp",)

    # Ledger rows are append-only
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
