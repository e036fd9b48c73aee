# mr_core/records/admin.py
from django.contrib import admin

from mr_core.records.models import MedicalRecord, RecordVersion


@admin.register(MedicalRecord)
class MedicalRecordAdmin(admin.ModelAdmin):
    list_display = (
        "record_id",
        "title",
        "patient",
        "current_version",
        "is_deleted",
        "created_by_user_id",
        "created_at",
    )
    list_filter = ("is_deleted",)
    search_fields = ("record_id", "title", "patient__full_name", "patient__mrn")
    readonly_fields = ("record_id", "created_at", "updated_at", "deleted_at", "deleted_by_user_id")
    ordering = ("-created_at",)


@admin.register(RecordVersion)
class RecordVersionAdmin(admin.ModelAdmin):
    list_display = (
        "version_id",
        "record",
        "version_number",
        "content_size",
        "is_approved",
        "created_by_user_id",
        "created_at",
    )
    search_fields = ("version_id", "record__record_id", "content_hash")
    ordering = ("record", "-version_number")

    # Versions are immutable snapshots
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
