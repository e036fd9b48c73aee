# mr_core/records/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from mr_core.patients.selectors import patient_summary
from mr_core.records.models import MedicalRecord, RecordVersion


class PatientSummarySerializer(serializers.Serializer):
    id = serializers.UUIDField()
    name = serializers.CharField()
    email = serializers.CharField(allow_blank=True)
    phone = serializers.CharField(allow_blank=True)
    mrn = serializers.CharField()


class AttachmentSerializer(serializers.Serializer):
    file_name = serializers.CharField(max_length=255)
    file_url = serializers.CharField(max_length=2048)
    file_size = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    mime_type = serializers.CharField(required=False, allow_blank=True, max_length=128)
    uploaded_at = serializers.DateTimeField(read_only=True)
    uploaded_by = serializers.CharField(read_only=True)


class MedicalRecordSerializer(serializers.ModelSerializer):
    patient_id = serializers.UUIDField(read_only=True)
    patient = serializers.SerializerMethodField()
    current_version_id = serializers.SerializerMethodField()
    current_version_number = serializers.SerializerMethodField()

    class Meta:
        model = MedicalRecord
        fields = [
            "record_id",
            "patient_id",
            "patient",
            "title",
            "description",
            "tags",
            "current_version_id",
            "current_version_number",
            "created_by_user_id",
            "last_modified_by_user_id",
            "is_deleted",
            "deleted_at",
            "deleted_by_user_id",
            "attachments",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_patient(self, obj) -> dict | None:
        return patient_summary(obj.patient)

    def get_current_version_id(self, obj) -> str | None:
        return obj.current_version.version_id if obj.current_version_id else None

    def get_current_version_number(self, obj) -> int | None:
        return obj.current_version.version_number if obj.current_version_id else None


class RecordVersionSummarySerializer(serializers.ModelSerializer):
    """Version metadata without content (history listings)."""
    record_id = serializers.CharField(source="record.record_id", read_only=True)
    previous_version_id = serializers.SerializerMethodField()

    class Meta:
        model = RecordVersion
        fields = [
            "version_id",
            "record_id",
            "version_number",
            "content_hash",
            "content_size",
            "change_description",
            "created_by_user_id",
            "is_approved",
            "approved_by_user_id",
            "approved_at",
            "previous_version_id",
            "created_at",
        ]
        read_only_fields = fields

    def get_previous_version_id(self, obj) -> str | None:
        return obj.previous_version.version_id if obj.previous_version_id else None


class RecordVersionSerializer(RecordVersionSummarySerializer):
    class Meta(RecordVersionSummarySerializer.Meta):
        fields = RecordVersionSummarySerializer.Meta.fields + ["content"]
        read_only_fields = fields


# ----------------------------
# Inputs
# ----------------------------
class CreateRecordSerializer(serializers.Serializer):
    # title is checked by RecordService so a missing title is still audited
    title = serializers.CharField(required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")
    tags = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False, default=list)
    content = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False, default="")
    change_description = serializers.CharField(required=False, allow_blank=True, default="")


class UpdateRecordSerializer(serializers.Serializer):
    title = serializers.CharField(required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    tags = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)
    content = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    change_description = serializers.CharField(required=False, allow_blank=True, default="")


class PatientRecordsQuerySerializer(serializers.Serializer):
    page = serializers.CharField(required=False)
    limit = serializers.CharField(required=False)
    include_deleted = serializers.BooleanField(required=False, default=False)


# ----------------------------
# Responses (schema + rendering)
# ----------------------------
class CreateRecordResponseSerializer(serializers.Serializer):
    record = MedicalRecordSerializer()
    version = RecordVersionSerializer(allow_null=True)


class RecordPaginationSerializer(serializers.Serializer):
    page = serializers.IntegerField()
    limit = serializers.IntegerField()
    total = serializers.IntegerField()
    pages = serializers.IntegerField()


class PatientRecordsResponseSerializer(serializers.Serializer):
    records = MedicalRecordSerializer(many=True)
    pagination = RecordPaginationSerializer()


class RecordDetailResponseSerializer(serializers.Serializer):
    record = MedicalRecordSerializer()
    latest_version = RecordVersionSerializer(allow_null=True)


class UpdateRecordResponseSerializer(serializers.Serializer):
    record = MedicalRecordSerializer()
    new_version = RecordVersionSerializer(allow_null=True)
    record_updated = serializers.BooleanField()
    content_updated = serializers.BooleanField()


class RecordOnlyResponseSerializer(serializers.Serializer):
    record = MedicalRecordSerializer()


class SuccessResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField()


class VersionHistoryResponseSerializer(serializers.Serializer):
    versions = RecordVersionSummarySerializer(many=True)


class VersionDetailResponseSerializer(serializers.Serializer):
    version = RecordVersionSerializer()
    integrity_valid = serializers.BooleanField()


class VersionDiffSerializer(serializers.Serializer):
    previous_version = serializers.IntegerField()
    current_version = serializers.IntegerField()
    previous_content = serializers.CharField()
    current_content = serializers.CharField()
    change_description = serializers.CharField(allow_blank=True)


class VersionDiffResponseSerializer(serializers.Serializer):
    diff = VersionDiffSerializer(allow_null=True)


class StoredBackupSerializer(serializers.Serializer):
    path = serializers.CharField()
    size = serializers.IntegerField()


class BackupResponseSerializer(serializers.Serializer):
    backup = StoredBackupSerializer()
    version_number = serializers.IntegerField()


class AttachmentResponseSerializer(serializers.Serializer):
    attachment = AttachmentSerializer()
    record = MedicalRecordSerializer()


class HealthSerializer(serializers.Serializer):
    status = serializers.CharField()
    records = serializers.IntegerField()
    active_records = serializers.IntegerField()
    versions = serializers.IntegerField()
    audit_entries = serializers.IntegerField()
    backup_enabled = serializers.BooleanField()
    backup = serializers.DictField()


class BackupListQuerySerializer(serializers.Serializer):
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000)


class StoredObjectSerializer(serializers.Serializer):
    path = serializers.CharField()
    size = serializers.IntegerField()
    last_modified = serializers.DateTimeField(allow_null=True)
    etag = serializers.CharField(allow_null=True, allow_blank=True)


class PatientBackupsResponseSerializer(serializers.Serializer):
    backups = StoredObjectSerializer(many=True)
    total_count = serializers.IntegerField()
    backup_enabled = serializers.BooleanField()


class PatientExportSerializer(serializers.Serializer):
    path = serializers.CharField()
    size = serializers.IntegerField()
    total_records = serializers.IntegerField()
    total_versions = serializers.IntegerField()


class PatientExportResponseSerializer(serializers.Serializer):
    export = PatientExportSerializer()


class BackupStatisticsResponseSerializer(serializers.Serializer):
    statistics = serializers.DictField()
