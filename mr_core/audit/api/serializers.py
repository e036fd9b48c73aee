# mr_core/audit/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from mr_core.audit.models import AuditAction, AuditEntry


class AuditEntrySerializer(serializers.ModelSerializer):
    description = serializers.CharField(source="describe", read_only=True)

    class Meta:
        model = AuditEntry
        fields = [
            "audit_id",
            "action",
            "description",
            "resource_type",
            "resource_id",
            "patient_id",
            "performed_by",
            "performed_by_type",
            "details",
            "session_info",
            "timestamp",
            "success",
            "error_message",
            "duration_ms",
        ]
        read_only_fields = fields


class ActorActivitySerializer(serializers.Serializer):
    action = serializers.CharField()
    count = serializers.IntegerField()
    last_performed = serializers.DateTimeField()


class PaginationSerializer(serializers.Serializer):
    page = serializers.IntegerField()
    limit = serializers.IntegerField()
    total = serializers.IntegerField()
    pages = serializers.IntegerField()


class PatientAuditTrailSerializer(serializers.Serializer):
    audit_trail = AuditEntrySerializer(many=True)
    pagination = PaginationSerializer()


class RecordAuditTrailSerializer(serializers.Serializer):
    audit_trail = AuditEntrySerializer(many=True)


class ActorActivityResponseSerializer(serializers.Serializer):
    actor_id = serializers.CharField()
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    activity = ActorActivitySerializer(many=True)


class AuditWindowQuerySerializer(serializers.Serializer):
    """Query-string window shared by the patient trail and actor activity views."""
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)
    actions = serializers.CharField(required=False, allow_blank=True)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)

    def validate_actions(self, value: str) -> list[str]:
        actions = [a.strip().upper() for a in value.split(",") if a.strip()]
        unknown = [a for a in actions if a not in AuditAction.values]
        if unknown:
            raise serializers.ValidationError(f"Unknown action(s): {', '.join(unknown)}")
        return actions

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and start > end:
            raise serializers.ValidationError({"start_date": "start_date must be before end_date."})
        return attrs
