# mr_core/audit/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from mr_core.audit.api.serializers import (
    ActorActivityResponseSerializer,
    AuditWindowQuerySerializer,
    PatientAuditTrailSerializer,
    RecordAuditTrailSerializer,
)
from mr_core.common.api.validation import validated_or_errors
from mr_core.common.permissions import MedicalRecordsActorPermission
from mr_core.records.services.record_service import RecordService

TAG = ["Audit"]

WINDOW_PARAMETERS = [
    OpenApiParameter(
        name="start_date",
        type=OpenApiTypes.DATETIME,
        location=OpenApiParameter.QUERY,
        required=False,
        description="Only entries at or after this instant.",
    ),
    OpenApiParameter(
        name="end_date",
        type=OpenApiTypes.DATETIME,
        location=OpenApiParameter.QUERY,
        required=False,
        description="Only entries at or before this instant.",
    ),
]


class PatientAuditTrailView(APIView):
    """
    Ledger entries touching one patient's data (doctors and admins).
    """
    permission_classes = [MedicalRecordsActorPermission]

    @extend_schema(
        tags=TAG,
        parameters=[
            OpenApiParameter("page", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="limit",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Entries per page (default 50, max 500).",
            ),
            OpenApiParameter(
                name="actions",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Comma-separated action filter (e.g. READ_RECORD,UPDATE_RECORD).",
            ),
            *WINDOW_PARAMETERS,
        ],
        responses={200: PatientAuditTrailSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
    def get(self, request, patient_id: str):
        data, errors = validated_or_errors(AuditWindowQuerySerializer(data=request.query_params))

        result = RecordService.get_patient_audit_trail(
            patient_id=patient_id,
            actor=request.actor,
            page=data.get("page", 1),
            limit=data.get("limit"),
            actions=data.get("actions"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            input_errors=errors,
        )
        return Response(PatientAuditTrailSerializer(result).data, status=status.HTTP_200_OK)


class RecordAuditTrailView(APIView):
    permission_classes = [MedicalRecordsActorPermission]

    @extend_schema(
        tags=TAG,
        parameters=[
            OpenApiParameter("limit", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: RecordAuditTrailSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
    def get(self, request, record_id: str):
        result = RecordService.get_record_audit_trail(
            record_id=record_id,
            actor=request.actor,
            limit=request.query_params.get("limit"),
        )
        return Response(RecordAuditTrailSerializer(result).data, status=status.HTTP_200_OK)


class ActorActivityView(APIView):
    """
    Per-action counts for one actor (the actor themself or an admin).
    Defaults to the trailing 30 days.
    """
    permission_classes = [MedicalRecordsActorPermission]

    @extend_schema(
        tags=TAG,
        parameters=WINDOW_PARAMETERS,
        responses={200: ActorActivityResponseSerializer, 403: OpenApiTypes.OBJECT},
    )
    def get(self, request, actor_id: str):
        q = AuditWindowQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)

        result = RecordService.get_actor_activity(
            actor_id=actor_id,
            requester=request.actor,
            start_date=q.validated_data.get("start_date"),
            end_date=q.validated_data.get("end_date"),
        )
        return Response(ActorActivityResponseSerializer(result).data, status=status.HTTP_200_OK)
