# mr_core/records/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from mr_core.common.api.pagination import paginate
from mr_core.common.api.validation import validated_or_errors
from mr_core.common.permissions import MedicalRecordsActorPermission
from mr_core.records.api.serializers import (
    AttachmentResponseSerializer,
    AttachmentSerializer,
    BackupListQuerySerializer,
    BackupResponseSerializer,
    BackupStatisticsResponseSerializer,
    CreateRecordResponseSerializer,
    CreateRecordSerializer,
    HealthSerializer,
    MedicalRecordSerializer,
    PatientRecordsQuerySerializer,
    PatientBackupsResponseSerializer,
    PatientExportResponseSerializer,
    PatientRecordsResponseSerializer,
    RecordDetailResponseSerializer,
    RecordOnlyResponseSerializer,
    SuccessResponseSerializer,
    UpdateRecordResponseSerializer,
    UpdateRecordSerializer,
    VersionDetailResponseSerializer,
    VersionDiffResponseSerializer,
    VersionHistoryResponseSerializer,
)
from mr_core.records.selectors import records_health
from mr_core.records.services.record_service import RecordService

TAG = ["Medical Records"]

ERRORS = {
    400: OpenApiTypes.OBJECT,
    403: OpenApiTypes.OBJECT,
    404: OpenApiTypes.OBJECT,
}


class RecordsAPIView(APIView):
    """Resolves request.actor before any handler runs."""
    permission_classes = [MedicalRecordsActorPermission]


class PatientRecordsView(RecordsAPIView):
    @extend_schema(
        tags=TAG,
        parameters=[
            OpenApiParameter("page", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("limit", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                "include_deleted",
                OpenApiTypes.BOOL,
                OpenApiParameter.QUERY,
                required=False,
                description="Doctors only; ignored for other roles.",
            ),
        ],
        responses={200: PatientRecordsResponseSerializer, **ERRORS},
    )
    def get(self, request, patient_id: str):
        data, errors = validated_or_errors(PatientRecordsQuerySerializer(data=request.query_params))

        result = RecordService.get_patient_records(
            patient_id=patient_id,
            actor=request.actor,
            page=data.get("page"),
            limit=data.get("limit"),
            include_deleted=data.get("include_deleted", False),
            input_errors=errors,
        )
        return Response(PatientRecordsResponseSerializer(result).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=TAG,
        request=CreateRecordSerializer,
        responses={201: CreateRecordResponseSerializer, **ERRORS},
    )
    def post(self, request, patient_id: str):
        data, errors = validated_or_errors(CreateRecordSerializer(data=request.data))

        result = RecordService.create_record(
            patient_id=patient_id,
            title=data.get("title", ""),
            description=data.get("description", ""),
            tags=data.get("tags"),
            content=data.get("content", ""),
            change_description=data.get("change_description", ""),
            actor=request.actor,
            input_errors=errors,
        )
        return Response(CreateRecordResponseSerializer(result).data, status=status.HTTP_201_CREATED)


class RecordDetailView(RecordsAPIView):
    @extend_schema(tags=TAG, responses={200: RecordDetailResponseSerializer, **ERRORS})
    def get(self, request, record_id: str):
        result = RecordService.get_record(record_id=record_id, actor=request.actor)
        return Response(RecordDetailResponseSerializer(result).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=TAG,
        request=UpdateRecordSerializer,
        responses={200: UpdateRecordResponseSerializer, 409: OpenApiTypes.OBJECT, **ERRORS},
    )
    def put(self, request, record_id: str):
        data, errors = validated_or_errors(UpdateRecordSerializer(data=request.data))

        result = RecordService.update_record(
            record_id=record_id,
            actor=request.actor,
            content=data.get("content"),
            change_description=data.get("change_description", ""),
            title=data.get("title"),
            description=data.get("description"),
            tags=data.get("tags"),
            input_errors=errors,
        )
        return Response(UpdateRecordResponseSerializer(result).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=TAG,
        request=UpdateRecordSerializer,
        responses={200: UpdateRecordResponseSerializer, 409: OpenApiTypes.OBJECT, **ERRORS},
    )
    def patch(self, request, record_id: str):
        return self.put(request, record_id)

    @extend_schema(tags=TAG, responses={200: SuccessResponseSerializer, 409: OpenApiTypes.OBJECT, **ERRORS})
    def delete(self, request, record_id: str):
        result = RecordService.delete_record(record_id=record_id, actor=request.actor)
        return Response(SuccessResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordRestoreView(RecordsAPIView):
    @extend_schema(tags=TAG, request=None, responses={200: RecordOnlyResponseSerializer, 409: OpenApiTypes.OBJECT, **ERRORS})
    def post(self, request, record_id: str):
        result = RecordService.restore_record(record_id=record_id, actor=request.actor)
        return Response(RecordOnlyResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordVersionsView(RecordsAPIView):
    @extend_schema(
        tags=TAG,
        parameters=[
            OpenApiParameter("limit", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: VersionHistoryResponseSerializer, **ERRORS},
    )
    def get(self, request, record_id: str):
        result = RecordService.get_version_history(
            record_id=record_id,
            actor=request.actor,
            limit=request.query_params.get("limit"),
        )
        return Response(VersionHistoryResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordVersionDetailView(RecordsAPIView):
    @extend_schema(tags=TAG, responses={200: VersionDetailResponseSerializer, **ERRORS})
    def get(self, request, record_id: str, version_number: str):
        result = RecordService.get_version(
            record_id=record_id,
            version_number=version_number,
            actor=request.actor,
        )
        return Response(VersionDetailResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordVersionDiffView(RecordsAPIView):
    @extend_schema(tags=TAG, responses={200: VersionDiffResponseSerializer, **ERRORS})
    def get(self, request, record_id: str, version_number: str):
        result = RecordService.get_version_diff(
            record_id=record_id,
            version_number=version_number,
            actor=request.actor,
        )
        return Response(VersionDiffResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordBackupView(RecordsAPIView):
    @extend_schema(
        tags=TAG,
        request=None,
        responses={200: BackupResponseSerializer, 409: OpenApiTypes.OBJECT, 500: OpenApiTypes.OBJECT, **ERRORS},
    )
    def post(self, request, record_id: str):
        result = RecordService.backup_record(record_id=record_id, actor=request.actor)
        return Response(BackupResponseSerializer(result).data, status=status.HTTP_200_OK)


class PatientBackupsView(RecordsAPIView):
    @extend_schema(
        tags=TAG,
        parameters=[
            OpenApiParameter("limit", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False,
                             description="Newest backups to return (default 100)."),
        ],
        responses={200: PatientBackupsResponseSerializer, 500: OpenApiTypes.OBJECT, **ERRORS},
    )
    def get(self, request, patient_id: str):
        data, errors = validated_or_errors(BackupListQuerySerializer(data=request.query_params))

        result = RecordService.list_patient_backups(
            patient_id=patient_id,
            actor=request.actor,
            limit=data.get("limit"),
            input_errors=errors,
        )
        return Response(PatientBackupsResponseSerializer(result).data, status=status.HTTP_200_OK)


class PatientExportView(RecordsAPIView):
    """Writes the patient's complete history as one JSON document to backup storage."""

    @extend_schema(
        tags=TAG,
        request=None,
        responses={200: PatientExportResponseSerializer, 409: OpenApiTypes.OBJECT, 500: OpenApiTypes.OBJECT, **ERRORS},
    )
    def post(self, request, patient_id: str):
        result = RecordService.export_patient_history(patient_id=patient_id, actor=request.actor)
        return Response(PatientExportResponseSerializer(result).data, status=status.HTTP_200_OK)


class BackupStatisticsView(RecordsAPIView):
    @extend_schema(tags=TAG, responses={200: BackupStatisticsResponseSerializer, 403: OpenApiTypes.OBJECT})
    def get(self, request):
        result = RecordService.get_backup_statistics(actor=request.actor)
        return Response(BackupStatisticsResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordAttachmentsView(RecordsAPIView):
    @extend_schema(
        tags=TAG,
        request=AttachmentSerializer,
        responses={201: AttachmentResponseSerializer, 409: OpenApiTypes.OBJECT, **ERRORS},
    )
    def post(self, request, record_id: str):
        data, errors = validated_or_errors(AttachmentSerializer(data=request.data))

        result = RecordService.add_attachment(
            record_id=record_id,
            attachment=dict(data),
            actor=request.actor,
            input_errors=errors,
        )
        return Response(AttachmentResponseSerializer(result).data, status=status.HTTP_201_CREATED)


class RecordAttachmentDetailView(RecordsAPIView):
    @extend_schema(tags=TAG, responses={200: AttachmentResponseSerializer, **ERRORS})
    def delete(self, request, record_id: str, file_name: str):
        result = RecordService.remove_attachment(
            record_id=record_id,
            file_name=file_name,
            actor=request.actor,
        )
        return Response(AttachmentResponseSerializer(result).data, status=status.HTTP_200_OK)


class RecordSearchView(RecordsAPIView):
    @extend_schema(
        tags=TAG,
        parameters=[
            OpenApiParameter("query", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False,
                             description="Substring of title or description."),
            OpenApiParameter("patient_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("tags", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False,
                             description="Comma-separated; matches records having any of them."),
            OpenApiParameter("date_from", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("date_to", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("page", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("page_size", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: MedicalRecordSerializer(many=True), **ERRORS},
    )
    def get(self, request):
        params = {
            k: request.query_params.get(k)
            for k in ("query", "patient_id", "tags", "date_from", "date_to")
            if request.query_params.get(k) not in (None, "")
        }
        qs = RecordService.search_records(params=params, actor=request.actor)
        return paginate(request, qs, MedicalRecordSerializer)


class RecordsHealthView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(tags=TAG, responses={200: HealthSerializer})
    def get(self, request):
        data = {"status": "ok", **records_health()}
        return Response(HealthSerializer(data).data, status=status.HTTP_200_OK)
