# mr_core/records/exceptions.py
from __future__ import annotations

from typing import Any


class RecordsError(Exception):
    """
    Base for medical-records domain errors.
    `code` and `http_status` are stable and mapped into the API error envelope.
    """
    code = "records_error"
    http_status = 400

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class RecordValidationError(RecordsError):
    code = "validation_error"
    http_status = 400


class RecordNotFound(RecordsError):
    code = "not_found"
    http_status = 404


class AccessDenied(RecordsError):
    code = "permission_denied"
    http_status = 403

    # Audit entries for denials always carry this message
    AUDIT_MESSAGE = "Unauthorized access attempt"


class RecordConflict(RecordsError):
    code = "conflict"
    http_status = 409


class ContentIntegrityError(RecordsError):
    code = "integrity_error"
    http_status = 409


class RecordOperationError(RecordsError):
    code = "operation_failed"
    http_status = 500


class BackupError(RecordsError):
    """Raised inside the backup channel only; absorbed by run_version_backup."""
    code = "backup_failed"
    http_status = 502
