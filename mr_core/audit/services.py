# mr_core/audit/services.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from django.db import transaction

from mr_core.audit.models import AuditEntry
from mr_core.common.actors import Actor

logger = logging.getLogger(__name__)


def _clip(field_name: str, value) -> str:
    """Fit caller-supplied identifiers (raw URL segments) into their column."""
    limit = AuditEntry._meta.get_field(field_name).max_length
    return str(value)[:limit]


class AuditService:
    """
    Central audit writer for the medical-records ledger.

    log_action is best-effort: a failure to persist the entry is logged
    locally and swallowed, so a ledger outage never blocks a clinical
    operation. The caller's own failures are still surfaced by the caller.
    """

    @staticmethod
    def log_action(
        *,
        action: str,
        resource_type: str,
        resource_id: str,
        actor: Actor,
        patient_id: UUID | str | None = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: str | None = None,
        duration_ms: int | None = None,
    ) -> Optional[AuditEntry]:
        try:
            # savepoint: a failed insert must not poison an enclosing transaction
            with transaction.atomic():
                return AuditEntry.objects.create(
                    action=action,
                    resource_type=resource_type,
                    resource_id=_clip("resource_id", resource_id),
                    patient_id=patient_id,
                    performed_by=_clip("performed_by", actor.id),
                    performed_by_type=actor.role,
                    details=details or {},
                    session_info=actor.session_info or {},
                    success=success,
                    error_message=error_message,
                    duration_ms=duration_ms,
                )
        except Exception:
            logger.exception(
                "Audit write failed (action=%s resource=%s:%s actor=%s)",
                action,
                resource_type,
                resource_id,
                actor.id,
            )
            return None
