# mr_core/records/services/access.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from mr_core.common.actors import Actor, ActorRole
from mr_core.records.exceptions import AccessDenied
from mr_core.records.models import MedicalRecord


class GateAction(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    SEARCH = "SEARCH"
    BACKUP = "BACKUP"
    EXPORT = "EXPORT"
    VIEW_BACKUP_STATS = "VIEW_BACKUP_STATS"
    MANAGE_ATTACHMENTS = "MANAGE_ATTACHMENTS"
    VIEW_AUDIT = "VIEW_AUDIT"
    VIEW_ACTIVITY = "VIEW_ACTIVITY"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""


ALLOW = AccessDecision(True)

# Admins see the ledger and storage health, never clinical content
_ADMIN_ACTIONS = {GateAction.VIEW_AUDIT, GateAction.VIEW_BACKUP_STATS}


def authorize(
    actor: Actor,
    action: GateAction,
    *,
    record: Optional[MedicalRecord] = None,
    patient_id=None,
    target_actor_id: Optional[str] = None,
) -> AccessDecision:
    """
    Decide whether `actor` may perform `action`.

    DOCTOR  every record action and audit viewing, on any patient
    PATIENT READ of records they own, nothing else
    ADMIN   audit viewing and backup statistics only
    Activity of an actor is visible to that actor and to admins.
    """
    if action == GateAction.VIEW_ACTIVITY:
        if actor.role == ActorRole.ADMIN or (target_actor_id is not None and str(target_actor_id) == actor.id):
            return ALLOW
        return AccessDecision(False, "Only the actor or an admin may view this activity")

    if actor.role == ActorRole.DOCTOR:
        return ALLOW

    if actor.role == ActorRole.ADMIN:
        if action in _ADMIN_ACTIONS:
            return ALLOW
        return AccessDecision(False, "Admins may only view audit trails and backup statistics")

    if actor.role == ActorRole.PATIENT:
        if action != GateAction.READ:
            return AccessDecision(False, "Patients may only read their own records")

        owner = record.patient_id if record is not None else patient_id
        if owner is not None and str(owner) == actor.id:
            return ALLOW
        return AccessDecision(False, "Patients may only read their own records")

    return AccessDecision(False, "Unknown role")


def ensure_allowed(actor: Actor, action: GateAction, **kwargs) -> None:
    decision = authorize(actor, action, **kwargs)
    if not decision.allowed:
        raise AccessDenied("Access denied", details={"reason": decision.reason})
