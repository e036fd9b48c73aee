# mr_core/common/actors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.db import models


class ActorRole(models.TextChoices):
    DOCTOR = "DOCTOR", "Doctor"
    PATIENT = "PATIENT", "Patient"
    ADMIN = "ADMIN", "Admin"


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an operation, resolved once at the API boundary.

    id:
      - DOCTOR / ADMIN: the Django user id (as string)
      - PATIENT: the linked Patient UUID (as string)
    """
    id: str
    role: ActorRole
    user_id: Optional[int] = None
    session_info: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_doctor(self) -> bool:
        return self.role == ActorRole.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role == ActorRole.PATIENT

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


def session_info_from_request(request) -> Dict[str, Any]:
    if request is None:
        return {}
    meta = getattr(request, "META", {}) or {}
    forwarded = meta.get("HTTP_X_FORWARDED_FOR", "")
    ip = forwarded.split(",")[0].strip() if forwarded else meta.get("REMOTE_ADDR")
    info = {
        "ip_address": ip or None,
        "user_agent": meta.get("HTTP_USER_AGENT") or None,
    }
    session = getattr(request, "session", None)
    session_key = getattr(session, "session_key", None)
    if session_key:
        info["session_id"] = session_key
    return info


def resolve_role(user) -> Optional[ActorRole]:
    from mr_core.common.permissions import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, _user_roles

    roles = _user_roles(user)
    if ROLE_DOCTOR in roles:
        return ActorRole.DOCTOR
    if ROLE_ADMIN in roles:
        return ActorRole.ADMIN
    if ROLE_PATIENT in roles:
        return ActorRole.PATIENT
    return None


def resolve_actor(user, *, request=None) -> Optional[Actor]:
    """
    Map an authenticated Django user onto an Actor.
    Returns None when the user has no medical-records role, or is a patient
    user without a linked patient profile.
    """
    role = resolve_role(user)
    if role is None:
        return None

    session_info = session_info_from_request(request)

    if role == ActorRole.PATIENT:
        from mr_core.patients.selectors import get_patient_for_user

        patient = get_patient_for_user(user_id=user.id)
        if patient is None:
            return None
        return Actor(id=str(patient.id), role=role, user_id=user.id, session_info=session_info)

    return Actor(id=str(user.id), role=role, user_id=user.id, session_info=session_info)
