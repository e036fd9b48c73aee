# mr_core/common/permissions.py

from __future__ import annotations

from typing import Set

from rest_framework.permissions import BasePermission

# Group/role names (Django auth Group names)
ROLE_ADMIN = "ADMIN"
ROLE_DOCTOR = "DOCTOR"
ROLE_PATIENT = "PATIENT"

ROLE_GROUPS = [ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT]


def _user_roles(user) -> Set[str]:
    """
    Resolve roles from:
    1) Django groups: user.groups (recommended)
    2) Optional user.role attribute (if your project has it)

    Role strings are upper-cased here, once, so the rest of the code only
    ever compares against the closed ActorRole enumeration.
    """
    roles: Set[str] = set()

    if not user or not getattr(user, "is_authenticated", False):
        return roles

    # Superuser treated as admin
    if getattr(user, "is_superuser", False):
        roles.add(ROLE_ADMIN)
        return roles

    if hasattr(user, "groups"):
        roles.update(name.upper() for name in user.groups.values_list("name", flat=True))

    if hasattr(user, "role") and user.role:
        roles.add(str(user.role).upper())

    return roles & set(ROLE_GROUPS)


class MedicalRecordsActorPermission(BasePermission):
    """
    Requires an authenticated user that maps onto a medical-records Actor.
    On success the resolved actor is attached as request.actor.

    Fine-grained decisions (who may read/update which record) are made by the
    records access gate, so that denials land in the audit ledger.
    """
    message = "Your account has no medical-records role."

    def has_permission(self, request, view) -> bool:
        from mr_core.common.actors import resolve_actor

        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        actor = resolve_actor(user, request=request)
        if actor is None:
            return False

        request.actor = actor
        return True
