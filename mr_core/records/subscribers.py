# mr_core/records/subscribers.py
from __future__ import annotations

from mr_core.common.actors import Actor, ActorRole
from mr_core.common.events import subscribe
from mr_core.records.backup import run_version_backup

VERSION_CREATED = "records.version_created"


def version_created_payload(*, record, version, actor: Actor) -> dict:
    # ID-based payload, safe to hand across the commit boundary
    return {
        "record_pk": str(record.pk),
        "version_pk": str(version.pk),
        "actor": {
            "id": actor.id,
            "role": str(actor.role),
            "user_id": actor.user_id,
            "session_info": dict(actor.session_info or {}),
        },
    }


@subscribe(VERSION_CREATED)
def backup_new_version(payload: dict) -> None:
    a = payload["actor"]
    actor = Actor(
        id=a["id"],
        role=ActorRole(a["role"]),
        user_id=a.get("user_id"),
        session_info=a.get("session_info") or {},
    )
    run_version_backup(record_pk=payload["record_pk"], version_pk=payload["version_pk"], actor=actor)
