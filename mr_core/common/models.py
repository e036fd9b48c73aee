# mr_core/common/models.py
from __future__ import annotations

import secrets
import time
import uuid

from django.db import models

_EXTERNAL_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


def external_id(prefix: str) -> str:
    """
    Opaque, stable external identifier: "<PREFIX>-<epoch-ms>-<9 lowercase alnum>".
    Distinct from the UUID storage key so it can be shared outside the database.
    """
    suffix = "".join(secrets.choice(_EXTERNAL_ID_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class TimeStampedModel(models.Model):
    """
    Standard timestamps for all entities.
    """
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class UUIDModel(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True
