# mr_core/common/api/validation.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from rest_framework import serializers


def validated_or_errors(ser: serializers.Serializer) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    (validated_data, None) or ({}, errors). Bad input is rejected inside
    RecordService so that the failed request still reaches the audit ledger.
    """
    if ser.is_valid():
        return ser.validated_data, None
    return {}, dict(ser.errors)
