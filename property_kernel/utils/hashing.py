"""
Canonical JSON and payload digests for audit events.

An audit payload is stored as JSON and fingerprinted with SHA-256; equal
payloads must give byte-equal JSON, so keys are sorted and separators fixed.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _encode(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"{type(value).__name__} cannot be stored in an audit payload")


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def payload_digest(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON form."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def json_safe(payload: dict) -> dict:
    """Plain-JSON copy of ``payload`` (UUIDs, datetimes and enums as strings)."""
    return json.loads(canonical_json(payload))
