"""
Input payloads for the governed property transactions.

Each payload carries exactly the fields a caller supplies when opening a
release, turnover, or return; status, snapshots, and timestamps are owned
by the entity synchronizer.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any
from uuid import UUID

from property_kernel.domain.property import ReleaseType, ReturnType, TurnoverType


def _as_uuid(value: Any) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


@dataclass(frozen=True)
class ReleasePayload:
    property_id: UUID
    release_type: ReleaseType
    business_unit_id: UUID | None = None
    bank_id: UUID | None = None
    expected_return_date: datetime | None = None
    purpose_of_release: str | None = None
    received_by_name: str | None = None
    transmittal_number: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "property_id", _as_uuid(self.property_id))
        object.__setattr__(self, "release_type", ReleaseType(self.release_type))
        object.__setattr__(self, "business_unit_id", _as_uuid(self.business_unit_id))
        object.__setattr__(self, "bank_id", _as_uuid(self.bank_id))


@dataclass(frozen=True)
class TurnoverPayload:
    property_id: UUID
    turnover_type: TurnoverType
    from_business_unit_id: UUID | None = None
    to_business_unit_id: UUID | None = None
    purpose: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "property_id", _as_uuid(self.property_id))
        object.__setattr__(self, "turnover_type", TurnoverType(self.turnover_type))
        object.__setattr__(
            self, "from_business_unit_id", _as_uuid(self.from_business_unit_id)
        )
        object.__setattr__(self, "to_business_unit_id", _as_uuid(self.to_business_unit_id))


@dataclass(frozen=True)
class ReturnPayload:
    property_id: UUID
    return_type: ReturnType
    business_unit_id: UUID | None = None
    returned_by_name: str | None = None
    reason_for_return: str | None = None
    condition: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "property_id", _as_uuid(self.property_id))
        object.__setattr__(self, "return_type", ReturnType(self.return_type))
        object.__setattr__(self, "business_unit_id", _as_uuid(self.business_unit_id))


TransactionPayload = ReleasePayload | TurnoverPayload | ReturnPayload


def payload_from_mapping(payload_type: type, data: Mapping[str, Any]):
    """
    Build a payload dataclass from a plain mapping, ignoring unknown keys.

    Raises:
        TypeError: if a required field is missing.
        ValueError: if an enum or UUID field cannot be parsed.
    """
    known = {f.name for f in fields(payload_type)}
    return payload_type(**{k: v for k, v in data.items() if k in known})
