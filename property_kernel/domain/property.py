"""
Property domain types (``property_kernel.domain.property``).

Status and location vocabularies for properties and the movement
transactions (release / turnover / return) that the approval workflow
governs.  Pure enums and lookup tables; ZERO I/O.
"""

from __future__ import annotations

from enum import Enum


class PropertyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING = "PENDING"
    RELEASED = "RELEASED"
    RETURNED = "RETURNED"
    UNDER_REVIEW = "UNDER_REVIEW"
    BANK_CUSTODY = "BANK_CUSTODY"
    DISPUTED = "DISPUTED"


class PropertyLocation(str, Enum):
    MAIN_OFFICE = "MAIN_OFFICE"
    BANK_CUSTODY = "BANK_CUSTODY"
    SUBSIDIARY_COMPANY = "SUBSIDIARY_COMPANY"
    EXTERNAL_HOLDER = "EXTERNAL_HOLDER"
    IN_TRANSIT = "IN_TRANSIT"


class TransactionStatus(str, Enum):
    """Governed-entity status, driven by its approval request."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


# A property with a transaction in one of these states cannot start another.
OPEN_TRANSACTION_STATUSES: frozenset[TransactionStatus] = frozenset({
    TransactionStatus.PENDING,
    TransactionStatus.IN_PROGRESS,
    TransactionStatus.APPROVED,
})


class ReleaseType(str, Enum):
    TO_SUBSIDIARY = "TO_SUBSIDIARY"
    TO_BANK = "TO_BANK"
    TO_EXTERNAL = "TO_EXTERNAL"


class TurnoverType(str, Enum):
    INTERNAL_DEPARTMENT = "INTERNAL_DEPARTMENT"
    BETWEEN_SUBSIDIARIES = "BETWEEN_SUBSIDIARIES"
    CUSTODY_TRANSFER = "CUSTODY_TRANSFER"


class ReturnType(str, Enum):
    FROM_BANK = "FROM_BANK"
    FROM_SUBSIDIARY = "FROM_SUBSIDIARY"
    FROM_EXTERNAL = "FROM_EXTERNAL"


class MovementType(str, Enum):
    RELEASE_TO_BANK = "RELEASE_TO_BANK"
    RELEASE_TO_SUBSIDIARY = "RELEASE_TO_SUBSIDIARY"
    RELEASE_TO_EXTERNAL = "RELEASE_TO_EXTERNAL"
    TURNOVER_INTERNAL = "TURNOVER_INTERNAL"
    RETURN_FROM_BANK = "RETURN_FROM_BANK"
    RETURN_FROM_SUBSIDIARY = "RETURN_FROM_SUBSIDIARY"
    RETURN_FROM_EXTERNAL = "RETURN_FROM_EXTERNAL"


class MovementOutcome(str, Enum):
    """How a movement record was closed out."""

    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


RELEASE_DESTINATIONS: dict[ReleaseType, tuple[MovementType, PropertyLocation, PropertyStatus]] = {
    ReleaseType.TO_BANK: (
        MovementType.RELEASE_TO_BANK,
        PropertyLocation.BANK_CUSTODY,
        PropertyStatus.BANK_CUSTODY,
    ),
    ReleaseType.TO_SUBSIDIARY: (
        MovementType.RELEASE_TO_SUBSIDIARY,
        PropertyLocation.SUBSIDIARY_COMPANY,
        PropertyStatus.RELEASED,
    ),
    ReleaseType.TO_EXTERNAL: (
        MovementType.RELEASE_TO_EXTERNAL,
        PropertyLocation.EXTERNAL_HOLDER,
        PropertyStatus.RELEASED,
    ),
}

RETURN_ORIGINS: dict[ReturnType, tuple[MovementType, PropertyLocation]] = {
    ReturnType.FROM_BANK: (MovementType.RETURN_FROM_BANK, PropertyLocation.BANK_CUSTODY),
    ReturnType.FROM_SUBSIDIARY: (
        MovementType.RETURN_FROM_SUBSIDIARY,
        PropertyLocation.SUBSIDIARY_COMPANY,
    ),
    ReturnType.FROM_EXTERNAL: (
        MovementType.RETURN_FROM_EXTERNAL,
        PropertyLocation.EXTERNAL_HOLDER,
    ),
}

# Property statuses from which each kind of transaction may be opened.
RELEASABLE_STATUSES: frozenset[PropertyStatus] = frozenset({
    PropertyStatus.ACTIVE,
    PropertyStatus.PENDING,
})
TURNOVER_STATUSES: frozenset[PropertyStatus] = RELEASABLE_STATUSES
RETURNABLE_STATUSES: frozenset[PropertyStatus] = frozenset({
    PropertyStatus.RELEASED,
    PropertyStatus.BANK_CUSTODY,
})
