"""
Module: property_kernel.selectors.base
Responsibility: Base class for read-only query selectors.  Selectors are the
    query side of the kernel: they read approval requests, templates, and
    their history without any mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/,
    and the pure domain layer.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never call session.add(), delete(),
      flush(), or commit().
    - DTO return convention: selectors return frozen dataclasses, never
      ORM instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from property_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Subclasses implement the domain-specific queries; this class only holds
    the caller's session.
    """

    def __init__(self, session: Session):
        self.session = session
