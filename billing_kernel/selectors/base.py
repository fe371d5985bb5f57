"""
Module: billing_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain DTOs.  Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Selectors never call session.add(), delete(), flush() or commit().
    - Selectors return frozen DTOs, not ORM instances.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from billing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Read-only access over a caller-owned session."""

    def __init__(self, session: Session):
        self.session = session
