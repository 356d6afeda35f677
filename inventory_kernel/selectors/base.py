"""
Module: inventory_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(), delete(),
      flush() or commit().
    - DTO return convention: public methods return frozen records or
      computed values, not ORM instances.
    - No caching: every call queries the database, so a balance is always
      consistent with the caller's transaction.
"""

from __future__ import annotations

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller and perform read-only
        queries.  The caller owns the session and its transaction scope.
    """

    def __init__(self, session: Session):
        self.session = session
