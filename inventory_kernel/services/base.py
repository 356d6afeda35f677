"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist through ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services.  Every write service in ``inventory_kernel/services/``
    extends this class.

Invariants enforced:
    Transaction boundaries belong to the caller (InventoryOrchestrator,
    ``db.engine.session_scope`` or a test harness).  That is what lets a
    ledger row, its audit row and its outbox row commit or vanish together.
"""

from __future__ import annotations

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.db.engine import is_postgres

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.  Savepoints (``begin_nested``) are the only
          transaction control a service may use.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    def supports_row_locks(self) -> bool:
        """True when the bound dialect honours SELECT ... FOR UPDATE."""
        return is_postgres(self.session)
