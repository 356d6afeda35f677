"""
Module: inventory_kernel.models.lock
Responsibility: Named lock rows used to serialise balance checks.
Architecture position: Kernel > Models.  May import from db/base.py only.

A balance is derived, so there is no natural row to lock when two writers
check the same (product, location).  Each such pair gets a row here, keyed
``stock:<product>:<location>``, and LockService takes it FOR UPDATE before
reading the balance.  The formula graph uses the single key
``formula_graph``.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class KernelLock(Base):
    __tablename__ = "kernel_locks"

    lock_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    # Bumped on every acquisition so the row is written, which also takes
    # the database write lock on backends without FOR UPDATE
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
