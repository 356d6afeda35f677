"""
Module: inventory_kernel.db.registry
Responsibility: Explicit registry of per-tenant session factories.
Architecture position: Kernel > DB.  Built by the host application at start-up
    and passed into the orchestrator; the kernel never resolves a tenant from
    ambient state.

Invariants enforced:
    - One engine per registered tenant; registering twice is an error.
    - The registry is an ordinary object.  There is no module-level
      instance, so tests can build as many isolated registries as they need.

Failure modes:
    - KeyError on lookup of an unknown tenant.
    - ValueError on duplicate registration.
"""

from __future__ import annotations

import threading

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.config import KernelSettings
from inventory_kernel.db.engine import (
    create_session_factory,
    init_engine_from_settings,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.registry")


class TenantRegistry:
    """
    Maps a tenant identifier to its engine and session factory.

    Contract:
        ``register`` builds (or accepts) an engine for a tenant;
        ``session_factory`` returns the handle the orchestrator is built with.

    Non-goals:
        - Does NOT authenticate callers or decide which tenant they belong to.
        - Does NOT migrate tenant schemas.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._engines: dict[str, Engine] = {}
        self._factories: dict[str, sessionmaker[Session]] = {}

    def register(
        self,
        tenant_id: str,
        settings: KernelSettings | None = None,
        engine: Engine | None = None,
    ) -> sessionmaker[Session]:
        """Register a tenant from settings or a ready-made engine."""
        if engine is None and settings is None:
            raise ValueError("register() needs either settings or an engine")
        with self._lock:
            if tenant_id in self._engines:
                raise ValueError(f"Tenant already registered: {tenant_id}")
            if engine is None:
                engine = init_engine_from_settings(settings)
            factory = create_session_factory(engine)
            self._engines[tenant_id] = engine
            self._factories[tenant_id] = factory
        logger.info(
            "tenant_registered",
            extra={"tenant_id": tenant_id, "dialect": engine.dialect.name},
        )
        return factory

    def session_factory(self, tenant_id: str) -> sessionmaker[Session]:
        try:
            return self._factories[tenant_id]
        except KeyError:
            raise KeyError(f"Unknown tenant: {tenant_id}") from None

    def engine(self, tenant_id: str) -> Engine:
        try:
            return self._engines[tenant_id]
        except KeyError:
            raise KeyError(f"Unknown tenant: {tenant_id}") from None

    def tenants(self) -> list[str]:
        return sorted(self._engines)

    def dispose(self, tenant_id: str | None = None) -> None:
        """Dispose one tenant's engine, or all of them."""
        with self._lock:
            targets = [tenant_id] if tenant_id is not None else list(self._engines)
            for tid in targets:
                engine = self._engines.pop(tid, None)
                self._factories.pop(tid, None)
                if engine is not None:
                    engine.dispose()
                    logger.info("tenant_disposed", extra={"tenant_id": tid})
