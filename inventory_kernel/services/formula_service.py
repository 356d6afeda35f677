"""
FormulaGraphService -- bill-of-materials edges with acyclicity enforcement.

Responsibility:
    Owns the parent -> component graph.  Adding an edge validates, in order:
    self-reference, quantity, product existence and category, duplicate
    direct edge, and finally that the new edge would not close a cycle.
    Removal is unconditional.

Architecture position:
    Kernel > Services.  Called by InventoryOrchestrator (edits) and
    ManufacturingService (``components``).

Invariants enforced:
    FORMULA_ACYCLICITY -- before inserting parent -> component the service
        searches from ``component`` along existing component edges; if
        ``parent`` is reachable the edge is rejected.  The search is an
        iterative depth-first walk over the whole reachable subgraph and is
        never cut short.
    Depth ceiling -- with ``max_depth`` configured, an edge that would make
        the longest parent -> ... -> leaf chain through it exceed the
        ceiling is rejected.  The ceiling never narrows the cycle search.
    Validation and insert happen under the ``formula_graph`` lock so two
    concurrent edits cannot each pass the check and jointly form a cycle.

Failure modes:
    - SelfReferenceError, CircularDependencyError, ComponentAlreadyExistsError.
    - FormulaDepthExceededError when a configured ceiling is exceeded.
    - RawMaterialFormulaError when the parent is a raw material.
    - ProductNotFoundError for an unknown parent or component.
    - FormulaComponentNotFoundError on removal/update of a missing edge.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.catalog import ProductCatalog
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.movements import require_positive
from inventory_kernel.exceptions import (
    CircularDependencyError,
    ComponentAlreadyExistsError,
    FormulaComponentNotFoundError,
    FormulaDepthExceededError,
    RawMaterialFormulaError,
    SelfReferenceError,
)
from inventory_kernel.invariants import KernelInvariant
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.formula import FormulaComponent
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lock_service import FORMULA_GRAPH_KEY, LockService

logger = get_logger("services.formula")


class FormulaGraphService(BaseService[FormulaComponent]):
    """
    Service for editing and reading product formulas.

    Contract:
        ``components(parent)`` returns DIRECT components only.  Nested
        sub-assemblies are not expanded here or anywhere in the kernel.

    Non-goals:
        - Does NOT check whether a removed edge is still needed by pending
          production; that is the catalog's concern.
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        clock: Clock | None = None,
        locks: LockService | None = None,
        max_depth: int | None = None,
    ):
        super().__init__(session)
        self._catalog = catalog
        self._clock = clock or SystemClock()
        self._locks = locks or LockService(session)
        self._max_depth = max_depth

    # =========================================================================
    # Edits
    # =========================================================================

    def add_component(
        self,
        parent_product_id: UUID,
        component_product_id: UUID,
        quantity_per_unit: Decimal,
        actor_id: UUID | None = None,
    ) -> FormulaComponent:
        """
        Add the edge parent -> component.

        Raises:
            SelfReferenceError: parent == component.
            RawMaterialFormulaError: the parent is a raw material.
            ComponentAlreadyExistsError: the direct edge already exists.
            CircularDependencyError: component already (transitively)
                contains parent.
            FormulaDepthExceededError: the edge would lengthen a component
                chain past ``max_depth``.
        """
        if parent_product_id == component_product_id:
            raise SelfReferenceError(str(parent_product_id))

        qty = require_positive("quantity_per_unit", quantity_per_unit)

        parent = self._catalog.require(parent_product_id)
        self._catalog.require(component_product_id)
        if not parent.can_carry_formula:
            raise RawMaterialFormulaError(str(parent_product_id))

        self._locks.acquire([FORMULA_GRAPH_KEY])

        if self._find_edge(parent_product_id, component_product_id) is not None:
            raise ComponentAlreadyExistsError(
                str(parent_product_id), str(component_product_id)
            )

        path = self._find_path(component_product_id, parent_product_id)
        if path is not None:
            path_str = [str(p) for p in path]
            logger.error(
                "formula_cycle_rejected",
                extra={
                    "invariant": KernelInvariant.FORMULA_ACYCLICITY.value,
                    "parent_product_id": str(parent_product_id),
                    "component_product_id": str(component_product_id),
                    "path": path_str,
                },
            )
            raise CircularDependencyError(
                str(parent_product_id), str(component_product_id), path_str
            )

        if self._max_depth is not None:
            self._check_depth(parent_product_id, component_product_id)

        edge = FormulaComponent(
            parent_product_id=parent_product_id,
            component_product_id=component_product_id,
            quantity_per_unit=qty,
            created_at=self._clock.now(),
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(edge)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Unique index caught a concurrent insert of the same edge
            savepoint.rollback()
            raise ComponentAlreadyExistsError(
                str(parent_product_id), str(component_product_id)
            ) from None

        logger.info(
            "formula_component_added",
            extra={
                "parent_product_id": str(parent_product_id),
                "component_product_id": str(component_product_id),
                "quantity_per_unit": str(qty),
            },
        )
        return edge

    def update_quantity(
        self,
        parent_product_id: UUID,
        component_product_id: UUID,
        quantity_per_unit: Decimal,
    ) -> FormulaComponent:
        qty = require_positive("quantity_per_unit", quantity_per_unit)
        edge = self._require_edge(parent_product_id, component_product_id)
        edge.quantity_per_unit = qty
        self.session.flush()
        logger.info(
            "formula_component_updated",
            extra={
                "parent_product_id": str(parent_product_id),
                "component_product_id": str(component_product_id),
                "quantity_per_unit": str(qty),
            },
        )
        return edge

    def remove_component(self, parent_product_id: UUID, component_product_id: UUID) -> None:
        edge = self._require_edge(parent_product_id, component_product_id)
        self.session.delete(edge)
        self.session.flush()
        logger.info(
            "formula_component_removed",
            extra={
                "parent_product_id": str(parent_product_id),
                "component_product_id": str(component_product_id),
            },
        )

    def remove_all(self, parent_product_id: UUID) -> int:
        """Delete every edge of ``parent``; returns how many were removed."""
        result = self.session.execute(
            delete(FormulaComponent)
            .where(FormulaComponent.parent_product_id == parent_product_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        logger.info(
            "formula_cleared",
            extra={"parent_product_id": str(parent_product_id), "removed": result.rowcount},
        )
        return result.rowcount

    # =========================================================================
    # Reads
    # =========================================================================

    def components(self, parent_product_id: UUID) -> list[FormulaComponent]:
        """Direct components of ``parent`` (one level)."""
        return list(
            self.session.execute(
                select(FormulaComponent)
                .where(FormulaComponent.parent_product_id == parent_product_id)
                .order_by(FormulaComponent.created_at, FormulaComponent.id)
            ).scalars()
        )

    def has_formula(self, parent_product_id: UUID) -> bool:
        return (
            self.session.execute(
                select(FormulaComponent.id)
                .where(FormulaComponent.parent_product_id == parent_product_id)
                .limit(1)
            ).first()
            is not None
        )

    def parents_of(self, component_product_id: UUID) -> list[UUID]:
        """Products whose formula directly uses ``component`` (where-used)."""
        return list(
            self.session.execute(
                select(FormulaComponent.parent_product_id)
                .where(FormulaComponent.component_product_id == component_product_id)
                .order_by(FormulaComponent.parent_product_id)
            ).scalars()
        )

    # =========================================================================
    # Graph traversal
    # =========================================================================

    def _find_edge(self, parent_product_id: UUID, component_product_id: UUID) -> FormulaComponent | None:
        return self.session.execute(
            select(FormulaComponent).where(
                FormulaComponent.parent_product_id == parent_product_id,
                FormulaComponent.component_product_id == component_product_id,
            )
        ).scalar_one_or_none()

    def _require_edge(self, parent_product_id: UUID, component_product_id: UUID) -> FormulaComponent:
        edge = self._find_edge(parent_product_id, component_product_id)
        if edge is None:
            raise FormulaComponentNotFoundError(
                str(parent_product_id), str(component_product_id)
            )
        return edge

    def _children(self, product_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(FormulaComponent.component_product_id).where(
                    FormulaComponent.parent_product_id == product_id
                )
            ).scalars()
        )

    def _find_path(self, start: UUID, target: UUID) -> list[UUID] | None:
        """
        Path start -> ... -> target along component edges, or None.

        Iterative so that arbitrarily deep formulas never hit the
        interpreter's recursion limit.  Each product is expanded once.
        """
        visited: set[UUID] = set()
        stack: list[list[UUID]] = [[start]]
        while stack:
            path = stack.pop()
            current = path[-1]
            if current == target:
                return path
            if current in visited:
                continue
            visited.add(current)
            for child in self._children(current):
                if child not in visited:
                    stack.append([*path, child])
        return None

    def _longest_chain(self, start: UUID, neighbours) -> int:
        """Edge count of the longest walk from ``start`` via ``neighbours``.

        The graph is acyclic when this runs, so a post-order walk with a
        memo terminates and visits each product once.
        """
        memo: dict[UUID, int] = {}
        stack: list[tuple[UUID, bool]] = [(start, False)]
        while stack:
            node, expanded = stack.pop()
            if node in memo:
                continue
            nexts = neighbours(node)
            if expanded:
                memo[node] = max((memo[n] + 1 for n in nexts), default=0)
                continue
            stack.append((node, True))
            stack.extend((n, False) for n in nexts if n not in memo)
        return memo[start]

    def _check_depth(self, parent_product_id: UUID, component_product_id: UUID) -> None:
        depth = (
            self._longest_chain(parent_product_id, self.parents_of)
            + 1
            + self._longest_chain(component_product_id, self._children)
        )
        if depth > self._max_depth:
            logger.warning(
                "formula_depth_rejected",
                extra={
                    "parent_product_id": str(parent_product_id),
                    "component_product_id": str(component_product_id),
                    "depth": depth,
                    "max_depth": self._max_depth,
                },
            )
            raise FormulaDepthExceededError(
                str(parent_product_id), str(component_product_id), depth, self._max_depth
            )
