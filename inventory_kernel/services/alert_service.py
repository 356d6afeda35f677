"""
AlertEvaluator -- low-stock alerts and their notifications.

Responsibility:
    Compares each product's derived balance (all locations) with its
    configured minimum threshold.  At or below the threshold it opens an
    alert if none is open for the product, otherwise refreshes the open
    alert's ``current_stock``; and it creates a notification unless the open
    alert already has an unread one.

Architecture position:
    Kernel > Services.  Runs AFTER the triggering mutation has committed,
    driven by AlertDispatcher from the alert outbox, or on demand through
    InventoryOrchestrator.evaluate_alerts.

Invariants enforced:
    - At most one unresolved StockAlert per product.
    - At most one unread Notification per open alert.

Failure modes:
    Errors propagate to the caller.  AlertDispatcher is the layer that logs
    and absorbs them so that a ledger mutation never fails because of
    alerting.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from inventory_kernel.domain.catalog import ProductCatalog, ProductInfo
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import AlertEvaluation
from inventory_kernel.exceptions import NotificationNotFoundError, StockAlertNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.alerts import Notification, StockAlert
from inventory_kernel.selectors.ledger_selector import LedgerSelector
from inventory_kernel.services.base import BaseService

logger = get_logger("services.alerts")


def low_stock_message(name: str, current: Decimal, threshold: Decimal) -> str:
    return (
        f"Low stock alert: {name} is below minimum threshold "
        f"({_fmt(current)}/{_fmt(threshold)})"
    )


def _fmt(value: Decimal) -> str:
    normalized = value.normalize()
    # normalize() turns 10 into 1E+1
    return f"{normalized:f}"


class AlertEvaluator(BaseService[StockAlert]):
    """
    Service that raises, refreshes and resolves stock alerts.

    Non-goals:
        - Does NOT auto-resolve alerts when stock recovers; resolution is an
          explicit ``resolve_alert`` call.
    """

    def __init__(
        self,
        session: Session,
        catalog: ProductCatalog,
        selector: LedgerSelector | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._catalog = catalog
        self._clock = clock or SystemClock()
        self._selector = selector or LedgerSelector(session, self._clock)

    def evaluate(self, product_ids: Iterable[UUID] | None = None) -> list[AlertEvaluation]:
        """
        Evaluate the given products, or every product with a threshold.

        Products without a threshold, or unknown to the catalog, are skipped.
        """
        if product_ids is None:
            targets = self._catalog.products_with_threshold()
        else:
            targets = []
            for pid in sorted(set(product_ids), key=str):
                info = self._catalog.get(pid)
                if info is not None and info.min_stock_threshold is not None:
                    targets.append(info)

        results = [self._evaluate_one(info) for info in targets]
        logger.info(
            "alerts_evaluated",
            extra={
                "products": len(results),
                "below_threshold": sum(1 for r in results if r.below_threshold),
            },
        )
        return results

    def _evaluate_one(self, product: ProductInfo) -> AlertEvaluation:
        threshold = product.min_stock_threshold
        balance = self._selector.balance_for(product.id)
        if balance > threshold:
            return AlertEvaluation(
                product_id=product.id,
                balance=balance,
                threshold=threshold,
                below_threshold=False,
            )

        now = self._clock.now()
        alert = self._open_alert(product.id)
        opened = alert is None
        if opened:
            alert = StockAlert(
                product_id=product.id,
                current_stock=balance,
                min_threshold=threshold,
                is_resolved=False,
                created_at=now,
                updated_at=now,
            )
            self.session.add(alert)
            self.session.flush()
            logger.info(
                "alert_opened",
                extra={
                    "alert_id": str(alert.id),
                    "product_id": str(product.id),
                    "current_stock": str(balance),
                    "min_threshold": str(threshold),
                },
            )
        else:
            alert.current_stock = balance
            alert.min_threshold = threshold
            alert.updated_at = now
            self.session.flush()

        notified = False
        if not self._has_unread_notification(alert.id):
            self.session.add(
                Notification(
                    product_id=product.id,
                    stock_alert_id=alert.id,
                    message=low_stock_message(product.name, balance, threshold),
                    current_stock=balance,
                    min_threshold=threshold,
                    is_read=False,
                    created_at=now,
                )
            )
            self.session.flush()
            notified = True
            logger.info(
                "notification_created",
                extra={"alert_id": str(alert.id), "product_id": str(product.id)},
            )

        return AlertEvaluation(
            product_id=product.id,
            balance=balance,
            threshold=threshold,
            below_threshold=True,
            alert_id=alert.id,
            alert_opened=opened,
            notification_created=notified,
        )

    def resolve_alert(self, alert_id: UUID) -> StockAlert:
        """Mark an alert resolved and all of its notifications read."""
        alert = self.session.get(StockAlert, alert_id)
        if alert is None:
            raise StockAlertNotFoundError(str(alert_id))
        now = self._clock.now()
        if not alert.is_resolved:
            alert.is_resolved = True
            alert.resolved_at = now
            alert.updated_at = now
        self.session.execute(
            update(Notification)
            .where(Notification.stock_alert_id == alert_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=now)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        logger.info("alert_resolved", extra={"alert_id": str(alert_id)})
        return alert

    def mark_notification_read(self, notification_id: UUID) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if notification is None:
            raise NotificationNotFoundError(str(notification_id))
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = self._clock.now()
            self.session.flush()
        return notification

    def _open_alert(self, product_id: UUID) -> StockAlert | None:
        return self.session.execute(
            select(StockAlert)
            .where(StockAlert.product_id == product_id, StockAlert.is_resolved.is_(False))
            .order_by(StockAlert.created_at)
            .with_for_update()
        ).scalars().first()

    def _has_unread_notification(self, alert_id: UUID) -> bool:
        return (
            self.session.execute(
                select(Notification.id)
                .where(Notification.stock_alert_id == alert_id, Notification.is_read.is_(False))
                .limit(1)
            ).first()
            is not None
        )
