"""
Module: inventory_kernel.selectors.alert_selector
Responsibility: Read-only queries over stock alerts and notifications.
Architecture position: Kernel > Selectors.  MUST NOT import from services/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.models.alerts import Notification, StockAlert
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StockAlertRecord:
    id: UUID
    product_id: UUID
    current_stock: Decimal
    min_threshold: Decimal
    is_resolved: bool
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, alert: StockAlert) -> StockAlertRecord:
        return cls(
            id=alert.id,
            product_id=alert.product_id,
            current_stock=alert.current_stock,
            min_threshold=alert.min_threshold,
            is_resolved=alert.is_resolved,
            resolved_at=alert.resolved_at,
            created_at=alert.created_at,
            updated_at=alert.updated_at,
        )


@dataclass(frozen=True)
class NotificationRecord:
    id: UUID
    product_id: UUID
    stock_alert_id: UUID
    message: str
    current_stock: Decimal
    min_threshold: Decimal
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    @classmethod
    def from_model(cls, notification: Notification) -> NotificationRecord:
        return cls(
            id=notification.id,
            product_id=notification.product_id,
            stock_alert_id=notification.stock_alert_id,
            message=notification.message,
            current_stock=notification.current_stock,
            min_threshold=notification.min_threshold,
            is_read=notification.is_read,
            read_at=notification.read_at,
            created_at=notification.created_at,
        )


class AlertSelector(BaseSelector[StockAlert]):
    def open_alerts(self, product_id: UUID | None = None) -> list[StockAlertRecord]:
        stmt = select(StockAlert).where(StockAlert.is_resolved.is_(False))
        if product_id is not None:
            stmt = stmt.where(StockAlert.product_id == product_id)
        stmt = stmt.order_by(StockAlert.created_at, StockAlert.id)
        return [StockAlertRecord.from_model(a) for a in self.session.execute(stmt).scalars()]

    def unread_notifications(self, product_id: UUID | None = None) -> list[NotificationRecord]:
        stmt = select(Notification).where(Notification.is_read.is_(False))
        if product_id is not None:
            stmt = stmt.where(Notification.product_id == product_id)
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id)
        return [NotificationRecord.from_model(n) for n in self.session.execute(stmt).scalars()]

    def notifications_for_alert(self, alert_id: UUID) -> list[NotificationRecord]:
        stmt = (
            select(Notification)
            .where(Notification.stock_alert_id == alert_id)
            .order_by(Notification.created_at, Notification.id)
        )
        return [NotificationRecord.from_model(n) for n in self.session.execute(stmt).scalars()]
