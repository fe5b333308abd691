"""
Maintenance actions run by the scheduler alongside the SLA checks.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sla_scheduler.core.config import settings
from sla_scheduler.core.database import DocumentFilter, DocumentStore, table_for
from sla_scheduler.models.enums import DocumentType, NotificationCategory, SystemRole
from sla_scheduler.services.notifications import NotificationService
from sla_scheduler.services.recipients import RoleDirectory


logger = logging.getLogger(__name__)

LOW_STOCK_COLUMNS = "*, items(item_code, item_description), warehouses(warehouse_code)"
LOW_STOCK_ROLES = (SystemRole.WAREHOUSE_STAFF, SystemRole.ADMIN)
LOW_STOCK_BODY_ITEMS = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def available_quantity(level: dict) -> float:
    """On-hand quantity not already reserved."""
    return float(level.get("qty_on_hand") or 0) - float(level.get("qty_reserved") or 0)


def is_below_minimum(level: dict) -> bool:
    min_level = level.get("min_level")
    return min_level is not None and available_quantity(level) <= float(min_level)


def is_low_stock(level: dict) -> bool:
    """At or below the minimum level or the reorder point."""
    if is_below_minimum(level):
        return True
    reorder_point = level.get("reorder_point")
    return reorder_point is not None and available_quantity(level) <= float(reorder_point)


def _describe_level(level: dict) -> str:
    item = level.get("items") or {}
    warehouse = level.get("warehouses") or {}
    item_code = item.get("item_code") or level.get("item_id")
    warehouse_code = warehouse.get("warehouse_code") or level.get("warehouse_id")
    return f"{item_code} at {warehouse_code}: {available_quantity(level):.0f} available"


class MaintenanceJobs:
    """Bulk housekeeping updates against the document store."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        notifications: Optional[NotificationService] = None,
        directory: Optional[RoleDirectory] = None,
        clock: Callable[[], datetime] = utcnow,
        low_stock_limit: Optional[int] = None
    ):
        self.store = store or DocumentStore()
        self.notifications = notifications or NotificationService(clock=clock)
        self.directory = directory or RoleDirectory()
        self.clock = clock
        self.low_stock_limit = low_stock_limit or settings.low_stock_alert_limit

    async def mark_expired_lots(self) -> dict:
        """Flip active inventory lots past their expiry date to expired."""
        now = self.clock()
        count = await self.store.update_many(
            DocumentType.INVENTORY_LOT,
            DocumentFilter(statuses=("active",), lt={"expiry_date": now}),
            {"status": "expired"},
        )
        if count > 0:
            logger.info(f"🧹 Marked {count} expired lot(s)")
        return {"expired_lots": count}

    async def check_low_stock(self) -> dict:
        """
        Alert warehouse staff and admins about stock at or below its threshold.

        Only levels not yet alerted are considered. Each one is flagged
        `alert_sent` before recipients are notified, so a level is reported
        once until something resets the flag. One summary notification goes
        to each recipient; its category is `alert` when any level is at or
        below its minimum, `warning` when only reorder points were reached.
        """
        levels = await self.store.find_many(
            DocumentType.INVENTORY_LEVEL,
            DocumentFilter(equals={"alert_sent": False}),
            columns=LOW_STOCK_COLUMNS,
        )
        low = [level for level in levels if is_low_stock(level)][:self.low_stock_limit]
        if not low:
            return {"low_stock_items": 0}

        for item_id, warehouse_id in dict.fromkeys(
            (level["item_id"], level["warehouse_id"]) for level in low
        ):
            await self.store.update_many(
                DocumentType.INVENTORY_LEVEL,
                DocumentFilter(equals={"item_id": item_id, "warehouse_id": warehouse_id}),
                {"alert_sent": True},
            )

        recipients: list[str] = []
        for role in LOW_STOCK_ROLES:
            for employee_id in await self.directory.members_with_role(role):
                if employee_id not in recipients:
                    recipients.append(employee_id)

        category = (
            NotificationCategory.ALERT
            if any(is_below_minimum(level) for level in low)
            else NotificationCategory.WARNING
        )
        body = ", ".join(_describe_level(level) for level in low[:LOW_STOCK_BODY_ITEMS])
        if len(low) > LOW_STOCK_BODY_ITEMS:
            body += f" (+{len(low) - LOW_STOCK_BODY_ITEMS} more)"

        for recipient_id in recipients:
            await self.notifications.create(
                recipient_id=recipient_id,
                title=f"Low Stock Alert: {len(low)} item(s)",
                body=body,
                category=category,
                reference_table=table_for(DocumentType.INVENTORY_LEVEL),
            )

        logger.warning(f"📉 Low stock: {len(low)} item(s) below threshold")
        return {"low_stock_items": len(low), "notified": len(recipients)}

    async def cleanup_expired_tokens(self) -> dict:
        """Delete refresh tokens past their expiry."""
        now = self.clock()
        count = await self.store.delete_many(
            DocumentType.REFRESH_TOKEN,
            DocumentFilter(lt={"expires_at": now}),
        )
        if count > 0:
            logger.info(f"🧹 Cleaned up {count} expired refresh token(s)")
        return {"deleted_tokens": count}
