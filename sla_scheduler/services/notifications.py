"""
Notification Service for the SLA scheduler.

Handles:
- Persisting in-app notifications (Supabase `notifications` table)
- Windowed de-duplication (has a similar notification gone out recently?)
- Fan-out to the push channel: one message per recipient for the new
  notification, one role-targeted broadcast per push role

De-duplication is soft: it suppresses a repeat for the same document and
title fragment within the trailing window, nothing more.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sla_scheduler.core.config import settings
from sla_scheduler.core.database import SupabaseClient, get_supabase_client
from sla_scheduler.core.exceptions import DatabaseError
from sla_scheduler.models.enums import NotificationCategory, PushEvent
from sla_scheduler.models.schemas import NotificationCreate, SlaPushPayload
from sla_scheduler.services.push import PushChannel


# Configure logging
logger = logging.getLogger(__name__)

NOTIFICATION_TABLE = "notifications"
NEW_NOTIFICATION_EVENT = "notification:new"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DispatchResult:
    """Outcome of one dispatch call."""
    notification_ids: list[str] = field(default_factory=list)
    broadcast_roles: list[str] = field(default_factory=list)

    @property
    def notified(self) -> int:
        return len(self.notification_ids)


class NotificationService:
    """
    Creates notifications and fans them out over the push channel.
    """

    def __init__(
        self,
        db: Optional[SupabaseClient] = None,
        push_channel: Optional[PushChannel] = None,
        dedup_window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._db = db
        self.push_channel = push_channel
        self.dedup_window = dedup_window or timedelta(
            minutes=settings.notification_dedup_window_minutes
        )
        self.clock = clock

    @property
    def db(self) -> SupabaseClient:
        if self._db is None:
            self._db = get_supabase_client()
        return self._db

    async def create(
        self,
        recipient_id: str,
        title: str,
        body: Optional[str],
        category: NotificationCategory,
        reference_table: Optional[str] = None,
        reference_id: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> dict[str, Any]:
        """
        Persist a single notification and push it to the recipient.

        Returns the stored row.
        """
        record = NotificationCreate(
            recipient_id=recipient_id,
            title=title,
            body=body,
            notification_type=category,
            reference_table=reference_table,
            reference_id=reference_id,
            created_at=created_at or self.clock(),
        )

        try:
            response = self.db.client.table(NOTIFICATION_TABLE).insert(
                record.model_dump(mode="json", exclude_none=True)
            ).execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to create notification for {recipient_id}",
                table=NOTIFICATION_TABLE,
                operation="insert",
                original_error=str(e)
            ) from e

        notification = response.data[0] if response.data else record.model_dump(mode="json")

        if self.push_channel is not None:
            try:
                await self.push_channel.send_to_user(
                    recipient_id, NEW_NOTIFICATION_EVENT, notification
                )
            except Exception as e:
                # The stored notification is still delivered in-app
                logger.debug(f"Push to {recipient_id} failed: {e}")

        return notification

    async def has_recent_notification(
        self,
        reference_table: str,
        reference_id: str,
        title_fragment: str,
        now: Optional[datetime] = None
    ) -> bool:
        """
        True if a notification for this document whose title contains the
        fragment was created within the dedup window before `now`.
        """
        now = now or self.clock()
        since = now - self.dedup_window

        try:
            response = self.db.client.table(NOTIFICATION_TABLE).select("id").eq(
                "reference_table", reference_table
            ).eq("reference_id", reference_id).ilike(
                "title", f"%{title_fragment}%"
            ).gt("created_at", since.isoformat()).limit(1).execute()
        except Exception as e:
            raise DatabaseError(
                "Failed to check recent notifications",
                table=NOTIFICATION_TABLE,
                operation="select",
                original_error=str(e)
            ) from e

        return bool(response.data)

    async def dispatch(
        self,
        recipients: list[str],
        title: str,
        body: str,
        category: NotificationCategory,
        reference_table: str,
        reference_id: str,
        push_event: PushEvent,
        push_roles: list[str],
        now: Optional[datetime] = None
    ) -> DispatchResult:
        """
        Create one notification per recipient, then broadcast a summary
        once per push role.
        """
        now = now or self.clock()
        result = DispatchResult()

        for recipient_id in recipients:
            notification = await self.create(
                recipient_id=recipient_id,
                title=title,
                body=body,
                category=category,
                reference_table=reference_table,
                reference_id=reference_id,
                created_at=now,
            )
            result.notification_ids.append(str(notification.get("id", "")))

        if self.push_channel is not None:
            payload = SlaPushPayload(
                entity=reference_table,
                document_id=reference_id,
                title=title,
            ).model_dump()
            for role in push_roles:
                await self.push_channel.broadcast_to_role(role, push_event.value, payload)
                result.broadcast_roles.append(role)

        return result
