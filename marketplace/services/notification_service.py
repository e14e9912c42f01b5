"""In-app and email notifications for order participants.

Notifications are fire-and-forget: a delivery failure is logged and never
propagates into the settlement decision that triggered it.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from marketplace.core.supabase import get_supabase_client
from marketplace.models.order import OrderStatus
from marketplace.models.pickup import ReminderStatus
from marketplace.services.email_service import EmailService

logger = logging.getLogger(__name__)

REMINDER_COPY: dict[str, tuple[str, str]] = {
    "pickup_upcoming": (
        "Pickup Reminder",
        "Your order is ready for pickup soon. Please arrive during your scheduled window.",
    ),
    "review_request": (
        "How was your order?",
        "We hope you're enjoying your purchase. Your review helps support local makers.",
    ),
}

# A due reminder is only sent while its order is in one of these statuses.
REMINDER_ORDER_STATUSES: dict[str, frozenset[str]] = {
    "pickup_upcoming": frozenset(s.value for s in OrderStatus if not s.is_terminal),
    "review_request": frozenset({OrderStatus.COMPLETED.value}),
}

REMINDER_BATCH_SIZE = 50


class NotificationService:
    """Service for notifying buyers and sellers about their orders."""

    def __init__(self) -> None:
        """Initialize notification service with Supabase client and mailer."""
        self.client = get_supabase_client()
        self.email_service = EmailService()

    async def notify(
        self,
        recipient_id: UUID | str,
        notification_type: str,
        title: str,
        body: str,
        link: str | None = None,
        related_id: UUID | str | None = None,
    ) -> bool:
        """Record an in-app notification and email the recipient.

        Args:
            recipient_id: Profile ID of the recipient.
            notification_type: Machine-readable type (e.g. order_completed).
            title: Short title.
            body: Message body.
            link: Optional deep link path within the app.
            related_id: Optional related entity ID (usually the order).

        Returns:
            bool: True if the in-app notification was recorded.
        """
        try:
            self.client.table("notifications").insert({
                "user_id": str(recipient_id),
                "type": notification_type,
                "title": title,
                "content": body,
                "action_url": link,
                "related_id": str(related_id) if related_id else None,
            }).execute()
        except Exception as e:
            logger.error(
                "Failed to record %s notification for %s: %s",
                notification_type,
                recipient_id,
                str(e),
            )
            return False

        try:
            profile = (
                self.client.table("profiles")
                .select("email, display_name")
                .eq("id", str(recipient_id))
                .maybe_single()
                .execute()
            )
            if profile and profile.data and profile.data.get("email"):
                await self.email_service.send_notification_email(
                    to_email=profile.data["email"],
                    title=title,
                    body=body,
                    link=link,
                    display_name=profile.data.get("display_name"),
                )
        except Exception as e:
            logger.error("Failed to email %s notification to %s: %s", notification_type, recipient_id, str(e))

        return True

    async def schedule_reminder(
        self,
        order_id: UUID | str,
        recipient_id: UUID | str,
        reminder_type: str,
        scheduled_for: datetime,
    ) -> dict[str, Any] | None:
        """Queue a reminder for later dispatch.

        Returns:
            dict | None: The reminder row, or None if it could not be queued.
        """
        try:
            response = self.client.table("order_reminders").insert({
                "order_id": str(order_id),
                "recipient_id": str(recipient_id),
                "reminder_type": reminder_type,
                "scheduled_for": scheduled_for.isoformat(),
                "status": ReminderStatus.PENDING.value,
            }).execute()
        except Exception as e:
            logger.error("Failed to schedule %s reminder for order %s: %s", reminder_type, order_id, str(e))
            return None

        return response.data[0] if response.data else None

    async def cancel_reminders(self, order_id: UUID | str, reminder_type: str | None = None) -> int:
        """Cancel an order's reminders that have not gone out yet.

        Args:
            order_id: The order whose reminders are cancelled.
            reminder_type: Only cancel reminders of this type; all types if None.

        Returns:
            int: Number of reminders cancelled.
        """
        query = (
            self.client.table("order_reminders")
            .update({"status": ReminderStatus.CANCELLED.value})
            .eq("order_id", str(order_id))
            .eq("status", ReminderStatus.PENDING.value)
        )
        if reminder_type:
            query = query.eq("reminder_type", reminder_type)
        response = query.execute()
        cancelled = len(response.data or [])
        if cancelled:
            logger.info("Cancelled %d pending reminders for order %s", cancelled, order_id)
        return cancelled

    def _order_statuses(self, order_ids: list[str]) -> dict[str, str]:
        if not order_ids:
            return {}
        response = self.client.table("orders").select("id, status").in_("id", order_ids).execute()
        return {row["id"]: row["status"] for row in response.data or []}

    async def dispatch_due_reminders(self, now: datetime | None = None) -> dict[str, int]:
        """Send every pending reminder whose scheduled time has passed.

        Reminders whose order has since moved out of the statuses the
        reminder applies to (a pickup reminder for a cancelled order, say)
        are cancelled instead of sent.

        Args:
            now: Reference time; defaults to the current UTC time.

        Returns:
            dict: Counts of processed, sent and cancelled reminders.
        """
        now = now or datetime.now(timezone.utc)
        response = (
            self.client.table("order_reminders")
            .select("*")
            .eq("status", ReminderStatus.PENDING.value)
            .lte("scheduled_for", now.isoformat())
            .order("scheduled_for")
            .limit(REMINDER_BATCH_SIZE)
            .execute()
        )
        reminders = response.data or []
        logger.info("Found %d pending reminders", len(reminders))

        order_statuses = self._order_statuses(sorted({str(r["order_id"]) for r in reminders}))

        sent = 0
        cancelled = 0
        for reminder in reminders:
            reminder_type = reminder["reminder_type"]
            copy = REMINDER_COPY.get(reminder_type)
            if copy is None:
                logger.warning("Unknown reminder type %s, cancelling", reminder_type)
                self._mark_reminder(reminder["id"], ReminderStatus.CANCELLED, now)
                cancelled += 1
                continue

            order_status = order_statuses.get(str(reminder["order_id"]))
            if order_status not in REMINDER_ORDER_STATUSES[reminder_type]:
                logger.info(
                    "Cancelling %s reminder for order %s (status %s)",
                    reminder_type,
                    reminder["order_id"],
                    order_status,
                )
                self._mark_reminder(reminder["id"], ReminderStatus.CANCELLED, now)
                cancelled += 1
                continue

            title, body = copy
            delivered = await self.notify(
                recipient_id=reminder["recipient_id"],
                notification_type=reminder_type,
                title=title,
                body=body,
                link=f"/orders/{reminder['order_id']}",
                related_id=reminder["order_id"],
            )
            if delivered:
                self._mark_reminder(reminder["id"], ReminderStatus.SENT, now)
                sent += 1

        return {"processed": len(reminders), "sent": sent, "cancelled": cancelled}

    def _mark_reminder(self, reminder_id: str, status: ReminderStatus, now: datetime) -> None:
        update: dict[str, Any] = {"status": status.value}
        if status == ReminderStatus.SENT:
            update["sent_at"] = now.isoformat()
        (
            self.client.table("order_reminders")
            .update(update)
            .eq("id", reminder_id)
            .eq("status", ReminderStatus.PENDING.value)
            .execute()
        )
