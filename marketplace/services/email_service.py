"""Email service using Resend for transactional emails."""

import logging
from typing import Any

import resend

from marketplace.core.config import get_settings

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.enabled = bool(settings.resend_api_key)
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url

    async def send_notification_email(
        self,
        to_email: str,
        title: str,
        body: str,
        link: str | None = None,
        display_name: str | None = None,
    ) -> dict[str, Any]:
        """Send an order notification email.

        Args:
            to_email: Recipient email address.
            title: Subject line and heading.
            body: Plain-text message body.
            link: Optional app path (e.g. /orders/<id>) for the call to action.
            display_name: Optional recipient name for the greeting.

        Returns:
            dict: Success flag with the Resend email ID, or the error.
        """
        if not self.enabled:
            return {"success": False, "error": "Resend is not configured"}

        greeting = f"Hi {display_name}," if display_name else "Hi there,"
        action_url = f"{self.frontend_url}{link}" if link else None

        button_html = ""
        if action_url:
            button_html = f"""
        <div style="text-align: center; margin: 30px 0;">
            <a href="{action_url}" style="background: #4A90E2; color: white; padding: 12px 28px; text-decoration: none; border-radius: 8px; font-weight: 600;">
                View Order
            </a>
        </div>
"""

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #4A90E2; font-size: 22px;">{title}</h1>
    <p>{greeting}</p>
    <p>{body}</p>
{button_html}
</body>
</html>
"""

        text_content = f"{title}\n\n{greeting}\n\n{body}\n"
        if action_url:
            text_content += f"\n{action_url}\n"

        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": title,
                "html": html_content,
                "text": text_content,
            })

            logger.info("Notification email sent to %s, id: %s", to_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send notification email to %s: %s", to_email, str(e))
            return {"success": False, "error": str(e)}
