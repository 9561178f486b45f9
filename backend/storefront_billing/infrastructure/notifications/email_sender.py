"""
SendGrid Email Notifications

Transactional billing emails: subscription confirmation, dunning notices,
plan-change confirmation and gift notices for sender and recipient.
Every send returns a result dict; delivery failures raise NotificationError.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, To

from storefront_billing.config.settings import get_settings
from storefront_billing.infrastructure.exceptions import NotificationError


logger = logging.getLogger(__name__)


def format_money(amount: int, currency: str) -> str:
    """Minor units to a display string, e.g. 2999, "usd" -> "29.99 USD"."""
    return f"{amount / 100:.2f} {currency.upper()}"


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%B %d, %Y") if value else "soon"


class EmailNotifier:
    """
    Email sender backed by SendGrid.

    Without an API key sends are logged and reported as skipped, which
    keeps local development free of outbound mail.
    """

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        settings = get_settings()
        self._api_key = api_key or settings.sendgrid_api_key
        self._from_email = from_email or settings.email_from
        self._app_url = settings.app_url
        self._client = SendGridAPIClient(self._api_key) if self._api_key else None

    async def send_email(self, to: str, subject: str, html_content: str) -> Dict[str, Any]:
        if self._client is None:
            logger.warning(f"SendGrid not configured, skipping email to {to}: {subject}")
            return {"status": "skipped", "status_code": None, "message_id": None}

        message = Mail(from_email=Email(self._from_email), subject=subject)
        message.to = [To(to)]
        message.add_content(Content("text/html", html_content))

        try:
            response = await asyncio.to_thread(self._client.send, message)
        except Exception as e:
            logger.error(f"Failed to send email to {to}: {subject} ({e})")
            raise NotificationError(f"Email delivery failed: {e}", original_error=e)

        status_code = response.status_code
        if status_code not in (200, 202):
            raise NotificationError(
                f"SendGrid returned {status_code}",
                details={"to": to, "subject": subject},
            )

        logger.info(f"Email sent to {to}: {subject} (status: {status_code})")
        return {
            "status": "success",
            "status_code": status_code,
            "message_id": response.headers.get("X-Message-Id"),
        }

    # =========================================================================
    # Billing Notices
    # =========================================================================

    async def send_subscription_confirmation(
        self,
        to: str,
        plan_name: str,
        amount: int,
        currency: str,
        interval: str,
        next_billing_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        html = (
            f"<h2>Your {plan_name} subscription is active</h2>"
            f"<p>You will be billed {format_money(amount, currency)} every {interval}.</p>"
            f"<p>Next billing date: {_format_date(next_billing_date)}</p>"
            f'<p><a href="{self._app_url}/account/subscriptions">Manage subscription</a></p>'
        )
        return await self.send_email(to, f"Subscription confirmed: {plan_name}", html)

    async def send_payment_failed(
        self,
        to: str,
        plan_name: str,
        amount: int,
        currency: str,
        attempt_number: int,
        max_attempts: int,
        next_retry_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """``attempt_number`` 0 is the original charge, 1..max_attempts the retries."""
        retry_line = (
            f"<p>We will try again on {_format_date(next_retry_date)}.</p>"
            if next_retry_date
            else "<p>This was our final attempt.</p>"
        )
        attempt_line = (
            f" (retry {attempt_number} of {max_attempts})" if attempt_number > 0 else ""
        )
        html = (
            f"<h2>We couldn't process your payment</h2>"
            f"<p>The payment of {format_money(amount, currency)} for {plan_name} failed"
            f"{attempt_line}.</p>"
            f"{retry_line}"
            f'<p><a href="{self._app_url}/account/payment-methods">Update payment method</a></p>'
        )
        return await self.send_email(to, "Action required: payment failed", html)

    async def send_plan_changed(
        self,
        to: str,
        old_plan_name: str,
        new_plan_name: str,
        new_amount: int,
        currency: str,
        effective_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        html = (
            f"<h2>Your plan has changed</h2>"
            f"<p>You moved from {old_plan_name} to {new_plan_name}.</p>"
            f"<p>New price: {format_money(new_amount, currency)}, "
            f"effective {_format_date(effective_date)}.</p>"
        )
        return await self.send_email(to, f"Plan changed to {new_plan_name}", html)

    async def send_gift_purchased(
        self,
        to: str,
        sender_name: str,
        recipient_name: str,
        plan_name: str,
    ) -> Dict[str, Any]:
        html = (
            f"<h2>Thanks, {sender_name}!</h2>"
            f"<p>Your gift of {plan_name} is on its way to {recipient_name}.</p>"
        )
        return await self.send_email(to, "Your gift has been sent", html)

    async def send_gift_received(
        self,
        to: str,
        recipient_name: str,
        sender_name: str,
        plan_name: str,
        redeem_code: str,
        expires_at: Optional[datetime] = None,
        gift_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        message_line = f"<blockquote>{gift_message}</blockquote>" if gift_message else ""
        html = (
            f"<h2>{recipient_name}, you received a gift!</h2>"
            f"<p>{sender_name} gave you {plan_name}.</p>"
            f"{message_line}"
            f"<p>Redeem code: <strong>{redeem_code}</strong> "
            f"(valid until {_format_date(expires_at)})</p>"
            f'<p><a href="{self._app_url}/gift/redeem?code={redeem_code}">Redeem your gift</a></p>'
        )
        return await self.send_email(to, f"{sender_name} sent you a gift", html)


# =============================================================================
# Singleton Instance
# =============================================================================

_notifier_instance: Optional[EmailNotifier] = None


def get_email_notifier() -> EmailNotifier:
    """Get or create email notifier singleton."""
    global _notifier_instance

    if _notifier_instance is None:
        _notifier_instance = EmailNotifier()

    return _notifier_instance
