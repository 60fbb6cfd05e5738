"""Alerter service - decides which issues are alert-worthy and notifies once.

Policy: an issue alerts when it is open, high severity, has no sent email
alert yet, and is either AI-confirmed or has been observed at least twice.
AI confirmation is a trusted signal, so it skips the second observation.

Each (issue, channel) has at most one alert row. A failed row is retried
by the next qualifying pass; a sent row is never sent again.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import Alert, Issue, ProductPage, Shop
from .eligibility import BillingEligibility, billing_eligibility
from .email_sender import DeliveryResult, EmailSenderService, email_sender_service

logger = logging.getLogger(__name__)

EMAIL_CHANNEL = "email"
ADMIN_CHANNEL = "admin"

# Occurrences needed before an unconfirmed issue alerts
CONFIRMATION_OCCURRENCES = 2


def should_alert(
    is_open: bool,
    is_high_severity: bool,
    has_sent_alert: bool,
    ai_confirmed: bool,
    occurrence_count: int,
) -> bool:
    """The alert policy as a pure function."""
    if not (is_open and is_high_severity) or has_sent_alert:
        return False
    return ai_confirmed or occurrence_count >= CONFIRMATION_OCCURRENCES


class NotificationDispatcher:
    """Delivers one notification for an issue on one channel."""

    def __init__(self, email_sender: Optional[EmailSenderService] = None):
        self.email_sender = email_sender or email_sender_service

    async def send_notification(
        self,
        channel: str,
        recipient: Optional[str],
        issue: Issue,
        page: ProductPage,
    ) -> DeliveryResult:
        if channel == EMAIL_CHANNEL:
            if not recipient:
                return DeliveryResult(False, "No alert email for shop")
            subject = self._build_email_subject(page)
            body = self._build_email_body(issue, page)
            return await self.email_sender.send_email(recipient, subject, body)

        if channel == ADMIN_CHANNEL:
            # The admin surface reads alert rows; recording it is the delivery
            logger.info(f"Admin notification for issue {issue.id} on page {page.id}")
            return DeliveryResult(True)

        return DeliveryResult(False, f"Unknown channel: {channel}")

    def _build_email_subject(self, page: ProductPage) -> str:
        return f"Issue detected on {page.title}"

    def _build_email_body(self, issue: Issue, page: ProductPage) -> str:
        lines = [
            f"Issue detected on {page.title}",
            "=" * 40,
            "",
            f"Issue: {issue.title}",
            f"Priority: {issue.severity_level.label}",
            f"Page: {page.url}",
            f"First seen: {issue.first_detected_at.strftime('%Y-%m-%d %H:%M UTC')}",
            f"Seen in {issue.occurrence_count} scan(s)",
        ]

        if issue.description:
            lines.extend(["", issue.description])
        if issue.ai_explanation:
            lines.extend(["", "What this means:", issue.ai_explanation])
        if issue.ai_suggested_fix:
            lines.extend(["", "How to fix it:", issue.ai_suggested_fix])

        lines.append("")
        lines.append(f"View details: {settings.app_host}/issues/{issue.id}")
        lines.append("")
        lines.append("--")
        lines.append("PDP Watch")
        return "\n".join(lines)


class AlerterService:
    """Gatekeeper between finalized issue state and outbound notifications."""

    def __init__(
        self,
        notifier: Optional[NotificationDispatcher] = None,
        eligibility: Optional[BillingEligibility] = None,
    ):
        self.notifier = notifier or NotificationDispatcher()
        self.eligibility = eligibility or billing_eligibility

    async def _get_alert(self, session: AsyncSession, issue_id: int, channel: str) -> Optional[Alert]:
        result = await session.execute(
            select(Alert).where(Alert.issue_id == issue_id, Alert.channel == channel)
        )
        return result.scalar_one_or_none()

    async def has_sent_alert(self, session: AsyncSession, issue: Issue, channel: str = EMAIL_CHANNEL) -> bool:
        alert = await self._get_alert(session, issue.id, channel)
        return alert is not None and alert.is_sent

    async def should_send_alert(self, session: AsyncSession, issue: Issue) -> bool:
        return should_alert(
            is_open=issue.is_open,
            is_high_severity=issue.is_high_severity,
            has_sent_alert=await self.has_sent_alert(session, issue, EMAIL_CHANNEL),
            ai_confirmed=bool(issue.ai_confirmed),
            occurrence_count=issue.occurrence_count,
        )

    async def evaluate(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        issue: Issue,
    ) -> List[Alert]:
        """Send alerts for an issue if it qualifies. Returns the alerts delivered."""
        if not await self.should_send_alert(session, issue):
            logger.debug(f"Alert suppressed for issue {issue.id}")
            return []

        if not self.eligibility.is_monitoring_allowed(shop):
            logger.info(f"Shop {shop.id} no longer eligible, alert for issue {issue.id} not sent")
            return []

        channels = []
        if shop.email_alerts_enabled:
            channels.append((EMAIL_CHANNEL, shop.effective_alert_email))
        if shop.admin_alerts_enabled:
            channels.append((ADMIN_CHANNEL, shop.domain))

        delivered = []
        for channel, recipient in channels:
            alert = await self._deliver(session, shop, page, issue, channel, recipient)
            if alert is not None and alert.is_sent:
                delivered.append(alert)
        return delivered

    async def _deliver(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        issue: Issue,
        channel: str,
        recipient: Optional[str],
    ) -> Optional[Alert]:
        alert = await self._claim(session, shop, issue, channel)
        if alert is None:
            return None

        try:
            result = await self.notifier.send_notification(channel, recipient, issue, page)
        except Exception as e:
            result = DeliveryResult(False, f"{type(e).__name__}: {e}")

        if result.delivered:
            alert.mark_sent()
            logger.info(f"{channel} alert sent for issue {issue.id} to shop {shop.id}")
        else:
            alert.mark_failed(result.error)
            logger.error(f"Failed to send {channel} alert for issue {issue.id}: {result.error}")
        await session.flush()
        return alert

    async def _claim(self, session: AsyncSession, shop: Shop, issue: Issue, channel: str) -> Optional[Alert]:
        """Get the alert row to deliver on, or None if this channel is already done."""
        alert = await self._get_alert(session, issue.id, channel)
        if alert is not None:
            if alert.is_sent:
                return None
            # Retry a previously failed or abandoned delivery
            alert.delivery_status = "pending"
            return alert

        alert = Alert(
            shop_id=shop.id,
            issue_id=issue.id,
            channel=channel,
            delivery_status="pending",
        )
        try:
            async with session.begin_nested():
                session.add(alert)
        except IntegrityError:
            # Another pass recorded this (issue, channel) first
            logger.info(f"{channel} alert for issue {issue.id} already recorded by another pass")
            return None
        return alert


# Global instance
alerter_service = AlerterService()
