"""Email sender service - sends issue alerts via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, List
from dataclasses import dataclass

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_address: str = ""

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.alert_email_from,
        )


@dataclass
class DeliveryResult:
    """Outcome of one notification attempt."""
    delivered: bool
    error: Optional[str] = None


class EmailSenderService:
    """Service for sending email alerts via SMTP."""

    def __init__(self, config: Optional[EmailConfig] = None):
        self._config = config

    @property
    def config(self) -> EmailConfig:
        return self._config or EmailConfig.from_settings()

    def _parse_recipients(self, to_address: str) -> List[str]:
        """Parse comma-separated email addresses into a list."""
        if not to_address:
            return []
        return [addr.strip() for addr in to_address.split(",") if addr.strip()]

    def _deliver(self, config: EmailConfig, from_addr: str, recipients: List[str], message: str):
        """Blocking SMTP exchange, run off the event loop."""
        with smtplib.SMTP(config.host, config.port, timeout=30) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(from_addr, recipients, message)

    async def send_email(self, to_address: str, subject: str, body: str) -> DeliveryResult:
        """Send a plain text email. Never raises; failures come back in the result."""
        config = self.config
        if not config.host:
            logger.warning("Email not configured - missing SMTP host")
            return DeliveryResult(False, "SMTP host not configured")

        recipients = self._parse_recipients(to_address)
        if not recipients:
            logger.warning("No valid recipients for alert email")
            return DeliveryResult(False, "No recipients")

        from_addr = config.from_address or config.username

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._deliver, config, from_addr, recipients, msg.as_string())

            logger.info(f"Email sent to {len(recipients)} recipient(s): {subject}")
            return DeliveryResult(True)

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return DeliveryResult(False, f"SMTP authentication failed: {e}")
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return DeliveryResult(False, f"Recipients refused: {e}")
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return DeliveryResult(False, f"{type(e).__name__}: {e}")
        except (ConnectionRefusedError, TimeoutError, OSError) as e:
            logger.error(f"Could not reach SMTP server {config.host}:{config.port}: {e}")
            return DeliveryResult(False, f"Connection failed: {e}")


# Global instance
email_sender_service = EmailSenderService()
