"""Tests for SMTP delivery."""
import asyncio
import smtplib
import time
from unittest.mock import MagicMock, patch

import pytest

from app.services.email_sender import EmailConfig, EmailSenderService


@pytest.fixture
def sender():
    return EmailSenderService(EmailConfig(
        host="smtp.acme.test",
        port=587,
        username="alerts",
        password="secret",
        from_address="alerts@pdpwatch.test",
    ))


@pytest.mark.asyncio
async def test_send_email_delivers_to_all_recipients(sender):
    with patch("app.services.email_sender.smtplib.SMTP") as smtp_class:
        server = smtp_class.return_value.__enter__.return_value

        result = await sender.send_email("a@acme.test, b@acme.test", "Issue detected on Boots", "body")

    assert result.delivered
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("alerts", "secret")
    from_addr, recipients, message = server.sendmail.call_args.args
    assert from_addr == "alerts@pdpwatch.test"
    assert recipients == ["a@acme.test", "b@acme.test"]
    assert "Subject: Issue detected on Boots" in message


@pytest.mark.asyncio
async def test_smtp_error_is_returned_not_raised(sender):
    with patch("app.services.email_sender.smtplib.SMTP") as smtp_class:
        server = smtp_class.return_value.__enter__.return_value
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

        result = await sender.send_email("a@acme.test", "subject", "body")

    assert not result.delivered
    assert "authentication" in result.error


@pytest.mark.asyncio
async def test_unconfigured_host_fails_fast():
    sender = EmailSenderService(EmailConfig(host="", port=587, username="", password=""))

    with patch("app.services.email_sender.smtplib.SMTP") as smtp_class:
        result = await sender.send_email("a@acme.test", "subject", "body")

    assert not result.delivered
    smtp_class.assert_not_called()


@pytest.mark.asyncio
async def test_no_recipients(sender):
    result = await sender.send_email(" , ", "subject", "body")

    assert not result.delivered
    assert result.error == "No recipients"


@pytest.mark.asyncio
async def test_slow_smtp_server_does_not_block_event_loop(sender):
    loop = asyncio.get_running_loop()
    ticks = []

    async def ticker():
        while True:
            ticks.append(loop.time())
            await asyncio.sleep(0.02)

    def slow_connect(*args, **kwargs):
        time.sleep(0.3)
        return MagicMock()

    with patch("app.services.email_sender.smtplib.SMTP", side_effect=slow_connect):
        ticking = asyncio.create_task(ticker())
        result = await sender.send_email("a@acme.test", "subject", "body")
        ticking.cancel()

    assert result.delivered
    gaps = [later - earlier for earlier, later in zip(ticks, ticks[1:])]
    assert len(ticks) > 5
    assert max(gaps) < 0.2
