"""
Tests for account notifications and best-effort delivery.
"""
import logging
from unittest.mock import AsyncMock, patch

import pytest

from src.api.deps import build_notification_sink
from src.auth.notifications import (
    TWO_FACTOR_ENABLED_SUBJECT,
    LoggingNotificationSink,
    SmtpNotificationSink,
    render_two_factor_enabled,
    send_non_critical,
)
from src.utils import secrets


class TestRender:

    def test_greets_by_first_name(self):
        body = render_two_factor_enabled("Ada", "GATEKEEPER")
        assert body.startswith("Hello Ada,")
        assert "GATEKEEPER account" in body

    def test_without_first_name(self):
        assert render_two_factor_enabled("", "GATEKEEPER").startswith("Hello,")


class TestSinks:

    @pytest.mark.asyncio
    async def test_logging_sink_writes_message(self, caplog):
        with caplog.at_level(logging.INFO, logger="src.auth.notifications"):
            await LoggingNotificationSink(app_name="GATEKEEPER").notify_two_factor_enabled("ada@example.com", "Ada")

        assert "ada@example.com" in caplog.text
        assert TWO_FACTOR_ENABLED_SUBJECT in caplog.text

    @pytest.mark.asyncio
    async def test_smtp_sink_sends_message(self):
        sink = SmtpNotificationSink(
            host="smtp.example.com",
            from_email="no-reply@example.com",
            username="mailer",
            password="secret",
        )

        with patch("src.auth.notifications.aiosmtplib.SMTP") as smtp_cls:
            smtp = smtp_cls.return_value.__aenter__.return_value
            smtp.starttls = AsyncMock()
            smtp.login = AsyncMock()
            smtp.send_message = AsyncMock()

            await sink.notify_two_factor_enabled("ada@example.com", "Ada")

        smtp_cls.assert_called_once_with(hostname="smtp.example.com", port=587, timeout=10.0)
        smtp.starttls.assert_awaited_once()
        smtp.login.assert_awaited_once_with("mailer", "secret")
        message = smtp.send_message.await_args.args[0]
        assert message["To"] == "ada@example.com"
        assert message["From"] == "no-reply@example.com"
        assert message["Subject"] == TWO_FACTOR_ENABLED_SUBJECT
        assert "Hello Ada," in message.get_content()

    @pytest.mark.asyncio
    async def test_smtp_sink_without_tls_or_login(self):
        sink = SmtpNotificationSink(host="localhost", from_email="dev@localhost", port=1025, use_tls=False)

        with patch("src.auth.notifications.aiosmtplib.SMTP") as smtp_cls:
            smtp = smtp_cls.return_value.__aenter__.return_value
            smtp.starttls = AsyncMock()
            smtp.login = AsyncMock()
            smtp.send_message = AsyncMock()

            await sink.notify_two_factor_enabled("ada@example.com", "Ada")

        smtp.starttls.assert_not_awaited()
        smtp.login.assert_not_awaited()
        smtp.send_message.assert_awaited_once()


class TestSendNonCritical:

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        func = AsyncMock(return_value=None)

        assert await send_non_critical(func, ("ada@example.com", "Ada")) is True
        func.assert_awaited_once_with("ada@example.com", "Ada")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        func = AsyncMock(side_effect=[ConnectionError("down"), None])

        assert await send_non_critical(func, ("a@example.com", "A"), max_attempts=2, delay_seconds=0) is True
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_without_raising(self, caplog):
        func = AsyncMock(side_effect=ConnectionError("down"))

        with caplog.at_level(logging.WARNING, logger="src.auth.notifications"):
            delivered = await send_non_critical(func, ("a@example.com", "A"), max_attempts=3, delay_seconds=0)

        assert delivered is False
        assert func.await_count == 3
        assert "dropped after 3 attempts" in caplog.text


class TestSinkSelection:

    @pytest.fixture(autouse=True)
    def smtp_env(self, monkeypatch, tmp_path):
        monkeypatch.setattr(secrets, "DOCKER_SECRETS_DIR", str(tmp_path / "run-secrets"))
        for name in ("SMTP_USERNAME", "SMTP_PASSWORD", "SMTP_PASSWORD_FILE"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("NOTIFY_BACKEND", "smtp")
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        secrets.get_secret.cache_clear()
        yield
        secrets.get_secret.cache_clear()

    def test_smtp_without_login(self):
        sink = build_notification_sink()

        assert isinstance(sink, SmtpNotificationSink)
        assert sink.username is None
        assert sink.password is None

    def test_smtp_login_uses_password_secret(self, monkeypatch):
        monkeypatch.setenv("SMTP_USERNAME", "mailer")
        monkeypatch.setenv("SMTP_PASSWORD", "relay-pass")

        sink = build_notification_sink()

        assert sink.username == "mailer"
        assert sink.password == "relay-pass"

    def test_smtp_login_without_password_fails_fast(self, monkeypatch):
        monkeypatch.setenv("SMTP_USERNAME", "mailer")

        with pytest.raises(ValueError, match="SMTP_PASSWORD"):
            build_notification_sink()

    def test_missing_host_logs_only(self, monkeypatch):
        monkeypatch.delenv("SMTP_HOST")

        assert isinstance(build_notification_sink(), LoggingNotificationSink)
