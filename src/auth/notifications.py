"""
Account notifications for two-factor changes.

Notifications are best effort: ``send_non_critical`` retries a small number of times
and then logs and drops the failure, so callers never see it.
"""
import asyncio
import email.message
import email.policy
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import aiosmtplib

logger = logging.getLogger(__name__)

TWO_FACTOR_ENABLED_SUBJECT = "Two-factor authentication enabled"


def render_two_factor_enabled(first_name: str, app_name: str) -> str:
    greeting = f"Hello {first_name}," if first_name else "Hello,"
    return (
        f"{greeting}\n\n"
        f"Two-factor authentication has been enabled on your {app_name} account.\n"
        "From now on you will be asked for a code from your authenticator app when you sign in.\n\n"
        "If you did not make this change, reset your password and contact support immediately.\n"
    )


class SmtpNotificationSink:
    """Sends account notifications by email using aiosmtplib."""

    def __init__(
        self,
        host: str,
        from_email: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        app_name: str = "GATEKEEPER",
    ):
        self.host = host
        self.from_email = from_email
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.app_name = app_name

    async def notify_two_factor_enabled(self, email_address: str, first_name: str) -> None:
        message = email.message.EmailMessage(policy=email.policy.default)
        message["To"] = email_address
        message["From"] = self.from_email
        message["Subject"] = TWO_FACTOR_ENABLED_SUBJECT
        message.set_content(render_two_factor_enabled(first_name, self.app_name), charset="utf-8")

        async with aiosmtplib.SMTP(hostname=self.host, port=self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                await smtp.starttls()
            if self.username and self.password:
                await smtp.login(self.username, self.password)
            await smtp.send_message(message)

        logger.info(f"2FA enabled notification sent to {email_address}")


class LoggingNotificationSink:
    """Development sink that writes notifications to the log instead of sending them."""

    def __init__(self, app_name: str = "GATEKEEPER"):
        self.app_name = app_name

    async def notify_two_factor_enabled(self, email_address: str, first_name: str) -> None:
        output = "\n".join([
            "=" * 50,
            "NOTIFICATION (not sent)",
            f"To:      {email_address}",
            f"Subject: {TWO_FACTOR_ENABLED_SUBJECT}",
            render_two_factor_enabled(first_name, self.app_name),
            "=" * 50,
        ])
        logger.info(output)


async def send_non_critical(
    func: Callable[..., Awaitable[Any]],
    args: Sequence[Any],
    max_attempts: int = 2,
    delay_seconds: float = 1.0,
) -> bool:
    """
    Call a notification function with bounded retry.

    Returns:
        True if a call succeeded, False once all attempts failed. Never raises
        (except on task cancellation).
    """
    name = getattr(func, "__name__", repr(func))
    for attempt in range(1, max_attempts + 1):
        try:
            await func(*args)
            return True
        except Exception as e:
            logger.warning(f"Notification {name} failed (attempt {attempt}/{max_attempts}): {e}")
            if attempt < max_attempts:
                await asyncio.sleep(delay_seconds * attempt)

    logger.error(f"Notification {name} dropped after {max_attempts} attempts")
    return False
