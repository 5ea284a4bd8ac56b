"""
Email channel.

SMTP submission when ``smtp`` is configured (implicit TLS on port 465,
STARTTLS when the server offers it). Without SMTP the local ``mail``
command is tried, then ``sendmail``.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import ClassVar, List

from ccanywhere.config import EmailConfig, NotificationsConfig
from ccanywhere.errors import ConfigurationError, NotificationError
from ccanywhere.notifications.base import DEFAULT_CHANNEL_TIMEOUT, ChannelNotifier
from ccanywhere.notifications.formatter import format_message
from ccanywhere.notifications.types import NotificationMessage

logger = logging.getLogger(__name__)

DEFAULT_SENDER = "noreply@ccanywhere.local"


class EmailNotifier(ChannelNotifier):
    channel: ClassVar[str] = "email"

    def __init__(self, config: EmailConfig, timeout: float = DEFAULT_CHANNEL_TIMEOUT):
        self.config = config
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> "EmailNotifier":
        if config.email is None:
            raise ConfigurationError("Email configuration is required when email channel is enabled")
        return cls(config.email)

    @property
    def sender(self) -> str:
        if self.config.from_:
            return self.config.from_
        if self.config.smtp is not None:
            return self.config.smtp.user
        return DEFAULT_SENDER

    def build_message(self, message: NotificationMessage) -> EmailMessage:
        """HTML body with a plain-text alternative."""
        html_body = format_message(message, "html")
        plain_body = format_message(message, "plain")

        email = EmailMessage()
        email["Subject"] = message.title
        email["From"] = self.sender
        email["To"] = self.config.to
        email.set_content(plain_body.content)
        email.add_alternative(html_body.content, subtype="html")
        return email

    async def send(self, message: NotificationMessage) -> None:
        if self.config.smtp is not None:
            await self._send_via_smtp(message)
        else:
            await self._send_via_local_mail(message)

    # =========================================================================
    # SMTP
    # =========================================================================

    async def _send_via_smtp(self, message: NotificationMessage) -> None:
        email = self.build_message(message)
        try:
            await asyncio.to_thread(self._smtp_submit, email)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send SMTP email: {e}") from e

    def _smtp_submit(self, email: EmailMessage) -> None:
        smtp = self.config.smtp
        if smtp.port == 465:
            client = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=self.timeout)
        else:
            client = smtplib.SMTP(smtp.host, smtp.port, timeout=self.timeout)

        with client:
            if smtp.port != 465:
                client.ehlo()
                if client.has_extn("starttls"):
                    client.starttls()
                    client.ehlo()
            client.login(smtp.user, smtp.password)
            client.send_message(email)

    # =========================================================================
    # Local mail commands
    # =========================================================================

    async def _send_via_local_mail(self, message: NotificationMessage) -> None:
        formatted = format_message(message, "html")
        try:
            await self._run_command(
                ["mail", "-a", "Content-Type: text/html", "-s", formatted.title, self.config.to],
                formatted.content,
            )
            return
        except NotificationError as e:
            logger.debug(f"mail command failed, falling back to sendmail: {e}")

        await self._send_via_sendmail(message)

    async def _send_via_sendmail(self, message: NotificationMessage) -> None:
        formatted = format_message(message, "html")
        content = "\n".join([
            f"To: {self.config.to}",
            f"From: {self.config.from_ or DEFAULT_SENDER}",
            f"Subject: {formatted.title}",
            "Content-Type: text/html; charset=utf-8",
            "",
            formatted.content,
        ])
        try:
            await self._run_command(["sendmail", self.config.to], content)
        except NotificationError as e:
            raise NotificationError(f"Failed to send email via sendmail: {e}") from e

    async def _run_command(self, argv: List[str], stdin_text: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise NotificationError(f"{argv[0]} unavailable: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(
                proc.communicate(stdin_text.encode("utf-8")), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise NotificationError(f"{argv[0]} timed out after {self.timeout:.0f}s") from e

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip() or f"exit code {proc.returncode}"
            raise NotificationError(f"{argv[0]} failed: {detail}")
