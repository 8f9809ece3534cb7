"""SMTP delivery for candidate alerts and health alerts."""

import asyncio
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from src.core.config import EmailConfig
from src.core.errors import DeliveryError
from src.core.schemas import HealthStatus, NotificationPayload
from src.notify.base import DeliveryChannel
from src.notify.template import render_distribution_email, render_health_alert, render_subject

logger = logging.getLogger(__name__)


class SmtpMailer:
    """Blocking SMTP client run in a worker thread per message."""

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    @property
    def config(self) -> EmailConfig:
        return self._config

    def build_message(
        self,
        to_addr: str,
        subject: str,
        body: str,
        *,
        subtype: str = "html",
        headers: dict[str, str] | None = None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._config.from_address
        msg["To"] = to_addr
        for name, value in (headers or {}).items():
            msg[name] = value
        msg.attach(MIMEText(body, subtype, "utf-8"))
        return msg

    async def send_message(self, to_addr: str, msg: MIMEMultipart) -> None:
        """Send ``msg`` to ``to_addr``. Raises DeliveryError on any SMTP failure."""
        if not self._config.configured:
            msg_text = "SMTP not configured (set email.host and email.username)"
            raise DeliveryError(msg_text)
        try:
            await asyncio.to_thread(self._smtp_send, to_addr, msg)
        except (smtplib.SMTPException, OSError) as e:
            msg_text = f"SMTP send to {to_addr} failed: {e}"
            raise DeliveryError(msg_text) from e

    def _smtp_send(self, to_addr: str, msg: MIMEMultipart) -> None:
        cfg = self._config
        password = os.environ.get(cfg.password_env, "")
        with smtplib.SMTP(cfg.host, cfg.port, timeout=30) as server:
            if cfg.use_tls:
                server.starttls()
            server.login(cfg.username, password)
            server.sendmail(cfg.from_address, [to_addr], msg.as_string())


class SmtpChannel(DeliveryChannel):
    """Sends the candidate alert email to one agency address."""

    def __init__(self, mailer: SmtpMailer) -> None:
        self._mailer = mailer

    @property
    def channel_id(self) -> str:
        return "smtp"

    @property
    def mailer(self) -> SmtpMailer:
        return self._mailer

    async def send(self, address: str, payload: NotificationPayload) -> None:
        msg = self._mailer.build_message(
            address,
            render_subject(payload),
            render_distribution_email(payload),
            headers={
                "X-Priority": "3",
                "X-Candidate-ID": payload.candidate.candidate_id,
                "X-Agency-ID": payload.agency_id,
            },
        )
        await self._mailer.send_message(address, msg)
        logger.debug("CV distribution email sent to %s", address)


class HealthAlertMailer:
    """Alert sink that emails a critical health report to the admins."""

    def __init__(self, mailer: SmtpMailer, admin_emails: list[str]) -> None:
        self._mailer = mailer
        self._admin_emails = admin_emails

    async def __call__(self, health: HealthStatus) -> None:
        if not self._admin_emails:
            logger.info("No admin emails configured - health alert not emailed")
            return
        subject, body = render_health_alert(health)
        for admin in self._admin_emails:
            msg = self._mailer.build_message(admin, subject, body, subtype="plain")
            await self._mailer.send_message(admin, msg)
        logger.info("Health alert emailed to %d admins", len(self._admin_emails))
