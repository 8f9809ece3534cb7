"""Tests for delivery channels: timeout wrapper, dry run, SMTP."""

import asyncio
import smtplib
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from src.core.config import EmailConfig
from src.core.errors import DeliveryError
from src.core.schemas import CandidateEmailData, HealthStatus, NotificationPayload
from src.notify.base import DeliveryChannel, LoggingChannel, TimeoutChannel
from src.notify.smtp import HealthAlertMailer, SmtpChannel, SmtpMailer


def _payload() -> NotificationPayload:
    return NotificationPayload(
        candidate=CandidateEmailData(
            candidate_id="c1",
            name="Dana Levi",
            email="dana@example.com",
            phone="050-1234567",
            previous_job="Driver",
            experience_years="3",
            requested_positions="Driver",
            region="south",
            submission_date=datetime(2026, 10, 18),
        ),
        agency_id="a1",
        agency_name="Negev Talent",
    )


def _config(**kw: object) -> EmailConfig:
    defaults: dict[str, object] = {
        "host": "smtp.example.com",
        "username": "bot@example.com",
        "password_env": "TEST_SMTP_PASSWORD",
    }
    defaults.update(kw)
    return EmailConfig(**defaults)  # type: ignore[arg-type]


class _SlowChannel(DeliveryChannel):
    def __init__(self, delay_s: float) -> None:
        self.delay_s = delay_s
        self.sent: list[str] = []

    @property
    def channel_id(self) -> str:
        return "slow"

    async def send(self, address: str, payload: NotificationPayload) -> None:
        await asyncio.sleep(self.delay_s)
        self.sent.append(address)


class TestTimeoutChannel:
    async def test_passes_through(self) -> None:
        inner = _SlowChannel(0)
        channel = TimeoutChannel(inner, timeout_s=1.0)
        await channel.send("a@x.example", _payload())
        assert inner.sent == ["a@x.example"]
        assert channel.channel_id == "slow"
        assert channel.inner is inner

    async def test_timeout_raises_delivery_error(self) -> None:
        channel = TimeoutChannel(_SlowChannel(5), timeout_s=0.01)
        with pytest.raises(DeliveryError, match="timed out"):
            await channel.send("a@x.example", _payload())


class TestLoggingChannel:
    async def test_records_and_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        channel = LoggingChannel()
        with caplog.at_level("INFO"):
            await channel.send("a@x.example", _payload())
        assert channel.sent[0][0] == "a@x.example"
        assert "[DRY RUN]" in caplog.text


class TestSmtpMailer:
    def test_build_message_headers(self) -> None:
        mailer = SmtpMailer(_config())
        msg = mailer.build_message("to@x.example", "Hello", "<p>hi</p>", headers={"X-Test": "1"})
        assert msg["To"] == "to@x.example"
        assert msg["From"] == "noreply@cvgo.pro"
        assert msg["X-Test"] == "1"

    async def test_not_configured(self) -> None:
        mailer = SmtpMailer(EmailConfig())
        msg = mailer.build_message("to@x.example", "s", "b")
        with pytest.raises(DeliveryError, match="not configured"):
            await mailer.send_message("to@x.example", msg)

    async def test_sends_with_tls_and_login(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_SMTP_PASSWORD", "secret")
        mailer = SmtpMailer(_config())
        msg = mailer.build_message("to@x.example", "s", "b")
        with patch("src.notify.smtp.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            await mailer.send_message("to@x.example", msg)
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        server.sendmail.assert_called_once()

    async def test_smtp_error_wrapped(self) -> None:
        mailer = SmtpMailer(_config(use_tls=False))
        msg = mailer.build_message("to@x.example", "s", "b")
        with patch("src.notify.smtp.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})
            with pytest.raises(DeliveryError, match="to@x.example"):
                await mailer.send_message("to@x.example", msg)
        server.starttls.assert_not_called()


class TestSmtpChannel:
    async def test_sends_candidate_alert(self) -> None:
        mailer = MagicMock(spec=SmtpMailer)
        mailer.build_message.return_value = "MSG"

        async def _send(to_addr: str, msg: object) -> None:
            return None

        mailer.send_message.side_effect = _send
        channel = SmtpChannel(mailer)
        await channel.send("cv@agency.example", _payload())

        args, kwargs = mailer.build_message.call_args
        assert args[0] == "cv@agency.example"
        assert args[1] == "New Candidate Alert - Dana Levi (Driver)"
        assert kwargs["headers"]["X-Candidate-ID"] == "c1"
        assert kwargs["headers"]["X-Agency-ID"] == "a1"
        mailer.send_message.assert_called_once_with("cv@agency.example", "MSG")
        assert channel.channel_id == "smtp"


class TestHealthAlertMailer:
    async def test_no_admins_is_noop(self) -> None:
        mailer = MagicMock(spec=SmtpMailer)
        await HealthAlertMailer(mailer, [])(HealthStatus(status="critical", message="bad"))
        mailer.send_message.assert_not_called()

    async def test_emails_every_admin(self) -> None:
        mailer = MagicMock(spec=SmtpMailer)
        sent: list[str] = []

        async def _send(to_addr: str, msg: object) -> None:
            sent.append(to_addr)

        mailer.send_message.side_effect = _send
        sink = HealthAlertMailer(mailer, ["ops@x.example", "cto@x.example"])
        await sink(HealthStatus(status="critical", message="bad"))
        assert sent == ["ops@x.example", "cto@x.example"]
        assert mailer.build_message.call_args.kwargs["subtype"] == "plain"
