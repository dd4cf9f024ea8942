"""Outbound email notifications.

Every public method is meant to run as a FastAPI background task, after the
HTTP response has gone out. Failures are logged and never raised: a lost
email must not surface as a failed signing or void.

Without SMTP credentials (local development) messages are logged instead of
sent.
"""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import TYPE_CHECKING

from pay2start.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from pay2start.config import Settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str


def _money(amount: Decimal | None) -> str:
    return f"${amount or 0:,.2f}"


class NotificationService:
    """Builds and delivers contract lifecycle emails."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send(self, message: EmailMessage) -> bool:
        """Deliver one message. Returns False instead of raising on failure."""
        if not self._settings.email_enabled:
            logger.info(
                "email.development_mode",
                to=message.to,
                subject=message.subject,
            )
            return True
        try:
            await asyncio.to_thread(self._send_smtp, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email.send_failed", to=message.to, subject=message.subject, error=str(exc))
            return False
        logger.info("email.sent", to=message.to, subject=message.subject)
        return True

    def _send_smtp(self, message: EmailMessage) -> None:
        mime = MIMEMultipart("alternative")
        mime["From"] = self._settings.email_from
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.attach(MIMEText(message.html, "html"))

        with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(self._settings.smtp_username, self._settings.smtp_password)
            server.send_message(mime)

    # ------------------------------------------------------------------
    # Lifecycle emails
    # ------------------------------------------------------------------

    async def contract_sent(
        self,
        client_email: str,
        client_name: str,
        contractor_name: str,
        contract_title: str,
        signing_url: str,
    ) -> bool:
        html = (
            f"<p>Hi {escape(client_name)},</p>"
            f"<p>{escape(contractor_name)} has sent you <strong>{escape(contract_title)}</strong> "
            "to review and sign.</p>"
            f'<p><a href="{escape(signing_url)}">Review and sign the contract</a></p>'
            "<p>This link can be used once and expires in a few days.</p>"
        )
        return await self.send(
            EmailMessage(
                to=client_email,
                subject=f"Contract ready for signature: {contract_title}",
                html=html,
            )
        )

    async def contract_signed(
        self,
        contractor_email: str,
        contractor_name: str,
        client_name: str,
        contract_title: str,
    ) -> bool:
        html = (
            f"<p>Hi {escape(contractor_name)},</p>"
            f"<p>{escape(client_name)} signed <strong>{escape(contract_title)}</strong>.</p>"
        )
        return await self.send(
            EmailMessage(
                to=contractor_email,
                subject=f"Contract signed: {contract_title}",
                html=html,
            )
        )

    async def signed_but_unpaid(
        self,
        client_email: str,
        client_name: str,
        contractor_name: str,
        contract_title: str,
        payment_url: str,
        deposit_amount: Decimal,
        total_amount: Decimal | None,
    ) -> bool:
        html = (
            f"<p>Hi {escape(client_name)},</p>"
            f"<p>Thanks for signing <strong>{escape(contract_title)}</strong> with "
            f"{escape(contractor_name)}.</p>"
            f"<p>A deposit of {_money(deposit_amount)} (of {_money(total_amount)} total) "
            "is due to get started.</p>"
            f'<p><a href="{escape(payment_url)}">Pay the deposit</a></p>'
        )
        return await self.send(
            EmailMessage(
                to=client_email,
                subject=f"Deposit due: {contract_title}",
                html=html,
            )
        )

    async def contract_voided(
        self,
        client_email: str,
        client_name: str,
        contractor_name: str,
        contract_title: str,
        refund_summary: str,
    ) -> bool:
        html = (
            f"<p>Hi {escape(client_name)},</p>"
            f"<p>{escape(contractor_name)} has cancelled <strong>{escape(contract_title)}</strong>.</p>"
            f"<p>{escape(refund_summary)}</p>"
        )
        return await self.send(
            EmailMessage(
                to=client_email,
                subject=f"Contract cancelled: {contract_title}",
                html=html,
            )
        )

    async def payment_received(
        self,
        contractor_email: str,
        contractor_name: str,
        client_name: str,
        contract_title: str,
        amount: Decimal,
    ) -> bool:
        html = (
            f"<p>Hi {escape(contractor_name)},</p>"
            f"<p>{escape(client_name)} paid {_money(amount)} toward "
            f"<strong>{escape(contract_title)}</strong>.</p>"
        )
        return await self.send(
            EmailMessage(
                to=contractor_email,
                subject=f"Payment received: {contract_title}",
                html=html,
            )
        )
