"""Disbursement e-mail: message content and SMTP delivery."""

from __future__ import annotations

import asyncio
import logging
import re
import smtplib
from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
from html import escape

from app.core.settings import settings

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SMTP_TIMEOUT_SECONDS = 10


def disbursement_subject(loan_id) -> str:
    return f"Your Loan Has Been Disbursed - Loan #{loan_id}"


def _rupiah(amount: Decimal) -> str:
    return f"Rp {Decimal(amount):,.2f}"


def disbursement_text(user_name: str, loan_id, amount: Decimal) -> str:
    return (
        f"Dear {user_name},\n\n"
        "Your loan application has been successfully disbursed. "
        "The funds should be available in your account shortly.\n\n"
        f"Loan ID: #{loan_id}\n"
        f"Disbursed Amount: {_rupiah(amount)}\n"
        "Status: DISBURSED\n\n"
        "Best regards,\nLoan Management Team\n"
    )


def disbursement_html(user_name: str, loan_id, amount: Decimal) -> str:
    return (
        "<html><body>"
        "<h1>Loan Disbursed Successfully!</h1>"
        f"<p>Dear <strong>{escape(user_name)}</strong>,</p>"
        "<p>Your loan application has been <strong>successfully disbursed</strong>.</p>"
        f"<p>Loan ID: #{loan_id}<br>Disbursed Amount: {_rupiah(amount)}<br>Status: DISBURSED</p>"
        "<p>Best regards,<br><strong>Loan Management Team</strong></p>"
        "</body></html>"
    )


@dataclass(frozen=True)
class OutgoingMail:
    recipient: str
    subject: str
    text: str
    html: str | None = None

    @classmethod
    def disbursement(cls, recipient: str, user_name: str, loan_id, amount: Decimal) -> OutgoingMail:
        return cls(
            recipient=recipient,
            subject=disbursement_subject(loan_id),
            text=disbursement_text(user_name, loan_id, amount),
            html=disbursement_html(user_name, loan_id, amount),
        )

    @property
    def addressable(self) -> bool:
        return bool(_ADDRESS_RE.match(self.recipient or ""))

    def to_message(self, sender: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = self.subject
        message["From"] = sender
        message["To"] = self.recipient
        message.set_content(self.text)
        if self.html:
            message.add_alternative(self.html, subtype="html")
        return message


class SmtpMailer:
    """Blocking SMTP client configured from ``SMTP_*`` settings; no host means disabled."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        sender: str | None = None,
        username: str | None = None,
        password: str | None = None,
        starttls: bool | None = None,
    ) -> None:
        self.host = (settings.smtp_host or "") if host is None else host
        self.port = port or settings.smtp_port
        self.sender = sender or settings.smtp_sender
        self.username = (settings.smtp_username or "") if username is None else username
        self.password = (settings.smtp_password or "") if password is None else password
        self.starttls = settings.smtp_starttls if starttls is None else starttls

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def deliver(self, mail: OutgoingMail) -> bool:
        if not self.enabled:
            return False
        if not mail.addressable:
            logger.warning("Skipping mail with unusable recipient %r", mail.recipient)
            return False
        with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(mail.to_message(self.sender))
        return True

    def send(self, recipient: str, subject: str, text: str, html: str | None = None) -> bool:
        return self.deliver(OutgoingMail(recipient, subject, text, html))


async def send_disbursement_email(
    mailer: SmtpMailer, recipient: str, user_name: str, loan_id, amount: Decimal
) -> bool:
    """Blocking SMTP runs on a worker thread."""
    mail = OutgoingMail.disbursement(recipient, user_name, loan_id, amount)
    return await asyncio.to_thread(mailer.send, mail.recipient, mail.subject, mail.text, mail.html)
