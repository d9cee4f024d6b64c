"""
SMTP email delivery and the transactional templates.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Tuple

from bookstore import config
from bookstore.core.utils import format_money

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(config.SMTP_HOST and config.EMAIL_FROM)


def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text email. Raises on SMTP failure."""
    msg = EmailMessage()
    msg["From"] = config.EMAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    ctx = ssl.create_default_context()
    with smtplib.SMTP_SSL(config.SMTP_HOST, config.SMTP_PORT, context=ctx, timeout=15) as smtp:
        if config.SMTP_USER:
            smtp.login(config.SMTP_USER, config.SMTP_PASSWORD)
        smtp.send_message(msg)
    logger.info("Email sent to %s: %s", to, subject)


# ---------------------------------------------------------------------------
# Templates: each returns (subject, body)
# ---------------------------------------------------------------------------

def _signature() -> str:
    return f"\n\nHappy reading,\nAstewai Digital Bookstore\n{config.SITE_URL}"


def purchase_approved(name: str, item_title: str, reference: str) -> Tuple[str, str]:
    subject = f"Your purchase of {item_title} is approved"
    body = (
        f"Hi {name},\n\n"
        f"Your payment for \"{item_title}\" (Order ID {reference}) has been verified.\n"
        f"The book is now in your library: {config.SITE_URL}/library"
    )
    return subject, body + _signature()


def purchase_rejected(name: str, item_title: str, reference: str, reason: str) -> Tuple[str, str]:
    subject = f"Update on your order {reference}"
    body = (
        f"Hi {name},\n\n"
        f"We could not verify the payment for \"{item_title}\" (Order ID {reference}).\n"
        f"Reason: {reason or 'not specified'}\n\n"
        "If you believe this is a mistake, reply to this email with your receipt."
    )
    return subject, body + _signature()


def payment_verified(name: str, item_title: str, amount: float, currency: str) -> Tuple[str, str]:
    subject = "Payment verified"
    body = (
        f"Hi {name},\n\n"
        f"We received your payment of {format_money(amount, currency)} for \"{item_title}\".\n"
        f"It is now available in your library: {config.SITE_URL}/library"
    )
    return subject, body + _signature()


def payment_rejected(name: str, item_title: str, amount: float, currency: str, notes: str) -> Tuple[str, str]:
    subject = "We could not verify your payment"
    body = (
        f"Hi {name},\n\n"
        f"Your payment of {format_money(amount, currency)} for \"{item_title}\" could not be verified.\n"
        f"Notes: {notes or 'none'}\n\n"
        "You can upload a clearer receipt from your payment page and we will review it again."
    )
    return subject, body + _signature()
