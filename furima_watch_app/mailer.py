"""
E-mail notification helpers.

This module formats bargain alerts as HTML e-mail and sends them through
an SMTP server with STARTTLS (Gmail by default).  Delivery failures are
raised as ``NotifierError`` so that the caller decides whether to carry on.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Sequence, Tuple

from .errors import NotifierError
from .models import SOURCE_NAMES, BargainCandidate
from .settings import Settings

logger = logging.getLogger(__name__)


def format_bargain_email(candidate: BargainCandidate) -> Tuple[str, str]:
    """Construct the subject and HTML body of a bargain alert."""
    listing = candidate.listing
    site = SOURCE_NAMES.get(listing.source, listing.source)
    subject = f"{site} - {candidate.discount_percent}% OFF"
    body = (
        "<h2>Bargain found!</h2>\n"
        f"<p><strong>Site:</strong> {html.escape(site)}</p>\n"
        f"<p><strong>Category:</strong> {html.escape(listing.category)}</p>\n"
        f"<p><strong>Item:</strong> {html.escape(listing.title)}</p>\n"
        f"<p><strong>Price:</strong> &yen;{listing.price:,}</p>\n"
        f"<p><strong>Reference price:</strong> &yen;{candidate.reference_price:,.0f}</p>\n"
        f"<p><strong>Discount:</strong> {candidate.discount_percent}% OFF</p>\n"
        f"<p><a href=\"{html.escape(listing.url or '', quote=True)}\">View item</a></p>\n"
    )
    return subject, body


class EmailNotifier:
    """Send HTML e-mail through SMTP."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def is_configured(self) -> bool:
        return bool(self.settings.EMAIL_USER and self.settings.EMAIL_PASSWORD and self.recipients())

    def recipients(self) -> List[str]:
        return self.settings.email_recipients()

    def send(self, recipients: Sequence[str], subject: str, html_body: str) -> None:
        """Deliver one message; raises ``NotifierError`` on any failure."""
        sender = self.settings.EMAIL_USER
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        try:
            with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30) as server:
                server.starttls()
                server.login(sender, self.settings.EMAIL_PASSWORD)
                server.sendmail(sender, list(recipients), msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifierError(f"SMTP send failed: {exc}") from exc
        logger.debug("Sent '%s' to %d recipients", subject, len(recipients))
