"""
Cooldown-based deduplication of bargain notifications.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from .errors import NotifierError
from .mailer import format_bargain_email
from .models import BargainCandidate, NotificationRecord, utcnow
from .notification_log import NotificationLog

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def is_configured(self) -> bool: ...

    def recipients(self) -> List[str]: ...

    def send(self, recipients: Sequence[str], subject: str, html_body: str) -> None: ...


class NotificationGate:
    """Send each bargain at most once per cooldown window."""

    def __init__(self, log: NotificationLog, notifier: Notifier) -> None:
        self.log = log
        self.notifier = notifier

    def notify(self, candidate: BargainCandidate, now: Optional[datetime] = None) -> bool:
        """Notify one candidate; returns True if a message was sent.

        Notifier failures are logged and swallowed, and leave no record
        behind so the candidate is retried on the next run.
        """
        listing = candidate.listing
        record = NotificationRecord(
            source=listing.source,
            product_id=listing.product_id,
            title=listing.title,
            price=listing.price,
            discount_percent=candidate.discount_percent,
            notified_at=now or utcnow(),
        )
        subject, body = format_bargain_email(candidate)
        recipients = self.notifier.recipients()

        def _send() -> None:
            self.notifier.send(recipients, subject, body)

        try:
            sent = self.log.notify_once(record, _send)
        except NotifierError as exc:
            logger.error(
                "Notification failed for %s %s (%s): %s",
                listing.source,
                listing.product_id,
                listing.category,
                exc,
            )
            return False
        if sent:
            logger.info(
                "[%s] Notified %s: %s at %d yen (%d%% off)",
                listing.source,
                listing.product_id,
                listing.title,
                listing.price,
                candidate.discount_percent,
            )
        else:
            logger.debug("Cooldown active for %s %s", listing.source, listing.product_id)
        return sent

    def process(self, candidates: Iterable[BargainCandidate], now: Optional[datetime] = None) -> int:
        """Notify every eligible candidate and return the number of messages sent."""
        if not self.notifier.is_configured():
            logger.info("Notifier not configured; skipping bargain notifications")
            return 0
        sent = 0
        for candidate in candidates:
            if self.notify(candidate, now):
                sent += 1
        return sent
