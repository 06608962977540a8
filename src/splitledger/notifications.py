"""Notification sinks for ledger events."""

import logging
import threading
from typing import Protocol

from .models import LedgerEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Anything that can receive a human readable message."""

    def notify(self, message: str) -> None: ...


class LoggingNotifier:
    """Writes every message to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def notify(self, message: str) -> None:
        logger.log(self.level, message)


class NotificationHub:
    """
    Fans ledger events out to any number of notifiers.

    Delivery is fire-and-forget: a notifier that raises is logged and
    skipped. The ledger mutation that produced the event has already been
    applied and is never rolled back.
    """

    def __init__(self, notifiers: list[Notifier] | None = None):
        """Initialize the hub with optional initial subscribers."""
        self._lock = threading.Lock()
        self._notifiers: list[Notifier] = list(notifiers or [])

    def subscribe(self, notifier: Notifier) -> None:
        with self._lock:
            self._notifiers.append(notifier)

    def unsubscribe(self, notifier: Notifier) -> None:
        with self._lock:
            if notifier in self._notifiers:
                self._notifiers.remove(notifier)

    def publish(self, event: LedgerEvent) -> int:
        """
        Deliver an event's message to every subscriber.

        Returns:
            Number of notifiers that accepted the message
        """
        with self._lock:
            notifiers = list(self._notifiers)

        delivered = 0
        for notifier in notifiers:
            try:
                notifier.notify(event.message)
                delivered += 1
            except Exception:
                logger.exception(f"Notifier {notifier!r} failed for {event.kind} event")

        return delivered
