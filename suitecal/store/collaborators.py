"""Reference Notifier and Directory implementations."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence

from ..calendar.models import ReminderNotification

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Notifier that only logs each notification."""

    def send_reminder_notification(self, user_id: str, payload: ReminderNotification) -> None:
        logger.info("Reminder for %s: %s (%s)", user_id, payload.title, payload.body)


class RecordingNotifier:
    """Notifier that keeps every delivery in memory.

    ``fail_for`` names user ids whose deliveries raise, to exercise failure
    isolation.
    """

    def __init__(self, fail_for: Sequence[str] = ()) -> None:
        self._lock = threading.Lock()
        self.sent: list[tuple[str, ReminderNotification]] = []
        self.fail_for = set(fail_for)

    def send_reminder_notification(self, user_id: str, payload: ReminderNotification) -> None:
        if user_id in self.fail_for:
            raise ConnectionError(f"delivery to {user_id} failed")
        with self._lock:
            self.sent.append((user_id, payload))

    def recipients(self) -> list[str]:
        with self._lock:
            return [user_id for user_id, _ in self.sent]


class StaticDirectory:
    """Directory backed by a fixed email -> calendar ids mapping (case-insensitive)."""

    def __init__(self, mapping: Mapping[str, Sequence[str]] | None = None) -> None:
        self._mapping = {
            email.strip().lower(): list(calendars) for email, calendars in (mapping or {}).items()
        }

    def calendars_for_email(self, email: str) -> list[str]:
        return list(self._mapping.get(email.strip().lower(), []))
