"""
Reminder payload composition.

compose_reminder() is deterministic for a given `now` and copy: the tag is fixed so a
device replaces an earlier reminder instead of stacking it, and the creation instant
is embedded in data.timestamp for client-side staleness checks.
"""
from dataclasses import dataclass
from datetime import datetime

from models.schemas import NotificationAction, NotificationData, NotificationPayload

REMINDER_TAG = "snack-reminder"


@dataclass(frozen=True)
class ReminderCopy:
    title: str = "Lekker Bezig - Snack Reminder!"
    closes_at: str = "12:00"
    icon: str = "/icons/icon-192x192.png"
    url: str = "/"

    @property
    def body(self) -> str:
        return f"Don't forget to select your snack for today! Selection closes at {self.closes_at}."


DEFAULT_COPY = ReminderCopy()


def compose_reminder(now: datetime, copy: ReminderCopy = DEFAULT_COPY) -> NotificationPayload:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return NotificationPayload(
        title=copy.title,
        body=copy.body,
        icon=copy.icon,
        badge=copy.icon,
        tag=REMINDER_TAG,
        require_interaction=True,
        actions=(
            NotificationAction(id="select-snack", label="Select Snack", icon=copy.icon),
            NotificationAction(id="dismiss", label="Dismiss"),
        ),
        data=NotificationData(url=copy.url, timestamp=int(now.timestamp() * 1000)),
    )
