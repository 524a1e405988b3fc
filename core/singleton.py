# core/singleton.py
from datetime import timedelta

from config.settings import settings
from infra.redis_client import get_redis
from models.schemas import Schedule
from services.composer import ReminderCopy
from services.push_dispatcher import PushDispatcher, WebPushTransport
from services.reminder_scheduler import ReminderScheduler
from services.run_guard import InProcessRunGuard, RedisRunGuard
from services.subscriber_service import subscriber_service


def build_schedule() -> Schedule:
    return Schedule(
        day_of_week=settings.REMINDER_DAY_OF_WEEK,
        hour=settings.REMINDER_HOUR,
        minute=settings.REMINDER_MINUTE,
        timezone=settings.REMINDER_TIMEZONE,
    )


def build_run_guard():
    if settings.USE_REDIS_LOCK:
        return RedisRunGuard(get_redis(), ttl_seconds=settings.REMINDER_LOCK_TTL_SECONDS)
    return InProcessRunGuard()


def build_reminder_scheduler() -> ReminderScheduler:
    transport = WebPushTransport(
        private_key=settings.VAPID_PRIVATE_KEY,
        subject=settings.VAPID_SUBJECT,
        timeout=settings.PUSH_TIMEOUT_SECONDS,
    )
    return ReminderScheduler(
        schedule=build_schedule(),
        eligibility=subscriber_service,
        dispatcher=PushDispatcher(transport, concurrency=settings.REMINDER_CONCURRENCY),
        guard=build_run_guard(),
        tick_interval=timedelta(seconds=settings.REMINDER_TICK_SECONDS),
        copy=ReminderCopy(
            title=settings.REMINDER_TITLE,
            closes_at=settings.REMINDER_CLOSES_AT,
            icon=settings.REMINDER_ICON,
            url=settings.REMINDER_URL,
        ),
        deregister_expired=settings.REMINDER_DEREGISTER_EXPIRED,
        endpoints=subscriber_service,
        misfire_grace=timedelta(seconds=settings.REMINDER_MISFIRE_GRACE_SECONDS),
    )


# Unified singleton registry
reminder_scheduler = build_reminder_scheduler()


def get_subscriber_service():
    return subscriber_service


def get_reminder_scheduler() -> ReminderScheduler:
    return reminder_scheduler


__all__ = [
    "reminder_scheduler",
    "subscriber_service",
    "get_reminder_scheduler",
    "get_subscriber_service",
]
