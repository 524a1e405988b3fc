import asyncio
import sys
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


# Ensure project root is on sys.path so `services.*` imports work
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


# Explicitly enable pytest-asyncio plugin for async tests/fixtures
pytest_plugins = ("pytest_asyncio",)


from models.schemas import Schedule, Subscriber
from services.push_dispatcher import PushDispatcher
from services.reminder_scheduler import ReminderScheduler
from services.subscriber_service import InMemorySubscriberStore, SubscriberService


FRIDAY_11_AMSTERDAM = Schedule(day_of_week=5, hour=11, minute=0, timezone="Europe/Amsterdam")


def make_subscriber(n: int, **overrides) -> Subscriber:
    fields = dict(
        id=f"user-{n:03d}",
        name=f"User {n}",
        email=f"user{n}@example.com",
        push_subscription={
            "endpoint": f"https://push.example.com/send/{n}",
            "keys": {"p256dh": "BEl62i", "auth": "aGVsbG8"},
        },
        notifications_enabled=True,
    )
    fields.update(overrides)
    return Subscriber(**fields)


class FakeTransport:
    """
    Records every send. `statuses` maps an endpoint URL to the HTTP status to
    return (default 201); `errors` maps an endpoint URL to an exception to raise.
    Optional `gate` blocks sends until set.
    """

    def __init__(self, statuses=None, errors=None, gate: asyncio.Event | None = None, delay: float = 0.0):
        self.statuses = statuses or {}
        self.errors = errors or {}
        self.gate = gate
        self.delay = delay
        self.sent = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, endpoint, data):
        url = endpoint["endpoint"]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.gate is not None:
                await self.gate.wait()
            self.sent.append((url, data))
            if url in self.errors:
                raise self.errors[url]
            return self.statuses.get(url, 201)
        finally:
            self.in_flight -= 1


class StubEligibility:
    """Eligibility query returning a fixed list; can fail or block on demand."""

    def __init__(self, subscribers=None, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.subscribers = list(subscribers or [])
        self.error = error
        self.gate = gate
        self.calls = []
        self.cleared = []

    async def find_unselected(self, period_start, period_end):
        self.calls.append((period_start, period_end))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.subscribers)

    async def clear_endpoints(self, user_ids):
        ids = list(user_ids)
        self.cleared.extend(ids)
        return ids


def build_scheduler(eligibility, transport, concurrency: int = 10, **kwargs) -> ReminderScheduler:
    return ReminderScheduler(
        schedule=kwargs.pop("schedule", FRIDAY_11_AMSTERDAM),
        eligibility=eligibility,
        dispatcher=PushDispatcher(transport, concurrency=concurrency),
        tick_interval=kwargs.pop("tick_interval", timedelta(seconds=60)),
        **kwargs,
    )


@pytest.fixture()
def subscribers():
    """Fresh in-memory subscriber service per test."""
    return SubscriberService(InMemorySubscriberStore())


@pytest.fixture()
def member():
    return {"user_id": "member-1", "name": "Member One", "email": "member1@example.com", "role": "user"}


@pytest.fixture()
def admin():
    return {"user_id": "admin-1", "name": "Admin", "email": "admin@example.com", "role": "admin"}


class ApiHarness:
    def __init__(self, client, scheduler, transport, subscribers):
        self.client = client
        self.scheduler = scheduler
        self.transport = transport
        self.subscribers = subscribers
        self.caller = {}

    def login(self, user: dict):
        self.caller.clear()
        self.caller.update(user)


@pytest_asyncio.fixture()
async def api(subscribers):
    """
    Async test client for the API with a fresh store and a scheduler backed by
    FakeTransport. Tests choose the caller with `api.login(user_dict)`.
    """
    from fastapi import HTTPException

    from main import app
    from core.auth import get_current_user
    from core.singleton import get_reminder_scheduler, get_subscriber_service

    transport = FakeTransport()
    scheduler = build_scheduler(subscribers, transport)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        harness = ApiHarness(ac, scheduler, transport, subscribers)

        async def _current_user():
            if not harness.caller:
                raise HTTPException(status_code=401, detail="Missing Authorization token")
            return dict(harness.caller)

        app.dependency_overrides[get_current_user] = _current_user
        app.dependency_overrides[get_subscriber_service] = lambda: subscribers
        app.dependency_overrides[get_reminder_scheduler] = lambda: scheduler
        try:
            yield harness
        finally:
            app.dependency_overrides.clear()
