from contextlib import asynccontextmanager
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging
import uuid

from core.db import session_scope
from models.schemas import OrderRecord, SelectionListing, SelectionRecord, StoreStats, Subscriber
from services.subscriber_db_service import SubscriberDBService

logger = logging.getLogger(__name__)


class InMemorySubscriberStore:
    """Dev/test store with the same async interface as SubscriberDBService."""

    def __init__(self):
        self.subscribers: Dict[str, Subscriber] = {}
        self.selections: Dict[str, SelectionRecord] = {}
        self.orders: List[OrderRecord] = []

    async def get_subscriber(self, user_id: str) -> Optional[Subscriber]:
        return self.subscribers.get(user_id)

    async def ensure_subscriber(self, user_id: str, name: Optional[str] = None, email: Optional[str] = None) -> Subscriber:
        current = self.subscribers.get(user_id)
        if current is None:
            current = Subscriber(id=user_id, name=name, email=email)
        else:
            current = current.model_copy(update={"name": name or current.name, "email": email or current.email})
        self.subscribers[user_id] = current
        return current

    async def update_notification_preferences(
        self,
        user_id: str,
        enabled: bool,
        subscription: Optional[Dict[str, Any]],
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Subscriber:
        current = await self.ensure_subscriber(user_id, name, email)
        updated = current.model_copy(update={"notifications_enabled": bool(enabled), "push_subscription": subscription})
        self.subscribers[user_id] = updated
        logger.info("Notification preferences for %s: enabled=%s endpoint=%s", user_id, enabled, bool(subscription))
        return updated

    async def record_selection(self, user_id: str, item_id: str, at: datetime) -> SelectionRecord:
        record = SelectionRecord(user_id=user_id, item_ids=[item_id], timestamp=at)
        self.selections[user_id] = record
        return record

    async def get_selection(self, user_id: str) -> Optional[SelectionRecord]:
        return self.selections.get(user_id)

    async def clear_selection(self, user_id: str) -> bool:
        return self.selections.pop(user_id, None) is not None

    async def summarize_selections(self, period_start: datetime, period_end: datetime) -> Dict[str, int]:
        counts = Counter(
            item
            for record in self.selections.values()
            if period_start <= record.timestamp <= period_end
            for item in record.item_ids
        )
        return dict(counts)

    async def find_unselected(self, period_start: datetime, period_end: datetime) -> List[Subscriber]:
        def _selected(user_id: str) -> bool:
            record = self.selections.get(user_id)
            return record is not None and period_start <= record.timestamp <= period_end

        return [
            s for _, s in sorted(self.subscribers.items())
            if s.notifications_enabled and s.push_subscription and not _selected(s.id)
        ]

    async def clear_endpoints(self, user_ids: Iterable[str]) -> List[str]:
        cleared = []
        for user_id in user_ids:
            current = self.subscribers.get(user_id)
            if current is None:
                continue
            self.subscribers[user_id] = current.model_copy(update={"notifications_enabled": False, "push_subscription": None})
            cleared.append(user_id)
        return cleared

    async def list_selections(self) -> List[SelectionListing]:
        latest: Dict[str, str] = {}
        for order in sorted(self.orders, key=lambda o: o.created_at):
            latest[order.user_id] = order.order_id
        records = sorted(self.selections.values(), key=lambda r: r.user_id)
        records.sort(key=lambda r: r.timestamp, reverse=True)
        listings = []
        for record in records:
            subscriber = self.subscribers.get(record.user_id)
            listings.append(SelectionListing(
                user_id=record.user_id,
                user_name=subscriber.name if subscriber else None,
                item_ids=list(record.item_ids),
                timestamp=record.timestamp,
                order_submitted=record.user_id in latest,
                order_id=latest.get(record.user_id),
            ))
        return listings

    async def create_order(self, order_id: str, user_id: str, user_name: str, email: Optional[str],
                           items: List[str], total_amount: int, at: datetime) -> OrderRecord:
        order = OrderRecord(
            order_id=order_id, user_id=user_id, user_name=user_name, email=email,
            items=list(items), total_amount=total_amount, created_at=at,
        )
        self.orders.append(order)
        logger.info("Order %s created for %s (%d items)", order_id, user_id, len(order.items))
        return order

    async def list_orders(self) -> List[OrderRecord]:
        # newest first; same-instant orders keep newest-inserted first
        indexed = list(enumerate(self.orders))
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [order for _, order in indexed]

    async def stats(self) -> StoreStats:
        return StoreStats(
            total_users=len(self.subscribers),
            total_selections=len(self.selections),
            total_orders=len(self.orders),
        )

    def reset(self):
        self.subscribers.clear()
        self.selections.clear()
        self.orders.clear()


class SubscriberService:
    """
    Entry point used by routes and the reminder scheduler.

    Routes pass the request's session (None when DB is disabled). The scheduler
    passes nothing; a session is then opened here when the DB is enabled.
    Errors from the store propagate: an eligibility query must fail loudly.
    """

    def __init__(self, memory: Optional[InMemorySubscriberStore] = None):
        self.memory = memory or InMemorySubscriberStore()

    @asynccontextmanager
    async def _store(self, session=None):
        if session is not None:
            yield SubscriberDBService(session)
            return
        async with session_scope() as scoped:
            yield SubscriberDBService(scoped) if scoped is not None else self.memory

    async def get_subscriber(self, user_id: str, session=None) -> Optional[Subscriber]:
        async with self._store(session) as store:
            return await store.get_subscriber(user_id)

    async def get_notification_preferences(self, user_id: str, session=None) -> Dict[str, bool]:
        async with self._store(session) as store:
            subscriber = await store.get_subscriber(user_id)
        if subscriber is None:
            return {"enabled": False, "has_subscription": False}
        return {"enabled": subscriber.notifications_enabled, "has_subscription": bool(subscriber.push_subscription)}

    async def update_notification_preferences(self, user_id: str, enabled: bool, subscription: Optional[Dict[str, Any]] = None,
                                              name: Optional[str] = None, email: Optional[str] = None, session=None) -> Subscriber:
        async with self._store(session) as store:
            return await store.update_notification_preferences(user_id, enabled, subscription, name=name, email=email)

    async def record_selection(self, user_id: str, item_id: str, at: Optional[datetime] = None,
                               name: Optional[str] = None, email: Optional[str] = None, session=None) -> SelectionRecord:
        at = at or datetime.now(timezone.utc)
        async with self._store(session) as store:
            await store.ensure_subscriber(user_id, name, email)
            return await store.record_selection(user_id, item_id, at)

    async def get_selection(self, user_id: str, session=None) -> Optional[SelectionRecord]:
        async with self._store(session) as store:
            return await store.get_selection(user_id)

    async def clear_selection(self, user_id: str, session=None) -> bool:
        async with self._store(session) as store:
            return await store.clear_selection(user_id)

    async def summarize_selections(self, period_start: datetime, period_end: datetime, session=None) -> Dict[str, int]:
        async with self._store(session) as store:
            return await store.summarize_selections(period_start, period_end)

    async def find_unselected(self, period_start: datetime, period_end: datetime, session=None) -> List[Subscriber]:
        async with self._store(session) as store:
            return await store.find_unselected(period_start, period_end)

    async def clear_endpoints(self, user_ids: Iterable[str], session=None) -> List[str]:
        async with self._store(session) as store:
            cleared = await store.clear_endpoints(user_ids)
        if cleared:
            logger.info("Deregistered expired push endpoints: %s", cleared)
        return cleared

    async def list_selections(self, session=None) -> List[SelectionListing]:
        async with self._store(session) as store:
            return await store.list_selections()

    async def create_order(self, user_id: str, items: List[str], total_amount: int = 0, name: Optional[str] = None,
                           email: Optional[str] = None, at: Optional[datetime] = None, session=None) -> OrderRecord:
        at = at or datetime.now(timezone.utc)
        order_id = new_order_id(at)
        async with self._store(session) as store:
            subscriber = await store.ensure_subscriber(user_id, name, email)
            return await store.create_order(
                order_id, user_id, subscriber.name or f"User {user_id}", subscriber.email,
                items, total_amount, at,
            )

    async def list_orders(self, session=None) -> List[OrderRecord]:
        async with self._store(session) as store:
            return await store.list_orders()

    async def stats(self, session=None) -> StoreStats:
        async with self._store(session) as store:
            return await store.stats()


def new_order_id(at: datetime) -> str:
    return f"order_{int(at.timestamp() * 1000)}_{uuid.uuid4().hex[:12]}"


subscriber_service = SubscriberService()
