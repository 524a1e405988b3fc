"""
DB-backed subscriber and selection store using async SQLAlchemy.

- update_notification_preferences -> UPDATE users (INSERT on first use)
- record_selection                -> one row per user, replaced on every new choice
- find_unselected                 -> users with reminders on, an endpoint, and no
                                     selection inside the period
- list_selections / list_orders    -> admin listings, newest first

It is *only* used when:
- USE_DB=true
- DATABASE_URL is not "disabled"
- an AsyncSession is available

Timestamps are stored as naive UTC; everything handed back is timezone-aware.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.db_models import Order, Selection, User
from models.schemas import OrderRecord, OrderStatus, SelectionListing, SelectionRecord, StoreStats, Subscriber

logger = logging.getLogger(__name__)


def to_db_time(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc)


class SubscriberDBService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_user(self, user_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    async def _get_selection_row(self, user_id: str) -> Optional[Selection]:
        result = await self.session.execute(select(Selection).where(Selection.user_id == user_id))
        return result.scalar_one_or_none()

    async def _commit(self):
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def get_subscriber(self, user_id: str) -> Optional[Subscriber]:
        user = await self._get_user(user_id)
        return self._to_subscriber(user) if user else None

    async def ensure_subscriber(self, user_id: str, name: Optional[str] = None, email: Optional[str] = None) -> Subscriber:
        user = await self._get_user(user_id)
        if user is None:
            user = User(user_id=user_id, name=name, email=email, notifications_enabled=False)
            self.session.add(user)
        else:
            user.name = name or user.name
            user.email = email or user.email
        await self._commit()
        return self._to_subscriber(user)

    async def update_notification_preferences(
        self,
        user_id: str,
        enabled: bool,
        subscription: Optional[Dict[str, Any]],
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Subscriber:
        user = await self._get_user(user_id)
        if user is None:
            user = User(user_id=user_id, name=name, email=email)
            self.session.add(user)
        user.notifications_enabled = bool(enabled)
        user.push_subscription = subscription
        await self._commit()
        logger.info("Notification preferences for %s: enabled=%s endpoint=%s", user_id, enabled, bool(subscription))
        return self._to_subscriber(user)

    async def record_selection(self, user_id: str, item_id: str, at: datetime) -> SelectionRecord:
        row = await self._get_selection_row(user_id)
        if row is None:
            row = Selection(user_id=user_id)
            self.session.add(row)
        row.item_ids = [item_id]
        row.timestamp = to_db_time(at)
        await self._commit()
        return self._to_record(row)

    async def get_selection(self, user_id: str) -> Optional[SelectionRecord]:
        row = await self._get_selection_row(user_id)
        return self._to_record(row) if row else None

    async def clear_selection(self, user_id: str) -> bool:
        row = await self._get_selection_row(user_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self._commit()
        return True

    async def summarize_selections(self, period_start: datetime, period_end: datetime) -> Dict[str, int]:
        stmt = (
            select(Selection)
            .where(Selection.timestamp >= to_db_time(period_start))
            .where(Selection.timestamp <= to_db_time(period_end))
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        counts = Counter(item for row in rows for item in (row.item_ids or []))
        return dict(counts)

    async def find_unselected(self, period_start: datetime, period_end: datetime) -> List[Subscriber]:
        """
        Equivalent to:
        SELECT * FROM users WHERE notifications_enabled AND push_subscription IS NOT NULL
          AND user_id NOT IN (SELECT user_id FROM selections WHERE timestamp BETWEEN ? AND ?)
        """
        selected = (
            select(Selection.user_id)
            .where(Selection.timestamp >= to_db_time(period_start))
            .where(Selection.timestamp <= to_db_time(period_end))
        )
        stmt = (
            select(User)
            .where(User.notifications_enabled == True)  # noqa: E712
            .where(User.push_subscription.is_not(None))
            .where(User.user_id.not_in(selected))
            .order_by(User.user_id)
        )
        users = (await self.session.execute(stmt)).scalars().all()
        return [self._to_subscriber(u) for u in users]

    async def clear_endpoints(self, user_ids: Iterable[str]) -> List[str]:
        ids = list(user_ids)
        if not ids:
            return []
        users = (await self.session.execute(select(User).where(User.user_id.in_(ids)))).scalars().all()
        for user in users:
            user.notifications_enabled = False
            user.push_subscription = None
        await self._commit()
        return [u.user_id for u in users]

    async def list_selections(self) -> List[SelectionListing]:
        stmt = (
            select(Selection, User.name)
            .outerjoin(User, User.user_id == Selection.user_id)
            .order_by(Selection.timestamp.desc(), Selection.user_id)
        )
        rows = (await self.session.execute(stmt)).all()
        latest = await self._latest_order_ids([row.user_id for row, _ in rows])
        return [
            SelectionListing(
                user_id=row.user_id,
                user_name=name,
                item_ids=list(row.item_ids or []),
                timestamp=from_db_time(row.timestamp),
                order_submitted=row.user_id in latest,
                order_id=latest.get(row.user_id),
            )
            for row, name in rows
        ]

    async def _latest_order_ids(self, user_ids: List[str]) -> Dict[str, str]:
        if not user_ids:
            return {}
        stmt = (
            select(Order.user_id, Order.order_id)
            .where(Order.user_id.in_(user_ids))
            .order_by(Order.created_at, Order.id)
        )
        # later rows overwrite earlier ones: newest order per user wins
        return {user_id: order_id for user_id, order_id in (await self.session.execute(stmt)).all()}

    async def create_order(
        self,
        order_id: str,
        user_id: str,
        user_name: str,
        email: Optional[str],
        items: List[str],
        total_amount: int,
        at: datetime,
    ) -> OrderRecord:
        row = Order(
            order_id=order_id,
            user_id=user_id,
            user_name=user_name,
            email=email,
            items=list(items),
            total_amount=total_amount,
            status=OrderStatus.PENDING.value,
            created_at=to_db_time(at),
        )
        self.session.add(row)
        await self._commit()
        logger.info("Order %s created for %s (%d items)", order_id, user_id, len(row.items))
        return self._to_order(row)

    async def list_orders(self) -> List[OrderRecord]:
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._to_order(row) for row in rows]

    async def stats(self) -> StoreStats:
        async def _count(model) -> int:
            return (await self.session.execute(select(func.count()).select_from(model))).scalar_one()

        return StoreStats(
            total_users=await _count(User),
            total_selections=await _count(Selection),
            total_orders=await _count(Order),
        )

    @staticmethod
    def _to_subscriber(user: User) -> Subscriber:
        return Subscriber(
            id=user.user_id,
            name=user.name,
            email=user.email,
            push_subscription=user.push_subscription,
            notifications_enabled=bool(user.notifications_enabled),
        )

    @staticmethod
    def _to_record(row: Selection) -> SelectionRecord:
        return SelectionRecord(user_id=row.user_id, item_ids=list(row.item_ids or []), timestamp=from_db_time(row.timestamp))

    @staticmethod
    def _to_order(row: Order) -> OrderRecord:
        return OrderRecord(
            order_id=row.order_id,
            user_id=row.user_id,
            user_name=row.user_name,
            email=row.email,
            items=list(row.items or []),
            total_amount=row.total_amount or 0,
            status=row.status,
            created_at=from_db_time(row.created_at),
        )
