# api/routes_selections.py
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_user, require_admin
from core.db import get_db_session
from core.response import ok
from core.singleton import get_reminder_scheduler, get_subscriber_service
from models.schemas import OrderRequest, SelectionRequest
from services.deadline import day_bounds, next_occurrence

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/selections")
async def select_item(
    req: SelectionRequest,
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    """Pick a snack. A new pick replaces the previous one."""
    record = await subscribers.record_selection(
        user["user_id"], req.item_id, name=user.get("name"), email=user.get("email"), session=session,
    )
    return ok(record.model_dump(mode="json"))


@router.get("/selections/me")
async def my_selection(
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    record = await subscribers.get_selection(user["user_id"], session=session)
    return ok(record.model_dump(mode="json") if record else None)


@router.delete("/selections")
async def clear_selection(
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    removed = await subscribers.clear_selection(user["user_id"], session=session)
    if not removed:
        raise HTTPException(status_code=404, detail="No selection to clear")
    return ok({"message": "Selection cleared"})


@router.get("/selections")
async def list_selections(
    admin: dict = Depends(require_admin),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    """Admin: every member's current pick with name and order status, newest first."""
    listings = await subscribers.list_selections(session=session)
    return ok({
        "total": len(listings),
        "selections": [s.model_dump(mode="json") for s in listings],
    })


@router.delete("/selections/{user_id}")
async def delete_member_selection(
    user_id: str,
    admin: dict = Depends(require_admin),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    logger.info("Admin %s deleting selection for %s", admin.get("email") or admin["user_id"], user_id)
    removed = await subscribers.clear_selection(user_id, session=session)
    if not removed:
        raise HTTPException(status_code=404, detail="Selection not found")
    return ok({"message": "User selection deleted successfully", "user_id": user_id})


@router.post("/orders")
async def submit_order(
    req: OrderRequest,
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    """Submit an order for the caller. The order starts out pending."""
    order = await subscribers.create_order(
        user["user_id"], req.items, req.total_amount,
        name=user.get("name"), email=user.get("email"), session=session,
    )
    return ok({"message": "Order submitted successfully", "order": order.model_dump(mode="json")})


@router.get("/orders")
async def list_orders(
    admin: dict = Depends(require_admin),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    orders = await subscribers.list_orders(session=session)
    return ok({"total": len(orders), "orders": [o.model_dump(mode="json") for o in orders]})


@router.get("/orders/summary")
async def order_summary(
    admin: dict = Depends(require_admin),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
    scheduler=Depends(get_reminder_scheduler),
):
    """Admin: today's picks counted per item, plus the next reminder deadline."""
    now = datetime.now(timezone.utc)
    period_start, period_end = day_bounds(now, scheduler.schedule.tzinfo)
    counts = await subscribers.summarize_selections(period_start, period_end, session=session)
    return ok({
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "total": sum(counts.values()),
        "items": [{"item_id": k, "count": v} for k, v in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))],
        "next_reminder": next_occurrence(now, scheduler.schedule).isoformat(),
    })
