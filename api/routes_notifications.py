# api/routes_notifications.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from core.auth import get_current_user, require_admin
from core.db import get_db_session
from core.errors import ConcurrentRunRejected, EligibilityQueryError
from core.response import ok
from core.singleton import get_reminder_scheduler, get_subscriber_service
from models.schemas import PushSubscriptionRequest
from services.reminder_scheduler import ReminderScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/subscribe")
async def subscribe(
    req: PushSubscriptionRequest,
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    """Store the browser's push subscription and switch reminders on."""
    try:
        await subscribers.update_notification_preferences(
            user["user_id"], True, req.subscription,
            name=user.get("name"), email=user.get("email"), session=session,
        )
    except Exception as e:
        logger.exception("Error saving notification subscription: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save notification subscription")
    return ok({"message": "Notification subscription saved successfully", "subscribed": True})


@router.post("/unsubscribe")
async def unsubscribe(
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    try:
        await subscribers.update_notification_preferences(user["user_id"], False, None, session=session)
    except Exception as e:
        logger.exception("Error removing notification subscription: %s", e)
        raise HTTPException(status_code=500, detail="Failed to remove notification subscription")
    return ok({"message": "Notification subscription removed successfully", "subscribed": False})


@router.get("/status")
async def status(
    user: dict = Depends(get_current_user),
    session: Optional[AsyncSession] = Depends(get_db_session),
    subscribers=Depends(get_subscriber_service),
):
    prefs = await subscribers.get_notification_preferences(user["user_id"], session=session)
    return ok({"enabled": prefs["enabled"], "hasSubscription": prefs["has_subscription"]})


@router.get("/vapid-key")
async def vapid_key():
    """Public VAPID key the browser needs for pushManager.subscribe()."""
    if not settings.VAPID_PUBLIC_KEY:
        raise HTTPException(status_code=503, detail="VAPID keys not configured")
    return ok({"publicKey": settings.VAPID_PUBLIC_KEY})


@router.post("/reminders/trigger")
async def trigger_reminders(
    admin: dict = Depends(require_admin),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    """
    Operator trigger: run the reminder pass now, skipping the schedule check.

    - 200 with the RunReport
    - 409 when a run is already active (nothing is sent twice)
    - 503 when the subscriber store could not be queried (nothing is sent)
    """
    logger.info("Manual reminder run requested by %s", admin.get("email") or admin["user_id"])
    try:
        report = await scheduler.run_reminders(trigger="manual")
    except ConcurrentRunRejected as e:
        raise HTTPException(status_code=409, detail=str(e))
    except EligibilityQueryError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ok(report.model_dump(mode="json"))


@router.get("/reminders/last")
async def last_report(
    admin: dict = Depends(require_admin),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    report = scheduler.last_report
    return ok(report.model_dump(mode="json") if report else None)


@router.post("/reminders/deregister-expired")
async def deregister_expired(
    admin: dict = Depends(require_admin),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    """Follow-up for the last run: drop endpoints the push service reported as gone."""
    report = scheduler.last_report
    if report is None:
        raise HTTPException(status_code=404, detail="No reminder run recorded yet")
    cleared = await scheduler.deregister_expired(report)
    return ok({"deregistered": cleared})
