import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class Subscriber(BaseModel):
    """A member who may receive reminders. Read-only to the reminder pipeline."""
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    # Web Push subscription object {endpoint, keys: {p256dh, auth}}; opaque here
    push_subscription: Optional[Dict[str, Any]] = None
    notifications_enabled: bool = False

    @field_validator("push_subscription", mode="before")
    @classmethod
    def _parse_subscription(cls, value):
        # older rows stored the subscription as a JSON string
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return None
            return value if isinstance(value, dict) else None
        return value


class SelectionRecord(BaseModel):
    user_id: str
    item_ids: List[str] = Field(default_factory=list)
    timestamp: datetime


class SelectionListing(BaseModel):
    """Admin view of one member's pick, with the member's name and order status."""
    user_id: str
    user_name: Optional[str] = None
    item_ids: List[str] = Field(default_factory=list)
    timestamp: datetime
    order_submitted: bool = False
    order_id: Optional[str] = None


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderRecord(BaseModel):
    order_id: str
    user_id: str
    user_name: str
    email: Optional[str] = None
    items: List[str] = Field(default_factory=list)
    total_amount: int = 0  # cents
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime


class StoreStats(BaseModel):
    total_users: int = 0
    total_selections: int = 0
    total_orders: int = 0


class Schedule(BaseModel):
    """Weekly occurrence. day_of_week uses cron numbering: 0 = Sunday ... 6 = Saturday."""
    day_of_week: int = Field(..., ge=0, le=6)
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)
    timezone: str = "UTC"

    class Config:
        frozen = True

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class NotificationAction(BaseModel):
    id: str = Field(..., serialization_alias="action")
    label: str = Field(..., serialization_alias="title")
    icon: Optional[str] = None

    class Config:
        frozen = True


class NotificationData(BaseModel):
    url: str = "/"
    timestamp: int  # epoch milliseconds

    class Config:
        frozen = True


class NotificationPayload(BaseModel):
    """What the service worker receives; one instance is shared by a whole run."""
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    tag: str
    require_interaction: bool = Field(True, serialization_alias="requireInteraction")
    actions: tuple[NotificationAction, ...] = ()
    data: NotificationData

    class Config:
        frozen = True

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        """Canonical JSON: identical payloads give identical bytes."""
        return json.dumps(self.to_wire(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    EXPIRED = "expired"
    FAILED = "failed"


class DeliveryOutcome(BaseModel):
    subscriber_id: str
    status: DeliveryStatus
    status_code: Optional[int] = None
    error: Optional[str] = None


class DeliveryFailure(BaseModel):
    subscriber_id: str
    error: Optional[str] = None


class RunReport(BaseModel):
    trigger: str = "manual"  # "scheduled" | "manual"
    started_at: datetime
    finished_at: Optional[datetime] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    eligible: int = 0
    delivered: int = 0
    expired: int = 0
    failed: int = 0
    expired_subscriber_ids: List[str] = Field(default_factory=list)
    failures: List[DeliveryFailure] = Field(default_factory=list)
    partial: bool = False
    deregistered: List[str] = Field(default_factory=list)

    def fold(self, outcomes: List[DeliveryOutcome]) -> "RunReport":
        """Count outcomes into this report (in place) and return it."""
        for outcome in outcomes:
            if outcome.status == DeliveryStatus.DELIVERED:
                self.delivered += 1
            elif outcome.status == DeliveryStatus.EXPIRED:
                self.expired += 1
                self.expired_subscriber_ids.append(outcome.subscriber_id)
            else:
                self.failed += 1
                self.failures.append(DeliveryFailure(subscriber_id=outcome.subscriber_id, error=outcome.error))
        return self


# --- request bodies ---

class PushSubscriptionRequest(BaseModel):
    subscription: Dict[str, Any]

    @field_validator("subscription")
    @classmethod
    def _has_endpoint(cls, value):
        if not value.get("endpoint"):
            raise ValueError("subscription.endpoint is required")
        return value


class SelectionRequest(BaseModel):
    item_id: str = Field(..., min_length=1)


class OrderRequest(BaseModel):
    items: List[str] = Field(..., min_length=1)
    total_amount: int = Field(0, ge=0)
