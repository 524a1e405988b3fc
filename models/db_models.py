"""
SQLAlchemy ORM models.

Purpose:
- Define User (profile + notification preferences), Selection and Order tables
- Use SQLAlchemy async-compatible models
- Support migrations via Alembic

Timestamps are stored as naive UTC.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean
from core.db import Base
from datetime import datetime

class User(Base):
    """
    A member of the snack group.

    Columns:
    - user_id: identity from the sign-in provider
    - notifications_enabled: reminder opt-in
    - push_subscription: Web Push subscription object (NULL when not registered)
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    notifications_enabled = Column(Boolean, default=False, index=True)
    push_subscription = Column(JSON(none_as_null=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Selection(Base):
    """
    The current snack choice of a member. One row per user: a new choice
    replaces the previous one.
    """
    __tablename__ = "selections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), unique=True, index=True, nullable=False)
    item_ids = Column(JSON, nullable=False, default=list)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)


class Order(Base):
    """
    A submitted snack order.

    Columns:
    - order_id: "order_<epoch ms>_<suffix>", handed back to the client
    - items: list of item ids
    - total_amount: in cents
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(100), unique=True, index=True, nullable=False)
    user_id = Column(String(100), index=True, nullable=False)
    user_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    items = Column(JSON, nullable=False, default=list)
    total_amount = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default="pending", index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
