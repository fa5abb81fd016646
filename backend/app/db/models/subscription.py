"""Subscription model: one row per provider subscription id, never deleted."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lemon_squeezy_id = Column(String(255), unique=True, nullable=False, index=True)
    order_id = Column(Integer, nullable=False)

    # Customer snapshot at creation
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)

    status = Column(String(50), nullable=False)
    status_formatted = Column(String(100), nullable=False)
    renews_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)

    price = Column(String(50), nullable=False)
    is_usage_based = Column(Boolean, nullable=False, default=False)
    is_paused = Column(Boolean, nullable=False, default=False)
    subscription_item_id = Column(Integer, nullable=True)
    lemon_squeezy_variant_id = Column(String(255), nullable=True)
    lemon_squeezy_order_id = Column(String(255), nullable=True)

    # Provider's updated_at of the last applied event
    provider_updated_at = Column(DateTime(timezone=True), nullable=True)

    # Ownership, immutable after creation
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")
