"""Plan model: local copy of a provider variant, keyed by variant_id."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(255), nullable=True)
    variant_id = Column(Integer, unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Smallest currency unit, as a string
    price = Column(String(50), nullable=False)
    is_usage_based = Column(Boolean, nullable=False, default=False)
    is_one_time_payment = Column(Boolean, nullable=False, default=False)

    # "lifetime" for one-time purchases
    interval = Column(String(50), nullable=True)
    interval_count = Column(Integer, nullable=True)
    trial_interval = Column(String(50), nullable=True)
    trial_interval_count = Column(Integer, nullable=True)
    sort = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    subscriptions = relationship("Subscription", back_populates="plan")
