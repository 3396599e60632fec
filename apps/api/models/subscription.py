"""Subscription model for paid plans."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Subscription(Base):
    """
    Paid plan for an account.

    Rows without stripe_subscription_id were paid in coins and are expired
    lazily; Stripe-backed rows only change through webhooks.
    """

    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    plan = Column(String, nullable=False)  # PRO, ELITE, LEGEND
    status = Column(String, nullable=False, default="active")
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="subscription")
