"""
Business Profile Model
Customers that order renders and pay with credits.
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.orm import relationship

from modelsnap.core.database import Base


class SubscriptionTier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"


class BusinessProfile(Base):
    """Business account with its AI-avatar credit balance."""

    __tablename__ = "business_profiles"

    id = Column(String, primary_key=True)  # biz_xxxx format
    name = Column(String, nullable=False)

    # Subscription
    subscription_tier = Column(String, default=SubscriptionTier.FREE.value, nullable=False)
    subscription_status = Column(String, default="active", nullable=False)  # active, past_due, canceled, trialing

    # Credits - only mutated through LedgerService
    credits_remaining = Column(Integer, default=0, nullable=False)
    credits_total = Column(Integer, default=0, nullable=False)
    last_credit_reset = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    batches = relationship("RenderBatch", back_populates="business")

    @property
    def is_free_tier(self) -> bool:
        return self.subscription_tier == SubscriptionTier.FREE.value
