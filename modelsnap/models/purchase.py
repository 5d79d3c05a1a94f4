"""
Model Purchase
One-time purchase of access to a human model, written by the payment flow.
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from modelsnap.core.database import Base


class PurchaseStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ModelPurchase(Base):
    __tablename__ = "model_purchases"

    id = Column(String, primary_key=True)  # pur_xxxx format
    business_id = Column(String, ForeignKey("business_profiles.id"), nullable=False, index=True)
    model_id = Column(String, ForeignKey("model_profiles.id"), nullable=False, index=True)

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, default="usd", nullable=False)
    status = Column(String, default=PurchaseStatus.PENDING, nullable=False)
    provider_reference = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
