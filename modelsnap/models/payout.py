"""
Payout Request Model
Model withdrawals of royalty balance, with an append-only status history.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, JSON

from modelsnap.core.database import Base


class PayoutStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"


PAYMENT_METHODS = ("bank_transfer", "paypal", "stripe", "wire_transfer", "check")


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id = Column(String, primary_key=True)  # pay_xxxx format
    model_id = Column(String, ForeignKey("model_profiles.id"), nullable=False, index=True)
    requested_by = Column(String, nullable=False)

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    payment_method = Column(String, nullable=False)
    account_details = Column(JSON, default=dict)

    status = Column(String, default=PayoutStatus.PENDING, nullable=False, index=True)
    # [{"status", "previous_status", "changed_by", "changed_at", "reason", "notes"}]
    status_history = Column(JSON, default=list)

    # Transaction tracking
    transaction_reference = Column(String, unique=True, nullable=False)  # PAY-YYYYMMDD-XXXXXX
    transaction_id = Column(String, nullable=True)  # External id from the payment provider
    failure_reason = Column(Text, nullable=True)

    processed_by = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
