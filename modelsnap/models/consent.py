"""
Consent Grant Model
Whether a business may render with a given human model.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint

from modelsnap.core.database import Base


class ConsentStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ConsentGrant(Base):
    """One grant per business/model pair."""

    __tablename__ = "consent_grants"
    __table_args__ = (
        UniqueConstraint("business_id", "model_id", name="uq_consent_business_model"),
    )

    id = Column(String, primary_key=True)  # cns_xxxx format
    business_id = Column(String, ForeignKey("business_profiles.id"), nullable=False, index=True)
    model_id = Column(String, ForeignKey("model_profiles.id"), nullable=False, index=True)

    status = Column(String, default=ConsentStatus.PENDING, nullable=False)
    message = Column(Text, nullable=True)

    # Timestamps
    requested_at = Column(DateTime, default=datetime.utcnow)
    decided_at = Column(DateTime, nullable=True)
