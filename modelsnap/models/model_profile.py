"""
Model Profile
Database model for human models who rent out their likeness.
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON

from modelsnap.core.database import Base


class ModelProfileStatus:
    """Model profile status constants."""
    DRAFT = "draft"
    ACTIVE = "active"          # Visible and usable for generation
    PAUSED = "paused"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ModelProfile(Base):
    """
    Human model profile with royalty balances.

    Balances are kept in cents. ``available_balance_cents`` can be requested
    as a payout, ``pending_payouts_cents`` is reserved by open payout requests
    and ``paid_out_cents`` has left the platform.
    """

    __tablename__ = "model_profiles"

    id = Column(String, primary_key=True)  # mdl_xxxx format
    name = Column(String, nullable=False)
    status = Column(String, default=ModelProfileStatus.DRAFT, nullable=False, index=True)

    # Portfolio
    reference_images = Column(JSON, default=list)  # Storage refs, first one is used for renders
    price_per_access_cents = Column(Integer, default=0, nullable=False)

    # Royalty balances - only mutated through LedgerService
    available_balance_cents = Column(Integer, default=0, nullable=False)
    pending_payouts_cents = Column(Integer, default=0, nullable=False)
    paid_out_cents = Column(Integer, default=0, nullable=False)
    lifetime_earnings_cents = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == ModelProfileStatus.ACTIVE

    @property
    def primary_reference_image(self):
        """Reference image used as the render's model image, if any."""
        images = self.reference_images or []
        return images[0] if images else None
