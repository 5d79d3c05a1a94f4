"""
Ledger Entry Model
Immutable record of every credit and royalty balance change.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON

from modelsnap.core.database import Base


class AccountType:
    BUSINESS = "business"  # Credits
    MODEL = "model"        # Royalty cents


class LedgerEntryType:
    GENERATION = "GENERATION"
    ADJUSTMENT = "ADJUSTMENT"              # Free tier reset
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    ROYALTY = "ROYALTY"
    PAYOUT_RESERVE = "PAYOUT_RESERVE"
    PAYOUT_RELEASE = "PAYOUT_RELEASE"
    PAYOUT_SETTLE = "PAYOUT_SETTLE"


class LedgerEntry(Base):
    """
    Append-only ledger row.

    ``amount`` is signed: negative for deductions from the account's
    available balance. ``balance_after`` is the available balance right after
    the change.
    """

    __tablename__ = "ledger_entries"

    id = Column(String, primary_key=True)  # txn_xxxx format
    account_type = Column(String, nullable=False, index=True)
    account_id = Column(String, nullable=False, index=True)
    entry_type = Column(String, nullable=False, index=True)

    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)

    # Related entities (optional)
    job_id = Column(String, nullable=True, index=True)
    payout_id = Column(String, nullable=True, index=True)
    actor_id = Column(String, nullable=True)  # Admin who made an adjustment
    entry_metadata = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
