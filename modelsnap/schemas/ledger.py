"""
Ledger Schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class LedgerEntryResponse(BaseModel):
    id: str
    entry_type: str
    amount: int
    balance_after: int
    reason: str
    job_id: Optional[str]
    payout_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class CreditBalanceResponse(BaseModel):
    business_id: str
    subscription_tier: str
    credits_remaining: int
    last_credit_reset: Optional[datetime]
    history: List[LedgerEntryResponse] = []


class CreditAdjustRequest(BaseModel):
    """Admin credit adjustment. Negative amounts remove credits."""
    business_id: str
    amount: int
    reason: str
    metadata: Dict[str, Any] = {}
