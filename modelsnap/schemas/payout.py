"""
Payout Schemas
Pydantic models for payout requests and admin processing.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class PayoutCreateRequest(BaseModel):
    amount_cents: int
    payment_method: str
    currency: str = "USD"
    account_details: Dict[str, Any] = {}


class PayoutProcessRequest(BaseModel):
    reason: Optional[str] = None
    notes: Optional[str] = None
    transaction_id: Optional[str] = None


class PayoutResponse(BaseModel):
    id: str
    model_id: str
    amount_cents: int
    currency: str
    payment_method: str
    status: str
    status_history: List[Dict[str, Any]] = []
    transaction_reference: str
    transaction_id: Optional[str]
    failure_reason: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PayoutListResponse(BaseModel):
    payouts: List[PayoutResponse]
    stats: Dict[str, Any]
