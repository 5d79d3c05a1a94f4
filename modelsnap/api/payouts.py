"""
Payouts API Routes
Royalty withdrawals for the calling model.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_current_model, get_db
from modelsnap.models.model_profile import ModelProfile
from modelsnap.schemas.payout import PayoutCreateRequest, PayoutListResponse, PayoutResponse
from modelsnap.services.payouts import PayoutService

router = APIRouter()


@router.post("", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def create_payout(
    body: PayoutCreateRequest,
    model: ModelProfile = Depends(get_current_model),
    db: Session = Depends(get_db),
):
    """Request a payout; the amount is reserved from the available balance."""
    return PayoutService(db).create_payout(
        model.id,
        body.amount_cents,
        body.payment_method,
        requested_by=model.id,
        account_details=body.account_details,
        currency=body.currency,
    )


@router.get("", response_model=PayoutListResponse)
async def list_payouts(
    payout_status: Optional[str] = None,
    limit: int = 20,
    model: ModelProfile = Depends(get_current_model),
    db: Session = Depends(get_db),
):
    service = PayoutService(db)
    return PayoutListResponse(
        payouts=[
            PayoutResponse.model_validate(payout)
            for payout in service.list_payouts(model.id, status=payout_status, limit=min(limit, 100))
        ],
        stats=service.payout_stats(model.id),
    )
