"""
Ledger API Routes
Credit balance for the calling business.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_current_business, get_db
from modelsnap.models.business import BusinessProfile
from modelsnap.models.ledger import AccountType
from modelsnap.schemas.ledger import CreditBalanceResponse, LedgerEntryResponse
from modelsnap.services.ledger import LedgerService

router = APIRouter()


@router.get("/credits", response_model=CreditBalanceResponse)
async def get_credits(
    limit: int = 20,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Current credit balance (after any due free-tier reset) and recent entries."""
    ledger = LedgerService(db)
    credits = ledger.available_credits(business.id)
    db.commit()
    db.refresh(business)

    return CreditBalanceResponse(
        business_id=business.id,
        subscription_tier=business.subscription_tier,
        credits_remaining=credits,
        last_credit_reset=business.last_credit_reset,
        history=[
            LedgerEntryResponse.model_validate(entry)
            for entry in ledger.history(AccountType.BUSINESS, business.id, limit=min(limit, 100))
        ],
    )
