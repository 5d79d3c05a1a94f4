"""
Admin API Routes
Payout processing, credit adjustments, purchases and batch abandonment.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_db, get_queue_manager, require_admin
from modelsnap.schemas.batch import BatchResponse
from modelsnap.schemas.ledger import CreditAdjustRequest, LedgerEntryResponse
from modelsnap.schemas.payout import PayoutProcessRequest, PayoutResponse
from modelsnap.services.access import record_purchase
from modelsnap.services.ledger import LedgerService
from modelsnap.services.payouts import PayoutService
from modelsnap.workers.processor import ABANDON_MESSAGE, BatchProcessor

router = APIRouter()


class PurchaseRecordRequest(BaseModel):
    business_id: str
    model_id: str
    amount_cents: int
    currency: str = "usd"
    provider_reference: Optional[str] = None


class AbandonRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/payouts/{payout_id}/{action}", response_model=PayoutResponse)
async def process_payout(
    payout_id: str,
    action: str,
    body: Optional[PayoutProcessRequest] = None,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """approve | reject | complete | fail"""
    body = body or PayoutProcessRequest()
    return PayoutService(db).process_payout(
        payout_id,
        action,
        admin_id,
        reason=body.reason,
        notes=body.notes,
        transaction_id=body.transaction_id,
    )


@router.post("/credits/adjust", response_model=LedgerEntryResponse)
async def adjust_credits(
    body: CreditAdjustRequest,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        entry = LedgerService(db).adjust_credits(body.business_id, body.amount, body.reason, admin_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry


@router.post("/purchases")
async def create_purchase(
    body: PurchaseRecordRequest,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Record a settled model-access purchase (called by the payment flow)."""
    purchase = record_purchase(
        db,
        body.business_id,
        body.model_id,
        body.amount_cents,
        provider_reference=body.provider_reference,
        currency=body.currency,
    )
    db.commit()
    return {"id": purchase.id, "status": purchase.status}


@router.get("/queues")
async def queue_stats(
    admin_id: str = Depends(require_admin),
    queue_manager=Depends(get_queue_manager),
):
    """Depth of each RQ queue."""
    return queue_manager.get_queue_stats()


@router.post("/batches/{batch_id}/abandon", response_model=BatchResponse)
async def abandon_batch(
    batch_id: str,
    body: Optional[AbandonRequest] = None,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Fail every job of the batch that has not finished yet."""
    reason = (body.reason if body and body.reason else ABANDON_MESSAGE)
    processor = BatchProcessor(renderer=None, storage=None, worker_id=f"admin:{admin_id}")
    return processor.abandon_batch(db, batch_id, reason=reason)
