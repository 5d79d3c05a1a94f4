"""
Payout Service
Model withdrawals: request, approve, reject, complete, fail.

Every status change is a conditional UPDATE on the prior status paired with
exactly one ledger operation, committed together:

    create    -> reserve  (available -> pending)
    reject    -> release  (pending -> available)
    fail      -> release  (pending -> available)
    complete  -> settle   (pending -> paid out)
    approve   -> no balance change
"""

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from modelsnap.core.config import settings
from modelsnap.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from modelsnap.core.ids import new_id
from modelsnap.models.model_profile import ModelProfile
from modelsnap.models.payout import PAYMENT_METHODS, PayoutRequest, PayoutStatus
from modelsnap.services.ledger import LedgerService

logger = logging.getLogger(__name__)

# action -> (allowed prior statuses, resulting status)
TRANSITIONS = {
    "approve": ((PayoutStatus.PENDING,), PayoutStatus.APPROVED),
    "reject": ((PayoutStatus.PENDING, PayoutStatus.APPROVED), PayoutStatus.REJECTED),
    "complete": ((PayoutStatus.APPROVED,), PayoutStatus.COMPLETED),
    "fail": ((PayoutStatus.APPROVED,), PayoutStatus.FAILED),
}


def generate_transaction_reference(now: Optional[datetime] = None) -> str:
    """PAY-YYYYMMDD-XXXXXX"""
    now = now or datetime.utcnow()
    return f"PAY-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def _history_entry(status: str, previous: Optional[str], changed_by: str, reason: str, notes: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": status,
        "previous_status": previous,
        "changed_by": changed_by,
        "changed_at": datetime.utcnow().isoformat(),
        "reason": reason,
        "notes": notes,
    }


class PayoutService:
    def __init__(self, db: Session, ledger: Optional[LedgerService] = None):
        self.db = db
        self.ledger = ledger or LedgerService(db)

    def create_payout(
        self,
        model_id: str,
        amount_cents: int,
        payment_method: str,
        requested_by: str,
        account_details: Optional[dict] = None,
        currency: str = "USD",
    ) -> PayoutRequest:
        if amount_cents < settings.MIN_PAYOUT_CENTS:
            raise ValidationError(
                f"Minimum payout amount is {settings.MIN_PAYOUT_CENTS} cents",
                code="BELOW_MINIMUM",
                details={"minimum_cents": settings.MIN_PAYOUT_CENTS},
            )
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}"
            )
        if self.db.get(ModelProfile, model_id) is None:
            raise NotFoundError("Model profile not found", code="MODEL_NOT_FOUND")

        payout = PayoutRequest(
            id=new_id("pay"),
            model_id=model_id,
            requested_by=requested_by,
            amount_cents=amount_cents,
            currency=currency,
            payment_method=payment_method,
            account_details=account_details or {},
            status=PayoutStatus.PENDING,
            status_history=[_history_entry(PayoutStatus.PENDING, None, requested_by, "Payout requested")],
            transaction_reference=generate_transaction_reference(),
        )

        try:
            self.ledger.reserve_payout(model_id, amount_cents, payout.id)
            self.db.add(payout)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payout)
        logger.info(f"[Payouts] {payout.id} requested by {model_id}: {amount_cents} cents via {payment_method}")
        return payout

    def process_payout(
        self,
        payout_id: str,
        action: str,
        admin_id: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> PayoutRequest:
        if action not in TRANSITIONS:
            raise ValidationError(f"Invalid action '{action}'. Must be one of: {', '.join(TRANSITIONS)}")

        payout = self.db.get(PayoutRequest, payout_id)
        if payout is None:
            raise NotFoundError("Payout request not found", code="PAYOUT_NOT_FOUND")

        allowed, new_status = TRANSITIONS[action]
        previous = payout.status
        if previous not in allowed:
            raise InvalidStateError(f"Cannot {action} a payout that is {previous}")

        now = datetime.utcnow()
        values: Dict[str, Any] = {
            "status": new_status,
            "processed_by": admin_id,
            "processed_at": now,
            "status_history": list(payout.status_history or [])
            + [_history_entry(new_status, previous, admin_id, reason or f"Payout {new_status}", notes)],
        }
        if action == "complete" and transaction_id:
            values["transaction_id"] = transaction_id
        if action == "fail":
            values["failure_reason"] = reason or "Payment failed"

        try:
            result = self.db.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == payout_id, PayoutRequest.status == previous)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InvalidStateError(f"Payout {payout_id} changed state concurrently")

            if action in ("reject", "fail"):
                self.ledger.release_payout(
                    payout.model_id, payout.amount_cents, payout_id, reason=f"Payout {new_status}"
                )
            elif action == "complete":
                self.ledger.settle_payout(payout.model_id, payout.amount_cents, payout_id)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payout)
        logger.info(f"[Payouts] {payout_id}: {previous} -> {new_status} by {admin_id}")
        return payout

    def list_payouts(self, model_id: Optional[str] = None, status: Optional[str] = None, limit: int = 50) -> List[PayoutRequest]:
        query = self.db.query(PayoutRequest)
        if model_id:
            query = query.filter(PayoutRequest.model_id == model_id)
        if status:
            query = query.filter(PayoutRequest.status == status)
        return query.order_by(PayoutRequest.created_at.desc()).limit(limit).all()

    def payout_stats(self, model_id: str) -> Dict[str, Any]:
        model = self.db.get(ModelProfile, model_id)
        if model is None:
            raise NotFoundError("Model profile not found", code="MODEL_NOT_FOUND")

        counts = dict(
            self.db.query(PayoutRequest.status, func.count(PayoutRequest.id))
            .filter(PayoutRequest.model_id == model_id)
            .group_by(PayoutRequest.status)
            .all()
        )
        return {
            "available_balance_cents": model.available_balance_cents,
            "pending_payouts_cents": model.pending_payouts_cents,
            "total_paid_cents": model.paid_out_cents,
            "lifetime_earnings_cents": model.lifetime_earnings_cents,
            "counts": {
                status: counts.get(status, 0)
                for status in (
                    PayoutStatus.PENDING,
                    PayoutStatus.APPROVED,
                    PayoutStatus.REJECTED,
                    PayoutStatus.COMPLETED,
                    PayoutStatus.FAILED,
                )
            },
        }
