"""
Ledger Service
Atomic credit and royalty balance mutations.

Nothing here commits. Every operation runs inside the caller's transaction so
it lands together with the event that triggered it (job admission, payout
status change). Balances are changed with conditional UPDATE statements, never
read-modify-written in Python, so concurrent requests cannot overdraw an
account.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from modelsnap.core.config import settings
from modelsnap.core.exceptions import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from modelsnap.core.ids import new_id
from modelsnap.models.business import BusinessProfile, SubscriptionTier
from modelsnap.models.ledger import AccountType, LedgerEntry, LedgerEntryType
from modelsnap.models.model_profile import ModelProfile

logger = logging.getLogger(__name__)


class LedgerService:
    """Credits for businesses, royalty cents for models."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock

    # ------------------------------------------------------------------
    # Business credits
    # ------------------------------------------------------------------

    def reset_free_credits_if_due(self, business_id: str) -> bool:
        """
        Reset a free-tier balance to the monthly allotment when the reset
        period has elapsed since the last reset.

        Evaluated lazily on the next generation attempt, so a dormant account
        catches up without a scheduled job.

        Returns:
            True if credits were reset
        """
        business = self._get_business(business_id)
        if business.subscription_tier != SubscriptionTier.FREE.value:
            return False

        now = self.clock()

        if business.last_credit_reset is None:
            # First sighting: start the reset clock
            self.db.execute(
                update(BusinessProfile)
                .where(BusinessProfile.id == business_id, BusinessProfile.last_credit_reset.is_(None))
                .values(last_credit_reset=now)
            )
            return False

        cutoff = now - timedelta(days=settings.FREE_CREDIT_RESET_DAYS)
        previous_balance = business.credits_remaining
        allotment = settings.FREE_TIER_CREDITS

        result = self.db.execute(
            update(BusinessProfile)
            .where(
                BusinessProfile.id == business_id,
                BusinessProfile.subscription_tier == SubscriptionTier.FREE.value,
                BusinessProfile.last_credit_reset <= cutoff,
            )
            .values(credits_remaining=allotment, credits_total=allotment, last_credit_reset=now)
        )
        if result.rowcount == 0:
            return False

        self._record(
            AccountType.BUSINESS,
            business_id,
            LedgerEntryType.ADJUSTMENT,
            amount=allotment - previous_balance,
            balance_after=allotment,
            reason="Monthly free tier credit reset",
            metadata={"subscription_tier": SubscriptionTier.FREE.value, "reset_type": "monthly"},
        )
        logger.info(f"[Ledger] Free credits reset for {business_id}: {previous_balance} -> {allotment}")
        return True

    def available_credits(self, business_id: str) -> int:
        """Credit balance after applying any due free-tier reset."""
        self.reset_free_credits_if_due(business_id)
        return self._credit_balance(business_id)

    def debit_credits(
        self,
        business_id: str,
        amount: int,
        reason: str,
        job_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Deduct credits from a business.

        Raises:
            InsufficientFundsError: balance is below ``amount``
        """
        if amount <= 0:
            raise ValidationError("Credit debit must be positive")

        self.reset_free_credits_if_due(business_id)

        result = self.db.execute(
            update(BusinessProfile)
            .where(BusinessProfile.id == business_id, BusinessProfile.credits_remaining >= amount)
            .values(credits_remaining=BusinessProfile.credits_remaining - amount)
        )
        balance = self._credit_balance(business_id)

        if result.rowcount == 0:
            raise InsufficientFundsError(
                f"Insufficient credits: {balance} available, {amount} required",
                code="INSUFFICIENT_CREDITS",
                details={"credits_available": balance, "credits_required": amount},
            )

        return self._record(
            AccountType.BUSINESS,
            business_id,
            LedgerEntryType.GENERATION,
            amount=-amount,
            balance_after=balance,
            reason=reason,
            job_id=job_id,
        )

    def adjust_credits(self, business_id: str, delta: int, reason: str, actor_id: str) -> LedgerEntry:
        """Admin credit adjustment. The balance never goes below zero."""
        if delta == 0:
            raise ValidationError("Adjustment must be non-zero")
        self._get_business(business_id)

        conditions = [BusinessProfile.id == business_id]
        values = {"credits_remaining": BusinessProfile.credits_remaining + delta}
        if delta < 0:
            conditions.append(BusinessProfile.credits_remaining >= -delta)
        else:
            values["credits_total"] = BusinessProfile.credits_total + delta

        result = self.db.execute(update(BusinessProfile).where(*conditions).values(**values))
        balance = self._credit_balance(business_id)
        if result.rowcount == 0:
            raise InsufficientFundsError(
                f"Adjustment would make balance negative ({balance} available)",
                code="INSUFFICIENT_CREDITS",
            )

        return self._record(
            AccountType.BUSINESS,
            business_id,
            LedgerEntryType.ADMIN_ADJUSTMENT,
            amount=delta,
            balance_after=balance,
            reason=reason,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Model royalties and payouts
    # ------------------------------------------------------------------

    def accrue_royalty(
        self,
        model_id: str,
        amount_cents: int,
        reason: str,
        job_id: Optional[str] = None,
    ) -> LedgerEntry:
        """Add royalty to a model's available balance."""
        if amount_cents <= 0:
            raise ValidationError("Royalty must be positive")

        result = self.db.execute(
            update(ModelProfile)
            .where(ModelProfile.id == model_id)
            .values(
                available_balance_cents=ModelProfile.available_balance_cents + amount_cents,
                lifetime_earnings_cents=ModelProfile.lifetime_earnings_cents + amount_cents,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Model profile not found: {model_id}", code="MODEL_NOT_FOUND")

        return self._record(
            AccountType.MODEL,
            model_id,
            LedgerEntryType.ROYALTY,
            amount=amount_cents,
            balance_after=self._model_balances(model_id)[0],
            reason=reason,
            job_id=job_id,
        )

    def reserve_payout(self, model_id: str, amount_cents: int, payout_id: str) -> LedgerEntry:
        """Move funds from available into pending payouts."""
        result = self.db.execute(
            update(ModelProfile)
            .where(ModelProfile.id == model_id, ModelProfile.available_balance_cents >= amount_cents)
            .values(
                available_balance_cents=ModelProfile.available_balance_cents - amount_cents,
                pending_payouts_cents=ModelProfile.pending_payouts_cents + amount_cents,
            )
        )
        available, pending, _ = self._model_balances(model_id)
        if result.rowcount == 0:
            raise InsufficientFundsError(
                "Insufficient balance",
                code="INSUFFICIENT_BALANCE",
                details={"available_balance_cents": available, "requested_cents": amount_cents},
            )

        return self._record(
            AccountType.MODEL,
            model_id,
            LedgerEntryType.PAYOUT_RESERVE,
            amount=-amount_cents,
            balance_after=available,
            reason="Payout requested",
            payout_id=payout_id,
            metadata={"pending_after": pending},
        )

    def release_payout(self, model_id: str, amount_cents: int, payout_id: str, reason: str) -> LedgerEntry:
        """Return reserved funds to available (payout rejected or failed)."""
        result = self.db.execute(
            update(ModelProfile)
            .where(ModelProfile.id == model_id, ModelProfile.pending_payouts_cents >= amount_cents)
            .values(
                available_balance_cents=ModelProfile.available_balance_cents + amount_cents,
                pending_payouts_cents=ModelProfile.pending_payouts_cents - amount_cents,
            )
        )
        if result.rowcount == 0:
            raise InvalidStateError(f"Pending payouts for {model_id} are below {amount_cents}")

        available, pending, _ = self._model_balances(model_id)
        return self._record(
            AccountType.MODEL,
            model_id,
            LedgerEntryType.PAYOUT_RELEASE,
            amount=amount_cents,
            balance_after=available,
            reason=reason,
            payout_id=payout_id,
            metadata={"pending_after": pending},
        )

    def settle_payout(self, model_id: str, amount_cents: int, payout_id: str) -> LedgerEntry:
        """
        Remove reserved funds from the platform (payout completed).

        The available balance is untouched; the entry's amount is the sum that
        left pending payouts.
        """
        result = self.db.execute(
            update(ModelProfile)
            .where(ModelProfile.id == model_id, ModelProfile.pending_payouts_cents >= amount_cents)
            .values(
                pending_payouts_cents=ModelProfile.pending_payouts_cents - amount_cents,
                paid_out_cents=ModelProfile.paid_out_cents + amount_cents,
            )
        )
        if result.rowcount == 0:
            raise InvalidStateError(f"Pending payouts for {model_id} are below {amount_cents}")

        available, pending, paid_out = self._model_balances(model_id)
        return self._record(
            AccountType.MODEL,
            model_id,
            LedgerEntryType.PAYOUT_SETTLE,
            amount=-amount_cents,
            balance_after=available,
            reason="Payout completed",
            payout_id=payout_id,
            metadata={"pending_after": pending, "paid_out_after": paid_out},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def history(self, account_type: str, account_id: str, limit: int = 50) -> List[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.account_type == account_type, LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
            .all()
        )

    def _get_business(self, business_id: str) -> BusinessProfile:
        business = self.db.get(BusinessProfile, business_id)
        if business is None:
            raise NotFoundError("Business profile not found", code="PROFILE_NOT_FOUND")
        return business

    def _credit_balance(self, business_id: str) -> int:
        return self.db.execute(
            select(BusinessProfile.credits_remaining).where(BusinessProfile.id == business_id)
        ).scalar_one()

    def _model_balances(self, model_id: str):
        row = self.db.execute(
            select(
                ModelProfile.available_balance_cents,
                ModelProfile.pending_payouts_cents,
                ModelProfile.paid_out_cents,
            ).where(ModelProfile.id == model_id)
        ).one_or_none()
        if row is None:
            raise NotFoundError(f"Model profile not found: {model_id}", code="MODEL_NOT_FOUND")
        return tuple(row)

    def _record(
        self,
        account_type: str,
        account_id: str,
        entry_type: str,
        amount: int,
        balance_after: int,
        reason: str,
        job_id: Optional[str] = None,
        payout_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            id=new_id("txn"),
            account_type=account_type,
            account_id=account_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
            job_id=job_id,
            payout_id=payout_id,
            actor_id=actor_id,
            entry_metadata=metadata or {},
            created_at=self.clock(),
        )
        self.db.add(entry)
        return entry
