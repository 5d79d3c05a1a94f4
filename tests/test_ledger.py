from datetime import datetime, timedelta

import pytest

from modelsnap.core.exceptions import InsufficientFundsError, InvalidStateError
from modelsnap.models import AccountType, BusinessProfile, LedgerEntry, LedgerEntryType, ModelProfile
from modelsnap.services.ledger import LedgerService


def test_debit_records_entry_with_resulting_balance(db, make_business):
    make_business(credits=3)
    ledger = LedgerService(db)

    entry = ledger.debit_credits("biz_test", 1, reason="render", job_id="job_1")
    db.commit()

    assert entry.amount == -1
    assert entry.balance_after == 2
    assert entry.entry_type == LedgerEntryType.GENERATION
    assert db.get(BusinessProfile, "biz_test").credits_remaining == 2


def test_debit_rejects_overdraw_without_mutation(db, make_business):
    make_business(credits=1)
    ledger = LedgerService(db)

    with pytest.raises(InsufficientFundsError) as exc:
        ledger.debit_credits("biz_test", 2, reason="render")
    db.rollback()

    assert exc.value.code == "INSUFFICIENT_CREDITS"
    assert exc.value.details["credits_available"] == 1
    assert db.get(BusinessProfile, "biz_test").credits_remaining == 1
    assert db.query(LedgerEntry).count() == 0


def test_free_tier_resets_lazily_after_period(db, make_business):
    make_business(credits=0, last_credit_reset=datetime.utcnow() - timedelta(days=31))
    ledger = LedgerService(db)

    entry = ledger.debit_credits("biz_test", 1, reason="render")
    db.commit()

    assert entry.balance_after == 2
    reset = db.query(LedgerEntry).filter(LedgerEntry.entry_type == LedgerEntryType.ADJUSTMENT).one()
    assert reset.amount == 3
    assert reset.balance_after == 3


def test_free_tier_not_reset_before_period(db, make_business):
    make_business(credits=0, last_credit_reset=datetime.utcnow() - timedelta(days=29))
    ledger = LedgerService(db)

    assert ledger.reset_free_credits_if_due("biz_test") is False
    assert ledger.available_credits("biz_test") == 0


def test_reset_uses_injected_clock(db, make_business):
    start = datetime(2026, 1, 1)
    make_business(credits=1, last_credit_reset=start)

    assert LedgerService(db, clock=lambda: start + timedelta(days=30)).reset_free_credits_if_due("biz_test")
    db.commit()
    assert db.get(BusinessProfile, "biz_test").credits_remaining == 3


def test_paid_tier_never_resets(db, make_business):
    make_business(tier="growth", credits=0, last_credit_reset=datetime.utcnow() - timedelta(days=90))

    assert LedgerService(db).available_credits("biz_test") == 0


def test_admin_adjustment_cannot_go_negative(db, make_business):
    make_business(credits=2)
    ledger = LedgerService(db)

    with pytest.raises(InsufficientFundsError):
        ledger.adjust_credits("biz_test", -5, reason="chargeback", actor_id="admin_1")
    db.rollback()

    entry = ledger.adjust_credits("biz_test", 10, reason="goodwill", actor_id="admin_1")
    db.commit()
    assert entry.balance_after == 12
    assert entry.actor_id == "admin_1"
    assert db.get(BusinessProfile, "biz_test").credits_total == 12


def test_royalty_accrues_to_available_and_lifetime(db, make_model):
    make_model()
    ledger = LedgerService(db)

    ledger.accrue_royalty("mdl_test", 200, reason="render", job_id="job_1")
    ledger.accrue_royalty("mdl_test", 200, reason="render", job_id="job_2")
    db.commit()

    model = db.get(ModelProfile, "mdl_test")
    assert model.available_balance_cents == 400
    assert model.lifetime_earnings_cents == 400
    history = ledger.history(AccountType.MODEL, "mdl_test")
    assert len(history) == 2
    assert history[0].balance_after in (200, 400)


def test_payout_reserve_release_settle(db, make_model):
    make_model(available_cents=3000)
    ledger = LedgerService(db)

    ledger.reserve_payout("mdl_test", 2000, "pay_1")
    db.commit()
    model = db.get(ModelProfile, "mdl_test")
    assert (model.available_balance_cents, model.pending_payouts_cents) == (1000, 2000)

    with pytest.raises(InsufficientFundsError) as exc:
        ledger.reserve_payout("mdl_test", 1500, "pay_2")
    assert exc.value.code == "INSUFFICIENT_BALANCE"
    db.rollback()

    ledger.settle_payout("mdl_test", 2000, "pay_1")
    db.commit()
    db.refresh(model)
    assert (model.available_balance_cents, model.pending_payouts_cents, model.paid_out_cents) == (1000, 0, 2000)

    with pytest.raises(InvalidStateError):
        ledger.release_payout("mdl_test", 2000, "pay_1", reason="rejected")
