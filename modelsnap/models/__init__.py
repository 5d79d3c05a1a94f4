# Database models package
from modelsnap.models.business import BusinessProfile, SubscriptionTier
from modelsnap.models.model_profile import ModelProfile, ModelProfileStatus
from modelsnap.models.consent import ConsentGrant, ConsentStatus
from modelsnap.models.purchase import ModelPurchase, PurchaseStatus
from modelsnap.models.job import (
    RenderBatch,
    RenderJob,
    JobKind,
    JobStatus,
    BatchStatus,
    BatchPriority,
    derive_batch_status,
)
from modelsnap.models.ledger import LedgerEntry, LedgerEntryType, AccountType
from modelsnap.models.payout import PayoutRequest, PayoutStatus, PAYMENT_METHODS

__all__ = [
    "BusinessProfile",
    "SubscriptionTier",
    "ModelProfile",
    "ModelProfileStatus",
    "ConsentGrant",
    "ConsentStatus",
    "ModelPurchase",
    "PurchaseStatus",
    "RenderBatch",
    "RenderJob",
    "JobKind",
    "JobStatus",
    "BatchStatus",
    "BatchPriority",
    "derive_batch_status",
    "LedgerEntry",
    "LedgerEntryType",
    "AccountType",
    "PayoutRequest",
    "PayoutStatus",
    "PAYMENT_METHODS",
]
