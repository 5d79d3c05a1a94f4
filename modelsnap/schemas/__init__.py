# Pydantic schemas package
from modelsnap.schemas.job import JobResponse, JobSummary
from modelsnap.schemas.batch import (
    RenderItemRequest, BatchCreateRequest, BatchCreateResponse, BatchResponse, BatchListItem
)
from modelsnap.schemas.ledger import LedgerEntryResponse, CreditBalanceResponse, CreditAdjustRequest
from modelsnap.schemas.payout import (
    PayoutCreateRequest, PayoutProcessRequest, PayoutResponse, PayoutListResponse
)

__all__ = [
    "JobResponse", "JobSummary",
    "RenderItemRequest", "BatchCreateRequest", "BatchCreateResponse", "BatchResponse", "BatchListItem",
    "LedgerEntryResponse", "CreditBalanceResponse", "CreditAdjustRequest",
    "PayoutCreateRequest", "PayoutProcessRequest", "PayoutResponse", "PayoutListResponse",
]
