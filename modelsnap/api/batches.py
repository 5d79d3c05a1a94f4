"""
Batches API Routes
Batch submission and status.
"""

from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_current_business, get_db, get_queue_manager, rate_limit
from modelsnap.core.exceptions import AuthorizationError, NotFoundError
from modelsnap.models.business import BusinessProfile
from modelsnap.models.job import RenderBatch
from modelsnap.schemas.batch import (
    BatchCreateRequest,
    BatchCreateResponse,
    BatchListItem,
    BatchResponse,
)
from modelsnap.services.admission import BatchAdmissionService

router = APIRouter()


@router.post(
    "",
    response_model=BatchCreateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("batches"))],
)
async def create_batch(
    body: BatchCreateRequest,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
    queue_manager=Depends(get_queue_manager),
):
    """
    Submit up to 50 render requests as one batch.

    The whole batch is rejected if any item is invalid, uses a model without
    approved consent, or the business lacks credits for its avatar items.
    """
    service = BatchAdmissionService(db, dispatcher=queue_manager)
    batch = service.admit(
        business.id,
        [item.model_dump() for item in body.requests],
        priority=body.priority,
    )
    return BatchCreateResponse(batch_id=batch.id, total_requests=batch.total_count, status=batch.status)


@router.get("", response_model=List[BatchListItem])
async def list_batches(
    limit: int = 20,
    offset: int = 0,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """List the caller's batches, newest first."""
    return (
        db.query(RenderBatch)
        .filter(RenderBatch.business_id == business.id)
        .order_by(RenderBatch.created_at.desc())
        .offset(offset)
        .limit(min(limit, 100))
        .all()
    )


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(
    batch_id: str,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Batch status with per-job status and last error."""
    batch = db.get(RenderBatch, batch_id)
    if batch is None:
        raise NotFoundError("Batch not found", code="BATCH_NOT_FOUND")
    if batch.business_id != business.id:
        raise AuthorizationError("Forbidden")
    return batch
