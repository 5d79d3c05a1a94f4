"""
Jobs API Routes
Single render job status and manual retry of failed jobs.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_batch_processor, get_current_business, get_db, rate_limit
from modelsnap.core.exceptions import AuthorizationError, NotFoundError
from modelsnap.models.business import BusinessProfile
from modelsnap.models.job import RenderJob
from modelsnap.schemas.job import JobResponse

router = APIRouter()


def _owned_job(db: Session, job_id: str, business: BusinessProfile) -> RenderJob:
    job = db.get(RenderJob, job_id)

    if not job:
        raise NotFoundError("Job not found")
    if job.business_id != business.id:
        raise AuthorizationError("Forbidden")

    return job


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: str,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    """Get job status and result."""
    return _owned_job(db, job_id, business)


@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    dependencies=[Depends(rate_limit("retry"))],
)
async def retry_job(
    job_id: str,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
    processor=Depends(get_batch_processor),
):
    """
    Requeue a terminally failed job.

    No credits or royalties are charged again; the job keeps what was
    settled when its batch was admitted.
    """
    _owned_job(db, job_id, business)
    return processor.retry_failed_job(db, job_id)
