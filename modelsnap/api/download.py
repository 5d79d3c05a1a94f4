"""
Download API Route
Serves rendered images through the access/watermark gate.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_current_business, get_db, get_storage, rate_limit
from modelsnap.core.exceptions import NotFoundError, ValidationError
from modelsnap.models.business import BusinessProfile
from modelsnap.models.job import JobKind, RenderJob
from modelsnap.services.access import AccessGate

router = APIRouter()

DOWNLOAD_TYPES = {"ai": JobKind.AI_AVATAR, "human": JobKind.HUMAN_MODEL}


@router.get("/download", dependencies=[Depends(rate_limit("download"))])
async def download_render(
    id: Optional[str] = None,
    type: str = "ai",
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
):
    """
    Download a rendered image as an attachment.

    AI-avatar renders are watermarked for free-tier businesses. Human-model
    renders require a completed purchase of that model.
    """
    if not id:
        raise ValidationError("Render ID is required")
    if type not in DOWNLOAD_TYPES:
        raise ValidationError("type must be 'ai' or 'human'")

    job = db.get(RenderJob, id)
    if job is None or job.job_kind is not DOWNLOAD_TYPES[type]:
        raise NotFoundError("Render not found")

    delivery = await AccessGate(db, storage).deliver(job, business)
    return Response(
        content=delivery.content,
        media_type=delivery.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{delivery.filename}"',
            "Cache-Control": "private, no-store",
            "X-Watermarked": "true" if delivery.watermarked else "false",
        },
    )
