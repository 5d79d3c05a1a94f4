"""
Access Gate
Delivery-time policy for rendered outputs.

Stored renders are always the unmarked originals. Whether a download is
blocked, watermarked or served as-is is decided here, on every request, from
the business's current purchases and subscription tier.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from modelsnap.core.config import settings
from modelsnap.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from modelsnap.core.ids import new_id
from modelsnap.models.business import BusinessProfile
from modelsnap.models.job import JobKind, JobStatus, RenderJob
from modelsnap.models.model_profile import ModelProfile
from modelsnap.models.purchase import ModelPurchase, PurchaseStatus
from modelsnap.services.storage import StorageService
from modelsnap.services.watermark import apply_watermark

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@dataclass
class Delivery:
    content: bytes
    content_type: str
    filename: str
    watermarked: bool


def has_completed_purchase(db: Session, business_id: str, model_id: str) -> bool:
    return (
        db.query(ModelPurchase.id)
        .filter(
            ModelPurchase.business_id == business_id,
            ModelPurchase.model_id == model_id,
            ModelPurchase.status == PurchaseStatus.COMPLETED,
        )
        .first()
        is not None
    )


def record_purchase(
    db: Session,
    business_id: str,
    model_id: str,
    amount_cents: int,
    provider_reference: Optional[str] = None,
    currency: str = "usd",
) -> ModelPurchase:
    """Called by the payment flow once a model access purchase has settled."""
    if db.get(ModelProfile, model_id) is None:
        raise NotFoundError("Model not found", code="MODEL_NOT_FOUND")
    if amount_cents < 0:
        raise ValidationError("Purchase amount cannot be negative")

    purchase = ModelPurchase(
        id=new_id("pur"),
        business_id=business_id,
        model_id=model_id,
        amount_cents=amount_cents,
        currency=currency,
        status=PurchaseStatus.COMPLETED,
        provider_reference=provider_reference,
        completed_at=datetime.utcnow(),
    )
    db.add(purchase)
    db.flush()
    logger.info(f"[Access] Purchase recorded: {business_id} -> {model_id}")
    return purchase


class AccessGate:
    def __init__(self, db: Session, storage: StorageService, watermark_text: Optional[str] = None):
        self.db = db
        self.storage = storage
        self.watermark_text = watermark_text or settings.WATERMARK_TEXT

    def check_access(self, job: RenderJob, business: BusinessProfile) -> bool:
        """
        Decide how the job's output may be served to ``business``.

        Returns:
            True when the output must be watermarked

        Raises:
            AuthorizationError: not the owner, or human-model output without a purchase
            NotFoundError: no completed output
        """
        if job.business_id != business.id:
            raise AuthorizationError("You do not have access to this render", code="FORBIDDEN")

        if job.status != JobStatus.COMPLETED.value or not job.output_url:
            raise NotFoundError("Render output not available", code="OUTPUT_NOT_FOUND")

        if job.job_kind is JobKind.HUMAN_MODEL:
            if not has_completed_purchase(self.db, business.id, job.model_id):
                raise AuthorizationError(
                    "Purchase this model to download the image",
                    code="PURCHASE_REQUIRED",
                    details={"model_id": job.model_id},
                )
            return False

        return business.is_free_tier

    async def deliver(self, job: RenderJob, business: BusinessProfile) -> Delivery:
        watermark = self.check_access(job, business)
        original = await self.storage.download_bytes(job.output_url)

        if not watermark:
            is_png = original.startswith(PNG_SIGNATURE)
            return Delivery(
                content=original,
                content_type="image/png" if is_png else "image/jpeg",
                filename=f"generated-{job.id}.{'png' if is_png else 'jpg'}",
                watermarked=False,
            )

        # A failed watermark propagates; the original is never served instead
        marked = apply_watermark(original, self.watermark_text)
        logger.info(f"[Access] Watermarked delivery of {job.id} for {business.id}")
        return Delivery(
            content=marked,
            content_type="image/jpeg",
            filename=f"generated-{job.id}.jpg",
            watermarked=True,
        )
