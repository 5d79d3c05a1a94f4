"""
Batch Admission
Validates a batch of render requests, reserves ledger funds and hands the batch to the workers.

Admission is all-or-nothing: one invalid item, missing consent or a short
credit balance rejects the whole batch and nothing is written. When every
item passes, all jobs, their ledger effects and the batch row commit in a
single transaction, and only then is a drain task queued.
"""

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, List, Mapping, Optional, Protocol, Sequence, Union

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from modelsnap.core.config import settings
from modelsnap.core.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from modelsnap.core.ids import new_id
from modelsnap.models.business import BusinessProfile
from modelsnap.models.job import (
    BatchPriority,
    BatchStatus,
    JobKind,
    JobStatus,
    RenderBatch,
    RenderJob,
)
from modelsnap.models.model_profile import ModelProfile
from modelsnap.services.consent import ConsentService
from modelsnap.services.ledger import LedgerService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvatarTarget:
    """Garment on an AI avatar. Paid with one business credit."""
    kind: ClassVar[JobKind] = JobKind.AI_AVATAR

    garment_image_url: str
    avatar_id: Optional[str] = None
    avatar_image_url: Optional[str] = None

    @property
    def model_image_url(self) -> str:
        return self.avatar_image_url or self.avatar_id


@dataclass(frozen=True)
class HumanModelTarget:
    """Garment on a consenting human model. Accrues a royalty to the model."""
    kind: ClassVar[JobKind] = JobKind.HUMAN_MODEL

    garment_image_url: str
    model_id: str


RenderTarget = Union[AvatarTarget, HumanModelTarget]


class BatchDispatcher(Protocol):
    def enqueue_batch_drain(self, batch_id: str, priority: BatchPriority = ..., delay_seconds: int = ...) -> Any:
        ...


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_item(item: Mapping[str, Any], index: int) -> RenderTarget:
    """
    Turn one raw request item into a render target.

    Raises:
        ValidationError: missing garment, or not exactly one of avatar/model
    """
    garment = _clean(item.get("garment_image_url"))
    avatar_id = _clean(item.get("avatar_id"))
    avatar_image_url = _clean(item.get("avatar_image_url"))
    model_id = _clean(item.get("model_id"))

    if not garment:
        raise ValidationError(
            f"Item {index}: garment_image_url is required",
            details={"index": index},
        )

    has_avatar = bool(avatar_id or avatar_image_url)
    if has_avatar == bool(model_id):
        raise ValidationError(
            f"Item {index}: provide either an avatar (avatar_id or avatar_image_url) or a model_id",
            details={"index": index},
        )

    if model_id:
        return HumanModelTarget(garment_image_url=garment, model_id=model_id)
    return AvatarTarget(garment_image_url=garment, avatar_id=avatar_id, avatar_image_url=avatar_image_url)


def parse_priority(priority: Optional[str]) -> BatchPriority:
    if priority is None:
        return BatchPriority.NORMAL
    try:
        return BatchPriority(priority)
    except ValueError:
        raise ValidationError(f"Invalid priority '{priority}'. Must be one of: low, normal, high")


class BatchAdmissionService:
    def __init__(
        self,
        db: Session,
        dispatcher: Optional[BatchDispatcher] = None,
        ledger: Optional[LedgerService] = None,
        consent: Optional[ConsentService] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.ledger = ledger or LedgerService(db)
        self.consent = consent or ConsentService(db)

    def validate(self, items: Sequence[Mapping[str, Any]]) -> List[RenderTarget]:
        if not items:
            raise ValidationError("requests must contain at least one item")
        if len(items) > settings.MAX_BATCH_SIZE:
            raise ValidationError(
                f"Batch size cannot exceed {settings.MAX_BATCH_SIZE} requests",
                details={"max_batch_size": settings.MAX_BATCH_SIZE, "received": len(items)},
            )
        return [parse_item(item, index) for index, item in enumerate(items)]

    def _check_human_model(self, business_id: str, target: HumanModelTarget):
        model = self.db.get(ModelProfile, target.model_id)
        if model is None or not model.is_active:
            raise NotFoundError(
                f"Model {target.model_id} not found or inactive",
                code="MODEL_NOT_FOUND",
                details={"model_id": target.model_id},
            )
        if not self.consent.has_approved_consent(business_id, target.model_id):
            raise AuthorizationError(
                f"Consent required to use model {target.model_id}",
                code="CONSENT_REQUIRED",
                details={"model_id": target.model_id},
            )

    def _check_credits(self, business_id: str, targets: List[RenderTarget]):
        needed = sum(1 for t in targets if t.kind is JobKind.AI_AVATAR)
        if needed == 0:
            return
        available = self.ledger.available_credits(business_id)
        if available < needed:
            raise InsufficientFundsError(
                f"Insufficient credits: {available} available, {needed} required",
                code="INSUFFICIENT_CREDITS",
                details={"credits_available": available, "credits_required": needed},
            )

    def _create_job(self, batch: RenderBatch, business_id: str, position: int, target: RenderTarget) -> RenderJob:
        job = RenderJob(
            id=new_id("job"),
            batch_id=batch.id,
            business_id=business_id,
            position=position,
            kind=target.kind.value,
            garment_image_url=target.garment_image_url,
            status=JobStatus.PENDING.value,
            retry_count=0,
        )

        if isinstance(target, AvatarTarget):
            job.avatar_id = target.avatar_id
            job.model_image_url = target.model_image_url
            job.credits_reserved = 1
            self.db.add(job)
            self.ledger.debit_credits(business_id, 1, reason=f"AI avatar render {job.id}", job_id=job.id)
        else:
            job.model_id = target.model_id
            job.royalty_reserved_cents = settings.ROYALTY_AMOUNT_CENTS
            self.db.add(job)
            self.ledger.accrue_royalty(
                target.model_id,
                settings.ROYALTY_AMOUNT_CENTS,
                reason=f"Royalty for render {job.id}",
                job_id=job.id,
            )
        return job

    def admit(
        self,
        business_id: str,
        items: Sequence[Mapping[str, Any]],
        priority: Optional[str] = None,
    ) -> RenderBatch:
        """
        Admit a batch of render requests.

        Returns:
            The committed batch (all jobs pending)

        Raises:
            ValidationError, NotFoundError, AuthorizationError, InsufficientFundsError.
            Nothing is persisted when any of these is raised.
        """
        batch_priority = parse_priority(priority)
        targets = self.validate(items)

        try:
            if self.db.get(BusinessProfile, business_id) is None:
                raise NotFoundError("Business profile not found", code="PROFILE_NOT_FOUND")

            for target in targets:
                if isinstance(target, HumanModelTarget):
                    self._check_human_model(business_id, target)
            self._check_credits(business_id, targets)

            batch = RenderBatch(
                id=new_id("batch"),
                business_id=business_id,
                priority=batch_priority.value,
                priority_rank=batch_priority.rank,
                status=BatchStatus.PENDING.value,
                total_count=len(targets),
                completed_count=0,
                failed_count=0,
                processing_count=0,
            )
            self.db.add(batch)
            self.db.flush()

            for position, target in enumerate(targets):
                self._create_job(batch, business_id, position, target)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(batch)
        logger.info(
            f"[Admission] Batch {batch.id} admitted for {business_id}: "
            f"{batch.total_count} jobs, priority {batch.priority}"
        )

        self._dispatch(batch.id, batch_priority)
        return batch

    def _dispatch(self, batch_id: str, priority: BatchPriority):
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.enqueue_batch_drain(batch_id, priority=priority)
        except RedisError as e:
            # The batch is durable; the next drain pass picks it up
            logger.error(f"[Admission] Could not enqueue drain for batch {batch_id}: {e}")
