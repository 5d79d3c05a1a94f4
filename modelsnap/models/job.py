"""
Render Job Models
Database models for render batches and the jobs inside them.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey
from sqlalchemy.orm import relationship

from modelsnap.core.database import Base


class JobKind(str, Enum):
    """The two kinds of render work."""
    AI_AVATAR = "AI_AVATAR"
    HUMAN_MODEL = "HUMAN_MODEL"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Numeric rank; the queue drains higher ranks first."""
        return {"low": 0, "normal": 1, "high": 2}[self.value]


def derive_batch_status(job_statuses: Iterable[str]) -> BatchStatus:
    """
    Aggregate status of a batch from its jobs' statuses.

    processing while any job is processing, pending while any job is pending,
    failed when every job failed, otherwise completed (best-effort batches
    report completed as long as one job succeeded).
    """
    statuses = [JobStatus(s) for s in job_statuses]

    if JobStatus.PROCESSING in statuses:
        return BatchStatus.PROCESSING
    if JobStatus.PENDING in statuses:
        return BatchStatus.PENDING
    if statuses and all(s == JobStatus.FAILED for s in statuses):
        return BatchStatus.FAILED
    return BatchStatus.COMPLETED


class RenderBatch(Base):
    """A set of render jobs submitted and tracked together."""

    __tablename__ = "render_batches"

    id = Column(String, primary_key=True)  # batch_xxxx format
    business_id = Column(String, ForeignKey("business_profiles.id"), nullable=False, index=True)

    priority = Column(String, default=BatchPriority.NORMAL.value, nullable=False)
    priority_rank = Column(Integer, default=1, nullable=False, index=True)

    # Status: pending, processing, completed, failed (derived from jobs)
    status = Column(String, default=BatchStatus.PENDING.value, nullable=False, index=True)

    # Progress tracking, recomputed from job rows
    total_count = Column(Integer, nullable=False)
    completed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    processing_count = Column(Integer, default=0, nullable=False)

    # Processing information
    processed_by = Column(String, nullable=True)  # Worker identity
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    business = relationship("BusinessProfile", back_populates="batches")
    jobs = relationship("RenderJob", back_populates="batch", order_by="RenderJob.position")

    @property
    def is_terminal(self) -> bool:
        return self.status in (BatchStatus.COMPLETED.value, BatchStatus.FAILED.value)


class RenderJob(Base):
    """One garment x one model/avatar render."""

    __tablename__ = "render_jobs"

    id = Column(String, primary_key=True)  # job_xxxx format
    batch_id = Column(String, ForeignKey("render_batches.id"), nullable=False, index=True)
    business_id = Column(String, ForeignKey("business_profiles.id"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)

    # Request
    kind = Column(String, nullable=False)
    model_id = Column(String, ForeignKey("model_profiles.id"), nullable=True, index=True)
    avatar_id = Column(String, nullable=True)
    garment_image_url = Column(String, nullable=False)
    model_image_url = Column(String, nullable=True)  # Resolved at render time for human models

    # Status: pending, processing, completed, failed
    status = Column(String, default=JobStatus.PENDING.value, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    # Result
    output_url = Column(String, nullable=True)  # Set iff status == completed
    external_id = Column(String, nullable=True)  # Render service request id

    # Ledger reservation applied at admission
    credits_reserved = Column(Integer, default=0, nullable=False)
    royalty_reserved_cents = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    batch = relationship("RenderBatch", back_populates="jobs")

    @property
    def job_kind(self) -> JobKind:
        return JobKind(self.kind)
