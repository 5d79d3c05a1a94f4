"""
Batch Schemas
Pydantic models for render batch requests and responses.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from modelsnap.schemas.job import JobSummary


class RenderItemRequest(BaseModel):
    """One garment on one avatar or human model."""
    garment_image_url: Optional[str] = None
    avatar_id: Optional[str] = None  # Avatar catalog path, e.g. /avatars/female-01.jpg
    avatar_image_url: Optional[str] = None
    model_id: Optional[str] = None


class BatchCreateRequest(BaseModel):
    """Schema for batch submission."""
    requests: List[RenderItemRequest] = Field(default_factory=list)
    priority: Optional[str] = None  # low | normal | high


class BatchCreateResponse(BaseModel):
    batch_id: str
    total_requests: int
    status: str


class BatchResponse(BaseModel):
    """Schema for batch status."""
    id: str
    status: str
    priority: str
    total_count: int
    completed_count: int
    failed_count: int
    processing_count: int
    processed_by: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    jobs: List[JobSummary] = []

    class Config:
        from_attributes = True


class BatchListItem(BaseModel):
    id: str
    status: str
    priority: str
    total_count: int
    completed_count: int
    failed_count: int
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
