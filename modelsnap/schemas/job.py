"""
Job Schemas
Pydantic models for render job responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class JobSummary(BaseModel):
    """Per-job line inside a batch status."""
    id: str
    position: int
    kind: str
    status: str
    retry_count: int
    error_message: Optional[str]
    output_url: Optional[str]

    class Config:
        from_attributes = True


class JobResponse(BaseModel):
    """Schema for job response."""
    id: str
    batch_id: str
    kind: str
    model_id: Optional[str]
    avatar_id: Optional[str]
    garment_image_url: str
    status: str
    retry_count: int
    error_message: Optional[str]
    output_url: Optional[str]
    credits_reserved: int
    royalty_reserved_cents: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
