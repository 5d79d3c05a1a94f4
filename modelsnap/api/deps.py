"""
API Dependencies
Common dependencies for FastAPI routes (database sessions, caller identity, collaborators).

Caller identity comes from headers set by the authentication layer in front
of this service: ``X-Business-Id`` for businesses and ``X-Model-Id`` for
models. Admin routes require ``X-Admin-Token``; the internal drain route
requires ``Authorization: Bearer <WORKER_SECRET>``.
"""

import secrets
from typing import Generator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from modelsnap.core.config import settings
from modelsnap.core.database import SessionLocal
from modelsnap.core.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from modelsnap.models.business import BusinessProfile
from modelsnap.models.model_profile import ModelProfile


def get_db() -> Generator:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_business(
    x_business_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> BusinessProfile:
    if not x_business_id:
        raise AuthenticationError("Unauthorized")
    business = db.get(BusinessProfile, x_business_id)
    if business is None:
        raise NotFoundError("Business profile not found", code="PROFILE_NOT_FOUND")
    return business


def get_current_model(
    x_model_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> ModelProfile:
    if not x_model_id:
        raise AuthenticationError("Unauthorized")
    model = db.get(ModelProfile, x_model_id)
    if model is None:
        raise NotFoundError("Model profile not found", code="MODEL_NOT_FOUND")
    return model


def require_admin(
    x_admin_token: Optional[str] = Header(None),
    x_admin_id: Optional[str] = Header(None),
) -> str:
    """Returns the acting admin's id."""
    if not x_admin_token:
        raise AuthenticationError("Unauthorized")
    if not settings.ADMIN_API_TOKEN or not secrets.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise AuthorizationError("Admin access required", code="FORBIDDEN")
    return x_admin_id or "admin"


def require_worker_secret(authorization: Optional[str] = Header(None)) -> None:
    if not settings.WORKER_SECRET:
        raise AuthorizationError("Worker endpoint is disabled", code="FORBIDDEN")
    expected = f"Bearer {settings.WORKER_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise AuthenticationError("Unauthorized")


def get_queue_manager():
    from modelsnap.workers.queue import get_queue_manager as _get_queue_manager
    return _get_queue_manager()


def get_storage():
    from modelsnap.services.storage import get_storage_service
    return get_storage_service()


def get_batch_processor():
    from modelsnap.workers.tasks import build_processor
    return build_processor()


def rate_limit(scope: str):
    """Dependency factory: count the request against ``app.state.rate_limiter``."""

    def _check(request: Request, x_business_id: Optional[str] = Header(None)) -> None:
        limiter = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return
        caller = x_business_id or (request.client.host if request.client else "anonymous")
        limiter.hit(f"{scope}:{caller}")

    return _check
