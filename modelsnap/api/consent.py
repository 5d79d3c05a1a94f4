"""
Consent API Routes
Businesses ask models for consent; models answer.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from modelsnap.api.deps import get_current_business, get_current_model, get_db
from modelsnap.core.exceptions import AuthorizationError, NotFoundError
from modelsnap.models.business import BusinessProfile
from modelsnap.models.consent import ConsentGrant
from modelsnap.models.model_profile import ModelProfile
from modelsnap.services.consent import ConsentService

router = APIRouter()


class ConsentRequestBody(BaseModel):
    model_id: str
    message: Optional[str] = None


class ConsentDecisionBody(BaseModel):
    approve: bool


def _grant_dict(grant: ConsentGrant) -> dict:
    return {
        "id": grant.id,
        "business_id": grant.business_id,
        "model_id": grant.model_id,
        "status": grant.status,
        "requested_at": grant.requested_at,
        "decided_at": grant.decided_at,
    }


@router.post("/requests")
async def request_consent(
    body: ConsentRequestBody,
    business: BusinessProfile = Depends(get_current_business),
    db: Session = Depends(get_db),
):
    grant = ConsentService(db).request_consent(business.id, body.model_id, body.message)
    db.commit()
    return _grant_dict(grant)


@router.post("/requests/{grant_id}/decision")
async def decide_consent(
    grant_id: str,
    body: ConsentDecisionBody,
    model: ModelProfile = Depends(get_current_model),
    db: Session = Depends(get_db),
):
    grant = db.get(ConsentGrant, grant_id)
    if grant is None:
        raise NotFoundError("Consent request not found")
    if grant.model_id != model.id:
        raise AuthorizationError("Forbidden")

    grant = ConsentService(db).decide(grant_id, body.approve)
    db.commit()
    return _grant_dict(grant)
