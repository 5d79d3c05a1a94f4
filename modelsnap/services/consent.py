"""
Consent Service
Business <-> human model consent grants.

The pipeline itself only ever asks ``has_approved_consent``; requesting and
deciding grants belongs to the consent collaborator and is kept small.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from modelsnap.core.exceptions import InvalidStateError, NotFoundError
from modelsnap.core.ids import new_id
from modelsnap.models.consent import ConsentGrant, ConsentStatus
from modelsnap.models.model_profile import ModelProfile

logger = logging.getLogger(__name__)


class ConsentService:
    def __init__(self, db: Session):
        self.db = db

    def get_grant(self, business_id: str, model_id: str) -> Optional[ConsentGrant]:
        return (
            self.db.query(ConsentGrant)
            .filter(ConsentGrant.business_id == business_id, ConsentGrant.model_id == model_id)
            .first()
        )

    def has_approved_consent(self, business_id: str, model_id: str) -> bool:
        grant = self.get_grant(business_id, model_id)
        return grant is not None and grant.status == ConsentStatus.APPROVED

    def request_consent(self, business_id: str, model_id: str, message: Optional[str] = None) -> ConsentGrant:
        """
        Ask a model for consent.

        An approved grant is returned as-is (approval is one-time and never
        re-requested). A rejected grant is re-opened as pending.
        """
        if self.db.get(ModelProfile, model_id) is None:
            raise NotFoundError("Model not found", code="MODEL_NOT_FOUND")

        grant = self.get_grant(business_id, model_id)
        if grant is None:
            grant = ConsentGrant(
                id=new_id("cns"),
                business_id=business_id,
                model_id=model_id,
                status=ConsentStatus.PENDING,
                message=message,
            )
            self.db.add(grant)
            self.db.flush()
            logger.info(f"[Consent] Requested {business_id} -> {model_id}")
            return grant

        if grant.status == ConsentStatus.REJECTED:
            grant.status = ConsentStatus.PENDING
            grant.message = message
            grant.requested_at = datetime.utcnow()
            grant.decided_at = None
            self.db.flush()
            logger.info(f"[Consent] Re-requested {business_id} -> {model_id}")

        return grant

    def decide(self, grant_id: str, approve: bool) -> ConsentGrant:
        """Model's answer to a pending request."""
        new_status = ConsentStatus.APPROVED if approve else ConsentStatus.REJECTED
        result = self.db.execute(
            update(ConsentGrant)
            .where(ConsentGrant.id == grant_id, ConsentGrant.status == ConsentStatus.PENDING)
            .values(status=new_status, decided_at=datetime.utcnow())
        )
        grant = self.db.get(ConsentGrant, grant_id)
        if grant is None:
            raise NotFoundError("Consent request not found")
        if result.rowcount == 0:
            raise InvalidStateError(f"Consent request is already {grant.status}")

        self.db.refresh(grant)
        logger.info(f"[Consent] {grant.business_id} -> {grant.model_id}: {new_status}")
        return grant
