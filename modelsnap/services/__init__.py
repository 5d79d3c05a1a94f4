# Services package - pipeline business logic and external integrations
from modelsnap.services.ledger import LedgerService
from modelsnap.services.consent import ConsentService
from modelsnap.services.render import FashnRenderService, RenderResult
from modelsnap.services.storage import StorageService
from modelsnap.services.access import AccessGate, Delivery
from modelsnap.services.admission import BatchAdmissionService, AvatarTarget, HumanModelTarget
from modelsnap.services.payouts import PayoutService
from modelsnap.services.notifications import Notifier

__all__ = [
    "LedgerService",
    "ConsentService",
    "FashnRenderService",
    "RenderResult",
    "StorageService",
    "AccessGate",
    "Delivery",
    "BatchAdmissionService",
    "AvatarTarget",
    "HumanModelTarget",
    "PayoutService",
    "Notifier",
]
