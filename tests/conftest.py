import io
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from modelsnap.api.deps import get_batch_processor, get_db, get_queue_manager, get_storage
from modelsnap.core.config import settings
from modelsnap.core.database import init_db
from modelsnap.core.exceptions import StorageError
from modelsnap.core.rate_limit import MemoryCounterStore, RateLimiter
from modelsnap.main import app
from modelsnap.models import (
    BusinessProfile,
    ConsentGrant,
    ConsentStatus,
    ModelProfile,
    ModelProfileStatus,
)
from modelsnap.services.render import RenderResult
from modelsnap.workers.processor import BatchProcessor


def make_jpeg(size=(240, 320), color=(200, 180, 160)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


class FakeDispatcher:
    def __init__(self, error: Exception = None):
        self.calls = []
        self.error = error

    def enqueue_batch_drain(self, batch_id, priority=None, delay_seconds=0):
        if self.error is not None:
            raise self.error
        self.calls.append({"batch_id": batch_id, "priority": priority, "delay_seconds": delay_seconds})

    def get_queue_stats(self):
        return {"render": {"queued": len(self.calls), "started": 0, "failed": 0, "scheduled": 0}}


class FakeRenderer:
    """Scripted render service: each call pops the next outcome (an exception or 'ok')."""

    def __init__(self, outcomes=None, image_bytes: bytes = None):
        self.outcomes = list(outcomes or [])
        self.image_bytes = image_bytes or make_jpeg()
        self.calls = []

    async def render(self, garment_image_url, model_image_url):
        self.calls.append((garment_image_url, model_image_url))
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        n = len(self.calls)
        return RenderResult(external_id=f"pred_{n}", output_url=f"https://cdn.fashn.ai/{n}/output_0.jpg")

    async def download_output(self, url):
        return self.image_bytes


class FakeStorage:
    def __init__(self):
        self.files = {}

    async def upload_bytes(self, data, path, content_type="image/jpeg"):
        self.files[path] = data
        return f"/files/{path}"

    async def download_bytes(self, url):
        path = url.replace("/files/", "", 1)
        if path not in self.files:
            raise StorageError(f"Read failed for {path}")
        return self.files[path]


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def notify_completion(self, user_id, output_ref, kind):
        self.sent.append((user_id, output_ref, kind))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_business(db):
    def _make(business_id="biz_test", tier="free", credits=3, last_credit_reset=None):
        business = BusinessProfile(
            id=business_id,
            name=f"Business {business_id}",
            subscription_tier=tier,
            credits_remaining=credits,
            credits_total=credits,
            last_credit_reset=last_credit_reset or datetime.utcnow(),
        )
        db.add(business)
        db.commit()
        return business

    return _make


@pytest.fixture
def make_model(db):
    def _make(model_id="mdl_test", status=ModelProfileStatus.ACTIVE, images=None, available_cents=0):
        model = ModelProfile(
            id=model_id,
            name=f"Model {model_id}",
            status=status,
            reference_images=["/files/models/ref.jpg"] if images is None else images,
            available_balance_cents=available_cents,
            lifetime_earnings_cents=available_cents,
        )
        db.add(model)
        db.commit()
        return model

    return _make


@pytest.fixture
def grant_consent(db):
    def _grant(business_id, model_id, status=ConsentStatus.APPROVED):
        grant = ConsentGrant(
            id=f"cns_{business_id}_{model_id}",
            business_id=business_id,
            model_id=model_id,
            status=status,
        )
        db.add(grant)
        db.commit()
        return grant

    return _grant


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def processor(session_factory, renderer, storage, notifier, dispatcher):
    return BatchProcessor(
        renderer=renderer,
        storage=storage,
        notifier=notifier,
        dispatcher=dispatcher,
        session_factory=session_factory,
        worker_id="test-worker",
    )


@pytest.fixture
def client(session_factory, dispatcher, storage, processor, monkeypatch):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "admin-secret")
    monkeypatch.setattr(settings, "WORKER_SECRET", "worker-secret")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_queue_manager] = lambda: dispatcher
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_batch_processor] = lambda: processor
    app.state.rate_limiter = RateLimiter(MemoryCounterStore(), max_requests=1000, window_seconds=60)

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.rate_limiter = None
