import asyncio
import io

import pytest
from PIL import Image, UnidentifiedImageError

from modelsnap.core.exceptions import AuthorizationError, NotFoundError
from modelsnap.models import JobKind, JobStatus, RenderBatch, RenderJob
from modelsnap.services.access import AccessGate, has_completed_purchase, record_purchase


def make_jpeg(size=(240, 320)):
    buffer = io.BytesIO()
    Image.new("RGB", size, (120, 140, 160)).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


@pytest.fixture
def make_job(db):
    def _make(kind=JobKind.AI_AVATAR, business_id="biz_test", model_id=None, status=JobStatus.COMPLETED, output_url="/files/renders/biz_test/job_1.jpg"):
        batch = RenderBatch(id=f"batch_{kind.value.lower()}_{status.value}", business_id=business_id, total_count=1)
        job = RenderJob(
            id=f"job_{kind.value.lower()}_{status.value}",
            batch_id=batch.id,
            business_id=business_id,
            kind=kind.value,
            model_id=model_id,
            avatar_id="/avatars/female-01.jpg" if kind is JobKind.AI_AVATAR else None,
            garment_image_url="https://cdn.example.com/garments/dress.jpg",
            status=status.value,
            output_url=output_url if status is JobStatus.COMPLETED else None,
        )
        db.add_all([batch, job])
        db.commit()
        return job

    return _make


def deliver(gate, job, business):
    return asyncio.run(gate.deliver(job, business))


def test_free_tier_avatar_download_is_watermarked(db, make_business, make_job, storage):
    business = make_business(tier="free")
    job = make_job()
    original = make_jpeg(size=(400, 600))
    storage.files["renders/biz_test/job_1.jpg"] = original

    delivery = deliver(AccessGate(db, storage), job, business)

    assert delivery.watermarked
    assert delivery.content_type == "image/jpeg"
    assert delivery.filename == f"generated-{job.id}.jpg"
    assert delivery.content != original
    assert Image.open(io.BytesIO(delivery.content)).size == (400, 600)
    # Stored original is untouched
    assert storage.files["renders/biz_test/job_1.jpg"] == original


def test_paid_tier_gets_original(db, make_business, make_job, storage):
    business = make_business(tier="growth")
    job = make_job()
    original = make_jpeg()
    storage.files["renders/biz_test/job_1.jpg"] = original

    delivery = deliver(AccessGate(db, storage), job, business)

    assert not delivery.watermarked
    assert delivery.content == original


def test_png_original_keeps_its_type(db, make_business, make_job, storage):
    business = make_business(tier="starter")
    job = make_job()
    buffer = io.BytesIO()
    Image.new("RGB", (10, 10)).save(buffer, format="PNG")
    storage.files["renders/biz_test/job_1.jpg"] = buffer.getvalue()

    delivery = deliver(AccessGate(db, storage), job, business)

    assert delivery.content_type == "image/png"
    assert delivery.filename.endswith(".png")


def test_human_model_download_requires_purchase(db, make_business, make_model, make_job, storage):
    business = make_business(tier="growth")
    make_model()
    job = make_job(kind=JobKind.HUMAN_MODEL, model_id="mdl_test")

    with pytest.raises(AuthorizationError) as exc:
        AccessGate(db, storage).check_access(job, business)

    assert exc.value.code == "PURCHASE_REQUIRED"
    assert exc.value.details == {"model_id": "mdl_test"}


def test_purchased_human_model_download_is_never_watermarked(db, make_business, make_model, make_job, storage):
    business = make_business(tier="free")
    make_model()
    job = make_job(kind=JobKind.HUMAN_MODEL, model_id="mdl_test")
    record_purchase(db, "biz_test", "mdl_test", amount_cents=4900)
    db.commit()
    original = make_jpeg()
    storage.files["renders/biz_test/job_1.jpg"] = original

    assert has_completed_purchase(db, "biz_test", "mdl_test")
    delivery = deliver(AccessGate(db, storage), job, business)

    assert not delivery.watermarked
    assert delivery.content == original


def test_other_business_is_forbidden(db, make_business, make_job, storage):
    make_business()
    intruder = make_business(business_id="biz_other", tier="growth")
    job = make_job()

    with pytest.raises(AuthorizationError) as exc:
        AccessGate(db, storage).check_access(job, intruder)
    assert exc.value.code == "FORBIDDEN"


def test_incomplete_job_has_no_output(db, make_business, make_job, storage):
    business = make_business()
    job = make_job(status=JobStatus.PROCESSING)

    with pytest.raises(NotFoundError) as exc:
        AccessGate(db, storage).check_access(job, business)
    assert exc.value.code == "OUTPUT_NOT_FOUND"


def test_corrupt_output_is_not_served_unmarked(db, make_business, make_job, storage):
    business = make_business(tier="free")
    job = make_job()
    storage.files["renders/biz_test/job_1.jpg"] = b"not an image"

    with pytest.raises(UnidentifiedImageError):
        deliver(AccessGate(db, storage), job, business)
