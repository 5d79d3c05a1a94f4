import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from modelsnap.core.config import settings
from modelsnap.core.exceptions import ExternalServiceError, InvalidStateError
from modelsnap.models import (
    BatchPriority,
    BusinessProfile,
    LedgerEntry,
    LedgerEntryType,
    ModelProfile,
    RenderBatch,
    RenderJob,
)
from modelsnap.services.admission import BatchAdmissionService
from modelsnap.workers.processor import ABANDON_MESSAGE

GARMENT = "https://cdn.example.com/garments/dress.jpg"


def avatar_item(n=1):
    return {"garment_image_url": GARMENT, "avatar_id": f"/avatars/male-0{n}.jpg"}


def model_item():
    return {"garment_image_url": GARMENT, "model_id": "mdl_test"}


def drain(processor):
    return asyncio.run(processor.process_next_batch())


def jobs_of(db, batch_id):
    db.expire_all()
    return db.query(RenderJob).filter(RenderJob.batch_id == batch_id).order_by(RenderJob.position).all()


def test_human_model_job_completes_after_retries_with_single_royalty(
    db, make_business, make_model, grant_consent, processor, renderer, storage, notifier, dispatcher
):
    make_business()
    make_model()
    grant_consent("biz_test", "mdl_test")
    batch = BatchAdmissionService(db).admit("biz_test", [model_item()])
    renderer.outcomes = [ExternalServiceError("timed out"), ExternalServiceError("503"), "ok"]

    first = drain(processor)
    assert first["status"] == "pending"
    assert dispatcher.calls[-1] == {
        "batch_id": batch.id,
        "priority": BatchPriority.NORMAL,
        "delay_seconds": settings.DRAIN_REQUEUE_DELAY,
    }
    drain(processor)
    last = drain(processor)

    assert last["status"] == "completed"
    [job] = jobs_of(db, batch.id)
    assert job.status == "completed"
    assert job.retry_count == 2
    assert job.output_url == f"/files/renders/biz_test/{job.id}.jpg"
    assert job.external_id == "pred_3"
    assert f"renders/biz_test/{job.id}.jpg" in storage.files
    assert renderer.calls[-1] == (GARMENT, "/files/models/ref.jpg")
    assert notifier.sent == [("biz_test", job.output_url, "HUMAN_MODEL")]

    assert db.get(ModelProfile, "mdl_test").available_balance_cents == settings.ROYALTY_AMOUNT_CENTS
    royalties = db.query(LedgerEntry).filter(LedgerEntry.entry_type == LedgerEntryType.ROYALTY).count()
    assert royalties == 1


def test_job_fails_permanently_after_retry_cap(db, make_business, processor, renderer):
    make_business(credits=3)
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item(1), avatar_item(2)])
    entries_after_admission = db.query(LedgerEntry).count()
    renderer.outcomes = [
        ExternalServiceError("render failed"),
        "ok",
        ExternalServiceError("render failed"),
        ExternalServiceError("render failed"),
    ]

    for _ in range(3):
        drain(processor)

    failed, completed = jobs_of(db, batch.id)
    assert failed.status == "failed"
    assert failed.retry_count == settings.MAX_JOB_RETRIES
    assert failed.output_url is None
    assert failed.error_message == "render failed"
    assert completed.status == "completed"

    db.expire_all()
    refreshed = db.get(RenderBatch, batch.id)
    assert refreshed.status == "completed"
    assert (refreshed.completed_count, refreshed.failed_count, refreshed.processing_count) == (1, 1, 0)
    assert refreshed.completed_at is not None

    # Further passes neither resurrect the job nor touch the ledger
    assert drain(processor) is None
    assert jobs_of(db, batch.id)[0].retry_count == settings.MAX_JOB_RETRIES
    assert db.query(LedgerEntry).count() == entries_after_admission
    assert db.get(BusinessProfile, "biz_test").credits_remaining == 1


def test_batch_fails_when_every_job_fails(db, make_business, processor, renderer):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item()])
    renderer.outcomes = [ExternalServiceError("nope")] * 3

    results = [drain(processor) for _ in range(3)]

    assert [r["status"] for r in results] == ["pending", "pending", "failed"]
    db.expire_all()
    assert db.get(RenderBatch, batch.id).failed_count == 1


def test_missing_reference_image_fails_without_retry(db, make_business, make_model, grant_consent, processor, renderer):
    make_business()
    make_model(images=[])
    grant_consent("biz_test", "mdl_test")
    batch = BatchAdmissionService(db).admit("biz_test", [model_item()])

    summary = drain(processor)

    assert summary["status"] == "failed"
    [job] = jobs_of(db, batch.id)
    assert job.retry_count == 1
    assert "reference image" in job.error_message
    assert renderer.calls == []


def test_unexpected_error_does_not_stop_siblings(db, make_business, processor, renderer):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item(1), avatar_item(2)])
    renderer.outcomes = [RuntimeError("boom"), "ok"]

    summary = drain(processor)

    assert (summary["failed"], summary["completed"]) == (1, 1)
    first, second = jobs_of(db, batch.id)
    assert first.status == "pending"
    assert first.error_message.startswith("Unexpected error")
    assert second.status == "completed"


def test_highest_priority_oldest_batch_first(db, make_business, processor):
    make_business(credits=3)
    service = BatchAdmissionService(db)
    low = service.admit("biz_test", [avatar_item()], priority="low")
    normal = service.admit("biz_test", [avatar_item()])
    high = service.admit("biz_test", [avatar_item()], priority="high")

    order = [drain(processor)["batch_id"] for _ in range(3)]

    assert order == [high.id, normal.id, low.id]


def test_processing_batch_is_not_claimed_until_stale(db, make_business, processor):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item()])
    db.execute(update(RenderBatch).where(RenderBatch.id == batch.id).values(status="processing", updated_at=datetime.utcnow()))
    db.execute(update(RenderJob).where(RenderJob.batch_id == batch.id).values(status="processing"))
    db.commit()

    assert drain(processor) is None

    stale = datetime.utcnow() - timedelta(seconds=settings.STALE_BATCH_SECONDS + 60)
    db.execute(update(RenderBatch).where(RenderBatch.id == batch.id).values(updated_at=stale))
    db.commit()

    summary = drain(processor)

    assert summary["batch_id"] == batch.id
    assert summary["status"] == "completed"
    [job] = jobs_of(db, batch.id)
    assert job.retry_count == 1
    assert job.status == "completed"
    assert db.get(RenderBatch, batch.id).processed_by == "test-worker"


def test_abandon_fails_open_jobs(db, make_business, processor):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item(1), avatar_item(2)])

    abandoned = processor.abandon_batch(db, batch.id)

    assert abandoned.status == "failed"
    assert abandoned.failed_count == 2
    assert all(j.error_message == ABANDON_MESSAGE for j in jobs_of(db, batch.id))
    assert drain(processor) is None


def test_abandon_during_render_discards_output(db, session_factory, make_business, processor, renderer, storage):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item()])
    original_render = renderer.render

    async def render_then_abandon(garment, model_image):
        other = session_factory()
        try:
            processor.abandon_batch(other, batch.id)
        finally:
            other.close()
        return await original_render(garment, model_image)

    renderer.render = render_then_abandon

    summary = drain(processor)

    assert summary["skipped"] == 1
    [job] = jobs_of(db, batch.id)
    assert job.status == "failed"
    assert job.output_url is None


def test_failed_job_can_be_retried_without_recharging(db, make_business, processor, renderer, dispatcher):
    make_business(credits=1)
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item()])
    renderer.outcomes = [ExternalServiceError("render failed")] * 3
    for _ in range(3):
        drain(processor)
    [job] = jobs_of(db, batch.id)
    assert job.status == "failed"
    entries_before = db.query(LedgerEntry).count()

    retried = processor.retry_failed_job(db, job.id)

    assert retried.status == "pending"
    assert retried.retry_count == 0
    assert retried.error_message is None
    db.expire_all()
    reopened = db.get(RenderBatch, batch.id)
    assert reopened.status == "pending"
    assert reopened.failed_count == 0
    assert reopened.completed_at is None
    assert dispatcher.calls[-1] == {"batch_id": batch.id, "priority": BatchPriority.NORMAL, "delay_seconds": 0}

    summary = drain(processor)

    assert summary["status"] == "completed"
    assert jobs_of(db, batch.id)[0].status == "completed"
    assert db.query(LedgerEntry).count() == entries_before
    assert db.get(BusinessProfile, "biz_test").credits_remaining == 0


def test_only_failed_jobs_can_be_retried(db, make_business, processor):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item()])
    [job] = jobs_of(db, batch.id)

    with pytest.raises(InvalidStateError) as exc:
        processor.retry_failed_job(db, job.id)

    assert exc.value.code == "JOB_NOT_FAILED"
    assert jobs_of(db, batch.id)[0].status == "pending"


def test_refresh_keeps_first_completion_time(db, make_business, processor):
    make_business()
    batch = BatchAdmissionService(db).admit("biz_test", [avatar_item()])
    drain(processor)
    db.expire_all()
    finished_at = db.get(RenderBatch, batch.id).completed_at
    assert finished_at is not None

    processor.abandon_batch(db, batch.id)
    processor.refresh_batch(db, batch.id)

    db.expire_all()
    assert db.get(RenderBatch, batch.id).completed_at == finished_at
