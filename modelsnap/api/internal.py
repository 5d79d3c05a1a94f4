"""
Internal API Routes
Drain trigger for schedulers that cannot run an RQ worker.
"""

from fastapi import APIRouter, Depends

from modelsnap.api.deps import get_batch_processor, require_worker_secret

router = APIRouter()


@router.post("/worker/drain", dependencies=[Depends(require_worker_secret)])
async def drain_once(processor=Depends(get_batch_processor)):
    """Run one drain pass in-process."""
    summary = await processor.process_next_batch()
    if summary is None:
        return {"status": "idle"}
    return {"status": "processed", "batch": summary}
