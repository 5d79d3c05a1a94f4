"""
RQ Task Definitions
The functions RQ workers execute. Each builds its collaborators and runs one unit of work.
"""

import logging
import asyncio
from typing import Any, Dict, Optional

from modelsnap.core.config import settings

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Helper to run async code in sync context (for RQ)."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def build_processor():
    """Batch processor wired to the configured render service, storage and queues."""
    from modelsnap.services.notifications import Notifier
    from modelsnap.services.render import get_render_service
    from modelsnap.services.storage import get_storage_service
    from modelsnap.workers.processor import BatchProcessor
    from modelsnap.workers.queue import get_queue_manager

    queue_manager = get_queue_manager()
    return BatchProcessor(
        renderer=get_render_service(),
        storage=get_storage_service(),
        notifier=Notifier(queue_manager),
        dispatcher=queue_manager,
    )


def run_batch_drain_task(batch_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    RQ task: one drain pass.

    ``batch_id`` is the batch whose admission (or requeue) triggered the
    drain. The pass itself claims whichever batch is next by priority and age.
    """
    logger.info(f"[Task] Drain triggered by batch {batch_id}")
    summary = _run_async(build_processor().process_next_batch())
    if summary is None:
        logger.info("[Task] Nothing to drain")
    return summary


def run_notification_task(user_id: str, output_ref: str, kind: str) -> bool:
    """RQ task: deliver one completion notification."""
    from modelsnap.services.notifications import send_completion_notification

    return send_completion_notification(
        user_id,
        output_ref,
        kind,
        webhook_url=settings.NOTIFICATION_WEBHOOK_URL,
    )


__all__ = [
    "run_batch_drain_task",
    "run_notification_task",
    "build_processor",
]
