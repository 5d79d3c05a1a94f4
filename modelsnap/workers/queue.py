"""
Queue Management Utilities
RQ queue wrappers for the admission -> worker handoff and notifications.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.job import Job

from modelsnap.core.config import settings
from modelsnap.core.redis import Queues, get_redis
from modelsnap.models.job import BatchPriority

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Manages RQ queues for render work.

    Features:
    - Priority queues (high / render / low) mirroring batch priority
    - Delayed re-drain for batches holding requeued jobs
    - Queue depth statistics
    """

    def __init__(self, connection=None):
        self._queues: Dict[str, Queue] = {}
        self._redis = connection

    @property
    def redis(self):
        """Lazy Redis connection."""
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def get_queue(self, queue_name: str = Queues.DEFAULT) -> Queue:
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(
                name=queue_name,
                connection=self.redis,
                default_timeout=settings.JOB_TIMEOUT_DRAIN
            )
            logger.debug(f"Created queue: {queue_name}")

        return self._queues[queue_name]

    def enqueue_batch_drain(
        self,
        batch_id: str,
        priority: BatchPriority = BatchPriority.NORMAL,
        delay_seconds: int = 0,
    ) -> Job:
        """
        Enqueue a drain pass for the render queue.

        The drain picks the best claimable batch, which is not necessarily
        ``batch_id``; the id is kept in the job meta for tracing.

        Args:
            batch_id: Batch that triggered the drain
            priority: Batch priority, selects the RQ queue
            delay_seconds: Schedule the drain this far in the future
        """
        from modelsnap.workers.tasks import run_batch_drain_task

        queue = self.get_queue(Queues.for_priority(priority.value))
        options = dict(
            job_timeout=settings.JOB_TIMEOUT_DRAIN,
            retry=Retry(max=2, interval=[10, 30]),
            meta={
                "type": "batch_drain",
                "batch_id": batch_id,
                "created_at": datetime.utcnow().isoformat(),
                "priority": priority.value
            }
        )

        if delay_seconds > 0:
            job = queue.enqueue_in(timedelta(seconds=delay_seconds), run_batch_drain_task, batch_id=batch_id, **options)
            logger.info(f"Scheduled drain for batch {batch_id} in {delay_seconds}s (priority: {priority.value})")
        else:
            job = queue.enqueue(run_batch_drain_task, batch_id=batch_id, **options)
            logger.info(f"Enqueued drain for batch {batch_id} (priority: {priority.value})")
        return job

    def enqueue_notification(self, user_id: str, output_ref: str, kind: str) -> Job:
        """Enqueue a completion notification on the low-priority queue."""
        from modelsnap.workers.tasks import run_notification_task

        queue = self.get_queue(Queues.NOTIFICATIONS)
        job = queue.enqueue(
            run_notification_task,
            user_id=user_id,
            output_ref=output_ref,
            kind=kind,
            job_timeout=60,
            meta={
                "type": "notification",
                "created_at": datetime.utcnow().isoformat()
            }
        )
        logger.debug(f"Enqueued notification for {user_id}")
        return job

    def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        stats = {}

        for name in Queues.DRAIN_ORDER:
            try:
                queue = self.get_queue(name)
                stats[name] = {
                    "queued": len(queue),
                    "started": queue.started_job_registry.count,
                    "failed": queue.failed_job_registry.count,
                    "scheduled": queue.scheduled_job_registry.count
                }
            except RedisError as e:
                stats[name] = {"error": str(e)}

        return stats


# Singleton instance
_queue_manager: Optional[QueueManager] = None


def get_queue_manager() -> QueueManager:
    """Get singleton QueueManager instance."""
    global _queue_manager
    if _queue_manager is None:
        _queue_manager = QueueManager()
    return _queue_manager


__all__ = [
    "QueueManager",
    "get_queue_manager",
]
