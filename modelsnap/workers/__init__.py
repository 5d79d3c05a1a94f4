# Workers package - render batch draining with RQ

from modelsnap.workers.base import (
    WorkerException,
    NonRetryableError,
    RetryableError,
    with_retry,
    BaseWorker
)
from modelsnap.workers.queue import (
    QueueManager,
    get_queue_manager,
)
from modelsnap.workers.processor import BatchProcessor

__all__ = [
    # Base
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "with_retry",
    "BaseWorker",
    # Queue
    "QueueManager",
    "get_queue_manager",
    # Processing
    "BatchProcessor",
]
