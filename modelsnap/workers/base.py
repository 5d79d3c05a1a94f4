"""
Base Worker Classes
Retry decorator and logging helpers shared by the render workers.
"""

import asyncio
import logging
from datetime import datetime
from functools import wraps
from typing import Callable, Optional, TypeVar

from rq import get_current_job
from rq.job import Job

logger = logging.getLogger(__name__)

T = TypeVar('T')


class WorkerException(Exception):
    """Base exception for worker errors."""

    def __init__(self, message: str, retryable: bool = True, details: Optional[dict] = None):
        super().__init__(message)
        self.retryable = retryable
        self.details = details or {}


class NonRetryableError(WorkerException):
    """Error that should NOT be retried (e.g., malformed request)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=False, details=details)


class RetryableError(WorkerException):
    """Error that SHOULD be retried (e.g., 5xx, 429, connection reset)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


def with_retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    exponential_backoff: bool = True,
    retryable_exceptions: tuple = (RetryableError, TimeoutError, ConnectionError)
):
    """
    Retry an async call on transient errors.

    Args:
        max_retries: Maximum number of retry attempts after the first call
        retry_delay: Base delay between retries (seconds)
        exponential_backoff: Double the delay after every attempt
        retryable_exceptions: Exception types that trigger a retry

    Any other exception propagates immediately.
    """
    def _delay(attempt: int) -> float:
        return retry_delay * (2 ** attempt if exponential_backoff else 1)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = _delay(attempt)
                        logger.warning(
                            f"[Retry {attempt + 1}/{max_retries}] {func.__name__} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"[Failed] {func.__name__} exhausted all {max_retries} retries: {e}"
                        )

                except NonRetryableError as e:
                    logger.error(f"[Non-Retryable] {func.__name__}: {e}")
                    raise

            raise last_exception

        return wrapper

    return decorator


class BaseWorker:
    """
    Base class for RQ-driven workers.

    Structured start/complete/error logging, plus status in the RQ job meta
    when running inside an RQ job.
    """

    def __init__(self):
        self.start_time: Optional[datetime] = None

    def _get_current_job(self) -> Optional[Job]:
        return get_current_job()

    def _set_meta(self, **values):
        job = self._get_current_job()
        if job:
            job.meta.update(values)
            job.meta["updated_at"] = datetime.utcnow().isoformat()
            job.save_meta()

    def _log_start(self, task_name: str, **context):
        self.start_time = datetime.utcnow()
        self._set_meta(worker_status="running")
        logger.info(f"[START] {task_name} | Context: {context}")

    def _log_complete(self, task_name: str, result_summary: str = ""):
        duration = (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0
        self._set_meta(worker_status="success")
        logger.info(f"[COMPLETE] {task_name} | Duration: {duration:.2f}s | {result_summary}")

    def _log_error(self, task_name: str, error: Exception):
        duration = (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0
        self._set_meta(worker_status="failed", error=str(error))
        logger.error(f"[ERROR] {task_name} | Duration: {duration:.2f}s | Error: {error}")


__all__ = [
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "with_retry",
    "BaseWorker",
]
