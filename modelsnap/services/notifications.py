"""
Completion notifications.

``Notifier.notify_completion`` is fire-and-forget: it queues a task and
returns. Failing to queue is logged and never reaches the render pipeline.
"""

import logging
from typing import Optional

import httpx

from modelsnap.core.config import settings

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, queue_manager=None):
        self._queue_manager = queue_manager

    @property
    def queue_manager(self):
        if self._queue_manager is None:
            from modelsnap.workers.queue import get_queue_manager
            self._queue_manager = get_queue_manager()
        return self._queue_manager

    def notify_completion(self, user_id: str, output_ref: str, kind: str) -> None:
        try:
            self.queue_manager.enqueue_notification(user_id, output_ref, kind)
        except Exception as e:
            logger.warning(f"[Notify] Dropped notification for {user_id}: {e}")


def send_completion_notification(
    user_id: str,
    output_ref: str,
    kind: str,
    webhook_url: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """
    Deliver one completion notification (runs inside the notification task).

    Returns:
        True if the webhook accepted it, False when no webhook is configured
    """
    url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
    if not url:
        logger.info(f"[Notify] {kind} render ready for {user_id}: {output_ref}")
        return False

    payload = {"event": "render.completed", "user_id": user_id, "output_ref": output_ref, "kind": kind}
    with httpx.Client(timeout=10.0, transport=transport) as client:
        response = client.post(url, json=payload)
        response.raise_for_status()

    logger.info(f"[Notify] Webhook delivered for {user_id}")
    return True
