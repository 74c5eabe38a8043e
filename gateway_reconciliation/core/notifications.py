"""
Best-effort payment notifications.

Notifications are decoupled from reconciliation through a bounded in-process
queue: submitting never blocks and never raises, and a failing notifier only
produces a log line.
"""
import asyncio
from typing import Optional

import structlog

from gateway_reconciliation.core.models import PaymentNotification
from gateway_reconciliation.core.ports import Notifier
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class LoggingNotifier:
    """
    Default notifier that just logs notifications.

    Replace with an email or message-queue notifier in deployments that need one.
    """

    async def notify(self, notification: PaymentNotification) -> None:
        logger.info(
            "payment_notification_sent",
            order_ref=notification.order_ref,
            transaction_id=notification.transaction_id,
            status=notification.status.value,
            amount_minor=notification.amount_minor,
            currency=notification.currency,
        )


class NotificationQueue:
    """Bounded queue drained by a single background task."""

    def __init__(self, notifier: Notifier, maxsize: int = 1000):
        """
        Initialize notification queue.

        Args:
            notifier: Delivery implementation
            maxsize: Max queued notifications; further submissions are dropped
        """
        self.notifier = notifier
        self._queue: asyncio.Queue[PaymentNotification] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, notification: PaymentNotification) -> bool:
        """
        Enqueue a notification without waiting.

        Args:
            notification: Notification to deliver

        Returns:
            bool: False if the queue was full and the notification was dropped
        """
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            metrics.record_notification("dropped")
            logger.warning(
                "payment_notification_dropped",
                order_ref=notification.order_ref,
                queue_size=self._queue.qsize(),
            )
            return False
        metrics.record_notification("queued")
        return True

    async def _deliver(self, notification: PaymentNotification) -> None:
        try:
            await self.notifier.notify(notification)
            metrics.record_notification("delivered")
        except Exception as e:
            metrics.record_notification("failed")
            logger.error(
                "payment_notification_failed",
                order_ref=notification.order_ref,
                transaction_id=notification.transaction_id,
                error=str(e),
            )

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self._deliver(notification)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the background delivery task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("notification_queue_started", maxsize=self._queue.maxsize)

    async def drain(self) -> None:
        """Deliver everything currently queued, inline."""
        while not self._queue.empty():
            notification = self._queue.get_nowait()
            try:
                await self._deliver(notification)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Stop the background task after flushing the queue."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.drain()
        logger.info("notification_queue_stopped")
