"""
Tests for the best-effort notification queue.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from gateway_reconciliation.core.models import PaymentNotification, TransactionStatus
from gateway_reconciliation.core.notifications import LoggingNotifier, NotificationQueue

from tests.conftest import RecordingNotifier


def _notification(order_ref: str = "ORD-1") -> PaymentNotification:
    return PaymentNotification(
        order_ref=order_ref,
        transaction_id="txn_1",
        gateway_order_ref=f"{order_ref}-A",
        status=TransactionStatus.SUCCESS,
        amount_minor=10000,
        currency="INR",
        customer_ref="CUST-1",
    )


class TestNotificationQueue:
    @pytest.mark.asyncio
    async def test_background_delivery(self) -> None:
        notifier = RecordingNotifier()
        queue = NotificationQueue(notifier, maxsize=10)
        queue.start()

        assert queue.submit(_notification()) is True
        await asyncio.wait_for(queue._queue.join(), timeout=1)
        await queue.stop()

        assert [n.order_ref for n in notifier.sent] == ["ORD-1"]

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_raising(self) -> None:
        queue = NotificationQueue(RecordingNotifier(), maxsize=1)

        assert queue.submit(_notification("ORD-1")) is True
        assert queue.submit(_notification("ORD-2")) is False
        assert queue.pending == 1

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self) -> None:
        notifier = AsyncMock()
        notifier.notify.side_effect = RuntimeError("smtp down")
        queue = NotificationQueue(notifier, maxsize=10)

        queue.submit(_notification())
        await queue.drain()

        notifier.notify.assert_awaited_once()
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_stop_flushes_queue(self) -> None:
        notifier = RecordingNotifier()
        queue = NotificationQueue(notifier, maxsize=10)

        queue.submit(_notification("ORD-1"))
        queue.submit(_notification("ORD-2"))
        await queue.stop()

        assert len(notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_logging_notifier(self) -> None:
        await LoggingNotifier().notify(_notification())
