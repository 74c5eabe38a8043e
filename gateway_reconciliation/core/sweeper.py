"""
Follow-up sweeper for attempts the inbound channels left unsettled.

Two passes:
- Pending attempts older than the follow-up age are queried at the gateway
  and the signed answer is fed through the dispatcher like any webhook.
- Terminal attempts whose order was never synchronized (the process died
  between finalize and synchronization) are re-applied.
"""
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.dispatcher import ReconciliationDispatcher
from gateway_reconciliation.core.exceptions import TransientReconciliationError
from gateway_reconciliation.core.ledger import TransactionLedger
from gateway_reconciliation.core.models import Channel
from gateway_reconciliation.core.ports import OrderStore
from gateway_reconciliation.core.synchronizer import OrderSynchronizer
from gateway_reconciliation.integrations.gateway_client import GatewayClient, GatewayError
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ReconciliationSweeper:
    """Periodic follow-up of pending and unsynchronized transactions."""

    def __init__(
        self,
        settings: Settings,
        ledger: TransactionLedger,
        dispatcher: ReconciliationDispatcher,
        synchronizer: OrderSynchronizer,
        order_store: OrderStore,
        gateway_client: Optional[GatewayClient] = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.synchronizer = synchronizer
        self.order_store = order_store
        self.gateway_client = gateway_client

    async def follow_up_pending(self) -> Dict[str, int]:
        """
        Query the gateway for stale pending attempts.

        Pending attempts are never expired locally; only a signed gateway
        answer can move them to a terminal status.

        Returns:
            Dict[str, int]: Count per disposition, plus ``errors``
        """
        counts: Counter = Counter()
        if self.gateway_client is None:
            logger.info("pending_followup_skipped", reason="no_gateway_client")
            return dict(counts)

        older_than = datetime.now(timezone.utc) - timedelta(
            seconds=self.settings.pending_followup_seconds
        )
        stale = await self.ledger.list_stale_pending(
            older_than, limit=self.settings.sweeper_batch_size
        )

        for transaction in stale:
            ref = transaction.gateway_order_ref
            try:
                raw = await self.gateway_client.query_status(ref)
                result = await self.dispatcher.reconcile(raw, Channel.STATUS_QUERY)
            except (GatewayError, TransientReconciliationError) as e:
                counts["errors"] += 1
                logger.warning("pending_followup_failed", gateway_order_ref=ref, error=str(e))
                continue
            counts[result.disposition.value] += 1

        for result_name, count in counts.items():
            metrics.record_sweep("follow_up_pending", result_name, count)
        logger.info("pending_followup_completed", candidates=len(stale), **counts)
        return dict(counts)

    async def resynchronize(self) -> Dict[str, int]:
        """
        Re-apply terminal outcomes that never reached their order.

        Returns:
            Dict[str, int]: ``applied``, ``skipped`` and ``missing_order`` counts
        """
        counts: Counter = Counter()
        candidates = await self.ledger.list_unsynchronized(
            limit=self.settings.sweeper_batch_size
        )

        for transaction in candidates:
            order = await self.order_store.find_by_order_ref(transaction.order_ref)
            if order is None:
                counts["missing_order"] += 1
                logger.error(
                    "resynchronize_order_missing",
                    order_ref=transaction.order_ref,
                    transaction_id=transaction.transaction_id,
                )
                continue
            applied = await self.synchronizer.apply(order, transaction)
            counts["applied" if applied else "skipped"] += 1

        for result_name, count in counts.items():
            metrics.record_sweep("resynchronize", result_name, count)
        logger.info("resynchronize_completed", candidates=len(candidates), **counts)
        return dict(counts)

    async def run_once(self) -> Dict[str, Any]:
        """Run both passes."""
        result = {
            "follow_up_pending": await self.follow_up_pending(),
            "resynchronize": await self.resynchronize(),
        }
        metrics.record_sweep_run()
        return result
