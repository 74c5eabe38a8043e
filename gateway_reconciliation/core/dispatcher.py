"""
Reconciliation dispatcher.

Webhooks, browser returns and status-query responses all arrive here and go
through the same pipeline:

1. Outcome cache (byte-identical redeliveries)
2. Structural parse and signature verification
3. Merchant identity check
4. Status-code mapping and amount check
5. Ledger.finalize (compare-and-set on the gateway order reference)
6. Order synchronization, only for the caller whose finalize applied
"""
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import structlog
from sqlalchemy.exc import SQLAlchemyError

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.exceptions import (
    ForeignMerchantError,
    ReconciliationError,
    SecurityError,
    SignatureMismatchError,
    TransientReconciliationError,
    UnknownTransactionError,
)
from gateway_reconciliation.core.gateway_protocol import RESPONSE_FIELD_COUNT, GatewayResponse
from gateway_reconciliation.core.idempotency import OutcomeCache
from gateway_reconciliation.core.ledger import TransactionLedger
from gateway_reconciliation.core.models import (
    Channel,
    Disposition,
    GatewayOutcome,
    InboundResult,
    Transaction,
    TransactionStatus,
    WebhookAck,
)
from gateway_reconciliation.core.ports import OrderStore
from gateway_reconciliation.core.signer import Signer, payload_digest
from gateway_reconciliation.core.synchronizer import OrderSynchronizer
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CACHEABLE = (Disposition.APPLIED, Disposition.DUPLICATE)


class ReconciliationDispatcher:
    """Single entry point turning inbound gateway payloads into ledger updates."""

    def __init__(
        self,
        settings: Settings,
        signer: Signer,
        ledger: TransactionLedger,
        synchronizer: OrderSynchronizer,
        order_store: OrderStore,
        outcome_cache: Optional[OutcomeCache] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            settings: Application settings (merchant id, redirect pages)
            signer: Signature verification
            ledger: Transaction ledger
            synchronizer: Order synchronizer
            order_store: Order lookup by gateway order reference
            outcome_cache: Optional Redis outcome cache
        """
        self.settings = settings
        self.signer = signer
        self.ledger = ledger
        self.synchronizer = synchronizer
        self.order_store = order_store
        self.outcome_cache = outcome_cache

    async def reconcile(self, raw_payload: Any, channel: Channel) -> InboundResult:
        """
        Verify and apply one inbound payload.

        Malformed, forged, foreign and unknown payloads resolve to a
        ``rejected`` result instead of raising.

        Args:
            raw_payload: Delimited payload as received
            channel: Route the payload arrived through

        Returns:
            InboundResult: What was done with the payload

        Raises:
            TransientReconciliationError: On database failure; the sender should retry
        """
        start_time = time.time()
        digest = (
            payload_digest(raw_payload) if isinstance(raw_payload, (str, bytes)) else None
        )

        if digest is not None and self.outcome_cache is not None:
            cached = await self.outcome_cache.get(digest)
            if cached is not None:
                result = self._from_cache(cached, channel)
                logger.info(
                    "inbound_payload_redelivered",
                    channel=channel.value,
                    payload_digest=digest,
                    gateway_order_ref=result.gateway_order_ref,
                )
                metrics.record_inbound(
                    channel.value, result.disposition.value, time.time() - start_time
                )
                return result

        log = logger.bind(channel=channel.value, payload_digest=digest)
        context: Dict[str, Optional[str]] = {"gateway_order_ref": None, "order_ref": None}
        try:
            result = await self._process(raw_payload, channel, context, log)
        except SecurityError as e:
            metrics.record_security_rejection(e.reason)
            log_method = log.critical if isinstance(e, SignatureMismatchError) else log.error
            log_method(
                "inbound_payload_security_rejected",
                reason=e.reason,
                gateway_order_ref=context["gateway_order_ref"],
            )
            result = self._rejected(channel, context, e)
        except TransientReconciliationError:
            raise
        except ReconciliationError as e:
            log.error(
                "inbound_payload_rejected",
                reason=e.reason,
                error=e.message,
                gateway_order_ref=context["gateway_order_ref"],
            )
            result = self._rejected(channel, context, e)
        except SQLAlchemyError as e:
            log.error(
                "inbound_payload_transient_failure",
                gateway_order_ref=context["gateway_order_ref"],
                error=str(e),
            )
            raise TransientReconciliationError(
                "Database unavailable while reconciling payload", details=dict(context)
            ) from e

        if digest is not None and self.outcome_cache is not None and result.disposition in CACHEABLE:
            await self.outcome_cache.put(digest, result.to_cache())

        metrics.record_inbound(channel.value, result.disposition.value, time.time() - start_time)
        return result

    async def _process(
        self,
        raw_payload: Any,
        channel: Channel,
        context: Dict[str, Optional[str]],
        log: Any,
    ) -> InboundResult:
        verification = self.signer.verify_signature(
            raw_payload, expected_fields=RESPONSE_FIELD_COUNT
        )
        context["gateway_order_ref"] = verification.fields[1]
        if not verification.verified:
            raise SignatureMismatchError("Inbound payload signature mismatch")

        response = GatewayResponse.from_fields(verification.fields)
        if response.merchant_id != self.settings.merchant_id:
            raise ForeignMerchantError(
                "Inbound payload is for another merchant",
                details={"gateway_order_ref": response.gateway_order_ref},
            )

        ref = response.gateway_order_ref
        transaction = await self.ledger.get(ref)
        if transaction is None:
            raise UnknownTransactionError(
                f"No transaction for gateway order ref {ref}",
                details={"gateway_order_ref": ref},
            )
        context["order_ref"] = transaction.order_ref

        metadata = response.metadata()
        metadata["last_channel"] = channel.value
        outcome = response.outcome

        if outcome is GatewayOutcome.PENDING:
            if transaction.status.is_terminal:
                log.info(
                    "pending_outcome_after_final",
                    gateway_order_ref=ref,
                    status=transaction.status.value,
                )
                return self._result(Disposition.DUPLICATE, channel, transaction)
            transaction = await self.ledger.annotate(ref, metadata)
            log.info("transaction_still_pending", gateway_order_ref=ref)
            return self._result(Disposition.PENDING, channel, transaction)

        status = outcome.to_transaction_status()
        if status is TransactionStatus.SUCCESS and response.amount_minor != transaction.amount_minor:
            log.error(
                "inbound_amount_mismatch",
                gateway_order_ref=ref,
                expected_amount=transaction.amount_minor,
                reported_amount=response.amount,
            )
            status = TransactionStatus.FAILED
            metadata["amount_mismatch"] = True

        finalized = await self.ledger.finalize(ref, status, metadata)
        if not finalized.applied:
            return self._result(Disposition.DUPLICATE, channel, finalized.transaction)

        order = await self.order_store.find_by_gateway_ref(ref)
        if order is None:
            log.error(
                "order_missing_for_transaction",
                gateway_order_ref=ref,
                order_ref=transaction.order_ref,
            )
        else:
            await self.synchronizer.apply(order, finalized.transaction)
        return self._result(Disposition.APPLIED, channel, finalized.transaction)

    @staticmethod
    def _result(
        disposition: Disposition, channel: Channel, transaction: Transaction
    ) -> InboundResult:
        return InboundResult(
            disposition=disposition,
            channel=channel,
            gateway_order_ref=transaction.gateway_order_ref,
            order_ref=transaction.order_ref,
            status=transaction.status,
        )

    @staticmethod
    def _rejected(
        channel: Channel, context: Dict[str, Optional[str]], error: ReconciliationError
    ) -> InboundResult:
        return InboundResult(
            disposition=Disposition.REJECTED,
            channel=channel,
            gateway_order_ref=context["gateway_order_ref"],
            order_ref=context["order_ref"],
            error=error.reason,
        )

    @staticmethod
    def _from_cache(cached: Dict[str, Any], channel: Channel) -> InboundResult:
        status = cached.get("status")
        return InboundResult(
            disposition=Disposition.DUPLICATE,
            channel=channel,
            gateway_order_ref=cached.get("gateway_order_ref"),
            order_ref=cached.get("order_ref"),
            status=TransactionStatus(status) if status else None,
        )

    async def handle_webhook(self, raw_payload: Any) -> WebhookAck:
        """
        Reconcile a server-to-server notification.

        Every handled case, rejections included, is acknowledged with
        ``success=True`` so the gateway stops redelivering.

        Raises:
            TransientReconciliationError: On database failure (answered with 503)
        """
        result = await self.reconcile(raw_payload, Channel.WEBHOOK)
        return WebhookAck(
            success=True,
            disposition=result.disposition,
            gateway_order_ref=result.gateway_order_ref,
        )

    def _page(self, path: str, order_ref: Optional[str] = None) -> str:
        url = f"{self.settings.frontend_url.rstrip('/')}{path}"
        if order_ref:
            url = f"{url}?{urlencode({'orderRef': order_ref})}"
        return url

    async def handle_browser_return(self, raw_payload: Any) -> str:
        """
        Reconcile a browser return and choose where to send the customer.

        Args:
            raw_payload: Delimited payload posted by the browser

        Returns:
            str: Redirect URL (success, failed or pending page)
        """
        try:
            result = await self.reconcile(raw_payload, Channel.BROWSER_RETURN)
        except TransientReconciliationError as e:
            # The gateway's webhook or the sweeper will settle it
            return self._page(self.settings.pending_path, e.details.get("order_ref"))

        if result.disposition is Disposition.REJECTED:
            return self._page(self.settings.failure_path)
        if result.status is TransactionStatus.SUCCESS:
            return self._page(self.settings.success_path, result.order_ref)
        if result.status is TransactionStatus.FAILED:
            return self._page(self.settings.failure_path, result.order_ref)
        return self._page(self.settings.pending_path, result.order_ref)
