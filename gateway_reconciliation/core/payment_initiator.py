"""Payment initiation: order lookup, signed request, pending transaction."""
import uuid
from typing import Optional

import structlog

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.exceptions import (
    MalformedFieldError,
    OrderNotFoundError,
    OrderStateError,
    ReconciliationError,
)
from gateway_reconciliation.core.ledger import TransactionLedger
from gateway_reconciliation.core.models import (
    FulfillmentStatus,
    PaymentInitiation,
    PaymentStatus,
)
from gateway_reconciliation.core.ports import OrderStore
from gateway_reconciliation.core.signer import Signer
from gateway_reconciliation.database.models import GATEWAY_ORDER_REF_LENGTH
from gateway_reconciliation.integrations.gateway_client import GatewayClient, GatewayError
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PAYABLE_STATUSES = (PaymentStatus.UNPAID, PaymentStatus.FAILED)
CLOSED_FULFILLMENT = (FulfillmentStatus.CANCELLED, FulfillmentStatus.REFUNDED)


class PaymentInitiator:
    """
    Starts a payment attempt for an order.

    Every attempt gets a fresh gateway order reference, so retrying after a
    failed or abandoned checkout never collides with an earlier attempt.
    """

    def __init__(
        self,
        settings: Settings,
        signer: Signer,
        ledger: TransactionLedger,
        order_store: OrderStore,
        gateway_client: Optional[GatewayClient] = None,
    ):
        self.settings = settings
        self.signer = signer
        self.ledger = ledger
        self.order_store = order_store
        self.gateway_client = gateway_client

    @staticmethod
    def new_gateway_order_ref(order_ref: str) -> str:
        return f"{order_ref}-{uuid.uuid4().hex[:8].upper()}"

    async def initiate(self, order_ref: str) -> PaymentInitiation:
        """
        Create a signed payment request and its pending transaction.

        The request is built and signed before anything is persisted, so an
        invalid amount or a field containing the delimiter leaves no trace. If
        gateway registration fails (including timeouts) the pending record is
        discarded before the error propagates.

        Args:
            order_ref: Order reference

        Returns:
            PaymentInitiation: Signed request plus the pending transaction

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderStateError: If the order is paid, refunded or cancelled
            InvalidAmountError: If the order total is not a positive integer
            MalformedFieldError: If a signed field contains the delimiter or the
                gateway order ref is too long
            DuplicateGatewayRefError: If the generated reference already exists
            TransientReconciliationError: If concurrent initiations kept colliding
            GatewayError: If order registration with the gateway fails
        """
        log = logger.bind(order_ref=order_ref)

        order = await self.order_store.find_by_order_ref(order_ref)
        if order is None:
            metrics.record_initiation("rejected")
            raise OrderNotFoundError(
                f"Order {order_ref} not found", details={"order_ref": order_ref}
            )
        if (
            order.payment_status not in PAYABLE_STATUSES
            or order.fulfillment_status in CLOSED_FULFILLMENT
        ):
            metrics.record_initiation("rejected")
            raise OrderStateError(
                f"Order {order_ref} cannot accept a payment",
                details={
                    "order_ref": order_ref,
                    "payment_status": order.payment_status.value,
                    "fulfillment_status": order.fulfillment_status.value,
                },
            )

        gateway_order_ref = self.new_gateway_order_ref(order_ref)
        try:
            if len(gateway_order_ref) > GATEWAY_ORDER_REF_LENGTH:
                raise MalformedFieldError(
                    f"Gateway order ref for {order_ref} is longer than "
                    f"{GATEWAY_ORDER_REF_LENGTH} characters",
                    details={"order_ref": order_ref, "length": len(gateway_order_ref)},
                )
            signed_request = self.signer.build_signed_request(
                merchant_id=self.settings.merchant_id,
                gateway_order_ref=gateway_order_ref,
                amount_minor=order.total_minor,
                currency=order.currency,
                customer=order.customer,
                return_url=self.settings.return_url,
                mode=self.settings.payment_mode,
            )
            transaction = await self.ledger.create_pending(
                order_ref=order_ref,
                gateway_order_ref=gateway_order_ref,
                amount_minor=order.total_minor,
                currency=order.currency,
            )
        except ReconciliationError as e:
            metrics.record_initiation("rejected")
            log.warning("payment_initiation_rejected", reason=e.reason, error=e.message)
            raise

        if self.gateway_client is not None:
            try:
                await self.gateway_client.register_order(signed_request)
            except GatewayError as e:
                await self.ledger.discard_pending(gateway_order_ref)
                metrics.record_initiation("gateway_error")
                log.error(
                    "payment_initiation_gateway_failed",
                    gateway_order_ref=gateway_order_ref,
                    error_type=e.error_type.value,
                    error=str(e),
                )
                raise

        metrics.record_initiation("created", order.total_minor)
        log.info(
            "payment_initiated",
            gateway_order_ref=gateway_order_ref,
            transaction_id=transaction.transaction_id,
            amount_minor=order.total_minor,
        )
        return PaymentInitiation(
            order_ref=order_ref,
            transaction=transaction,
            signed_request=signed_request,
            payment_url=self.settings.checkout_url,
            merchant_id=self.settings.merchant_id,
        )
