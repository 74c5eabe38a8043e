"""
Order synchronizer: projects a terminal transaction outcome onto its order.

The order-level claim (a conditional update on the synchronization marker)
makes ``apply`` safe to call more than once for the same transaction; only
the first successful claim runs inventory and cart side effects.
"""
from dataclasses import replace
from typing import Optional

import structlog

from gateway_reconciliation.core.exceptions import (
    OrderNotFoundError,
    OrderStateError,
    PreconditionError,
)
from gateway_reconciliation.core.models import (
    FulfillmentStatus,
    Order,
    PaymentNotification,
    PaymentStatus,
    Transaction,
    TransactionStatus,
)
from gateway_reconciliation.core.notifications import NotificationQueue
from gateway_reconciliation.core.ports import CartStore, InventoryStore, OrderStore
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CANCEL_ATTEMPTS = 3


class OrderSynchronizer:
    """Applies payment outcomes and cancellations to orders."""

    def __init__(
        self,
        order_store: OrderStore,
        inventory_store: InventoryStore,
        cart_store: CartStore,
        notifications: Optional[NotificationQueue] = None,
    ):
        """
        Initialize synchronizer.

        Args:
            order_store: Order persistence
            inventory_store: Stock adjustments
            cart_store: Customer carts
            notifications: Queue for best-effort payment notifications
        """
        self.order_store = order_store
        self.inventory_store = inventory_store
        self.cart_store = cart_store
        self.notifications = notifications

    async def apply(self, order: Order, transaction: Transaction) -> bool:
        """
        Project a terminal transaction onto its order.

        success: order becomes paid/processing, stock is decremented per line
        item and the customer's cart is cleared.
        failed: order becomes failed with no inventory or cart changes.

        Side-effect failures are logged and never roll back the payment state.

        Args:
            order: Order owning the transaction
            transaction: Terminal transaction

        Returns:
            bool: True if this call claimed the order and ran the side effects

        Raises:
            PreconditionError: If the transaction is pending or belongs to another order
        """
        if not transaction.status.is_terminal:
            raise PreconditionError(
                "Cannot synchronize a pending transaction",
                details={"transaction_id": transaction.transaction_id},
            )
        if transaction.order_ref != order.order_ref:
            raise PreconditionError(
                "Transaction does not belong to order",
                details={
                    "transaction_id": transaction.transaction_id,
                    "order_ref": order.order_ref,
                    "transaction_order_ref": transaction.order_ref,
                },
            )

        succeeded = transaction.status is TransactionStatus.SUCCESS
        payment_status = PaymentStatus.PAID if succeeded else PaymentStatus.FAILED
        fulfillment_status = (
            FulfillmentStatus.PROCESSING if succeeded else order.fulfillment_status
        )

        claimed = await self.order_store.claim_synchronization(
            order.order_ref,
            transaction.transaction_id,
            payment_status,
            fulfillment_status,
        )
        if not claimed:
            metrics.record_synchronization("skipped")
            log = logger.warning if succeeded else logger.info
            log(
                "order_synchronization_skipped",
                order_ref=order.order_ref,
                transaction_id=transaction.transaction_id,
                transaction_status=transaction.status.value,
                payment_status=order.payment_status.value,
                fulfillment_status=order.fulfillment_status.value,
            )
            return False

        metrics.record_synchronization("applied")
        logger.info(
            "order_synchronized",
            order_ref=order.order_ref,
            transaction_id=transaction.transaction_id,
            payment_status=payment_status.value,
            fulfillment_status=fulfillment_status.value,
        )

        if succeeded:
            await self._consume_inventory(order)
            await self._clear_cart(order)

        self._notify(order, transaction)
        return True

    async def _consume_inventory(self, order: Order) -> None:
        for item in order.items:
            try:
                found = await self.inventory_store.decrement(item.product_ref, item.quantity)
            except Exception as e:
                metrics.record_side_effect_failure("inventory_decrement")
                logger.error(
                    "inventory_decrement_failed",
                    order_ref=order.order_ref,
                    product_ref=item.product_ref,
                    quantity=item.quantity,
                    error=str(e),
                )
                continue
            if not found:
                metrics.record_side_effect_failure("inventory_decrement")
                logger.warning(
                    "inventory_decrement_skipped",
                    order_ref=order.order_ref,
                    product_ref=item.product_ref,
                    reason="product_missing",
                )

    async def _clear_cart(self, order: Order) -> None:
        try:
            removed = await self.cart_store.clear(order.customer_ref)
        except Exception as e:
            metrics.record_side_effect_failure("cart_clear")
            logger.error(
                "cart_clear_failed",
                order_ref=order.order_ref,
                customer_ref=order.customer_ref,
                error=str(e),
            )
            return
        logger.info("cart_cleared", customer_ref=order.customer_ref, removed=removed)

    def _notify(self, order: Order, transaction: Transaction) -> None:
        if self.notifications is None:
            return
        self.notifications.submit(
            PaymentNotification(
                order_ref=order.order_ref,
                transaction_id=transaction.transaction_id,
                gateway_order_ref=transaction.gateway_order_ref,
                status=transaction.status,
                amount_minor=transaction.amount_minor,
                currency=transaction.currency,
                customer_ref=order.customer_ref,
            )
        )

    async def cancel(self, order_ref: str, reason: Optional[str] = None) -> Order:
        """
        Cancel an order.

        Paid orders are marked refunded and their line items restocked; the
        refund itself is settled with the gateway out of band. The write is
        conditional on the statuses that were read, so a payment outcome
        landing in between is re-read and refunded instead of overwritten.

        Args:
            order_ref: Order reference
            reason: Optional cancellation reason

        Returns:
            Order: The cancelled order

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderStateError: If the order is already cancelled or refunded, or
                keeps changing underneath the cancellation
        """
        for attempt in range(1, CANCEL_ATTEMPTS + 1):
            order = await self.order_store.find_by_order_ref(order_ref)
            if order is None:
                raise OrderNotFoundError(
                    f"Order {order_ref} not found", details={"order_ref": order_ref}
                )
            if order.fulfillment_status in (
                FulfillmentStatus.CANCELLED,
                FulfillmentStatus.REFUNDED,
            ):
                raise OrderStateError(
                    f"Order {order_ref} is already {order.fulfillment_status.value}",
                    details={
                        "order_ref": order_ref,
                        "fulfillment_status": order.fulfillment_status.value,
                    },
                )

            was_paid = order.payment_status is PaymentStatus.PAID
            cancelled = replace(
                order,
                payment_status=PaymentStatus.REFUNDED if was_paid else order.payment_status,
                fulfillment_status=FulfillmentStatus.CANCELLED,
                cancellation_reason=reason,
            )
            if await self.order_store.cancel_if(
                cancelled, order.payment_status, order.fulfillment_status
            ):
                break
            logger.info(
                "order_cancel_conflict",
                order_ref=order_ref,
                attempt=attempt,
                payment_status=order.payment_status.value,
            )
        else:
            raise OrderStateError(
                f"Order {order_ref} changed during cancellation",
                details={"order_ref": order_ref, "attempts": CANCEL_ATTEMPTS},
            )

        if was_paid:
            for item in order.items:
                try:
                    await self.inventory_store.restock(item.product_ref, item.quantity)
                except Exception as e:
                    metrics.record_side_effect_failure("inventory_restock")
                    logger.error(
                        "inventory_restock_failed",
                        order_ref=order_ref,
                        product_ref=item.product_ref,
                        error=str(e),
                    )

        logger.info(
            "order_cancelled",
            order_ref=order_ref,
            refunded=was_paid,
            reason=reason,
        )
        return cancelled
