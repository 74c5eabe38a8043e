"""
Collaborator interfaces for the order synchronizer and the dispatcher.

The SQL implementations live in ``gateway_reconciliation.database.stores``;
tests substitute in-memory fakes.
"""
from typing import Optional, Protocol

from gateway_reconciliation.core.models import (
    FulfillmentStatus,
    Order,
    PaymentNotification,
    PaymentStatus,
)


class OrderStore(Protocol):
    async def find_by_order_ref(self, order_ref: str) -> Optional[Order]:
        ...

    async def find_by_gateway_ref(self, gateway_order_ref: str) -> Optional[Order]:
        """Resolve the order that owns a gateway order reference."""
        ...

    async def cancel_if(
        self,
        order: Order,
        expected_payment_status: PaymentStatus,
        expected_fulfillment_status: FulfillmentStatus,
    ) -> bool:
        """
        Write the cancelled order only if its statuses are still the expected ones.

        Returns False when a concurrent writer changed the order first.
        """
        ...

    async def claim_synchronization(
        self,
        order_ref: str,
        transaction_id: str,
        payment_status: PaymentStatus,
        fulfillment_status: FulfillmentStatus,
    ) -> bool:
        """
        Atomically project a transaction outcome onto an order.

        Succeeds only while the order is still open for a payment outcome
        (unpaid or failed) and has not already been synchronized to this
        transaction. Returns True for exactly one caller per pair.
        """
        ...


class InventoryStore(Protocol):
    async def decrement(self, product_ref: str, quantity: int) -> bool:
        """Decrement stock; returns False when the product no longer exists."""
        ...

    async def restock(self, product_ref: str, quantity: int) -> bool:
        ...


class CartStore(Protocol):
    async def clear(self, customer_ref: str) -> int:
        ...


class Notifier(Protocol):
    async def notify(self, notification: PaymentNotification) -> None:
        ...
