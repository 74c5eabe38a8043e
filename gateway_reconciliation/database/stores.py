"""SQL implementations of the order, inventory and cart stores."""
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway_reconciliation.core.models import (
    CustomerDetails,
    FulfillmentStatus,
    LineItem,
    Order,
    PaymentStatus,
)
from gateway_reconciliation.database.models import (
    CartItemRecord,
    OrderItemRecord,
    OrderRecord,
    ProductRecord,
    TransactionRecord,
)

logger = structlog.get_logger(__name__)

OPEN_PAYMENT_STATUSES = (PaymentStatus.UNPAID.value, PaymentStatus.FAILED.value)
CLOSED_FULFILLMENT_STATUSES = (
    FulfillmentStatus.CANCELLED.value,
    FulfillmentStatus.REFUNDED.value,
)


class SqlOrderStore:
    """Order persistence backed by the ``orders`` and ``order_items`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _to_order(self, db: AsyncSession, record: OrderRecord) -> Order:
        result = await db.execute(
            select(OrderItemRecord)
            .where(OrderItemRecord.order_ref == record.order_ref)
            .order_by(OrderItemRecord.id)
        )
        items = tuple(
            LineItem(
                product_ref=item.product_ref,
                quantity=item.quantity,
                unit_price_minor=item.unit_price_minor,
            )
            for item in result.scalars().all()
        )
        return Order(
            order_ref=record.order_ref,
            customer_ref=record.customer_ref,
            customer=CustomerDetails(
                name=record.customer_name,
                email=record.customer_email,
                phone=record.customer_phone,
            ),
            total_minor=record.total_minor,
            currency=record.currency,
            payment_status=PaymentStatus(record.payment_status),
            fulfillment_status=FulfillmentStatus(record.fulfillment_status),
            items=items,
            synchronized_transaction_id=record.synchronized_transaction_id,
            cancellation_reason=record.cancellation_reason,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    async def find_by_order_ref(self, order_ref: str) -> Optional[Order]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(OrderRecord).where(OrderRecord.order_ref == order_ref)
            )
            record = result.scalar_one_or_none()
            return await self._to_order(db, record) if record else None

    async def find_by_gateway_ref(self, gateway_order_ref: str) -> Optional[Order]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(OrderRecord)
                .join(TransactionRecord, TransactionRecord.order_ref == OrderRecord.order_ref)
                .where(TransactionRecord.gateway_order_ref == gateway_order_ref)
            )
            record = result.scalar_one_or_none()
            return await self._to_order(db, record) if record else None

    async def add(self, order: Order) -> Order:
        """
        Insert a new order with its line items.

        Args:
            order: Order to insert

        Returns:
            Order: The stored order
        """
        async with self.session_factory() as db:
            db.add(
                OrderRecord(
                    order_ref=order.order_ref,
                    customer_ref=order.customer_ref,
                    customer_name=order.customer.name,
                    customer_email=order.customer.email,
                    customer_phone=order.customer.phone,
                    total_minor=order.total_minor,
                    currency=order.currency,
                    payment_status=order.payment_status.value,
                    fulfillment_status=order.fulfillment_status.value,
                )
            )
            for item in order.items:
                db.add(
                    OrderItemRecord(
                        order_ref=order.order_ref,
                        product_ref=item.product_ref,
                        quantity=item.quantity,
                        unit_price_minor=item.unit_price_minor,
                    )
                )
            await db.commit()
        return order

    async def cancel_if(
        self,
        order: Order,
        expected_payment_status: PaymentStatus,
        expected_fulfillment_status: FulfillmentStatus,
    ) -> bool:
        """
        Persist a cancelled order with a compare-and-set on its statuses.

        Args:
            order: Order carrying the new statuses and cancellation reason
            expected_payment_status: Payment status the caller read
            expected_fulfillment_status: Fulfillment status the caller read

        Returns:
            bool: False if the order changed since it was read
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(OrderRecord)
                .where(
                    OrderRecord.order_ref == order.order_ref,
                    OrderRecord.payment_status == expected_payment_status.value,
                    OrderRecord.fulfillment_status == expected_fulfillment_status.value,
                )
                .values(
                    payment_status=order.payment_status.value,
                    fulfillment_status=order.fulfillment_status.value,
                    cancellation_reason=order.cancellation_reason,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount == 1

    async def claim_synchronization(
        self,
        order_ref: str,
        transaction_id: str,
        payment_status: PaymentStatus,
        fulfillment_status: FulfillmentStatus,
    ) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(OrderRecord)
                .where(
                    OrderRecord.order_ref == order_ref,
                    OrderRecord.payment_status.in_(OPEN_PAYMENT_STATUSES),
                    OrderRecord.fulfillment_status.not_in(CLOSED_FULFILLMENT_STATUSES),
                    or_(
                        OrderRecord.synchronized_transaction_id.is_(None),
                        OrderRecord.synchronized_transaction_id != transaction_id,
                    ),
                )
                .values(
                    payment_status=payment_status.value,
                    fulfillment_status=fulfillment_status.value,
                    synchronized_transaction_id=transaction_id,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount == 1


class SqlInventoryStore:
    """Stock adjustments against the ``products`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _adjust(self, product_ref: str, delta: int) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(ProductRecord)
                .where(ProductRecord.product_ref == product_ref)
                .values(stock=ProductRecord.stock + delta)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount == 0:
            logger.warning("inventory_product_missing", product_ref=product_ref, delta=delta)
            return False
        return True

    async def decrement(self, product_ref: str, quantity: int) -> bool:
        return await self._adjust(product_ref, -quantity)

    async def restock(self, product_ref: str, quantity: int) -> bool:
        return await self._adjust(product_ref, quantity)

    async def stock_of(self, product_ref: str) -> Optional[int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ProductRecord.stock).where(ProductRecord.product_ref == product_ref)
            )
            return result.scalar_one_or_none()


class SqlCartStore:
    """Cart lines per customer."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def clear(self, customer_ref: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(CartItemRecord).where(CartItemRecord.customer_ref == customer_ref)
            )
            await db.commit()
        return result.rowcount

    async def count(self, customer_ref: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CartItemRecord.id).where(CartItemRecord.customer_ref == customer_ref)
            )
            return len(result.all())
