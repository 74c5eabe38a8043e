"""
Pytest configuration and fixtures.

Every test gets a fresh SQLite database (aiosqlite) in a temporary
directory with one seeded order, its products and the customer's cart.
"""
from typing import Any, AsyncGenerator, List, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.dispatcher import ReconciliationDispatcher
from gateway_reconciliation.core.ledger import TransactionLedger
from gateway_reconciliation.core.models import (
    CustomerDetails,
    FulfillmentStatus,
    LineItem,
    Order,
    PaymentNotification,
    PaymentStatus,
    Transaction,
)
from gateway_reconciliation.core.notifications import NotificationQueue
from gateway_reconciliation.core.signer import Signer
from gateway_reconciliation.core.synchronizer import OrderSynchronizer
from gateway_reconciliation.database.connection import create_engine, create_session_factory
from gateway_reconciliation.database.models import Base, CartItemRecord, ProductRecord
from gateway_reconciliation.database.stores import SqlCartStore, SqlInventoryStore, SqlOrderStore

MERCHANT_ID = "TESTMERCHANT"
SIGNING_SECRET = "test-signing-secret"
ORDER_REF = "ORD-1"
CUSTOMER_REF = "CUST-1"
ORDER_TOTAL = 10000


class RecordingNotifier:
    """Notifier that keeps what it was asked to send."""

    def __init__(self) -> None:
        self.sent: List[PaymentNotification] = []

    async def notify(self, notification: PaymentNotification) -> None:
        self.sent.append(notification)


def build_response(
    signer: Signer,
    gateway_order_ref: str,
    status_code: str = "0300",
    amount: Any = ORDER_TOTAL,
    merchant_id: str = MERCHANT_ID,
    error_description: str = "",
) -> str:
    """Signed 20-field gateway response in the layout the gateway posts back."""
    fields: Sequence[str] = [
        merchant_id,
        gateway_order_ref,
        status_code,
        "PTX0001",
        "BANKREF01",
        str(amount),
        "HDFC",
        status_code,
        "01",
        "INR",
        "",
        "",
        "",
        "",
        "",
        "",
        "",
        "NA" if status_code == "0300" else "ERR",
        error_description,
    ]
    return signer.sign_fields(fields)


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        merchant_id=MERCHANT_ID,
        signing_secret=SIGNING_SECRET,
        gateway_base_url="https://gateway.test",
        payment_url="https://gateway.test/pay",
        return_url="https://shop.test/payments/return",
        frontend_url="https://shop.test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'reconciliation.db'}",
        app_name="gateway-reconciliation-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create test engine with all tables."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest.fixture
def signer() -> Signer:
    return Signer(SIGNING_SECRET)


@pytest.fixture
def ledger(session_factory: async_sessionmaker[AsyncSession]) -> TransactionLedger:
    return TransactionLedger(session_factory)


@pytest.fixture
def order_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlOrderStore:
    return SqlOrderStore(session_factory)


@pytest.fixture
def inventory_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlInventoryStore:
    return SqlInventoryStore(session_factory)


@pytest.fixture
def cart_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlCartStore:
    return SqlCartStore(session_factory)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def notifications(notifier: RecordingNotifier) -> NotificationQueue:
    return NotificationQueue(notifier, maxsize=100)


@pytest.fixture
def synchronizer(
    order_store: SqlOrderStore,
    inventory_store: SqlInventoryStore,
    cart_store: SqlCartStore,
    notifications: NotificationQueue,
) -> OrderSynchronizer:
    return OrderSynchronizer(order_store, inventory_store, cart_store, notifications)


@pytest.fixture
def dispatcher(
    test_settings: Settings,
    signer: Signer,
    ledger: TransactionLedger,
    synchronizer: OrderSynchronizer,
    order_store: SqlOrderStore,
) -> ReconciliationDispatcher:
    return ReconciliationDispatcher(test_settings, signer, ledger, synchronizer, order_store)


@pytest_asyncio.fixture
async def seeded_order(
    order_store: SqlOrderStore, session_factory: async_sessionmaker[AsyncSession]
) -> Order:
    """ORD-1: two line items totalling 10000, products in stock, cart with two lines."""
    order = Order(
        order_ref=ORDER_REF,
        customer_ref=CUSTOMER_REF,
        customer=CustomerDetails(name="Asha Rao", email="asha@example.com", phone="9999999999"),
        total_minor=ORDER_TOTAL,
        currency="INR",
        payment_status=PaymentStatus.UNPAID,
        fulfillment_status=FulfillmentStatus.PENDING,
        items=(
            LineItem(product_ref="SKU-1", quantity=2, unit_price_minor=3000),
            LineItem(product_ref="SKU-2", quantity=1, unit_price_minor=4000),
        ),
    )
    await order_store.add(order)

    async with session_factory() as db:
        db.add_all(
            [
                ProductRecord(product_ref="SKU-1", stock=10),
                ProductRecord(product_ref="SKU-2", stock=5),
                CartItemRecord(customer_ref=CUSTOMER_REF, product_ref="SKU-1", quantity=2),
                CartItemRecord(customer_ref=CUSTOMER_REF, product_ref="SKU-2", quantity=1),
            ]
        )
        await db.commit()
    return order


@pytest_asyncio.fixture
async def pending_transaction(
    ledger: TransactionLedger, seeded_order: Order
) -> Transaction:
    """Pending attempt ORD-1-A for the seeded order."""
    return await ledger.create_pending(
        order_ref=seeded_order.order_ref,
        gateway_order_ref="ORD-1-A",
        amount_minor=seeded_order.total_minor,
        currency=seeded_order.currency,
    )


async def reload_order(order_store: SqlOrderStore, order_ref: str = ORDER_REF) -> Optional[Order]:
    return await order_store.find_by_order_ref(order_ref)
