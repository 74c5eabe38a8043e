"""Wiring of the reconciliation components from explicit settings."""
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.dispatcher import ReconciliationDispatcher
from gateway_reconciliation.core.idempotency import OutcomeCache
from gateway_reconciliation.core.ledger import TransactionLedger
from gateway_reconciliation.core.notifications import LoggingNotifier, NotificationQueue
from gateway_reconciliation.core.payment_initiator import PaymentInitiator
from gateway_reconciliation.core.ports import Notifier
from gateway_reconciliation.core.signer import Signer
from gateway_reconciliation.core.sweeper import ReconciliationSweeper
from gateway_reconciliation.core.synchronizer import OrderSynchronizer
from gateway_reconciliation.database.stores import SqlCartStore, SqlInventoryStore, SqlOrderStore
from gateway_reconciliation.integrations.gateway_client import GatewayClient
from gateway_reconciliation.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Components:
    settings: Settings
    ledger: TransactionLedger
    order_store: SqlOrderStore
    inventory_store: SqlInventoryStore
    cart_store: SqlCartStore
    notifications: NotificationQueue
    synchronizer: OrderSynchronizer
    dispatcher: ReconciliationDispatcher
    initiator: PaymentInitiator
    sweeper: ReconciliationSweeper
    gateway_client: GatewayClient
    health_check: HealthCheck
    outcome_cache: Optional[OutcomeCache] = None

    async def close(self) -> None:
        """Flush notifications and release outbound clients."""
        await self.notifications.stop()
        await self.gateway_client.close()
        if self.outcome_cache is not None:
            await self.outcome_cache.close()


def build_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Optional[aioredis.Redis] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    notifier: Optional[Notifier] = None,
) -> Components:
    """
    Build every component from one settings object.

    Args:
        settings: Application settings
        session_factory: Async session factory shared by the ledger and stores
        redis_client: Redis client for the outcome cache; defaults to ``settings.redis_url``
        http_client: HTTP client for the gateway
        notifier: Notification sink; defaults to LoggingNotifier

    Returns:
        Components: Wired components
    """
    signer = Signer(settings.signing_secret)
    ledger = TransactionLedger(session_factory)
    order_store = SqlOrderStore(session_factory)
    inventory_store = SqlInventoryStore(session_factory)
    cart_store = SqlCartStore(session_factory)

    outcome_cache = None
    if redis_client is not None:
        outcome_cache = OutcomeCache(redis_client, settings.outcome_cache_ttl)
    elif settings.redis_url:
        outcome_cache = OutcomeCache.from_url(settings.redis_url, settings.outcome_cache_ttl)

    notifications = NotificationQueue(
        notifier or LoggingNotifier(), maxsize=settings.notification_queue_size
    )
    synchronizer = OrderSynchronizer(order_store, inventory_store, cart_store, notifications)
    dispatcher = ReconciliationDispatcher(
        settings, signer, ledger, synchronizer, order_store, outcome_cache
    )
    gateway_client = GatewayClient(settings, signer, http_client=http_client)
    initiator = PaymentInitiator(
        settings,
        signer,
        ledger,
        order_store,
        gateway_client=gateway_client if settings.gateway_register_orders else None,
    )
    sweeper = ReconciliationSweeper(
        settings, ledger, dispatcher, synchronizer, order_store, gateway_client
    )
    health_check = HealthCheck(
        session_factory, outcome_cache.redis_client if outcome_cache else None
    )

    logger.info(
        "components_built",
        outcome_cache=outcome_cache is not None,
        register_orders=settings.gateway_register_orders,
    )
    return Components(
        settings=settings,
        ledger=ledger,
        order_store=order_store,
        inventory_store=inventory_store,
        cart_store=cart_store,
        notifications=notifications,
        synchronizer=synchronizer,
        dispatcher=dispatcher,
        initiator=initiator,
        sweeper=sweeper,
        gateway_client=gateway_client,
        health_check=health_check,
        outcome_cache=outcome_cache,
    )
