"""
Tests for payment initiation.
"""
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.exceptions import (
    InvalidAmountError,
    MalformedFieldError,
    OrderNotFoundError,
    OrderStateError,
)
from gateway_reconciliation.core.ledger import TransactionLedger
from gateway_reconciliation.core.models import (
    FulfillmentStatus,
    Order,
    PaymentStatus,
    TransactionStatus,
)
from gateway_reconciliation.core.payment_initiator import PaymentInitiator
from gateway_reconciliation.core.signer import Signer
from gateway_reconciliation.database.stores import SqlOrderStore
from gateway_reconciliation.integrations.gateway_client import GatewayError, GatewayErrorType


@pytest.fixture
def initiator(
    test_settings: Settings, signer: Signer, ledger: TransactionLedger, order_store: SqlOrderStore
) -> PaymentInitiator:
    return PaymentInitiator(test_settings, signer, ledger, order_store)


class TestPaymentInitiator:
    @pytest.mark.asyncio
    async def test_initiate_creates_pending_transaction(
        self,
        initiator: PaymentInitiator,
        ledger: TransactionLedger,
        signer: Signer,
        seeded_order: Order,
    ) -> None:
        initiation = await initiator.initiate("ORD-1")

        transaction = initiation.transaction
        assert transaction.status is TransactionStatus.PENDING
        assert transaction.amount_minor == 10000
        assert transaction.gateway_order_ref.startswith("ORD-1-")
        assert initiation.payment_url == "https://gateway.test/pay"
        assert initiation.merchant_id == "TESTMERCHANT"

        fields = initiation.signed_request.message.split("|")
        assert fields[:4] == ["TESTMERCHANT", transaction.gateway_order_ref, "10000", "INR"]
        assert signer.verify_signature(initiation.signed_request.payload).verified is True
        assert (await ledger.get(transaction.gateway_order_ref)) is not None

    @pytest.mark.asyncio
    async def test_each_attempt_gets_a_fresh_ref(
        self, initiator: PaymentInitiator, ledger: TransactionLedger, seeded_order: Order
    ) -> None:
        first = await initiator.initiate("ORD-1")
        second = await initiator.initiate("ORD-1")

        assert first.transaction.gateway_order_ref != second.transaction.gateway_order_ref
        older = await ledger.get(first.transaction.gateway_order_ref)
        assert older.superseded is True

    @pytest.mark.asyncio
    async def test_unknown_order(self, initiator: PaymentInitiator, seeded_order: Order) -> None:
        with pytest.raises(OrderNotFoundError):
            await initiator.initiate("ORD-404")

    @pytest.mark.asyncio
    async def test_paid_order_rejected(
        self, test_settings: Settings, signer: Signer, ledger: TransactionLedger, seeded_order: Order
    ) -> None:
        order_store = AsyncMock()
        order_store.find_by_order_ref.return_value = replace(
            seeded_order, payment_status=PaymentStatus.PAID
        )
        initiator = PaymentInitiator(test_settings, signer, ledger, order_store)

        with pytest.raises(OrderStateError):
            await initiator.initiate("ORD-1")

    @pytest.mark.asyncio
    async def test_cancelled_order_rejected(
        self, test_settings: Settings, signer: Signer, ledger: TransactionLedger, seeded_order: Order
    ) -> None:
        order_store = AsyncMock()
        order_store.find_by_order_ref.return_value = replace(
            seeded_order, fulfillment_status=FulfillmentStatus.CANCELLED
        )
        initiator = PaymentInitiator(test_settings, signer, ledger, order_store)

        with pytest.raises(OrderStateError):
            await initiator.initiate("ORD-1")

    @pytest.mark.asyncio
    async def test_invalid_amount_leaves_no_transaction(
        self, test_settings: Settings, signer: Signer, seeded_order: Order
    ) -> None:
        """Validation happens before anything is persisted."""
        order_store = AsyncMock()
        order_store.find_by_order_ref.return_value = replace(seeded_order, total_minor=0)
        ledger = AsyncMock()
        initiator = PaymentInitiator(test_settings, signer, ledger, order_store)

        with pytest.raises(InvalidAmountError):
            await initiator.initiate("ORD-1")

        ledger.create_pending.assert_not_called()

    @pytest.mark.asyncio
    async def test_overlong_gateway_ref_rejected_before_persisting(
        self, test_settings: Settings, signer: Signer, seeded_order: Order
    ) -> None:
        """An order ref near the column width cannot produce an unstorable attempt ref."""
        long_ref = "X" * 60
        order_store = AsyncMock()
        order_store.find_by_order_ref.return_value = replace(seeded_order, order_ref=long_ref)
        ledger = AsyncMock()
        initiator = PaymentInitiator(test_settings, signer, ledger, order_store)

        with pytest.raises(MalformedFieldError) as exc_info:
            await initiator.initiate(long_ref)

        assert exc_info.value.details["length"] == 69
        ledger.create_pending.assert_not_called()

    @pytest.mark.asyncio
    async def test_registration_timeout_discards_pending(
        self,
        test_settings: Settings,
        signer: Signer,
        ledger: TransactionLedger,
        order_store: SqlOrderStore,
        seeded_order: Order,
    ) -> None:
        gateway_client = AsyncMock()
        gateway_client.register_order.side_effect = GatewayError(
            "Gateway request timed out", GatewayErrorType.TRANSIENT
        )
        initiator = PaymentInitiator(
            test_settings, signer, ledger, order_store, gateway_client=gateway_client
        )

        with pytest.raises(GatewayError):
            await initiator.initiate("ORD-1")

        assert await ledger.latest_for("ORD-1") is None

    @pytest.mark.asyncio
    async def test_registration_success(
        self,
        test_settings: Settings,
        signer: Signer,
        ledger: TransactionLedger,
        order_store: SqlOrderStore,
        seeded_order: Order,
    ) -> None:
        gateway_client = AsyncMock()
        gateway_client.register_order.return_value = {"status": "ACTIVE"}
        initiator = PaymentInitiator(
            test_settings, signer, ledger, order_store, gateway_client=gateway_client
        )

        initiation = await initiator.initiate("ORD-1")

        gateway_client.register_order.assert_awaited_once_with(initiation.signed_request)
        assert await ledger.latest_for("ORD-1") is not None
