"""
Tests for the outbound gateway client.

Uses httpx.MockTransport so no request leaves the process.
"""
from typing import Callable
from urllib.parse import parse_qs

import httpx
import pytest

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.models import CustomerDetails
from gateway_reconciliation.core.signer import Signer
from gateway_reconciliation.integrations.gateway_client import (
    GatewayClient,
    GatewayError,
    GatewayErrorType,
)

from tests.conftest import MERCHANT_ID, build_response


def _client(
    settings: Settings, signer: Signer, handler: Callable[[httpx.Request], httpx.Response]
) -> GatewayClient:
    return GatewayClient(
        settings, signer, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestGatewayClient:
    @pytest.mark.asyncio
    async def test_register_order_posts_signed_payload(
        self, test_settings: Settings, signer: Signer
    ) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "ACTIVE"})

        client = _client(test_settings, signer, handler)
        signed = signer.build_signed_request(
            merchant_id=MERCHANT_ID,
            gateway_order_ref="ORD-1-A",
            amount_minor=10000,
            currency="INR",
            customer=CustomerDetails(name="Asha", email="asha@example.com", phone="9999999999"),
            return_url="https://shop.test/payments/return",
            mode="DIRECT",
        )

        body = await client.register_order(signed)
        await client.close()

        assert body == {"status": "ACTIVE"}
        assert str(seen[0].url) == "https://gateway.test/orders"
        assert _form(seen[0])["msg"] == signed.payload

    @pytest.mark.asyncio
    async def test_register_order_non_json_body(
        self, test_settings: Settings, signer: Signer
    ) -> None:
        client = _client(test_settings, signer, lambda request: httpx.Response(200, text="OK"))
        signed = signer.build_signed_request(
            MERCHANT_ID,
            "ORD-1-A",
            10000,
            "INR",
            CustomerDetails(name="Asha", email="asha@example.com", phone="9999999999"),
            "https://shop.test/payments/return",
            "DIRECT",
        )

        assert await client.register_order(signed) == {"raw": "OK"}

    @pytest.mark.asyncio
    async def test_query_status_signs_query(self, test_settings: Settings, signer: Signer) -> None:
        answer = build_response(signer, "ORD-1-A")
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=answer + "\n")

        client = _client(test_settings, signer, handler)

        assert await client.query_status("ORD-1-A") == answer

        query = _form(seen[0])["msg"]
        assert str(seen[0].url) == "https://gateway.test/queries"
        verification = signer.verify_signature(query, expected_fields=4)
        assert verification.verified is True
        assert verification.fields[:2] == [MERCHANT_ID, "ORD-1-A"]

    @pytest.mark.parametrize("status_code", [500, 503, 429])
    @pytest.mark.asyncio
    async def test_server_errors_are_transient(
        self, test_settings: Settings, signer: Signer, status_code: int
    ) -> None:
        client = _client(test_settings, signer, lambda request: httpx.Response(status_code))

        with pytest.raises(GatewayError) as exc_info:
            await client.query_status("ORD-1-A")

        assert exc_info.value.error_type is GatewayErrorType.TRANSIENT
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_client_errors_are_permanent(
        self, test_settings: Settings, signer: Signer
    ) -> None:
        client = _client(test_settings, signer, lambda request: httpx.Response(400))

        with pytest.raises(GatewayError) as exc_info:
            await client.query_status("ORD-1-A")

        assert exc_info.value.error_type is GatewayErrorType.PERMANENT

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, test_settings: Settings, signer: Signer) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(test_settings, signer, handler)

        with pytest.raises(GatewayError) as exc_info:
            await client.query_status("ORD-1-A")

        assert exc_info.value.error_type is GatewayErrorType.TRANSIENT
        assert exc_info.value.status_code is None
