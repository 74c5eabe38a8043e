"""
HTTP client for the payment gateway's server-to-server API.

Implements:
- Order registration ahead of checkout
- Signed status queries used by the follow-up sweeper
- Error classification (transient vs. permanent)

Outbound calls are made exactly once; the caller decides what a failure means.
"""
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog

from gateway_reconciliation.config import Settings
from gateway_reconciliation.core.models import SignedRequest
from gateway_reconciliation.core.signer import Signer
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class GatewayErrorType(Enum):
    """Classification of gateway errors."""

    TRANSIENT = "transient"  # timeouts, connection errors, 5xx, 429
    PERMANENT = "permanent"  # other 4xx


class GatewayError(Exception):
    """Outbound gateway call failed."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        status_code: Optional[int] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            error_type: Classification of error
            status_code: HTTP status code, when the gateway answered
        """
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code


class GatewayClient:
    """Async client for order registration and status queries."""

    def __init__(
        self,
        settings: Settings,
        signer: Signer,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize gateway client.

        Args:
            settings: Application settings
            signer: Signer used for status queries
            http_client: Optional preconfigured client (tests inject a MockTransport)
        """
        self.settings = settings
        self.signer = signer
        self.base_url = settings.gateway_base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.gateway_timeout_seconds
        )

    @staticmethod
    def _classify(e: Exception) -> GatewayError:
        if isinstance(e, httpx.TimeoutException):
            return GatewayError("Gateway request timed out", GatewayErrorType.TRANSIENT)
        if isinstance(e, httpx.HTTPStatusError):
            status = e.response.status_code
            transient = status >= 500 or status == 429
            return GatewayError(
                f"Gateway returned HTTP {status}",
                GatewayErrorType.TRANSIENT if transient else GatewayErrorType.PERMANENT,
                status_code=status,
            )
        return GatewayError(f"Gateway request failed: {e}", GatewayErrorType.TRANSIENT)

    async def _post(self, operation: str, path: str, data: Dict[str, str]) -> httpx.Response:
        start_time = time.time()
        try:
            response = await self.http_client.post(f"{self.base_url}{path}", data=data)
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = self._classify(e)
            metrics.record_gateway_api_call(
                operation, error.error_type.value, time.time() - start_time
            )
            logger.error(
                "gateway_request_failed",
                operation=operation,
                error_type=error.error_type.value,
                status_code=error.status_code,
                error=str(e),
            )
            raise error from e

        metrics.record_gateway_api_call(operation, "success", time.time() - start_time)
        return response

    async def register_order(self, signed_request: SignedRequest) -> Dict[str, Any]:
        """
        Register a signed order with the gateway before checkout.

        Args:
            signed_request: Signed request produced by the signer

        Returns:
            Dict[str, Any]: Gateway response body

        Raises:
            GatewayError: On timeout, transport failure or error status
        """
        response = await self._post("register_order", "/orders", {"msg": signed_request.payload})
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}
        logger.info("gateway_order_registered", status_code=response.status_code)
        return body

    async def query_status(self, gateway_order_ref: str) -> str:
        """
        Ask the gateway for the current outcome of an attempt.

        Args:
            gateway_order_ref: Gateway order reference

        Returns:
            str: Signed delimited response payload, in the same layout as webhooks

        Raises:
            GatewayError: On timeout, transport failure or error status
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        query = self.signer.sign_fields(
            [self.settings.merchant_id, gateway_order_ref, timestamp]
        )
        response = await self._post("query_status", "/queries", {"msg": query})
        logger.info("gateway_status_queried", gateway_order_ref=gateway_order_ref)
        return response.text.strip()

    async def close(self) -> None:
        await self.http_client.aclose()
