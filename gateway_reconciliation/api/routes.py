"""
API routes for payment initiation, gateway callbacks and orders.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Form, HTTPException, Response, status
from fastapi.responses import RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from gateway_reconciliation.bootstrap import Components
from gateway_reconciliation.core.exceptions import (
    DuplicateGatewayRefError,
    InvalidAmountError,
    MalformedFieldError,
    OrderNotFoundError,
    OrderStateError,
    TransientReconciliationError,
)
from gateway_reconciliation.integrations.gateway_client import GatewayError

from .dependencies import get_components
from .schemas import (
    CancelOrderRequest,
    HealthCheckResponse,
    OrderResponse,
    PaymentInitiationResponse,
    PaymentStatusResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/payments", tags=["payments"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
monitoring_router = APIRouter(tags=["monitoring"])


@payment_router.post(
    "/initiate/{order_ref}",
    response_model=PaymentInitiationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initiate a payment",
    description="Create a signed gateway request and a pending transaction for an order",
)
async def initiate_payment(
    order_ref: str,
    components: Components = Depends(get_components),
) -> Dict[str, Any]:
    """Start a new payment attempt for an order."""
    try:
        initiation = await components.initiator.initiate(order_ref)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())
    except (OrderStateError, DuplicateGatewayRefError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())
    except (InvalidAmountError, MalformedFieldError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())
    except TransientReconciliationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())
    except GatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "gateway_error", "error_type": e.error_type.value},
        )

    transaction = initiation.transaction
    return {
        "order_ref": initiation.order_ref,
        "gateway_order_ref": transaction.gateway_order_ref,
        "transaction_id": transaction.transaction_id,
        "amount_minor": transaction.amount_minor,
        "currency": transaction.currency,
        "msg": initiation.signed_request.message,
        "checksum": initiation.signed_request.signature,
        "payment_url": initiation.payment_url,
        "merchant_id": initiation.merchant_id,
    }


@payment_router.get(
    "/status/{order_ref}",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
    description="Order payment status and its latest payment attempt",
)
async def get_payment_status(
    order_ref: str,
    components: Components = Depends(get_components),
) -> Dict[str, Any]:
    order = await components.order_store.find_by_order_ref(order_ref)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    transaction = await components.ledger.latest_for(order_ref)
    return {
        "order_ref": order.order_ref,
        "payment_status": order.payment_status.value,
        "fulfillment_status": order.fulfillment_status.value,
        "transaction": transaction.to_dict() if transaction else None,
    }


@payment_router.post(
    "/return",
    status_code=status.HTTP_303_SEE_OTHER,
    summary="Browser return",
    description="Gateway browser redirect; answers with a redirect to the outcome page",
)
async def payment_return(
    msg: str = Form(default=""),
    components: Components = Depends(get_components),
) -> RedirectResponse:
    url = await components.dispatcher.handle_browser_return(msg)
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@payment_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Gateway webhook",
    description="Server-to-server payment notification",
)
async def payment_webhook(
    msg: str = Form(default=""),
    components: Components = Depends(get_components),
) -> Dict[str, Any]:
    """
    Reconcile a webhook.

    Rejected payloads are acknowledged too; only a transient failure answers
    503 so the gateway redelivers.
    """
    try:
        ack = await components.dispatcher.handle_webhook(msg)
    except TransientReconciliationError as e:
        logger.error("api_webhook_transient_failure", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"success": False, "error": e.reason},
        )
    return ack.to_dict()


@order_router.post(
    "/{order_ref}/cancel",
    response_model=OrderResponse,
    summary="Cancel an order",
    description="Cancel an order; paid orders are marked refunded and restocked",
)
async def cancel_order(
    order_ref: str,
    request: Optional[CancelOrderRequest] = None,
    components: Components = Depends(get_components),
) -> Dict[str, Any]:
    reason = request.reason if request else None
    try:
        order = await components.synchronizer.cancel(order_ref, reason)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())
    except OrderStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())

    logger.info("api_order_cancelled", order_ref=order_ref)
    return {
        "order_ref": order.order_ref,
        "payment_status": order.payment_status.value,
        "fulfillment_status": order.fulfillment_status.value,
        "cancellation_reason": order.cancellation_reason,
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(components: Components = Depends(get_components)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await components.health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(components: Components = Depends(get_components)) -> Dict[str, Any]:
    return await components.health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(components: Components = Depends(get_components)) -> Dict[str, Any]:
    result = await components.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
