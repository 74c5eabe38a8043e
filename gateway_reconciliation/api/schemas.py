"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PaymentInitiationResponse(BaseModel):
    """Signed request handed to the browser for checkout."""

    order_ref: str = Field(..., description="Order reference")
    gateway_order_ref: str = Field(..., description="Reference for this payment attempt")
    transaction_id: str = Field(..., description="Ledger transaction id")
    amount_minor: int = Field(..., description="Amount in minor units")
    currency: str = Field(..., description="Currency code")
    msg: str = Field(..., description="Delimited request message")
    checksum: str = Field(..., description="HMAC-SHA256 signature of msg")
    payment_url: str = Field(..., description="Gateway checkout URL")
    merchant_id: str = Field(..., description="Merchant id")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_ref": "ORD-1",
                    "gateway_order_ref": "ORD-1-3F9A1C2B",
                    "transaction_id": "txn_8c1f0e7b2a9d4c31",
                    "amount_minor": 10000,
                    "currency": "INR",
                    "msg": "MERCHANT|ORD-1-3F9A1C2B|10000|INR|Asha|asha@example.com|"
                    "9999999999|https://shop.example.com/payments/return|DIRECT",
                    "checksum": "5f0c...",
                    "payment_url": "https://gateway.example.com/pay",
                    "merchant_id": "MERCHANT",
                }
            ]
        }
    }


class TransactionResponse(BaseModel):
    transaction_id: str
    gateway_order_ref: str
    amount_minor: int
    currency: str
    status: str
    superseded: bool
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    finalized_at: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    """Order payment state plus its latest attempt."""

    order_ref: str = Field(..., description="Order reference")
    payment_status: str = Field(..., description="unpaid, paid, failed or refunded")
    fulfillment_status: str = Field(..., description="Fulfillment status")
    transaction: Optional[TransactionResponse] = Field(
        default=None, description="Latest payment attempt"
    )


class WebhookResponse(BaseModel):
    """Fixed-shape acknowledgement returned to the gateway."""

    success: bool = Field(..., description="Whether the payload was handled")
    disposition: str = Field(..., description="applied, duplicate, pending or rejected")
    gateway_order_ref: Optional[str] = Field(default=None, description="Gateway order reference")


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500, description="Cancellation reason")


class OrderResponse(BaseModel):
    order_ref: str
    payment_status: str
    fulfillment_status: str
    cancellation_reason: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Health status")
    message: Optional[str] = Field(default=None, description="Status message")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
