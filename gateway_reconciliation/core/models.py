"""Domain types shared by the signer, ledger, dispatcher and synchronizer."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from gateway_reconciliation.config.settings import FIELD_DELIMITER


class TransactionStatus(str, Enum):
    """Ledger status. PENDING is initial, SUCCESS and FAILED are terminal."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class FulfillmentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class GatewayOutcome(str, Enum):
    """Three-way mapping of provider status codes."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"

    def to_transaction_status(self) -> TransactionStatus:
        return TransactionStatus(self.value)


class Channel(str, Enum):
    """Inbound route a gateway payload arrived through."""

    WEBHOOK = "webhook"
    BROWSER_RETURN = "browser_return"
    STATUS_QUERY = "status_query"


class Disposition(str, Enum):
    """What the dispatcher did with one inbound payload."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    PENDING = "pending"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CustomerDetails:
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class LineItem:
    """Order line; the unit price is frozen when the order is placed."""

    product_ref: str
    quantity: int
    unit_price_minor: int


@dataclass(frozen=True)
class Order:
    order_ref: str
    customer_ref: str
    customer: CustomerDetails
    total_minor: int
    currency: str
    payment_status: PaymentStatus
    fulfillment_status: FulfillmentStatus
    items: Tuple[LineItem, ...] = ()
    synchronized_transaction_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Transaction:
    transaction_id: str
    order_ref: str
    gateway_order_ref: str
    amount_minor: int
    currency: str
    status: TransactionStatus
    metadata: Dict[str, Any] = field(default_factory=dict)
    superseded: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "order_ref": self.order_ref,
            "gateway_order_ref": self.gateway_order_ref,
            "amount_minor": self.amount_minor,
            "currency": self.currency,
            "status": self.status.value,
            "metadata": dict(self.metadata),
            "superseded": self.superseded,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }


@dataclass(frozen=True)
class FinalizeResult:
    transaction: Transaction
    applied: bool


@dataclass(frozen=True)
class SignedRequest:
    message: str
    signature: str

    @property
    def payload(self) -> str:
        """Message with the signature appended as the trailing field."""
        return f"{self.message}{FIELD_DELIMITER}{self.signature}"


@dataclass(frozen=True)
class VerificationResult:
    fields: List[str]
    verified: bool


@dataclass(frozen=True)
class PaymentInitiation:
    order_ref: str
    transaction: Transaction
    signed_request: SignedRequest
    payment_url: str
    merchant_id: str


@dataclass(frozen=True)
class InboundResult:
    """Outcome of reconciling one inbound payload."""

    disposition: Disposition
    channel: Channel
    gateway_order_ref: Optional[str] = None
    order_ref: Optional[str] = None
    status: Optional[TransactionStatus] = None
    error: Optional[str] = None

    def to_cache(self) -> Dict[str, Any]:
        return {
            "gateway_order_ref": self.gateway_order_ref,
            "order_ref": self.order_ref,
            "status": self.status.value if self.status else None,
        }


@dataclass(frozen=True)
class WebhookAck:
    """Fixed-shape acknowledgement returned to the gateway."""

    success: bool
    disposition: Disposition
    gateway_order_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "disposition": self.disposition.value,
            "gateway_order_ref": self.gateway_order_ref,
        }


@dataclass(frozen=True)
class PaymentNotification:
    order_ref: str
    transaction_id: str
    gateway_order_ref: str
    status: TransactionStatus
    amount_minor: int
    currency: str
    customer_ref: str
