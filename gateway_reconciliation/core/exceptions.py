"""
Exception hierarchy for the reconciliation engine.

Input-shape, security and data-integrity errors raised on the inbound path are
turned into deterministic acknowledgements by the dispatcher; only
TransientReconciliationError is allowed to reach the HTTP layer as a failure.
"""
from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""

    reason = "reconciliation_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {"error": self.reason, "message": self.message, "details": self.details}


class InvalidAmountError(ReconciliationError):
    """Amount is not a positive integer number of minor units."""

    reason = "invalid_amount"


class MalformedFieldError(ReconciliationError):
    """An outbound field contains the message delimiter or does not fit its column."""

    reason = "malformed_field"


class MalformedPayloadError(ReconciliationError):
    """An inbound payload does not have the expected structure."""

    reason = "malformed_payload"


class SecurityError(ReconciliationError):
    """Base class for authenticity failures on inbound payloads."""

    reason = "security_error"


class SignatureMismatchError(SecurityError):
    """Recomputed HMAC does not match the trailing signature field."""

    reason = "signature_mismatch"


class ForeignMerchantError(SecurityError):
    """Payload is signed for a merchant other than the configured one."""

    reason = "foreign_merchant"


class DuplicateGatewayRefError(ReconciliationError):
    """A transaction already exists for this gateway order reference."""

    reason = "duplicate_gateway_ref"


class UnknownTransactionError(ReconciliationError):
    """An outcome arrived for an attempt that was never created."""

    reason = "unknown_transaction"


class PreconditionError(ReconciliationError):
    """A programming invariant was violated."""

    reason = "precondition_failed"


class OrderNotFoundError(ReconciliationError):
    """No order exists for the given reference."""

    reason = "order_not_found"


class OrderStateError(ReconciliationError):
    """The order is in a state that does not allow the requested operation."""

    reason = "order_state"


class TransientReconciliationError(ReconciliationError):
    """Infrastructure failure; the sender should retry the same payload."""

    reason = "transient_failure"
