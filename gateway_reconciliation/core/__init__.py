"""Core reconciliation logic: signing, ledger, dispatch and order synchronization."""
from .exceptions import ReconciliationError, TransientReconciliationError
from .models import Channel, Disposition, GatewayOutcome, TransactionStatus
from .signer import Signer, payload_digest

__all__ = [
    "Channel",
    "Disposition",
    "GatewayOutcome",
    "ReconciliationError",
    "Signer",
    "TransactionStatus",
    "TransientReconciliationError",
    "payload_digest",
]
