"""
Inbound response layout and status-code mapping for the gateway.

Response message (pipe-delimited, 20 fields):

    MerchantID|OrderRef|TxnStatus|ProviderTxnID|BankRef|TxnAmount|BankID|
    AuthStatus|TxnType|Currency|AdditionalInfo1..7|ErrorStatus|ErrorDescription|Signature
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from gateway_reconciliation.core.exceptions import MalformedPayloadError
from gateway_reconciliation.core.models import GatewayOutcome

logger = structlog.get_logger(__name__)

RESPONSE_FIELD_COUNT = 20

SUCCESS_CODES = frozenset({"0300"})
PENDING_CODES = frozenset({"0002"})
FAILURE_CODES = frozenset({"0399", "0001", "NA"})


def map_status_code(code: str) -> GatewayOutcome:
    """
    Map a provider status code to the three-way outcome.

    Unrecognised codes are fail-closed.

    Args:
        code: Provider status code

    Returns:
        GatewayOutcome: success, failed or pending
    """
    if code in SUCCESS_CODES:
        return GatewayOutcome.SUCCESS
    if code in PENDING_CODES:
        return GatewayOutcome.PENDING
    if code not in FAILURE_CODES:
        logger.warning("gateway_status_code_unrecognized", status_code=code)
    return GatewayOutcome.FAILED


@dataclass(frozen=True)
class GatewayResponse:
    """Typed view over a verified response payload."""

    merchant_id: str
    gateway_order_ref: str
    status_code: str
    provider_txn_id: str
    bank_ref: str
    amount: str
    bank_id: str
    auth_status: str
    txn_type: str
    currency: str
    additional_info: List[str]
    error_status: str
    error_description: str

    @classmethod
    def from_fields(cls, fields: List[str]) -> "GatewayResponse":
        """
        Build from the split payload (signature field included).

        Raises:
            MalformedPayloadError: If the field count is wrong
        """
        if len(fields) != RESPONSE_FIELD_COUNT:
            raise MalformedPayloadError(
                f"Expected {RESPONSE_FIELD_COUNT} fields, got {len(fields)}",
                details={"field_count": len(fields)},
            )
        return cls(
            merchant_id=fields[0],
            gateway_order_ref=fields[1],
            status_code=fields[2],
            provider_txn_id=fields[3],
            bank_ref=fields[4],
            amount=fields[5],
            bank_id=fields[6],
            auth_status=fields[7],
            txn_type=fields[8],
            currency=fields[9],
            additional_info=list(fields[10:17]),
            error_status=fields[17],
            error_description=fields[18],
        )

    @property
    def outcome(self) -> GatewayOutcome:
        return map_status_code(self.status_code)

    @property
    def amount_minor(self) -> Optional[int]:
        """Reported amount in minor units, or None when it is not an integer."""
        try:
            return int(self.amount)
        except ValueError:
            return None

    def metadata(self) -> Dict[str, Any]:
        """Provider fields merged into the transaction's metadata bag."""
        data = {
            "provider_txn_id": self.provider_txn_id,
            "bank_ref": self.bank_ref,
            "status_code": self.status_code,
            "reported_amount": self.amount,
            "bank_id": self.bank_id,
            "auth_status": self.auth_status,
            "txn_type": self.txn_type,
            "error_status": self.error_status,
            "error_description": self.error_description,
        }
        return {key: value for key, value in data.items() if value}
