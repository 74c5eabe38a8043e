"""
Message signing and verification for the payment gateway.

Outbound requests and inbound responses are pipe-delimited messages whose last
field is an HMAC-SHA256 over the rest of the message. Everything here is pure:
no I/O, no clock, no settings lookup at call time.
"""
import hashlib
import hmac
from typing import Optional, Sequence

from gateway_reconciliation.config.settings import FIELD_DELIMITER
from gateway_reconciliation.core.exceptions import (
    InvalidAmountError,
    MalformedFieldError,
    MalformedPayloadError,
)
from gateway_reconciliation.core.models import (
    CustomerDetails,
    SignedRequest,
    VerificationResult,
)


def payload_digest(raw_payload: str | bytes) -> str:
    """
    SHA-256 digest of a raw payload, for audit logs and cache keys.

    Args:
        raw_payload: Payload exactly as received

    Returns:
        str: Hex digest
    """
    if isinstance(raw_payload, str):
        raw_payload = raw_payload.encode("utf-8")
    return hashlib.sha256(raw_payload).hexdigest()


class Signer:
    """
    Builds signed gateway requests and verifies gateway responses.

    The signing secret is provisioned out of band and passed in once; the
    instance is safe to share between concurrent requests.
    """

    def __init__(self, signing_secret: str, delimiter: str = FIELD_DELIMITER):
        if not signing_secret:
            raise ValueError("signing_secret is required")
        self._key = signing_secret.encode("utf-8")
        self.delimiter = delimiter

    def sign(self, message: str) -> str:
        """Lowercase hex HMAC-SHA256 of the message."""
        digest = hmac.new(self._key, message.encode("utf-8"), hashlib.sha256)
        return digest.hexdigest().lower()

    def _join(self, fields: Sequence[str]) -> str:
        for position, value in enumerate(fields):
            if self.delimiter in value:
                raise MalformedFieldError(
                    f"Field {position} contains the delimiter '{self.delimiter}'",
                    details={"position": position},
                )
        return self.delimiter.join(fields)

    def sign_fields(self, fields: Sequence[str]) -> str:
        """
        Join fields and append their signature as the trailing field.

        Args:
            fields: Message fields in wire order

        Returns:
            str: Delimited payload ending with the signature

        Raises:
            MalformedFieldError: If any field contains the delimiter
        """
        message = self._join([str(value) for value in fields])
        return f"{message}{self.delimiter}{self.sign(message)}"

    def build_signed_request(
        self,
        merchant_id: str,
        gateway_order_ref: str,
        amount_minor: int,
        currency: str,
        customer: CustomerDetails,
        return_url: str,
        mode: str,
    ) -> SignedRequest:
        """
        Build the payment request message in the order the gateway mandates.

        Args:
            merchant_id: Merchant id issued by the gateway
            gateway_order_ref: Unique reference for this payment attempt
            amount_minor: Amount in minor units (e.g. paise)
            currency: Currency code
            customer: Customer name, email and phone
            return_url: Browser return URL
            mode: Payment mode

        Returns:
            SignedRequest: Message and its signature

        Raises:
            InvalidAmountError: If the amount is not a positive integer
            MalformedFieldError: If any field contains the delimiter
        """
        if isinstance(amount_minor, bool) or not isinstance(amount_minor, int):
            raise InvalidAmountError(
                "Amount must be an integer number of minor units",
                details={"amount": repr(amount_minor)},
            )
        if amount_minor <= 0:
            raise InvalidAmountError(
                "Amount must be greater than zero", details={"amount": amount_minor}
            )

        message = self._join(
            [
                merchant_id,
                gateway_order_ref,
                str(amount_minor),
                currency,
                customer.name,
                customer.email,
                customer.phone,
                return_url,
                mode,
            ]
        )
        return SignedRequest(message=message, signature=self.sign(message))

    def verify_signature(
        self, raw_payload: str, expected_fields: Optional[int] = None
    ) -> VerificationResult:
        """
        Verify the trailing signature of a delimited payload.

        A bad signature yields ``verified=False``; only structurally malformed
        input raises.

        Args:
            raw_payload: Delimited payload whose last field is the signature
            expected_fields: Exact field count including the signature, if known

        Returns:
            VerificationResult: Split fields and verification flag

        Raises:
            MalformedPayloadError: If the field count is wrong
        """
        if not isinstance(raw_payload, str):
            raise MalformedPayloadError("Payload must be text")

        fields = raw_payload.split(self.delimiter)
        if len(fields) < 2:
            raise MalformedPayloadError(
                "Payload has no signature field", details={"field_count": len(fields)}
            )
        if expected_fields is not None and len(fields) != expected_fields:
            raise MalformedPayloadError(
                f"Expected {expected_fields} fields, got {len(fields)}",
                details={"field_count": len(fields), "expected": expected_fields},
            )

        received = fields[-1]
        expected = self.sign(self.delimiter.join(fields[:-1]))
        verified = hmac.compare_digest(
            expected.encode("utf-8"), received.encode("utf-8", errors="replace")
        )
        return VerificationResult(fields=fields, verified=verified)
