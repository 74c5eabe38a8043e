"""
Unit tests for request signing and signature verification.
"""
import hashlib
import hmac

import pytest

from gateway_reconciliation.core.exceptions import (
    InvalidAmountError,
    MalformedFieldError,
    MalformedPayloadError,
)
from gateway_reconciliation.core.models import CustomerDetails
from gateway_reconciliation.core.signer import Signer, payload_digest

from tests.conftest import MERCHANT_ID, SIGNING_SECRET, build_response

CUSTOMER = CustomerDetails(name="Asha Rao", email="asha@example.com", phone="9999999999")


def _build(signer: Signer, **overrides):
    params = dict(
        merchant_id=MERCHANT_ID,
        gateway_order_ref="ORD-1-A",
        amount_minor=10000,
        currency="INR",
        customer=CUSTOMER,
        return_url="https://shop.test/payments/return",
        mode="DIRECT",
    )
    params.update(overrides)
    return signer.build_signed_request(**params)


class TestSigner:
    """Test suite for Signer."""

    @pytest.mark.unit
    def test_build_signed_request_field_order(self, signer: Signer) -> None:
        """Fields are emitted in the order the gateway mandates."""
        request = _build(signer)

        assert request.message == (
            "TESTMERCHANT|ORD-1-A|10000|INR|Asha Rao|asha@example.com|9999999999|"
            "https://shop.test/payments/return|DIRECT"
        )

    @pytest.mark.unit
    def test_signature_is_lowercase_hex_hmac_sha256(self, signer: Signer) -> None:
        request = _build(signer)

        expected = hmac.new(
            SIGNING_SECRET.encode(), request.message.encode(), hashlib.sha256
        ).hexdigest()
        assert request.signature == expected
        assert request.signature == request.signature.lower()
        assert request.payload == f"{request.message}|{request.signature}"

    @pytest.mark.unit
    def test_signed_request_verifies(self, signer: Signer) -> None:
        """A request built by the signer verifies with the same secret."""
        request = _build(signer)

        result = signer.verify_signature(request.payload)

        assert result.verified is True
        assert result.fields[1] == "ORD-1-A"

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_rejected(self, signer: Signer, amount: int) -> None:
        with pytest.raises(InvalidAmountError):
            _build(signer, amount_minor=amount)

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", [100.5, "10000", True, None])
    def test_non_integer_amount_rejected(self, signer: Signer, amount: object) -> None:
        with pytest.raises(InvalidAmountError):
            _build(signer, amount_minor=amount)

    @pytest.mark.unit
    def test_delimiter_in_field_rejected(self, signer: Signer) -> None:
        """A field containing the delimiter is rejected, never altered."""
        customer = CustomerDetails(name="Asha|Rao", email="asha@example.com", phone="1")

        with pytest.raises(MalformedFieldError) as exc_info:
            _build(signer, customer=customer)

        assert exc_info.value.details["position"] == 4

    @pytest.mark.unit
    def test_altered_byte_fails_without_raising(self, signer: Signer) -> None:
        """Changing any single character of a valid payload fails verification."""
        payload = build_response(signer, "ORD-1-A")

        for index, char in enumerate(payload):
            if char == "|":
                continue
            replacement = "X" if char != "X" else "Y"
            tampered = payload[:index] + replacement + payload[index + 1:]
            assert signer.verify_signature(tampered).verified is False, index

    @pytest.mark.unit
    def test_uppercase_signature_fails(self, signer: Signer) -> None:
        """The trailing signature is compared exactly as received."""
        payload = build_response(signer, "ORD-1-A")
        head, _, signature = payload.rpartition("|")

        assert signer.verify_signature(f"{head}|{signature.upper()}").verified is False

    @pytest.mark.unit
    def test_other_secret_fails(self, signer: Signer) -> None:
        payload = build_response(Signer("another-secret"), "ORD-1-A")

        assert signer.verify_signature(payload).verified is False

    @pytest.mark.unit
    def test_verify_rejects_payload_without_signature(self, signer: Signer) -> None:
        with pytest.raises(MalformedPayloadError):
            signer.verify_signature("no-delimiters-here")

    @pytest.mark.unit
    def test_verify_rejects_wrong_field_count(self, signer: Signer) -> None:
        payload = signer.sign_fields(["a", "b", "c"])

        with pytest.raises(MalformedPayloadError):
            signer.verify_signature(payload, expected_fields=20)

    @pytest.mark.unit
    def test_verify_rejects_non_text(self, signer: Signer) -> None:
        with pytest.raises(MalformedPayloadError):
            signer.verify_signature(None)  # type: ignore[arg-type]

    @pytest.mark.unit
    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            Signer("")

    @pytest.mark.unit
    def test_payload_digest_is_stable(self) -> None:
        assert payload_digest("abc") == payload_digest(b"abc")
        assert payload_digest("abc") == hashlib.sha256(b"abc").hexdigest()
