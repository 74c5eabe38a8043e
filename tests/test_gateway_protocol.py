"""
Unit tests for the inbound response layout and status mapping.
"""
import pytest

from gateway_reconciliation.core.exceptions import MalformedPayloadError
from gateway_reconciliation.core.gateway_protocol import GatewayResponse, map_status_code
from gateway_reconciliation.core.models import GatewayOutcome
from gateway_reconciliation.core.signer import Signer

from tests.conftest import build_response


class TestStatusMapping:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "code,outcome",
        [
            ("0300", GatewayOutcome.SUCCESS),
            ("0002", GatewayOutcome.PENDING),
            ("0399", GatewayOutcome.FAILED),
            ("0001", GatewayOutcome.FAILED),
            ("NA", GatewayOutcome.FAILED),
        ],
    )
    def test_known_codes(self, code: str, outcome: GatewayOutcome) -> None:
        assert map_status_code(code) is outcome

    @pytest.mark.unit
    @pytest.mark.parametrize("code", ["9999", "", "300", "0300 "])
    def test_unknown_codes_fail_closed(self, code: str) -> None:
        assert map_status_code(code) is GatewayOutcome.FAILED


class TestGatewayResponse:
    @pytest.mark.unit
    def test_from_fields(self, signer: Signer) -> None:
        payload = build_response(signer, "ORD-1-A", error_description="Declined")
        response = GatewayResponse.from_fields(payload.split("|"))

        assert response.merchant_id == "TESTMERCHANT"
        assert response.gateway_order_ref == "ORD-1-A"
        assert response.status_code == "0300"
        assert response.provider_txn_id == "PTX0001"
        assert response.bank_ref == "BANKREF01"
        assert response.amount_minor == 10000
        assert response.currency == "INR"
        assert len(response.additional_info) == 7
        assert response.error_description == "Declined"
        assert response.outcome is GatewayOutcome.SUCCESS

    @pytest.mark.unit
    def test_metadata_skips_empty_values(self, signer: Signer) -> None:
        payload = build_response(signer, "ORD-1-A")
        metadata = GatewayResponse.from_fields(payload.split("|")).metadata()

        assert metadata["provider_txn_id"] == "PTX0001"
        assert metadata["bank_ref"] == "BANKREF01"
        assert "error_description" not in metadata

    @pytest.mark.unit
    def test_non_integer_amount(self, signer: Signer) -> None:
        payload = build_response(signer, "ORD-1-A", amount="100.00")

        assert GatewayResponse.from_fields(payload.split("|")).amount_minor is None

    @pytest.mark.unit
    def test_wrong_field_count(self) -> None:
        with pytest.raises(MalformedPayloadError):
            GatewayResponse.from_fields(["a"] * 19)
