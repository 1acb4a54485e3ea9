"""
Tests for superpay_sdk.codec module.

Tests payment request encoding, decoding of scanned text, and validation
against the supported token.
"""

import json

import pytest

from superpay_sdk.codec import (
    SCHEMA_TAG,
    build_payment_request,
    decode_payment_request,
    encode_payment_request,
    format_address,
    is_valid_address,
    validate_payment_request,
)
from superpay_sdk.types import DecodeError, PaymentRequest, TokenMeta, ValidationError

from conftest import RECIPIENT, USDC_CONTRACT


@pytest.fixture
def wire_payload():
    """Payload as a payer's scanner sees it."""
    return {
        "type": SCHEMA_TAG,
        "to": RECIPIENT,
        "amount": "25.50",
        "token": "USDC",
        "contract": USDC_CONTRACT,
        "decimals": 6,
        "description": "Lunch",
        "timestamp": 1_700_000_000_000,
        "chainId": 1328,
    }


class TestEncode:
    """Tests for encode_payment_request and build_payment_request."""

    def test_encodes_wire_keys(self, usdc):
        raw = encode_payment_request(
            RECIPIENT, "25.50", usdc, description="Lunch", chain_id=1328,
            clock=lambda: 1234,
        )
        data = json.loads(raw)

        assert data["type"] == SCHEMA_TAG
        assert data["to"] == RECIPIENT
        assert data["amount"] == "25.50"
        assert data["token"] == "USDC"
        assert data["contract"] == USDC_CONTRACT
        assert data["decimals"] == 6
        assert data["description"] == "Lunch"
        assert data["timestamp"] == 1234
        assert data["chainId"] == 1328

    def test_default_description(self, usdc):
        request = build_payment_request(RECIPIENT, "0", usdc)
        assert request.description == "USDC Payment Request"

    def test_decode_gives_back_same_request(self, usdc):
        request = build_payment_request(RECIPIENT, "25.50", usdc, chain_id=1328)
        raw = encode_payment_request(
            RECIPIENT, "25.50", usdc, chain_id=1328, clock=lambda: request.created_at_ms
        )
        assert decode_payment_request(raw) == request

    def test_request_is_immutable(self, usdc):
        request = build_payment_request(RECIPIENT, "1", usdc)
        with pytest.raises(Exception):
            request.amount = "2"


class TestDecode:
    """Tests for decode_payment_request."""

    def test_decodes_payload(self, wire_payload):
        request = decode_payment_request(json.dumps(wire_payload))

        assert isinstance(request, PaymentRequest)
        assert request.recipient_address == RECIPIENT
        assert request.amount == "25.50"
        assert request.token_decimals == 6
        assert request.chain_id == 1328

    def test_ignores_unknown_keys(self, wire_payload):
        wire_payload["version"] = 2
        assert isinstance(decode_payment_request(json.dumps(wire_payload)), PaymentRequest)

    def test_numeric_amount_becomes_string(self, wire_payload):
        wire_payload["amount"] = 10
        request = decode_payment_request(json.dumps(wire_payload))
        assert request.amount == "10"

    @pytest.mark.parametrize(
        "raw",
        [
            "https://example.com",
            "not json at all",
            "[1, 2, 3]",
            "42",
            json.dumps({"to": RECIPIENT, "amount": "1"}),
            json.dumps({"type": "OTHER_PAYMENT", "to": RECIPIENT}),
        ],
    )
    def test_rejects_non_payment_payloads(self, raw):
        assert decode_payment_request(raw) is DecodeError.NOT_A_PAYMENT_PAYLOAD

    def test_rejects_malformed_fields(self, wire_payload):
        wire_payload["decimals"] = "six"
        assert decode_payment_request(json.dumps(wire_payload)) is DecodeError.NOT_A_PAYMENT_PAYLOAD


class TestValidate:
    """Tests for validate_payment_request."""

    def _request(self, wire_payload, **changes):
        wire_payload.update(changes)
        return PaymentRequest.model_validate(wire_payload)

    def test_valid(self, wire_payload, usdc):
        result = validate_payment_request(self._request(wire_payload), usdc)
        assert result.is_valid
        assert result.error is None

    def test_zero_amount_is_valid(self, wire_payload, usdc):
        request = self._request(wire_payload, amount="0")
        assert validate_payment_request(request, usdc).is_valid
        assert request.is_open_amount

    def test_missing_recipient(self, wire_payload, usdc):
        result = validate_payment_request(self._request(wire_payload, to=""), usdc)
        assert result.error == ValidationError.INVALID_FORMAT
        assert result.message == "Missing required payment data"

    def test_missing_amount(self, wire_payload, usdc):
        del wire_payload["amount"]
        result = validate_payment_request(PaymentRequest.model_validate(wire_payload), usdc)
        assert result.error == ValidationError.INVALID_FORMAT

    @pytest.mark.parametrize("amount", ["-1", "abc", "NaN"])
    def test_invalid_amount(self, wire_payload, usdc, amount):
        result = validate_payment_request(self._request(wire_payload, amount=amount), usdc)
        assert result.error == ValidationError.INVALID_AMOUNT

    def test_unsupported_symbol(self, wire_payload, usdc):
        result = validate_payment_request(self._request(wire_payload, token="DAI"), usdc)
        assert result.error == ValidationError.UNSUPPORTED_TOKEN
        assert result.message == "Unsupported token type"

    def test_wrong_contract(self, wire_payload, usdc):
        other = "0x" + "9" * 40
        result = validate_payment_request(self._request(wire_payload, contract=other), usdc)
        assert result.error == ValidationError.UNSUPPORTED_TOKEN
        assert result.message == "Invalid contract address"

    def test_contract_compare_ignores_case(self, wire_payload, usdc):
        request = self._request(wire_payload, contract=USDC_CONTRACT.upper().replace("0X", "0x"))
        assert validate_payment_request(request, usdc).is_valid

    def test_format_checked_before_token(self, wire_payload):
        other = TokenMeta(symbol="DAI", contract="0x" + "1" * 40, decimals=18)
        result = validate_payment_request(self._request(wire_payload, amount=""), other)
        assert result.error == ValidationError.INVALID_FORMAT


class TestAddresses:
    """Tests for address helpers."""

    def test_valid_address(self):
        assert is_valid_address(RECIPIENT)

    @pytest.mark.parametrize("address", ["", "0xABC", "1111111111111111111111111111111111111111", "0x" + "g" * 40])
    def test_invalid_address(self, address):
        assert not is_valid_address(address)

    def test_format_address(self):
        assert format_address("0x1234567890abcdef1234567890abcdef1234abcd") == "0x1234...abcd"
