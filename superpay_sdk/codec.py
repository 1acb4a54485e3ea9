"""
Location: superpay_sdk/codec.py

Summary:
    QR payment payload codec. Builds, encodes, decodes and validates the
    JSON payment request a receiver shows as a QR code and a payer scans.

Usage:
    Used by orchestrator.py to turn scanned text into a PaymentRequest, and
    to build the payload for the receive flow. Arbitrary QR content is an
    expected input: decode and validate return error values, they don't raise.

Example:
    from superpay_sdk.codec import decode_payment_request, validate_payment_request
    from superpay_sdk.types import DecodeError

    request = decode_payment_request(scanned_text)
    if request is DecodeError.NOT_A_PAYMENT_PAYLOAD:
        # show "unsupported QR" and keep scanning
        ...
    result = validate_payment_request(request, token)
"""

import json
import re
import time
from typing import Callable, Optional, Union

from loguru import logger
from pydantic import ValidationError as ModelValidationError

from .amounts import parse_amount
from .types import (
    DecodeError,
    PaymentRequest,
    TokenMeta,
    ValidationError,
    ValidationResult,
)


# Discriminator written to the "type" key of every payment payload
SCHEMA_TAG = "MOCKUSDC_PAYMENT"

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_payment_request(
    recipient_address: str,
    amount: str,
    token: TokenMeta,
    description: Optional[str] = None,
    chain_id: Optional[int] = None,
    clock: Callable[[], int] = _now_ms,
) -> PaymentRequest:
    """
    Build a PaymentRequest stamped with the current time.

    Args:
        recipient_address: Address that receives the payment
        amount: Display-unit amount, "0" to let the payer choose
        token: The token to be paid in
        description: Optional memo, defaults to "<SYMBOL> Payment Request"
        chain_id: Target network identifier
        clock: Epoch-millisecond clock

    Returns:
        A new, immutable PaymentRequest
    """
    return PaymentRequest(
        schema_tag=SCHEMA_TAG,
        recipient_address=recipient_address,
        amount=amount,
        token_symbol=token.symbol,
        token_contract=token.contract or "",
        token_decimals=token.decimals,
        description=description or f"{token.symbol} Payment Request",
        created_at_ms=clock(),
        chain_id=chain_id,
    )


def encode_request(request: PaymentRequest) -> str:
    """Serialize a PaymentRequest to its JSON wire form."""
    return json.dumps(request.model_dump(by_alias=True), separators=(",", ":"))


def encode_payment_request(
    recipient_address: str,
    amount: str,
    token: TokenMeta,
    description: Optional[str] = None,
    chain_id: Optional[int] = None,
    clock: Callable[[], int] = _now_ms,
) -> str:
    """
    Build a payment request and return the JSON string to put in a QR code.

    See build_payment_request() for the arguments.
    """
    request = build_payment_request(
        recipient_address, amount, token, description, chain_id, clock
    )
    return encode_request(request)


def decode_payment_request(raw: Union[str, bytes]) -> Union[PaymentRequest, DecodeError]:
    """
    Parse scanned text into a PaymentRequest.

    Only the "type" discriminator decides whether the text is a payment
    payload at all. Unknown keys are ignored.

    Args:
        raw: Scanned QR text

    Returns:
        The decoded PaymentRequest, or DecodeError.NOT_A_PAYMENT_PAYLOAD
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        logger.debug("Scanned content is not JSON")
        return DecodeError.NOT_A_PAYMENT_PAYLOAD

    if not isinstance(data, dict) or data.get("type") != SCHEMA_TAG:
        return DecodeError.NOT_A_PAYMENT_PAYLOAD

    try:
        return PaymentRequest.model_validate(data)
    except ModelValidationError as e:
        logger.debug(f"Payment payload has malformed fields: {e.error_count()} errors")
        return DecodeError.NOT_A_PAYMENT_PAYLOAD


def validate_payment_request(
    request: PaymentRequest,
    token: TokenMeta,
) -> ValidationResult:
    """
    Validate a decoded payment request against the supported token.

    Checks run in order: required fields, amount, token. An amount of
    exactly zero is valid and means the payer chooses the amount. This has
    no side effects, so it can be re-run after the payer edits an open
    amount.

    Args:
        request: The request to check
        token: The single supported token configuration

    Returns:
        ValidationResult with the first failing check, if any
    """
    if not request.recipient_address or not request.amount:
        return ValidationResult(
            is_valid=False,
            error=ValidationError.INVALID_FORMAT,
            message="Missing required payment data",
        )

    try:
        amount = parse_amount(request.amount)
    except ValueError:
        amount = None
    if amount is None or amount < 0:
        return ValidationResult(
            is_valid=False,
            error=ValidationError.INVALID_AMOUNT,
            message="Invalid payment amount",
        )

    if request.token_symbol != token.symbol:
        return ValidationResult(
            is_valid=False,
            error=ValidationError.UNSUPPORTED_TOKEN,
            message="Unsupported token type",
        )

    if (request.token_contract or "").lower() != (token.contract or "").lower():
        return ValidationResult(
            is_valid=False,
            error=ValidationError.UNSUPPORTED_TOKEN,
            message="Invalid contract address",
        )

    return ValidationResult(is_valid=True)


def is_valid_address(address: str) -> bool:
    """Check for a 0x-prefixed, 20-byte hex address."""
    return bool(address) and _ADDRESS_RE.match(address) is not None


def format_address(address: Optional[str]) -> str:
    """Shorten an address for display, e.g. "0x1234...abcd"."""
    if not address or len(address) < 10:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"
