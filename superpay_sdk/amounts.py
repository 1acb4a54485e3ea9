"""
Location: superpay_sdk/amounts.py

Summary:
    Conversion between human-readable token amounts (decimal strings) and
    integer base units. Uses Decimal throughout; floats are never involved.

Example:
    from superpay_sdk.amounts import to_raw_units, format_units

    to_raw_units("25.50", 6)      # 25500000
    format_units(25500000, 6)     # "25.50"
"""

from decimal import MAX_EMAX, MIN_EMIN, ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Union


# Base units are uint256 on chain.
MAX_UINT256_DIGITS = 78


class AmountPrecisionError(ValueError):
    """Raised when an amount has more fractional digits than the token allows."""
    pass


def parse_amount(amount: Union[str, int, Decimal]) -> Decimal:
    """
    Parse a display-unit amount into a finite Decimal.

    Raises:
        ValueError: If the amount is not a finite decimal number
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Not a finite amount: {amount!r}")
    return value


def to_raw_units(amount: Union[str, int, Decimal], decimals: int) -> int:
    """
    Scale a display-unit amount to integer base units.

    Args:
        amount: Amount in display units (e.g., "25.50")
        decimals: Token decimals

    Returns:
        Amount in base units

    Raises:
        ValueError: If the amount is not a number, is negative or does not
            fit in uint256
        AmountPrecisionError: If scaling would drop digits below the
            token's smallest unit
    """
    value = parse_amount(amount)
    if value < 0:
        raise ValueError(f"Negative amount: {amount!r}")

    digits = value.as_tuple().digits
    with localcontext() as ctx:
        # Wide enough that scaling and truncation are exact.
        ctx.prec = len(digits) + decimals + 1
        ctx.Emax = MAX_EMAX
        ctx.Emin = MIN_EMIN
        scaled = value.scaleb(decimals)
        whole = scaled.to_integral_value(rounding=ROUND_DOWN)

    if scaled != whole:
        raise AmountPrecisionError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    if whole and whole.adjusted() >= MAX_UINT256_DIGITS:
        raise ValueError(f"Amount {amount} is too large")
    raw_units = int(whole)
    if raw_units >= 2 ** 256:
        raise ValueError(f"Amount {amount} is too large")
    return raw_units


def format_units(raw_units: int, decimals: int, min_fraction_digits: int = 2) -> str:
    """
    Render base units as a display-unit decimal string.

    Trailing zeros are trimmed but at least `min_fraction_digits` digits are
    kept, so 25500000 with 6 decimals renders as "25.50" and 0 as "0.00".
    """
    sign = "-" if raw_units < 0 else ""
    whole, fraction = divmod(abs(raw_units), 10 ** decimals) if decimals else (abs(raw_units), 0)

    fraction_str = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    fraction_str = fraction_str.ljust(min_fraction_digits, "0")

    if not fraction_str:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction_str}"
