"""
Utility functions for the Starknet MCP server.
Address normalization and token amount conversion.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext

# Starknet addresses are felts below 2**251 - 256
ADDRESS_BOUND = 2**251 - 256
ADDRESS_HEX_LENGTH = 64
HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class InvalidAddress(ValueError):
    """Raised when a string is not a valid Starknet address."""

    def __init__(self, address: str, reason: str):
        self.address = address
        super().__init__(f"Invalid address {address!r}: {reason}")


def is_address_like(value: str) -> bool:
    """Check whether a token identifier is written as a hex address."""
    return isinstance(value, str) and value[:2].lower() == "0x"


def normalize_address(address: str) -> str:
    """Normalize a Starknet address to 0x + 64 lowercase hex characters.

    Short, padded and mixed-case forms of the same address normalize
    identically, and normalizing twice is the same as normalizing once.

    Args:
        address: Raw address, with or without the 0x prefix

    Returns:
        Canonical address string.

    Raises:
        InvalidAddress: if the value is not hex or is outside the address range.
    """
    if not isinstance(address, str):
        raise InvalidAddress(str(address), "expected a string")

    digits = address.strip()
    if digits[:2].lower() == "0x":
        digits = digits[2:]

    if not digits:
        raise InvalidAddress(address, "empty value")
    if len(digits) > ADDRESS_HEX_LENGTH:
        raise InvalidAddress(address, f"more than {ADDRESS_HEX_LENGTH} hex characters")

    # int() alone would accept signs and underscores
    if not all(c in HEX_DIGITS for c in digits):
        raise InvalidAddress(address, "not a hexadecimal value")

    value = int(digits, 16)
    if value >= ADDRESS_BOUND:
        raise InvalidAddress(address, "value exceeds the Starknet address range")

    return "0x" + format(value, f"0{ADDRESS_HEX_LENGTH}x")


def short_address(address: str) -> str:
    """Display form of an address, e.g. 0x0124aeb4...533b49."""
    normalized = normalize_address(address)
    return f"{normalized[:10]}...{normalized[-6:]}"


def parse_amount(amount: str, decimals: int) -> int:
    """Convert a human-readable amount into base units.

    Fractional digits beyond the token precision are truncated.

    Args:
        amount: Amount such as "1.5"
        decimals: Token decimals

    Returns:
        Amount in base units.
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}") from None

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount}")
    if value <= 0:
        raise ValueError("Amount must be positive")

    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def format_amount(amount: int, decimals: int) -> str:
    """Format a base-unit amount with the token decimals, trailing zeros removed."""
    if decimals <= 0:
        return str(amount)

    sign = "-" if amount < 0 else ""
    digits = str(abs(amount)).rjust(decimals + 1, "0")
    whole = digits[:-decimals]
    fraction = digits[-decimals:].rstrip("0")
    if fraction:
        return f"{sign}{whole}.{fraction}"
    return f"{sign}{whole}"
