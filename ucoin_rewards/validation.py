"""Address and amount validation shared by the ledger and the core"""
import re
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Union

from ucoin_rewards.config import UCOIN_DECIMALS
from ucoin_rewards.errors import InvalidAddress, InvalidAmount

ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')
ZERO_ADDRESS = '0x' + '0' * 40
TOKEN_QUANTUM = Decimal(1).scaleb(-UCOIN_DECIMALS)


def normalize_address(address: Optional[str]) -> str:
    """Validate a wallet address and return its lower-case form"""
    if not isinstance(address, str) or not ADDRESS_PATTERN.match(address.strip()):
        raise InvalidAddress(f"Invalid wallet address: {address!r}")
    return address.strip().lower()


def is_usable_address(address: Optional[str]) -> bool:
    """True for a well-formed, non-zero address"""
    if not address:
        return False
    try:
        return normalize_address(address) != ZERO_ADDRESS
    except InvalidAddress:
        return False


def parse_amount(amount: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Parse a token amount and require it to be finite and positive.

    Floats go through their shortest repr so 0.1 stays 0.1. Anything finer
    than the token's 18 decimals is rejected rather than rounded.
    """
    if amount is None or isinstance(amount, bool):
        raise InvalidAmount(f"Amount must be a positive number, got {amount!r}")
    try:
        value = Decimal(repr(amount)) if isinstance(amount, float) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Amount must be a positive number, got {amount!r}")

    if not value.is_finite() or value <= 0:
        raise InvalidAmount(f"Amount must be a positive number, got {amount!r}")
    try:
        exact = value == value.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)
    except InvalidOperation:
        raise InvalidAmount(f"Amount is out of range: {amount!r}")
    if not exact:
        raise InvalidAmount(f"Amount has more than {UCOIN_DECIMALS} decimal places: {amount!r}")
    return value
