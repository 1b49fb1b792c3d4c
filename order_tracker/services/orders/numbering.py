"""
Human-readable order numbers: ``<PREFIX>-<base36 ms timestamp>-<8 random chars>``.

The random suffix comes from ``secrets`` (36**8 values), so numbers minted
within the same millisecond still collide with negligible probability.
"""

import re
import secrets
import string
import time
from typing import Optional

ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 8

ORDER_NUMBER_PATTERN = re.compile(r"^[A-Z]+-[0-9A-Z]+-[0-9A-Z]{8}$")


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("Only non-negative values can be encoded")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_order_number(prefix: str = "ORD", timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix.upper()}-{to_base36(timestamp_ms)}-{suffix}"
