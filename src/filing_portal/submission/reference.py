"""Reference numbers and identity keys."""

import re
import secrets
import time
from typing import Any, Optional

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_WHITESPACE = re.compile(r"\s+")


def to_base36(number: int) -> str:
    """Render a non-negative integer in base 36 (lowercase)."""
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_reference_number(prefix: str = "JJ", now_ms: Optional[int] = None) -> str:
    """
    Generate a human readable reference number, e.g. ``JJ-K3F09XQ2``.

    Four characters come from the millisecond clock in base 36 and four
    are random.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    time_part = to_base36(now_ms)[-4:].rjust(4, "0")
    random_part = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{time_part}{random_part}".upper()


def normalize_identity_key(key: Any) -> str:
    """Strip all whitespace and case-fold, so "123 456 789" equals "123456789"."""
    if key is None:
        return ""
    return _WHITESPACE.sub("", str(key)).casefold()
