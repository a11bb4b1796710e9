"""
Core types for settlement.

Re-exports from kungfu + money and clock helpers.
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Money
# ═══════════════════════════════════════════════════════════════════════════════

type Money = Decimal
"""Amount in the store currency, always quantized to cents."""

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal(100)


def money(value: Decimal | int | float | str) -> Money:
    """
    Quantize to cents, half-up.

    Floats go through str() first so 1.005 stays 1.005 instead of 1.00499...
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Money:
    """`amount × percentage / 100`, rounded half-up to cents."""
    return money(amount * percentage / HUNDRED)


# ═══════════════════════════════════════════════════════════════════════════════
# Clock & Identity
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]
"""Returns the current instant. Injected so tests can freeze time."""


def utcnow() -> datetime:
    """Naive UTC timestamp (matches how DateTime columns round-trip)."""
    return datetime.now(UTC).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def epoch_ms() -> int:
    return int(time.time() * 1000)


def order_number(now_ms: int | None = None) -> str:
    """`ORD-{epoch-ms}-{0..999}`."""
    ms = now_ms if now_ms is not None else epoch_ms()
    return f"ORD-{ms}-{random.randint(0, 999)}"


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Money
    "Money",
    "CENT",
    "ZERO",
    "HUNDRED",
    "money",
    "percent_of",
    # Clock & identity
    "Clock",
    "utcnow",
    "new_id",
    "epoch_ms",
    "order_number",
)
