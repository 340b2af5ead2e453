from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from .errors import InvalidInput


def format_units(value: int, decimals: int = 18) -> str:
    """Exact base-unit -> human string ('1500000000000000000', 18 -> '1.5')."""
    neg = value < 0
    q, r = divmod(abs(value), 10 ** decimals) if decimals > 0 else (abs(value), 0)
    if r:
        frac = str(r).rjust(decimals, "0").rstrip("0")
        s = f"{q}.{frac}"
    else:
        s = f"{q}.0"
    return "-" + s if neg else s

def format_ether(wei: int) -> str:
    return format_units(wei, 18)

def parse_units(amount: str, decimals: int = 18) -> int:
    try:
        d = Decimal(str(amount).strip())
    except InvalidOperation:
        raise InvalidInput(f"not a number: {amount!r}") from None
    if not d.is_finite() or d < 0:
        raise InvalidInput(f"amount must be a non-negative number, got {amount!r}")
    scaled = d.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidInput(f"{amount!r} has more than {decimals} decimals")
    return int(scaled)

def parse_ether(amount: str) -> int:
    return parse_units(amount, 18)


def iso_utc(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass(slots=True, frozen=True)
class TimeDifference:
    seconds: int
    minutes: int
    hours: int
    days: int

def time_difference(target_ts: int, block_ts: int) -> TimeDifference:
    diff = abs(block_ts - target_ts)
    return TimeDifference(seconds=diff, minutes=diff // 60, hours=diff // 3600, days=diff // 86400)
