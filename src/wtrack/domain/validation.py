from __future__ import annotations

from eth_utils import is_address, to_checksum_address

from .errors import InvalidInput, InvalidTimestamp
from .value_types import Address, BlockId, BLOCK_TAGS

# Ethereum mainnet launched mid-2015; anything earlier is a typo.
MIN_TIMESTAMP = 1_420_000_000
MAX_TIMESTAMP = 9_999_999_999


def normalize_address(value: str, *, what: str = "address") -> Address:
    """Validate a 20-byte hex address and return its EIP-55 checksum form."""
    if not isinstance(value, str) or not is_address(value):
        raise InvalidInput(f"invalid {what}: {value!r}")
    return Address(to_checksum_address(value))


def optional_address(value: str | None, *, what: str = "address") -> Address | None:
    return None if value is None else normalize_address(value, what=what)


def validate_timestamp(ts: int) -> int:
    if isinstance(ts, bool) or not isinstance(ts, int):
        raise InvalidTimestamp(f"timestamp must be an integer, got {ts!r}")
    if not (MIN_TIMESTAMP < ts < MAX_TIMESTAMP):
        raise InvalidTimestamp(
            f"timestamp {ts} is outside the plausible range ({MIN_TIMESTAMP}, {MAX_TIMESTAMP})"
        )
    return ts


def parse_block_number(value: int | str, *, what: str = "block") -> int:
    """Accept ints, decimal strings and 0x-hex strings; reject negatives and junk."""
    if isinstance(value, bool):
        raise InvalidInput(f"invalid {what}: {value!r}")
    if isinstance(value, int):
        n = value
    elif isinstance(value, str):
        s = value.strip().lower()
        try:
            n = int(s, 16) if s.startswith("0x") else int(s, 10)
        except ValueError:
            raise InvalidInput(f"invalid {what}: {value!r}") from None
    else:
        raise InvalidInput(f"invalid {what}: {value!r}")
    if n < 0:
        raise InvalidInput(f"{what} must be non-negative, got {n}")
    return n


def parse_block_id(value: int | str) -> BlockId:
    if isinstance(value, str) and value.strip().lower() in BLOCK_TAGS:
        return value.strip().lower()  # type: ignore[return-value]
    return parse_block_number(value)


def validate_range(from_block: int, to_block: int) -> tuple[int, int]:
    fb = parse_block_number(from_block, what="from_block")
    tb = parse_block_number(to_block, what="to_block")
    if fb > tb:
        raise InvalidInput(f"from_block ({fb}) must be <= to_block ({tb})")
    return fb, tb
