from __future__ import annotations

from ..domain.errors import InvalidInput
from ..domain.models import BlockRange


def plan_batches(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    """Split [start_block, end_block] into consecutive inclusive batches of at most `step` blocks."""
    if step < 1:
        raise InvalidInput(f"batch size must be >= 1, got {step}")
    out: list[BlockRange] = []
    b = start_block
    while b <= end_block:
        fb, tb = b, min(end_block, b + step - 1)
        out.append(BlockRange(fb, tb))
        b = tb + 1
    return out


def sample_blocks(start_block: int, end_block: int, interval: int) -> list[int]:
    """Every `interval`-th block from start_block up to and including end_block."""
    if interval < 1:
        raise InvalidInput(f"interval must be >= 1, got {interval}")
    return list(range(start_block, end_block + 1, interval))


def recent_range(head: int, count: int) -> BlockRange:
    """The last `count` blocks ending at `head` (clamped at genesis)."""
    if count < 1:
        raise InvalidInput(f"block count must be >= 1, got {count}")
    return BlockRange(max(0, head - count + 1), head)
