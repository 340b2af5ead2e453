from __future__ import annotations
import asyncio, logging
from typing import Awaitable, Callable

from ..domain.errors import BlockUnavailable, RpcError
from ..domain.models import BalanceSnapshot, BlockInfo
from ..domain.validation import normalize_address, parse_block_id, validate_range
from ..domain.value_types import BlockId
from ..ports.rpc import RpcGateway
from .planning import sample_blocks
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class BalanceReader:
    """Balance and nonce of one address at a block, or sampled across a range."""

    def __init__(
        self,
        rpc: RpcGateway,
        retry: RetryPolicy,
        *,
        sample_delay_s: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.retry = retry
        self.sample_delay_s = sample_delay_s
        self.sleep = sleep

    async def snapshot(self, address: str, block: BlockId | str = "latest") -> tuple[BlockInfo, BalanceSnapshot]:
        addr = normalize_address(address)
        block_id = parse_block_id(block)
        info = await self.retry.run(lambda: self.rpc.get_block(block_id), label=f"eth_getBlockByNumber({block_id})")
        if info is None:
            raise BlockUnavailable(block_id)
        # pin to the resolved number so "latest" can't move between calls
        n = info.number
        balance = await self.retry.run(lambda: self.rpc.get_balance(addr, n), label=f"eth_getBalance({addr}@{n})")
        nonce = await self.retry.run(lambda: self.rpc.get_transaction_count(addr, n),
                                     label=f"eth_getTransactionCount({addr}@{n})")
        return info, BalanceSnapshot(address=addr, block=n, balance_wei=balance, nonce=nonce)

    async def history(
        self, address: str, start_block: int, end_block: int, interval: int = 100,
    ) -> list[tuple[BlockInfo, BalanceSnapshot]]:
        addr = normalize_address(address)
        fb, tb = validate_range(start_block, end_block)
        blocks = sample_blocks(fb, tb, interval)
        out: list[tuple[BlockInfo, BalanceSnapshot]] = []
        for i, n in enumerate(blocks, 1):
            logger.debug("balance sample %d/%d at block %d", i, len(blocks), n)
            try:
                out.append(await self.snapshot(addr, n))
            except RpcError as e:
                logger.warning("block %d skipped: %s", n, e)
            if i < len(blocks) and self.sample_delay_s > 0:
                await self.sleep(self.sample_delay_s)
        return out
