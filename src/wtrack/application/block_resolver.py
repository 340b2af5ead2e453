from __future__ import annotations
import logging
from typing import Optional

from ..domain.errors import BlockUnavailable, InvalidInput
from ..domain.models import BlockInfo
from ..domain.validation import parse_block_number, validate_timestamp
from ..ports.rpc import RpcGateway
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_PROBES = 50


class TimestampBlockResolver:
    """
    Map a Unix timestamp to the first block whose timestamp is >= target.

    Assumes block timestamps never decrease with height. Chains with clock skew
    or deep reorgs can break that, and the search makes no attempt to detect it.
    """

    def __init__(self, rpc: RpcGateway, retry: RetryPolicy, *, max_probes: int = MAX_PROBES) -> None:
        self.rpc = rpc
        self.retry = retry
        self.max_probes = max_probes
        self.probes = 0  # probes issued by the last resolve()

    async def head(self) -> BlockInfo:
        block = await self.retry.run(lambda: self.rpc.get_block("latest"), label="eth_getBlockByNumber(latest)")
        if block is None:
            raise BlockUnavailable("latest")
        return block

    async def resolve(self, target: int, low: int = 0, high: Optional[int] = None) -> Optional[BlockInfo]:
        """Leftmost binary search over [low, high]; high defaults to the current head."""
        validate_timestamp(target)
        low = parse_block_number(low, what="low")
        if high is None:
            high = (await self.head()).number
        high = parse_block_number(high, what="high")
        if low > high:
            raise InvalidInput(f"low ({low}) must be <= high ({high})")

        result: Optional[BlockInfo] = None
        self.probes = 0
        logger.debug("resolving ts=%d over blocks %d..%d", target, low, high)

        while low <= high and self.probes < self.max_probes:
            mid = (low + high) // 2
            block = await self.retry.run(lambda: self.rpc.get_block(mid), label=f"eth_getBlockByNumber({mid})")
            self.probes += 1
            if block is None:
                raise BlockUnavailable(mid)

            if block.timestamp < target:
                low = mid + 1
                decision = "earlier than target, searching upper half"
            else:
                result = block
                high = mid - 1
                decision = "at/after target, searching lower half"
            logger.debug("probe %d: range=%d..%d mid=%d ts=%d -> %s",
                         self.probes, low, high, mid, block.timestamp, decision)

        if low <= high:
            logger.warning("probe ceiling (%d) reached before the range closed; result may not be the earliest block",
                           self.max_probes)
        logger.debug("search finished after %d probes", self.probes)
        return result
