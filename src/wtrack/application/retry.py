from __future__ import annotations
import asyncio, logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ..domain.errors import InvalidInput, RpcExhausted, RpcTransient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """
    Bounded retry with a fixed delay between attempts (no exponential growth).
    Only RpcTransient is retried; anything else propagates on the first failure.
    """
    max_attempts: int = 3
    delay_s: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidInput(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_s < 0:
            raise InvalidInput(f"delay_s must be >= 0, got {self.delay_s}")

    async def run(self, op: Callable[[], Awaitable[T]], *, label: str = "rpc call") -> T:
        last: RpcTransient | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await op()
            except RpcTransient as e:
                last = e
                if attempt == self.max_attempts:
                    break
                logger.warning("%s: attempt %d/%d failed (%s), retrying in %.2fs",
                               label, attempt, self.max_attempts, e, self.delay_s)
                await self.sleep(self.delay_s)
        assert last is not None
        raise RpcExhausted(label, self.max_attempts, last) from last
