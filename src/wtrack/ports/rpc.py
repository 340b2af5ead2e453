# wtrack/ports/rpc.py
from __future__ import annotations

from typing import Optional, Protocol
from ..domain.models import BlockInfo, LogFilter, RawLog, RawTx
from ..domain.value_types import BlockId


class RpcGateway(Protocol):
    """Port defining the contract for a typed Ethereum JSON-RPC client.

    Every method is a single round trip. Failures surface as RpcTransient;
    retrying is the caller's business (see application.retry).
    """

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def get_block(self, block: BlockId) -> Optional[BlockInfo]:
        """Return the block header, or None if the block does not exist."""

    async def get_block_with_transactions(self, number: int) -> Optional[tuple[BlockInfo, list[RawTx]]]:
        """Return the block and its full transaction bodies, or None if absent."""

    async def get_balance(self, address: str, block: Optional[BlockId] = None) -> int:
        """Return the wei balance of `address` at `block` (default latest)."""

    async def get_transaction_count(self, address: str, block: Optional[BlockId] = None) -> int:
        """Return the nonce of `address` at `block` (default latest)."""

    async def get_logs(self, flt: LogFilter) -> list[RawLog]:
        """Return logs matching `flt`, in node order."""

    async def call(self, to: str, data: str, block: BlockId = "latest") -> str:
        """eth_call against `to`; returns the raw hex result."""

    async def aclose(self) -> None:
        """Release network resources."""
