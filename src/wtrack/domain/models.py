from __future__ import annotations
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar, Union

from .errors import InvalidInput
from .value_types import (
    Address, Topic, TxHash, ProgressUnit,
    TRANSFER_T0, DEFAULT_SYMBOL, DEFAULT_DECIMALS,
)

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)


# ──────────────────────────────
# Result (explicit success/failure tag)
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(slots=True, frozen=True)
class Err(Generic[E]):
    error: E
    ok: bool = field(default=False, init=False)


Result = Union[Ok[T], Err[E]]


# ──────────────────────────────
# Chain data
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class BlockInfo:
    number: int
    timestamp: int
    hash: str
    parent_hash: Optional[str] = None
    gas_limit: Optional[int] = None
    gas_used: Optional[int] = None


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1
    def blocks(self) -> range: return range(self.start, self.end + 1)


@dataclass(slots=True, frozen=True)
class LogFilter:
    from_block: int
    to_block: int
    topic0: Topic = TRANSFER_T0
    contract: Optional[Address] = None
    from_topic: Optional[Topic] = None
    to_topic: Optional[Topic] = None

    def __post_init__(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise InvalidInput(f"block numbers must be non-negative, got {self.from_block}..{self.to_block}")
        if self.from_block > self.to_block:
            raise InvalidInput(f"from_block ({self.from_block}) must be <= to_block ({self.to_block})")

    def span(self) -> int: return self.to_block - self.from_block + 1


@dataclass(slots=True, frozen=True)
class RawLog:
    address: str                       # as returned by the node
    topics: tuple[str, ...]            # lowercased with 0x
    data: str                          # hex with 0x (or "0x")
    block_number: int
    tx_hash: TxHash
    log_index: int


@dataclass(slots=True, frozen=True)
class RawTx:
    hash: TxHash
    sender: Address
    to: Optional[Address]              # None for contract creation
    value: int
    gas: int
    gas_price: int
    block_number: int


# ──────────────────────────────
# Scan output
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class TokenMetadata:
    symbol: str = DEFAULT_SYMBOL
    decimals: int = DEFAULT_DECIMALS


@dataclass(slots=True, frozen=True)
class TransferEvent:
    contract_address: Address
    sender: Address
    recipient: Address
    value: int
    block_number: int
    tx_hash: TxHash
    log_index: int
    token_symbol: str = DEFAULT_SYMBOL
    token_decimals: int = DEFAULT_DECIMALS


@dataclass(slots=True, frozen=True)
class NativeTransfer:
    sender: Address
    recipient: Address
    value: int                         # wei
    block_number: int
    tx_hash: TxHash
    gas_used: int                      # gas limit of the tx; the real figure needs a receipt
    gas_price: int


@dataclass(slots=True, frozen=True)
class ScanProgress:
    unit: ProgressUnit
    done: int
    total: int
    found: int


@dataclass(slots=True, frozen=True)
class BalanceSnapshot:
    address: Address
    block: int
    balance_wei: int
    nonce: int


# ──────────────────────────────
# Aggregates
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class AddressStats:
    sent: int = 0
    received: int = 0
    sent_count: int = 0
    received_count: int = 0

    @property
    def total_activity(self) -> int:
        return self.sent + self.received

    @property
    def net(self) -> int:
        """Signed: received minus sent."""
        return self.received - self.sent


@dataclass(slots=True, frozen=True)
class TokenStats:
    symbol: str
    contract: Optional[Address]        # None for the native coin
    decimals: int
    count: int
    volume: int


@dataclass(slots=True, frozen=True)
class SymbolStats:
    symbol: str
    count: int
    volume: int
    contracts: frozenset[str]

    @property
    def distinct_contracts(self) -> int: return len(self.contracts)
