from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from ..domain.models import AddressStats, NativeTransfer, SymbolStats, TokenStats, TransferEvent
from ..domain.value_types import Address, NATIVE_SYMBOL

Event = Union[TransferEvent, NativeTransfer]
TokenKey = tuple[str, Optional[str]]    # (symbol, contract); contract None for the native coin

DEFAULT_TOP_N = 10


@dataclass(slots=True)
class _Tally:
    sent: int = 0
    received: int = 0
    sent_count: int = 0
    received_count: int = 0


@dataclass(slots=True)
class _TokenTally:
    decimals: int
    count: int = 0
    volume: int = 0


@dataclass(slots=True, frozen=True)
class Aggregation:
    """
    Volume/activity over one finished event set. Dicts keep first-seen order,
    which is what breaks ties in the top_* rankings.
    """
    by_token: dict[TokenKey, TokenStats]
    by_symbol: dict[str, SymbolStats]
    by_address: dict[str, AddressStats]
    events: int

    def top_tokens(self, n: int = DEFAULT_TOP_N) -> list[TokenStats]:
        return sorted(self.by_token.values(), key=lambda s: s.volume, reverse=True)[:n]

    def top_symbols(self, n: int = DEFAULT_TOP_N) -> list[SymbolStats]:
        return sorted(self.by_symbol.values(), key=lambda s: s.volume, reverse=True)[:n]

    def top_addresses(self, n: int = DEFAULT_TOP_N) -> list[tuple[str, AddressStats]]:
        return sorted(self.by_address.items(), key=lambda kv: kv[1].total_activity, reverse=True)[:n]

    def net(self, address: str) -> int:
        stats = self.by_address.get(address)
        return stats.net if stats else 0


def _token_of(ev: Event) -> tuple[str, Optional[Address], int]:
    if isinstance(ev, TransferEvent):
        return ev.token_symbol, ev.contract_address, ev.token_decimals
    return NATIVE_SYMBOL, None, 18


class VolumeAggregator:
    """Single pass over a finished event sequence; plain int arithmetic, so no overflow."""

    def aggregate(self, events: Iterable[Event]) -> Aggregation:
        tokens: dict[TokenKey, _TokenTally] = {}
        symbols: dict[str, tuple[_TokenTally, set[str]]] = {}
        addresses: dict[str, _Tally] = {}
        n = 0

        for ev in events:
            n += 1
            symbol, contract, decimals = _token_of(ev)

            tt = tokens.get((symbol, contract))
            if tt is None:
                tt = tokens[(symbol, contract)] = _TokenTally(decimals=decimals)
            tt.count += 1
            tt.volume += ev.value

            st = symbols.get(symbol)
            if st is None:
                st = symbols[symbol] = (_TokenTally(decimals=decimals), set())
            st[0].count += 1
            st[0].volume += ev.value
            if contract is not None:
                st[1].add(contract)

            src = addresses.setdefault(ev.sender, _Tally())
            src.sent += ev.value
            src.sent_count += 1
            dst = addresses.setdefault(ev.recipient, _Tally())
            dst.received += ev.value
            dst.received_count += 1

        return Aggregation(
            by_token={
                k: TokenStats(symbol=k[0], contract=k[1], decimals=t.decimals, count=t.count, volume=t.volume)  # type: ignore[arg-type]
                for k, t in tokens.items()
            },
            by_symbol={
                s: SymbolStats(symbol=s, count=t.count, volume=t.volume, contracts=frozenset(c))
                for s, (t, c) in symbols.items()
            },
            by_address={
                a: AddressStats(sent=t.sent, received=t.received,
                                sent_count=t.sent_count, received_count=t.received_count)
                for a, t in addresses.items()
            },
            events=n,
        )
