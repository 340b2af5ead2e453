from __future__ import annotations

from typing import Optional

from eth_utils import to_checksum_address

from wtrack.domain.errors import CallReverted, RpcTransient
from wtrack.domain.models import BlockInfo, LogFilter, RawLog, RawTx
from wtrack.domain.value_types import Address, TRANSFER_T0, TxHash

ALICE = Address(to_checksum_address("0x" + "a1" * 20))
BOB   = Address(to_checksum_address("0x" + "b2" * 20))
CAROL = Address(to_checksum_address("0x" + "c3" * 20))
TOKEN_A = Address(to_checksum_address("0x" + "0a" * 20))
TOKEN_B = Address(to_checksum_address("0x" + "0b" * 20))


def topic_for(addr: str) -> str:
    return "0x" + addr[2:].lower().rjust(64, "0")

def word(n: int) -> str:
    return "0x" + format(n, "064x")

def abi_string(s: str) -> str:
    raw = s.encode()
    padded = raw.ljust(((len(raw) + 31) // 32) * 32 or 32, b"\x00")
    return "0x" + format(32, "064x") + format(len(raw), "064x") + padded.hex()

def block(n: int, ts: int) -> BlockInfo:
    return BlockInfo(number=n, timestamp=ts, hash="0x" + format(n, "064x"))

def transfer_log(
    contract: str, sender: str, recipient: str, value: int, *,
    block_number: int = 100, log_index: int = 0, tx: Optional[str] = None,
) -> RawLog:
    return RawLog(
        address=contract.lower(),
        topics=(TRANSFER_T0, topic_for(sender), topic_for(recipient)),
        data=word(value),
        block_number=block_number,
        tx_hash=TxHash(tx or "0x" + format(block_number * 1000 + log_index, "064x")),
        log_index=log_index,
    )

def tx(n: int, i: int, sender: str, to: Optional[str], value: int, *, gas: int = 21000, gas_price: int = 10**9) -> RawTx:
    return RawTx(
        hash=TxHash("0x" + format(n * 1000 + i, "064x")),
        sender=Address(sender),
        to=Address(to) if to else None,
        value=value,
        gas=gas,
        gas_price=gas_price,
        block_number=n,
    )


async def no_sleep(_: float) -> None:
    return None


class Sleeps:
    """Records requested delays instead of sleeping."""
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, s: float) -> None:
        self.calls.append(s)


class FakeGateway:
    """
    Scripted in-memory RpcGateway.
    `failures` maps a key (("get_block", n), ("block_txs", n), "get_logs", ("call", addr, selector))
    to the number of times that call fails with RpcTransient before behaving.
    """

    def __init__(
        self,
        blocks: Optional[list[BlockInfo]] = None,
        txs: Optional[dict[int, list[RawTx]]] = None,
        logs: Optional[list[RawLog]] = None,
        calls: Optional[dict[tuple[str, str], object]] = None,
        balances: Optional[dict[int, int]] = None,
        failures: Optional[dict[object, int]] = None,
    ) -> None:
        self.blocks = {b.number: b for b in blocks or []}
        self.txs = txs or {}
        self.logs = logs or []
        self.calls = calls or {}
        self.balances = balances or {}
        self.failures = dict(failures or {})
        self.requests: list[tuple] = []
        self.filters: list[LogFilter] = []
        self.closed = False

    def _maybe_fail(self, key: object, method: str) -> None:
        left = self.failures.get(key, 0)
        if left == -1 or left > 0:   # -1: always fail
            if left > 0:
                self.failures[key] = left - 1
            raise RpcTransient(method, "scripted failure")

    def head(self) -> int:
        return max(self.blocks)

    async def latest_block(self) -> int:
        self.requests.append(("latest_block",))
        return self.head()

    async def get_block(self, b):
        n = self.head() if b == "latest" else b
        self.requests.append(("get_block", n))
        self._maybe_fail(("get_block", n), "eth_getBlockByNumber")
        return self.blocks.get(n)

    async def get_block_with_transactions(self, n: int):
        self.requests.append(("block_txs", n))
        self._maybe_fail(("block_txs", n), "eth_getBlockByNumber")
        if n not in self.blocks:
            return None
        return self.blocks[n], list(self.txs.get(n, []))

    async def get_balance(self, address: str, b=None) -> int:
        self.requests.append(("get_balance", address, b))
        return self.balances.get(b, 0)

    async def get_transaction_count(self, address: str, b=None) -> int:
        self.requests.append(("get_transaction_count", address, b))
        return 7

    async def get_logs(self, flt: LogFilter) -> list[RawLog]:
        self.requests.append(("get_logs", flt.from_block, flt.to_block))
        self.filters.append(flt)
        self._maybe_fail("get_logs", "eth_getLogs")
        out = []
        for lg in self.logs:
            if not (flt.from_block <= lg.block_number <= flt.to_block):
                continue
            if flt.contract and lg.address.lower() != flt.contract.lower():
                continue
            if flt.from_topic and (len(lg.topics) < 2 or lg.topics[1] != flt.from_topic):
                continue
            if flt.to_topic and (len(lg.topics) < 3 or lg.topics[2] != flt.to_topic):
                continue
            out.append(lg)
        return out

    async def call(self, to: str, data: str, b="latest") -> str:
        key = (to.lower(), data)
        self.requests.append(("call",) + key)
        self._maybe_fail(("call",) + key, "eth_call")
        v = self.calls.get(key)
        if v is None:
            raise CallReverted("eth_call reverted: execution reverted")
        if isinstance(v, Exception):
            raise v
        return str(v)

    async def aclose(self) -> None:
        self.closed = True
