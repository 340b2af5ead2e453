from __future__ import annotations
import itertools, logging
from typing import Any, Callable, Optional, TypeVar

import httpx
from eth_utils import to_checksum_address

from ..domain.decoding import hex_to_int
from ..domain.errors import CallReverted, RpcTransient
from ..domain.models import BlockInfo, LogFilter, RawLog, RawTx
from ..domain.validation import normalize_address, parse_block_id
from ..domain.value_types import Address, BlockId, TxHash
from ..ports.rpc import RpcGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_hex_block(b: BlockId) -> str:
    return b if isinstance(b, str) else hex(int(b))

def _block_param(block: Optional[BlockId]) -> str:
    return "latest" if block is None else _to_hex_block(parse_block_id(block))

def _filter_params(flt: LogFilter) -> dict[str, Any]:
    params: dict[str, Any] = {
        "fromBlock": _to_hex_block(flt.from_block),
        "toBlock": _to_hex_block(flt.to_block),
    }
    if flt.contract is not None:
        params["address"] = str(normalize_address(flt.contract, what="contract address"))
    # [topic0] | [topic0, from] | [topic0, null, to] | [topic0, from, to]
    topics: list[Optional[str]] = [flt.topic0.lower()]
    if flt.from_topic or flt.to_topic:
        topics.append(flt.from_topic.lower() if flt.from_topic else None)
    if flt.to_topic:
        topics.append(flt.to_topic.lower())
    params["topics"] = topics
    return params

def _parse_block(raw: dict[str, Any]) -> BlockInfo:
    return BlockInfo(
        number=hex_to_int(raw["number"]),
        timestamp=hex_to_int(raw["timestamp"]),
        hash=str(raw.get("hash") or "").lower(),
        parent_hash=raw.get("parentHash") or None,
        gas_limit=hex_to_int(raw["gasLimit"]) if raw.get("gasLimit") is not None else None,
        gas_used=hex_to_int(raw["gasUsed"]) if raw.get("gasUsed") is not None else None,
    )

def _parse_log(rl: dict[str, Any]) -> RawLog:
    topics = tuple((t if isinstance(t, str) else t.decode()).lower() for t in rl.get("topics") or [])
    return RawLog(
        address=str(rl["address"]),
        topics=topics,
        data=str(rl.get("data") or "0x"),
        block_number=hex_to_int(rl["blockNumber"]),
        tx_hash=TxHash((rl.get("transactionHash") or "").lower()),
        log_index=hex_to_int(rl["logIndex"]),
    )

def _parse_tx(tx: dict[str, Any], block_number: int) -> RawTx:
    to = tx.get("to")
    return RawTx(
        hash=TxHash(str(tx["hash"]).lower()),
        sender=Address(to_checksum_address(tx["from"])),
        to=Address(to_checksum_address(to)) if to else None,
        value=hex_to_int(tx.get("value")),
        gas=hex_to_int(tx.get("gas")),
        gas_price=hex_to_int(tx.get("gasPrice")),
        block_number=block_number,
    )

def _parse_full_block(raw: dict[str, Any]) -> tuple[BlockInfo, list[RawTx]]:
    info = _parse_block(raw)
    return info, [_parse_tx(tx, info.number) for tx in raw.get("transactions") or []]

def _parsed(method: str, parse: Callable[..., T], *args: Any) -> T:
    """Run a result parser; a result that doesn't have the expected shape is a failed round trip."""
    try:
        return parse(*args)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise RpcTransient(method, f"malformed result: {type(e).__name__}: {e}") from e


class HttpxRPC(RpcGateway):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 20,
        max_conn: int = 64,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def __aenter__(self) -> "HttpxRPC":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = await self.client.post(self.rpc_url, json=payload)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as e:
            raise RpcTransient(method, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RpcTransient(method, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise RpcTransient(method, "endpoint returned non-JSON response") from e
        if not isinstance(data, dict):
            raise RpcTransient(method, f"unexpected response type {type(data).__name__}")
        if "error" in data and data["error"] is not None:
            err = data["error"]
            code = err.get("code") if isinstance(err, dict) else None
            msg = err.get("message") if isinstance(err, dict) else str(err)
            if method == "eth_call" and "revert" in str(msg).lower():
                raise CallReverted(f"eth_call reverted: {msg}")
            raise RpcTransient(method, str(msg), code)
        if "result" not in data:
            raise RpcTransient(method, "response has neither result nor error")
        return data["result"]

    async def latest_block(self) -> int:
        return _parsed("eth_blockNumber", hex_to_int, await self._request("eth_blockNumber", []))

    async def get_block(self, block: BlockId) -> Optional[BlockInfo]:
        raw = await self._request("eth_getBlockByNumber", [_block_param(block), False])
        return _parsed("eth_getBlockByNumber", _parse_block, raw) if raw else None

    async def get_block_with_transactions(self, number: int) -> Optional[tuple[BlockInfo, list[RawTx]]]:
        raw = await self._request("eth_getBlockByNumber", [_block_param(number), True])
        return _parsed("eth_getBlockByNumber", _parse_full_block, raw) if raw else None

    async def get_balance(self, address: str, block: Optional[BlockId] = None) -> int:
        addr = normalize_address(address)
        return _parsed("eth_getBalance", hex_to_int,
                       await self._request("eth_getBalance", [addr, _block_param(block)]))

    async def get_transaction_count(self, address: str, block: Optional[BlockId] = None) -> int:
        addr = normalize_address(address)
        return _parsed("eth_getTransactionCount", hex_to_int,
                       await self._request("eth_getTransactionCount", [addr, _block_param(block)]))

    async def get_logs(self, flt: LogFilter) -> list[RawLog]:
        res = await self._request("eth_getLogs", [_filter_params(flt)])
        return _parsed("eth_getLogs", lambda: [_parse_log(rl) for rl in res or []])

    async def call(self, to: str, data: str, block: BlockId = "latest") -> str:
        addr = normalize_address(to, what="contract address")
        res = await self._request("eth_call", [{"to": addr, "data": data}, _block_param(block)])
        return str(res or "0x")
