from __future__ import annotations
import json, logging, os
from typing import Any, Iterable, Sequence

import pyarrow as pa
import pyarrow.csv as pacsv
import pyarrow.parquet as pq

from ..domain.errors import InvalidInput
from ..domain.models import BalanceSnapshot, BlockInfo, NativeTransfer, TransferEvent
from ..domain.units import format_ether, format_units, iso_utc
from ..domain.value_types import Address, TxHash, DEFAULT_SYMBOL, DEFAULT_DECIMALS

logger = logging.getLogger(__name__)

# big ints travel as strings
TRANSFER_SCHEMA = pa.schema([
    pa.field("contractAddress", pa.large_string()),
    pa.field("tokenSymbol",     pa.large_string()),
    pa.field("from",            pa.large_string()),
    pa.field("to",              pa.large_string()),
    pa.field("value",           pa.large_string()),
    pa.field("valueFormatted",  pa.large_string()),
    pa.field("blockNumber",     pa.int64()),
    pa.field("transactionHash", pa.large_string()),
    pa.field("logIndex",        pa.int32()),
])

NATIVE_SCHEMA = pa.schema([
    pa.field("from",            pa.large_string()),
    pa.field("to",              pa.large_string()),
    pa.field("value",           pa.large_string()),
    pa.field("valueEth",        pa.large_string()),
    pa.field("blockNumber",     pa.int64()),
    pa.field("transactionHash", pa.large_string()),
    pa.field("gasUsed",         pa.large_string()),
    pa.field("gasPrice",        pa.large_string()),
])

BALANCE_SCHEMA = pa.schema([
    pa.field("block",      pa.int64()),
    pa.field("timestamp",  pa.int64()),
    pa.field("date",       pa.large_string()),
    pa.field("balanceWei", pa.large_string()),
    pa.field("balanceEth", pa.large_string()),
    pa.field("nonce",      pa.int64()),
    pa.field("blockHash",  pa.large_string()),
])


def transfer_rows(events: Iterable[TransferEvent]) -> list[dict[str, Any]]:
    return [{
        "contractAddress": e.contract_address,
        "tokenSymbol":     e.token_symbol or DEFAULT_SYMBOL,
        "from":            e.sender,
        "to":              e.recipient,
        "value":           str(e.value),
        "valueFormatted":  format_units(e.value, e.token_decimals),
        "blockNumber":     e.block_number,
        "transactionHash": e.tx_hash,
        "logIndex":        e.log_index,
    } for e in events]

def native_rows(transfers: Iterable[NativeTransfer]) -> list[dict[str, Any]]:
    return [{
        "from":            t.sender,
        "to":              t.recipient,
        "value":           str(t.value),
        "valueEth":        format_ether(t.value),
        "blockNumber":     t.block_number,
        "transactionHash": t.tx_hash,
        "gasUsed":         str(t.gas_used),
        "gasPrice":        str(t.gas_price),
    } for t in transfers]

def balance_rows(samples: Iterable[tuple[BlockInfo, BalanceSnapshot]]) -> list[dict[str, Any]]:
    return [{
        "block":      snap.block,
        "timestamp":  info.timestamp,
        "date":       iso_utc(info.timestamp),
        "balanceWei": str(snap.balance_wei),
        "balanceEth": format_ether(snap.balance_wei),
        "nonce":      snap.nonce,
        "blockHash":  info.hash,
    } for info, snap in samples]


def _rows_to_table(rows: Sequence[dict[str, Any]], schema: pa.Schema) -> pa.Table:
    if not rows:
        return pa.Table.from_arrays([pa.array([], type=f.type) for f in schema], names=[f.name for f in schema])
    return pa.Table.from_pylist(list(rows), schema=schema)


def write_json(obj: Any, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(obj, f, indent=2)
        f.write("\n")
    os.replace(tmp, path)
    logger.info("wrote %s", path)
    return path


def write_records(rows: Sequence[dict[str, Any]], schema: pa.Schema, path: str) -> str:
    """Write rows as CSV, JSON or Parquet depending on the file suffix."""
    suffix = os.path.splitext(path)[1].lower()
    if suffix == ".json":
        return write_json(list(rows), path)
    if suffix not in (".csv", ".parquet"):
        raise InvalidInput(f"unsupported output format {suffix or '(none)'!r}; use .csv, .json or .parquet")

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    table = _rows_to_table(rows, schema)
    tmp = path + ".tmp"
    if suffix == ".csv":
        pacsv.write_csv(table, tmp)
    else:
        pq.write_table(table, tmp, compression="snappy", use_dictionary=True)
    os.replace(tmp, path)
    logger.info("wrote %d rows to %s", len(table), path)
    return path


def json_twin(path: str) -> str:
    base, _ = os.path.splitext(path)
    return base + ".json"


def read_transfers_csv(path: str) -> list[TransferEvent]:
    """Load a transfers CSV written by write_records back into TransferEvents (decimals are not stored)."""
    if not os.path.isfile(path):
        raise InvalidInput(f"file not found: {path}")
    str_cols = ("contractAddress", "tokenSymbol", "from", "to", "value", "transactionHash")
    table = pacsv.read_csv(
        path,
        convert_options=pacsv.ConvertOptions(column_types={c: pa.large_string() for c in str_cols}),
    )
    missing = {"from", "to", "value"} - set(table.column_names)
    if missing:
        raise InvalidInput(f"{path} is missing column(s): {', '.join(sorted(missing))}")

    out: list[TransferEvent] = []
    for row in table.to_pylist():
        out.append(TransferEvent(
            contract_address=Address(row.get("contractAddress") or ""),
            sender=Address(row["from"] or ""),
            recipient=Address(row["to"] or ""),
            value=int(row["value"] or 0),
            block_number=int(row.get("blockNumber") or 0),
            tx_hash=TxHash(row.get("transactionHash") or ""),
            log_index=int(row.get("logIndex") or 0),
            token_symbol=row.get("tokenSymbol") or DEFAULT_SYMBOL,
            token_decimals=DEFAULT_DECIMALS,
        ))
    return out
