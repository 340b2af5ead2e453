from __future__ import annotations

from eth_utils import to_checksum_address

from .errors import DecodeError
from .models import RawLog, TokenMetadata, TransferEvent
from .value_types import Address, Topic, TxHash


# ---------- hex helpers --------------------------------------------------------

def _strip0x(s: str) -> str:
    return s[2:] if s[:2].lower() == "0x" else s

def _hexstr_to_bytes(s: str | None) -> bytes:
    if not s:
        return b""
    h = _strip0x(s)
    if len(h) % 2: h = "0" + h
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise DecodeError(f"not hex: {s[:20]!r}") from e

def hex_to_int(v: str | int | None) -> int:
    """Quantity fields from the node: 0x-hex, decimal strings and ints; None -> 0."""
    if v is None:
        return 0
    if isinstance(v, int):
        return v
    s = v.strip().lower()
    return int(s, 16) if s.startswith("0x") else int(s)


# --------- 32B word slicing (no eth_abi) ---------------------------------------

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def _addr_from_topic(t: str) -> Address:
    h = _strip0x(t)
    if len(h) < 40:
        raise DecodeError(f"topic too short for an address: {t!r}")
    try:
        return Address(to_checksum_address("0x" + h[-40:]))
    except ValueError as e:
        raise DecodeError(f"bad address topic {t!r}") from e


def address_topic(address: str) -> Topic:
    """Left-pad a 20-byte address to a 32-byte indexed topic."""
    return Topic("0x" + _strip0x(address).lower().rjust(64, "0"))


# ---------- Transfer(address indexed, address indexed, uint256) ---------------

def decode_transfer(log: RawLog, meta: TokenMetadata | None = None) -> TransferEvent:
    """
    Turn a raw Transfer log into a TransferEvent.
    Raises DecodeError when the log has fewer than 3 topics or an empty data field
    (ERC-721 transfers index the token id and carry no data, for example).
    """
    if len(log.topics) < 3:
        raise DecodeError(f"expected >= 3 topics, got {len(log.topics)} (tx {log.tx_hash})")
    data_b = _hexstr_to_bytes(log.data)
    if not data_b:
        raise DecodeError(f"empty data (tx {log.tx_hash})")

    sender = _addr_from_topic(log.topics[1])
    recipient = _addr_from_topic(log.topics[2])
    value = _u256(data_b if len(data_b) <= 32 else _word(data_b, 0))
    meta = meta or TokenMetadata()

    try:
        contract = Address(to_checksum_address(log.address))
    except ValueError as e:
        raise DecodeError(f"bad emitter address {log.address!r}") from e

    return TransferEvent(
        contract_address=contract,
        sender=sender,
        recipient=recipient,
        value=value,
        block_number=log.block_number,
        tx_hash=TxHash(log.tx_hash.lower()),
        log_index=log.log_index,
        token_symbol=meta.symbol,
        token_decimals=meta.decimals,
    )


# ---------- eth_call return values ---------------------------------------------

def decode_abi_uint(ret_hex: str) -> int:
    b = _hexstr_to_bytes(ret_hex)
    if len(b) < 32:
        raise DecodeError(f"expected a 32-byte word, got {len(b)} bytes")
    return _u256(_word(b, 0))


def decode_abi_string(ret_hex: str) -> str:
    """
    Decode a `string` return value. Some old tokens (MKR, SAI) return bytes32
    instead, so a single right-padded word is accepted too.
    """
    b = _hexstr_to_bytes(ret_hex)
    if len(b) == 32:
        raw = b.rstrip(b"\x00")
    elif len(b) >= 64:
        offset = _u256(_word(b, 0))
        if offset + 32 > len(b):
            raise DecodeError("string offset out of bounds")
        length = _u256(b[offset:offset+32])
        start = offset + 32
        if start + length > len(b):
            raise DecodeError("string length out of bounds")
        raw = b[start:start+length]
    else:
        raise DecodeError(f"unexpected return size {len(b)}")
    try:
        s = raw.decode("utf-8").strip("\x00").strip()
    except UnicodeDecodeError as e:
        raise DecodeError("symbol is not utf-8") from e
    if not s:
        raise DecodeError("empty string")
    return s
