from __future__ import annotations
from typing import NewType, Literal, Union

Address = NewType("Address", str)   # 0x-prefixed, EIP-55 checksummed
Topic   = NewType("Topic", str)     # 66-char 0x-hash, lowercase
TxHash  = NewType("TxHash", str)    # 66-char 0x-hash, lowercase

BlockTag = Literal["latest", "earliest", "pending", "safe", "finalized"]
BlockId  = Union[int, BlockTag]
ProgressUnit = Literal["logs", "blocks"]

BLOCK_TAGS: frozenset[str] = frozenset({"latest", "earliest", "pending", "safe", "finalized"})

# keccak("Transfer(address,address,uint256)")
TRANSFER_T0 = Topic("0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")

# 4-byte selectors for the optional ERC-20 metadata getters
SYMBOL_SELECTOR   = "0x95d89b41"
DECIMALS_SELECTOR = "0x313ce567"

DEFAULT_SYMBOL   = "UNKNOWN"
DEFAULT_DECIMALS = 18
NATIVE_SYMBOL    = "ETH"
