from __future__ import annotations


class WtrackError(Exception):
    """Base class for every error raised by wtrack."""


class InvalidInput(WtrackError, ValueError):
    """Malformed address, block number, range or timestamp. Raised before any network call."""


class InvalidTimestamp(InvalidInput):
    pass


class RpcError(WtrackError):
    """Something went wrong talking to the JSON-RPC endpoint."""


class RpcTransient(RpcError):
    """A single failed round trip (transport, HTTP status, bad JSON or JSON-RPC error)."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        self.method = method
        self.code = code
        super().__init__(f"{method} failed: {message}" + (f" (code={code})" if code is not None else ""))


class CallReverted(RpcError):
    """eth_call reverted, i.e. the contract does not implement the function. Never retried."""


class RpcExhausted(RpcError):
    """Every attempt allowed by the retry policy failed."""

    def __init__(self, label: str, attempts: int, last: BaseException) -> None:
        self.label = label
        self.attempts = attempts
        self.last = last
        super().__init__(f"{label}: giving up after {attempts} attempt(s): {last}")


class BlockUnavailable(RpcError):
    """The node answered, but the requested block does not exist (yet)."""

    def __init__(self, block: object) -> None:
        self.block = block
        super().__init__(f"block {block} not found")


class DecodeError(WtrackError):
    """A raw log does not look like an ERC-20 Transfer."""


class MetadataUnavailable(WtrackError):
    """Token symbol()/decimals() missing or unreadable. Only ever carried inside an Err."""
