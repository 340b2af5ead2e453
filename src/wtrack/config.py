from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from dotenv import load_dotenv

from .domain.errors import InvalidInput

DEFAULT_RPC_URL = "https://eth.merkle.io"

KNOWN_ADDRESSES: dict[str, str] = {
    "vitalik":  "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045",
    "binance":  "0x3f5CE5FBFe3E9af3971dD833D26bA9b5C936f0bE",
    "coinbase": "0x71660c4005BA85c37ccec55d0C4493E66Fe775d3",
    "usdc":     "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
}


@dataclass(slots=True, frozen=True)
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    default_block_range: int = 100
    max_attempts: int = 3
    retry_delay_s: float = 1.0
    batch_size: int = 100
    batch_delay_s: float = 0.1
    timeout_s: float = 20.0
    addresses: Mapping[str, str] = field(default_factory=lambda: dict(KNOWN_ADDRESSES))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> "Settings":
        """Read settings from the process environment (after loading .env), or from `env`."""
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        return cls(
            rpc_url=env.get("RPC_URL") or DEFAULT_RPC_URL,
            default_block_range=_int(env, "DEFAULT_BLOCK_RANGE", 100, minimum=1),
            max_attempts=_int(env, "WTRACK_MAX_ATTEMPTS", 3, minimum=1),
            retry_delay_s=_float(env, "WTRACK_RETRY_DELAY", 1.0),
            batch_size=_int(env, "WTRACK_BATCH_SIZE", 100, minimum=1),
            batch_delay_s=_float(env, "WTRACK_BATCH_DELAY", 0.1),
            timeout_s=_float(env, "WTRACK_TIMEOUT", 20.0),
        )

    def with_rpc(self, rpc_url: Optional[str]) -> "Settings":
        return replace(self, rpc_url=rpc_url) if rpc_url else self


def _int(env: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        v = int(raw.strip())
    except ValueError:
        raise InvalidInput(f"{key} must be an integer, got {raw!r}") from None
    if v < minimum:
        raise InvalidInput(f"{key} must be >= {minimum}, got {v}")
    return v

def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        v = float(raw.strip())
    except ValueError:
        raise InvalidInput(f"{key} must be a number, got {raw!r}") from None
    if v < 0:
        raise InvalidInput(f"{key} must be >= 0, got {v}")
    return v
