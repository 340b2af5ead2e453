from __future__ import annotations
import asyncio, dataclasses, logging
from typing import Awaitable, Callable, Optional

from ..domain.decoding import address_topic, decode_abi_string, decode_abi_uint, decode_transfer
from ..domain.errors import BlockUnavailable, DecodeError, InvalidInput, MetadataUnavailable, RpcError
from ..domain.models import (
    Err, LogFilter, NativeTransfer, Ok, RawTx, Result, ScanProgress, TokenMetadata, TransferEvent,
)
from ..domain.validation import optional_address, validate_range
from ..domain.value_types import (
    Address, DECIMALS_SELECTOR, DEFAULT_DECIMALS, DEFAULT_SYMBOL, SYMBOL_SELECTOR, TRANSFER_T0,
)
from ..ports.rpc import RpcGateway
from .planning import plan_batches
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ScanProgress], None]


def native_transfer_from(
    tx: RawTx,
    *,
    min_value_wei: int = 0,
    sender: Optional[Address] = None,
    recipient: Optional[Address] = None,
) -> Optional[NativeTransfer]:
    """Keep plain value transfers: no contract creations, no zero values, then min-value and address filters."""
    if tx.to is None or tx.value == 0:
        return None
    if tx.value < min_value_wei:
        return None
    if sender is not None and tx.sender.lower() != sender.lower():
        return None
    if recipient is not None and tx.to.lower() != recipient.lower():
        return None
    return NativeTransfer(
        sender=tx.sender,
        recipient=tx.to,
        value=tx.value,
        block_number=tx.block_number,
        tx_hash=tx.hash,
        gas_used=tx.gas,
        gas_price=tx.gas_price,
    )


class RangeLogScanner:
    """
    Two ways to read value movements out of a block range:

    * scan():        ERC-20 Transfer logs, one eth_getLogs for the whole range.
    * scan_native(): plain ETH transfers, block bodies fetched in concurrent
                     batches (batch boundaries sequential, fixed delay between them).
    """

    def __init__(
        self,
        rpc: RpcGateway,
        retry: RetryPolicy,
        *,
        batch_size: int = 100,
        batch_delay_s: float = 0.1,
        on_progress: Optional[ProgressCallback] = None,
        progress_every: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise InvalidInput(f"batch_size must be >= 1, got {batch_size}")
        self.rpc = rpc
        self.retry = retry
        self.batch_size = batch_size
        self.batch_delay_s = batch_delay_s
        self.on_progress = on_progress
        self.progress_every = max(1, progress_every)
        self.sleep = sleep
        self._metadata: dict[str, TokenMetadata] = {}

    def _report(self, p: ScanProgress) -> None:
        logger.debug("progress: %d/%d %s, %d found", p.done, p.total, p.unit, p.found)
        if self.on_progress is not None:
            self.on_progress(p)

    # ── token metadata ──────────────────────────────

    async def _symbol(self, contract: Address) -> Result[str, MetadataUnavailable]:
        try:
            ret = await self.retry.run(lambda: self.rpc.call(contract, SYMBOL_SELECTOR),
                                       label=f"symbol() on {contract}")
            return Ok(decode_abi_string(ret))
        except (RpcError, DecodeError) as e:
            return Err(MetadataUnavailable(f"symbol() on {contract}: {e}"))

    async def _decimals(self, contract: Address) -> Result[int, MetadataUnavailable]:
        try:
            ret = await self.retry.run(lambda: self.rpc.call(contract, DECIMALS_SELECTOR),
                                       label=f"decimals() on {contract}")
            d = decode_abi_uint(ret)
        except (RpcError, DecodeError) as e:
            return Err(MetadataUnavailable(f"decimals() on {contract}: {e}"))
        if d > 255:
            return Err(MetadataUnavailable(f"decimals() on {contract}: {d} is not a uint8"))
        return Ok(d)

    async def token_metadata(self, contract: Address) -> TokenMetadata:
        """Best effort symbol/decimals, cached per contract; each missing half falls back to its default."""
        key = contract.lower()
        if key in self._metadata:
            return self._metadata[key]

        sym = await self._symbol(contract)
        dec = await self._decimals(contract)
        if isinstance(sym, Ok):
            symbol = sym.value
        else:
            logger.debug("%s, using %s", sym.error, DEFAULT_SYMBOL)
            symbol = DEFAULT_SYMBOL
        if isinstance(dec, Ok):
            decimals = dec.value
        else:
            logger.debug("%s, using %d", dec.error, DEFAULT_DECIMALS)
            decimals = DEFAULT_DECIMALS

        meta = TokenMetadata(symbol=symbol, decimals=decimals)
        self._metadata[key] = meta
        return meta

    # ── ERC-20 Transfer logs ────────────────────────

    async def scan(
        self,
        from_block: int,
        to_block: int,
        *,
        contract: Optional[str] = None,
        sender: Optional[str] = None,
        recipient: Optional[str] = None,
        with_metadata: bool = True,
    ) -> list[TransferEvent]:
        fb, tb = validate_range(from_block, to_block)
        contract_a = optional_address(contract, what="contract address")
        sender_a = optional_address(sender, what="from address")
        recipient_a = optional_address(recipient, what="to address")

        flt = LogFilter(
            from_block=fb,
            to_block=tb,
            topic0=TRANSFER_T0,
            contract=contract_a,
            from_topic=address_topic(sender_a) if sender_a else None,
            to_topic=address_topic(recipient_a) if recipient_a else None,
        )
        logs = await self.retry.run(lambda: self.rpc.get_logs(flt), label=f"eth_getLogs({fb}..{tb})")
        logger.info("found %d transfer logs in blocks %d..%d", len(logs), fb, tb)

        out: list[TransferEvent] = []
        skipped = 0
        for i, log in enumerate(logs, 1):
            try:
                event = decode_transfer(log)
            except DecodeError as e:
                skipped += 1
                logger.warning("skipping log %s#%d: %s", log.tx_hash, log.log_index, e)
                continue
            if with_metadata:
                meta = await self.token_metadata(event.contract_address)
                event = dataclasses.replace(event, token_symbol=meta.symbol, token_decimals=meta.decimals)
            out.append(event)
            if i % self.progress_every == 0:
                self._report(ScanProgress("logs", i, len(logs), len(out)))

        self._report(ScanProgress("logs", len(logs), len(logs), len(out)))
        if skipped:
            logger.warning("%d of %d logs could not be decoded", skipped, len(logs))
        return out

    # ── native transfers ────────────────────────────

    async def _block_transactions(self, number: int) -> Result[list[RawTx], Exception]:
        try:
            got = await self.retry.run(lambda: self.rpc.get_block_with_transactions(number),
                                       label=f"eth_getBlockByNumber({number}, full)")
        except (RpcError, DecodeError) as e:
            return Err(e)
        if got is None:
            return Err(BlockUnavailable(number))
        return Ok(got[1])

    async def scan_native(
        self,
        from_block: int,
        to_block: int,
        *,
        min_value_wei: int = 0,
        sender: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> list[NativeTransfer]:
        fb, tb = validate_range(from_block, to_block)
        if min_value_wei < 0:
            raise InvalidInput(f"min_value_wei must be >= 0, got {min_value_wei}")
        sender_a = optional_address(sender, what="from address")
        recipient_a = optional_address(recipient, what="to address")

        batches = plan_batches(fb, tb, self.batch_size)
        total = tb - fb + 1
        done = failed = 0
        out: list[NativeTransfer] = []

        for k, batch in enumerate(batches):
            numbers = list(batch.blocks())
            results = await asyncio.gather(*(self._block_transactions(n) for n in numbers))
            for n, res in zip(numbers, results):
                if isinstance(res, Err):
                    failed += 1
                    logger.warning("block %d skipped: %s", n, res.error)
                    continue
                for tx in res.value:
                    t = native_transfer_from(tx, min_value_wei=min_value_wei,
                                             sender=sender_a, recipient=recipient_a)
                    if t is not None:
                        out.append(t)
            done += batch.span()
            self._report(ScanProgress("blocks", done, total, len(out)))
            if k < len(batches) - 1 and self.batch_delay_s > 0:
                await self.sleep(self.batch_delay_s)

        if failed:
            logger.warning("%d of %d blocks could not be fetched; results are partial", failed, total)
        return out
