import asyncio, os
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import click

from ..adapters.file_sink import (
    BALANCE_SCHEMA, NATIVE_SCHEMA, TRANSFER_SCHEMA,
    balance_rows, json_twin, native_rows, read_transfers_csv, transfer_rows, write_json, write_records,
)
from ..adapters.rpc_httpx import HttpxRPC
from ..application.aggregation import Aggregation, VolumeAggregator
from ..application.balances import BalanceReader
from ..application.block_resolver import TimestampBlockResolver
from ..application.log_scanner import RangeLogScanner
from ..application.planning import recent_range
from ..application.retry import RetryPolicy
from ..config import Settings
from ..domain.errors import WtrackError
from ..domain.models import BlockInfo, ScanProgress
from ..domain.units import format_ether, format_units, iso_utc, parse_ether, time_difference
from ..domain.validation import normalize_address, parse_block_id, validate_range, validate_timestamp
from ..ports.rpc import RpcGateway
from .console import configure_logging, console, scan_progress

T = TypeVar("T")


@dataclass
class AppContext:
    settings: Settings
    out_dir: str = "output"
    rpc_factory: Optional[Callable[[Settings], RpcGateway]] = None
    _rpc: Optional[RpcGateway] = field(default=None, repr=False)

    def rpc(self) -> RpcGateway:
        if self._rpc is None:
            if self.rpc_factory is not None:
                self._rpc = self.rpc_factory(self.settings)
            else:
                self._rpc = HttpxRPC(self.settings.rpc_url, timeout_s=self.settings.timeout_s)
        return self._rpc

    def retry(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.settings.max_attempts, delay_s=self.settings.retry_delay_s)

    def scanner(self, on_progress: Optional[Callable[[ScanProgress], None]] = None) -> RangeLogScanner:
        return RangeLogScanner(
            self.rpc(), self.retry(),
            batch_size=self.settings.batch_size,
            batch_delay_s=self.settings.batch_delay_s,
            on_progress=on_progress,
        )

    def out(self, filename: str) -> str:
        return filename if os.path.isabs(filename) else os.path.join(self.out_dir, filename)


def _run(app: AppContext, fn: Callable[[], Awaitable[T]]) -> T:
    """Run one command's coroutine, close the gateway, turn domain errors into a non-zero exit."""
    async def main() -> T:
        try:
            return await fn()
        finally:
            if app._rpc is not None:
                await app._rpc.aclose()
                app._rpc = None
    try:
        return asyncio.run(main())
    except WtrackError as e:
        raise click.ClickException(str(e))


def _print_block(title: str, b: BlockInfo) -> None:
    console.print(f"\n[bold green]=== {title} ===[/]")
    console.print(f"Block: {b.number}")
    console.print(f"Hash: {b.hash}")
    console.print(f"Timestamp: {b.timestamp} ({iso_utc(b.timestamp)})")

def _block_json(b: BlockInfo) -> dict:
    return {"number": b.number, "hash": b.hash, "timestamp": b.timestamp, "date": iso_utc(b.timestamp)}

def _print_top_addresses(agg: Aggregation, top_n: int, decimals: Optional[int] = None) -> None:
    console.print(f"\n[bold green]=== Top {top_n} Addresses by Activity ===[/]")
    fmt = (lambda v: format_units(v, decimals)) if decimals is not None else str
    for addr, st in agg.top_addresses(top_n):
        console.print(f"{addr}:")
        console.print(f"  Sent: {fmt(st.sent)} ({st.sent_count} txns)")
        console.print(f"  Received: {fmt(st.received)} ({st.received_count} txns)")
        console.print(f"  Net: {fmt(st.net)}")


@click.group()
@click.option("--rpc", "rpc_url", default=None, help="RPC endpoint URL (default: $RPC_URL)")
@click.option("--out-dir", default="output", show_default=True, help="Directory for output files")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging (binary search trace, per-batch progress)")
@click.pass_context
def cli(ctx: click.Context, rpc_url: Optional[str], out_dir: str, verbose: bool) -> None:
    """wtrack: wallet tracking and block analysis over Ethereum JSON-RPC."""
    configure_logging(verbose)
    if ctx.obj is None:
        try:
            ctx.obj = AppContext(settings=Settings.from_env())
        except WtrackError as e:
            raise click.ClickException(str(e))
    app: AppContext = ctx.obj
    app.settings = app.settings.with_rpc(rpc_url)
    app.out_dir = out_dir


# ──────────────────────────────
# info / ping
# ──────────────────────────────

@cli.command("info")
@click.pass_obj
def info_cmd(app: AppContext) -> None:
    """Show configuration and known addresses."""
    s = app.settings
    console.print("[bold blue]=== Wallet Tracking Tools ===[/]")
    console.print(f"RPC URL: {s.rpc_url}")
    console.print(f"Default block range: {s.default_block_range}")
    console.print(f"Retries: {s.max_attempts} attempts, {s.retry_delay_s}s apart")
    console.print(f"Native scan batches: {s.batch_size} blocks, {s.batch_delay_s}s apart")
    console.print("\n[bold green]=== Known Addresses ===[/]")
    for name, addr in s.addresses.items():
        console.print(f"{name}: {addr}")


@cli.command("ping")
@click.pass_obj
def ping_cmd(app: AppContext) -> None:
    """Check that the RPC endpoint answers."""
    async def go() -> None:
        retry = app.retry()
        number = await retry.run(app.rpc().latest_block, label="eth_blockNumber")
        console.print(f"[green]✓ Connected[/] to {app.settings.rpc_url}, head is block {number}")
        block = await retry.run(lambda: app.rpc().get_block("latest"), label="eth_getBlockByNumber(latest)")
        if block is not None:
            console.print(f"[green]✓ Block data accessible[/]: {block.hash} @ {block.timestamp}")
    _run(app, go)


# ──────────────────────────────
# block
# ──────────────────────────────

@cli.group("block")
def block_grp() -> None:
    """Find blocks by timestamp."""


@block_grp.command("find")
@click.option("-t", "--timestamp", "ts", type=int, required=True, help="Target Unix timestamp")
@click.option("-a", "--address", default=None, help="Also read this address's balance at the found block")
@click.option("--low", type=int, default=0, show_default=True, help="Lowest block to search")
@click.option("--high", type=int, default=None, help="Highest block to search (default: head)")
@click.option("-o", "--output", default="block-info.json", show_default=True)
@click.pass_obj
def block_find_cmd(app: AppContext, ts: int, address: Optional[str], low: int, high: Optional[int], output: str) -> None:
    """First block whose timestamp is >= TIMESTAMP."""
    async def go() -> None:
        validate_timestamp(ts)
        addr = normalize_address(address) if address else None
        resolver = TimestampBlockResolver(app.rpc(), app.retry())
        console.print("[bold blue]=== Block Finder by Timestamp ===[/]")
        console.print(f"Target: {ts} ({iso_utc(ts)})")
        head = await resolver.head()
        console.print(f"Current block: {head.number} @ {head.timestamp}")

        top = head.number if high is None else high
        found = await resolver.resolve(ts, low, top)
        if found is None:
            console.print("[red]No block found at or after the specified timestamp[/]")
            return
        _print_block("RESULT", found)
        diff = time_difference(ts, found.timestamp)
        console.print(f"Time difference: {diff.seconds} seconds ({diff.minutes} minutes)")
        console.print(f"Probes: {resolver.probes}")

        data: dict = {
            "targetTimestamp": ts,
            "targetDate": iso_utc(ts),
            "foundBlock": _block_json(found),
            "timeDifference": {"seconds": diff.seconds, "minutes": diff.minutes,
                               "hours": diff.hours, "days": diff.days},
            "searchInfo": {"currentBlock": head.number, "currentTimestamp": head.timestamp,
                           "searchRange": f"{low} to {top}"},
        }
        if addr:
            _, snap = await BalanceReader(app.rpc(), app.retry()).snapshot(addr, found.number)
            console.print(f"\nBalance of {addr}: {format_ether(snap.balance_wei)} ETH ({snap.balance_wei} wei)")
            data["addressBalance"] = {"address": addr, "balanceWei": str(snap.balance_wei),
                                      "balanceEth": format_ether(snap.balance_wei)}
        write_json(data, app.out(output))
    _run(app, go)


@block_grp.command("current")
@click.option("-a", "--address", default=None, help="Also show this address's current balance")
@click.pass_obj
def block_current_cmd(app: AppContext, address: Optional[str]) -> None:
    """Show the latest block."""
    async def go() -> None:
        addr = normalize_address(address) if address else None
        head = await TimestampBlockResolver(app.rpc(), app.retry()).head()
        _print_block("Current Block", head)
        console.print(f"Gas limit: {head.gas_limit}")
        console.print(f"Gas used: {head.gas_used}")
        console.print(f"Parent hash: {head.parent_hash}")
        if addr:
            bal = await app.retry().run(lambda: app.rpc().get_balance(addr, head.number), label="eth_getBalance")
            console.print(f"\nBalance of {addr}: {format_ether(bal)} ETH")
    _run(app, go)


# ──────────────────────────────
# balance
# ──────────────────────────────

@cli.group("balance")
def balance_grp() -> None:
    """Balances at a block or across a range."""


@balance_grp.command("get")
@click.option("-a", "--address", required=True)
@click.option("-b", "--block", "block", default="latest", show_default=True, help='Block number or "latest"')
@click.option("-o", "--output", default="balance-info.json", show_default=True)
@click.pass_obj
def balance_get_cmd(app: AppContext, address: str, block: str, output: str) -> None:
    """Balance and nonce of ADDRESS at BLOCK."""
    async def go() -> None:
        info, snap = await BalanceReader(app.rpc(), app.retry()).snapshot(address, parse_block_id(block))
        _print_block("Block", info)
        console.print(f"Address: {snap.address}")
        console.print(f"Balance: {format_ether(snap.balance_wei)} ETH ({snap.balance_wei} wei)")
        console.print(f"Transaction count: {snap.nonce}")
        write_json({
            "address": snap.address,
            "block": _block_json(info),
            "balance": {"wei": str(snap.balance_wei), "eth": format_ether(snap.balance_wei)},
            "nonce": snap.nonce,
            "rpcUrl": app.settings.rpc_url,
        }, app.out(output))
    _run(app, go)


@balance_grp.command("history")
@click.option("-a", "--address", required=True)
@click.option("-s", "--start", "start", type=int, required=True)
@click.option("-e", "--end", "end", type=int, required=True)
@click.option("-i", "--interval", type=int, default=100, show_default=True, help="Sample every N blocks")
@click.option("-o", "--output", default="balance-history.csv", show_default=True)
@click.pass_obj
def balance_history_cmd(app: AppContext, address: str, start: int, end: int, interval: int, output: str) -> None:
    """Balance of ADDRESS every INTERVAL blocks between START and END."""
    async def go() -> None:
        samples = await BalanceReader(app.rpc(), app.retry(), sample_delay_s=app.settings.batch_delay_s) \
            .history(address, start, end, interval)
        console.print(f"[bold green]=== History Complete ===[/] {len(samples)} samples")
        if samples:
            console.print(f"First balance: {format_ether(samples[0][1].balance_wei)} ETH")
            console.print(f"Last balance: {format_ether(samples[-1][1].balance_wei)} ETH")
        rows = balance_rows(samples)
        path = write_records(rows, BALANCE_SCHEMA, app.out(output))
        if not path.endswith(".json"):
            write_json(rows, json_twin(path))
    _run(app, go)


# ──────────────────────────────
# ERC-20 transfers
# ──────────────────────────────

@cli.group("transfers")
def transfers_grp() -> None:
    """ERC-20 Transfer events."""


async def _scan_transfers(app: AppContext, fb: int, tb: int, *, contract, sender, recipient,
                          with_metadata: bool):
    with scan_progress("decoding logs") as progress:
        task = progress.add_task(f"{fb:,}-{tb:,}", total=None)

        def on_progress(p: ScanProgress) -> None:
            progress.update(task, total=p.total, completed=p.done)

        return await app.scanner(on_progress).scan(
            fb, tb, contract=contract, sender=sender, recipient=recipient, with_metadata=with_metadata,
        )


def _save_transfers(app: AppContext, events, output: str, also_json: bool) -> None:
    rows = transfer_rows(events)
    path = write_records(rows, TRANSFER_SCHEMA, app.out(output))
    console.print(f"[green]Saved[/] {len(rows)} rows → {path}")
    if also_json and not path.endswith(".json"):
        write_json(rows, json_twin(path))


def _print_token_summary(events, top_n: int) -> None:
    agg = VolumeAggregator().aggregate(events)
    console.print(f"Unique contracts: {len(agg.by_token)}")
    console.print(f"Unique tokens: {len(agg.by_symbol)}")
    console.print(f"\n[bold blue]=== Top {top_n} Tokens by Volume ===[/]")
    for t in agg.top_tokens(top_n):
        console.print(f"{t.symbol} ({t.contract}): {format_units(t.volume, t.decimals)}")


@transfers_grp.command("fetch")
@click.option("-s", "--start", "start", type=int, required=True)
@click.option("-e", "--end", "end", type=int, required=True)
@click.option("-c", "--contract", default=None, help="Only this token contract")
@click.option("-f", "--from", "sender", default=None, help="Only transfers from this address")
@click.option("-t", "--to", "recipient", default=None, help="Only transfers to this address")
@click.option("-o", "--output", default="transfer-events.csv", show_default=True)
@click.option("--json", "also_json", is_flag=True, help="Also save JSON")
@click.option("--top-n", type=int, default=5, show_default=True)
@click.pass_obj
def transfers_fetch_cmd(app: AppContext, start: int, end: int, contract, sender, recipient,
                        output: str, also_json: bool, top_n: int) -> None:
    """Transfer events between START and END (inclusive)."""
    async def go() -> None:
        fb, tb = validate_range(start, end)
        console.print(f"[bold blue]=== Transfer Events {fb}..{tb} ===[/]")
        events = await _scan_transfers(app, fb, tb, contract=contract, sender=sender,
                                       recipient=recipient, with_metadata=True)
        console.print(f"Decoded {len(events)} transfer events")
        if not events:
            console.print("[yellow]No transfer events found in the specified range[/]")
            return
        _print_token_summary(events, top_n)
        _save_transfers(app, events, output, also_json)
    _run(app, go)


@transfers_grp.command("recent")
@click.option("-n", "--blocks", type=int, default=None, help="How many recent blocks (default: DEFAULT_BLOCK_RANGE)")
@click.option("-c", "--contract", default=None)
@click.option("-o", "--output", default="recent-transfers.csv", show_default=True)
@click.option("--json", "also_json", is_flag=True)
@click.pass_obj
def transfers_recent_cmd(app: AppContext, blocks: Optional[int], contract, output: str, also_json: bool) -> None:
    """Transfer events in the last N blocks (no token metadata lookups)."""
    async def go() -> None:
        head = await TimestampBlockResolver(app.rpc(), app.retry()).head()
        rng = recent_range(head.number, blocks or app.settings.default_block_range)
        console.print(f"[bold blue]=== Recent Transfer Events {rng.start}..{rng.end} ===[/]")
        events = await _scan_transfers(app, rng.start, rng.end, contract=contract, sender=None,
                                       recipient=None, with_metadata=False)
        console.print(f"Decoded {len(events)} transfer events")
        if not events:
            console.print("[yellow]No transfer events found in the specified range[/]")
            return
        _save_transfers(app, events, output, also_json)
    _run(app, go)


@transfers_grp.command("analyze")
@click.option("-f", "--file", "filename", required=True, help="Transfers CSV (absolute, or relative to --out-dir)")
@click.option("--top-n", type=int, default=10, show_default=True)
@click.pass_obj
def transfers_analyze_cmd(app: AppContext, filename: str, top_n: int) -> None:
    """Volume per token and activity per address from a saved transfers CSV."""
    path = filename if os.path.isfile(filename) else app.out(filename)
    try:
        events = read_transfers_csv(path)
    except WtrackError as e:
        raise click.ClickException(str(e))
    agg = VolumeAggregator().aggregate(events)
    console.print(f"[bold blue]=== Transfer Analysis ===[/] {path}")
    console.print(f"Total transfers: {agg.events}")
    console.print(f"\n[bold green]=== Top {top_n} Tokens by Volume ===[/]")
    for s in agg.top_symbols(top_n):
        console.print(f"{s.symbol}:")
        console.print(f"  Transfers: {s.count}")
        console.print(f"  Contracts: {s.distinct_contracts}")
        console.print(f"  Volume: {s.volume} (raw)")
    _print_top_addresses(agg, top_n)


# ──────────────────────────────
# native transfers
# ──────────────────────────────

@cli.group("eth-transfers")
def eth_grp() -> None:
    """Plain ETH value transfers."""


async def _scan_native(app: AppContext, fb: int, tb: int, min_value_wei: int, sender, recipient):
    with scan_progress("scanning blocks") as progress:
        task = progress.add_task(f"{fb:,}-{tb:,}", total=tb - fb + 1)

        def on_progress(p: ScanProgress) -> None:
            progress.update(task, completed=p.done, description=f"{fb:,}-{tb:,} • {p.found} transfers")

        return await app.scanner(on_progress).scan_native(
            fb, tb, min_value_wei=min_value_wei, sender=sender, recipient=recipient,
        )


def _report_native(app: AppContext, transfers, output: str, also_json: bool, top_n: int) -> None:
    console.print(f"Found {len(transfers)} ETH transfers")
    if not transfers:
        console.print("[yellow]No ETH transfers found in the specified range[/]")
        return
    agg = VolumeAggregator().aggregate(transfers)
    total = sum(t.value for t in transfers)
    console.print(f"Total volume: {format_ether(total)} ETH")
    _print_top_addresses(agg, top_n, decimals=18)
    rows = native_rows(transfers)
    path = write_records(rows, NATIVE_SCHEMA, app.out(output))
    console.print(f"[green]Saved[/] {len(rows)} rows → {path}")
    if also_json and not path.endswith(".json"):
        write_json(rows, json_twin(path))


@eth_grp.command("fetch")
@click.option("-s", "--start", "start", type=int, required=True)
@click.option("-e", "--end", "end", type=int, required=True)
@click.option("-f", "--from", "sender", default=None)
@click.option("-t", "--to", "recipient", default=None)
@click.option("-m", "--min-value", default="0", show_default=True, help="Minimum value in ETH")
@click.option("-o", "--output", default="eth-transfers.csv", show_default=True)
@click.option("--json", "also_json", is_flag=True)
@click.option("--top-n", type=int, default=10, show_default=True)
@click.pass_obj
def eth_fetch_cmd(app: AppContext, start: int, end: int, sender, recipient, min_value: str,
                  output: str, also_json: bool, top_n: int) -> None:
    """ETH transfers between START and END (inclusive)."""
    async def go() -> None:
        fb, tb = validate_range(start, end)
        min_wei = parse_ether(min_value)
        console.print(f"[bold blue]=== ETH Transfers {fb}..{tb} ===[/] (min {min_value} ETH)")
        transfers = await _scan_native(app, fb, tb, min_wei, sender, recipient)
        _report_native(app, transfers, output, also_json, top_n)
    _run(app, go)


@eth_grp.command("recent")
@click.option("-n", "--blocks", type=int, default=None, help="How many recent blocks (default: DEFAULT_BLOCK_RANGE)")
@click.option("-m", "--min-value", default="0.1", show_default=True, help="Minimum value in ETH")
@click.option("-o", "--output", default="recent-eth-transfers.csv", show_default=True)
@click.option("--json", "also_json", is_flag=True)
@click.option("--top-n", type=int, default=10, show_default=True)
@click.pass_obj
def eth_recent_cmd(app: AppContext, blocks: Optional[int], min_value: str, output: str,
                   also_json: bool, top_n: int) -> None:
    """ETH transfers in the last N blocks."""
    async def go() -> None:
        min_wei = parse_ether(min_value)
        head = await TimestampBlockResolver(app.rpc(), app.retry()).head()
        rng = recent_range(head.number, blocks or app.settings.default_block_range)
        console.print(f"[bold blue]=== Recent ETH Transfers {rng.start}..{rng.end} ===[/]")
        transfers = await _scan_native(app, rng.start, rng.end, min_wei, None, None)
        _report_native(app, transfers, output, also_json, top_n)
    _run(app, go)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
