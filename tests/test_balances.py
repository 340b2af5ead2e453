from __future__ import annotations

import asyncio

import pytest

from wtrack.application.balances import BalanceReader
from wtrack.application.retry import RetryPolicy
from wtrack.domain.errors import BlockUnavailable, InvalidInput

from _fakes import ALICE, FakeGateway, Sleeps, block, no_sleep

T0 = 1_700_000_000


def _reader(gw, sleeps=None) -> BalanceReader:
    return BalanceReader(gw, RetryPolicy(max_attempts=2, delay_s=0, sleep=no_sleep), sleep=sleeps or no_sleep)


def test_snapshot_pins_reads_to_the_resolved_block():
    gw = FakeGateway(blocks=[block(i, T0 + 12 * i) for i in range(10)], balances={9: 5 * 10**18})
    info, snap = asyncio.run(_reader(gw).snapshot(ALICE.lower()))
    assert info.number == 9 and snap.block == 9
    assert (snap.address, snap.balance_wei, snap.nonce) == (ALICE, 5 * 10**18, 7)
    assert ("get_balance", ALICE, 9) in gw.requests
    assert ("get_transaction_count", ALICE, 9) in gw.requests


def test_snapshot_of_a_missing_block():
    gw = FakeGateway(blocks=[block(0, T0)])
    with pytest.raises(BlockUnavailable):
        asyncio.run(_reader(gw).snapshot(ALICE, 42))


def test_history_samples_every_interval_and_skips_failures():
    gw = FakeGateway(
        blocks=[block(i, T0 + i) for i in range(0, 301) if i != 200],
        balances={0: 1, 100: 2, 300: 4},
    )
    sleeps = Sleeps()
    out = asyncio.run(_reader(gw, sleeps).history(ALICE, 0, 300, 100))
    assert [(s.block, s.balance_wei) for _, s in out] == [(0, 1), (100, 2), (300, 4)]
    assert sleeps.calls == [0.1, 0.1, 0.1]


def test_history_rejects_bad_arguments():
    gw = FakeGateway(blocks=[block(0, T0)])
    with pytest.raises(InvalidInput):
        asyncio.run(_reader(gw).history(ALICE, 10, 5))
    with pytest.raises(InvalidInput):
        asyncio.run(_reader(gw).history(ALICE, 0, 5, 0))
    with pytest.raises(InvalidInput):
        asyncio.run(_reader(gw).history("0xnope", 0, 5))
    assert gw.requests == []
