from __future__ import annotations

import asyncio
import logging

import pytest

from wtrack.application.log_scanner import RangeLogScanner
from wtrack.application.retry import RetryPolicy
from wtrack.domain.errors import InvalidInput, RpcExhausted
from wtrack.domain.models import RawLog, ScanProgress
from wtrack.domain.value_types import DECIMALS_SELECTOR, SYMBOL_SELECTOR, TRANSFER_T0, TxHash

from _fakes import (
    ALICE, BOB, CAROL, TOKEN_A, TOKEN_B,
    FakeGateway, abi_string, topic_for, transfer_log, word, no_sleep,
)


def _scanner(gw, **kw) -> RangeLogScanner:
    return RangeLogScanner(gw, RetryPolicy(max_attempts=3, delay_s=0, sleep=no_sleep), sleep=no_sleep, **kw)

def _metadata(symbol_a="AAA", symbol_b="BBB"):
    return {
        (TOKEN_A.lower(), SYMBOL_SELECTOR): abi_string(symbol_a),
        (TOKEN_A.lower(), DECIMALS_SELECTOR): word(6),
        (TOKEN_B.lower(), SYMBOL_SELECTOR): abi_string(symbol_b),
        (TOKEN_B.lower(), DECIMALS_SELECTOR): word(18),
    }

def _sample_logs():
    return [
        transfer_log(TOKEN_A, ALICE, BOB, 5, block_number=10, log_index=0),
        transfer_log(TOKEN_B, BOB, CAROL, 7, block_number=10, log_index=1),
        transfer_log(TOKEN_A, CAROL, ALICE, 9, block_number=11, log_index=0),
        transfer_log(TOKEN_B, ALICE, CAROL, 11, block_number=12, log_index=3),
    ]


def test_single_log_decodes_one_ether_in_base_units():
    log = RawLog(
        address=TOKEN_A.lower(),
        topics=(TRANSFER_T0, topic_for(ALICE), topic_for(BOB)),
        data="0xde0b6b3a7640000",
        block_number=100,
        tx_hash=TxHash("0x" + "ab" * 32),
        log_index=0,
    )
    gw = FakeGateway(logs=[log], calls=_metadata())
    events = asyncio.run(_scanner(gw).scan(100, 100))
    assert len(events) == 1
    ev = events[0]
    assert str(ev.value) == "1000000000000000000"
    assert (ev.sender, ev.recipient, ev.contract_address) == (ALICE, BOB, TOKEN_A)
    assert (ev.token_symbol, ev.token_decimals) == ("AAA", 6)
    assert gw.requests.count(("get_logs", 100, 100)) == 1


def test_logs_with_too_few_topics_or_no_data_are_skipped(caplog):
    bad_topics = RawLog(TOKEN_A.lower(), (TRANSFER_T0, topic_for(ALICE)), word(1), 100, TxHash("0x01"), 1)
    no_data = RawLog(TOKEN_A.lower(), (TRANSFER_T0, topic_for(ALICE), topic_for(BOB)), "0x", 100, TxHash("0x02"), 2)
    good = transfer_log(TOKEN_A, ALICE, BOB, 3, block_number=100, log_index=3)
    gw = FakeGateway(logs=[bad_topics, no_data, good], calls=_metadata())
    with caplog.at_level(logging.WARNING):
        events = asyncio.run(_scanner(gw).scan(100, 100))
    assert [e.log_index for e in events] == [3]
    assert "skipping log" in caplog.text


def test_order_follows_the_node_response():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    events = asyncio.run(_scanner(gw).scan(0, 100))
    assert [(e.block_number, e.log_index) for e in events] == [(10, 0), (10, 1), (11, 0), (12, 3)]


def test_scanning_twice_is_idempotent():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    first = asyncio.run(_scanner(gw).scan(0, 100))
    second = asyncio.run(_scanner(gw).scan(0, 100))
    assert first == second


def test_contract_filter_is_a_subset_of_the_unfiltered_scan():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    everything = asyncio.run(_scanner(gw).scan(0, 100))
    only_a = asyncio.run(_scanner(gw).scan(0, 100, contract=TOKEN_A.lower()))
    assert only_a == [e for e in everything if e.contract_address == TOKEN_A]
    assert gw.filters[-1].contract == TOKEN_A


def test_from_and_to_filters_become_topics():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    out = asyncio.run(_scanner(gw).scan(0, 100, recipient=CAROL))
    assert [e.value for e in out] == [7, 11]
    flt = gw.filters[-1]
    assert flt.from_topic is None and flt.to_topic == topic_for(CAROL)

    out = asyncio.run(_scanner(gw).scan(0, 100, sender=ALICE, recipient=BOB))
    assert [e.value for e in out] == [5]


def test_missing_metadata_falls_back_to_defaults_without_failing():
    calls = {(TOKEN_A.lower(), DECIMALS_SELECTOR): word(8)}   # no symbol(), TOKEN_B implements nothing
    gw = FakeGateway(logs=_sample_logs(), calls=calls)
    events = asyncio.run(_scanner(gw).scan(0, 100))
    by_contract = {e.contract_address: (e.token_symbol, e.token_decimals) for e in events}
    assert by_contract == {TOKEN_A: ("UNKNOWN", 8), TOKEN_B: ("UNKNOWN", 18)}


def test_exhausted_metadata_calls_also_fall_back():
    gw = FakeGateway(logs=_sample_logs()[:1], calls=_metadata(),
                     failures={("call", TOKEN_A.lower(), SYMBOL_SELECTOR): -1})
    [ev] = asyncio.run(_scanner(gw).scan(0, 100))
    assert (ev.token_symbol, ev.token_decimals) == ("UNKNOWN", 6)
    assert gw.requests.count(("call", TOKEN_A.lower(), SYMBOL_SELECTOR)) == 3


def test_bytes32_symbol_is_accepted():
    calls = _metadata()
    calls[(TOKEN_A.lower(), SYMBOL_SELECTOR)] = "0x" + b"MKR".ljust(32, b"\x00").hex()
    gw = FakeGateway(logs=_sample_logs()[:1], calls=calls)
    [ev] = asyncio.run(_scanner(gw).scan(0, 100))
    assert ev.token_symbol == "MKR"


def test_metadata_is_fetched_once_per_contract():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    asyncio.run(_scanner(gw).scan(0, 100))
    calls = [r for r in gw.requests if r[0] == "call"]
    assert len(calls) == 4


def test_without_metadata_no_calls_are_made():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    events = asyncio.run(_scanner(gw).scan(0, 100, with_metadata=False))
    assert {e.token_symbol for e in events} == {"UNKNOWN"}
    assert not [r for r in gw.requests if r[0] == "call"]


def test_get_logs_is_retried_and_exhaustion_aborts_the_scan():
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata(), failures={"get_logs": 2})
    assert len(asyncio.run(_scanner(gw).scan(0, 100))) == 4

    gw = FakeGateway(logs=_sample_logs(), failures={"get_logs": 3})
    with pytest.raises(RpcExhausted):
        asyncio.run(_scanner(gw).scan(0, 100))


def test_invalid_input_fails_before_any_rpc():
    gw = FakeGateway(logs=_sample_logs())
    with pytest.raises(InvalidInput):
        asyncio.run(_scanner(gw).scan(10, 5))
    with pytest.raises(InvalidInput):
        asyncio.run(_scanner(gw).scan(0, 5, contract="0x1234"))
    assert gw.requests == []


def test_progress_is_reported():
    seen: list[ScanProgress] = []
    gw = FakeGateway(logs=_sample_logs(), calls=_metadata())
    asyncio.run(_scanner(gw, on_progress=seen.append, progress_every=2).scan(0, 100))
    assert [(p.done, p.found) for p in seen] == [(2, 2), (4, 4), (4, 4)]
    assert all(p.unit == "logs" and p.total == 4 for p in seen)
