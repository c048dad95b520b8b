"""
Test raw event fetching across the three categories.
"""

import pytest

from hydrocred.core.exceptions import MalformedEvent, PartialFetchFailure, ReadExhausted
from hydrocred.indexer.event_fetcher import EventFetcher, is_mint_leg, parse_log
from hydrocred.indexer.types import EventCategory

from conftest import BUYER, PRODUCER, ZERO, raw


ISSUED = EventCategory.ISSUED
TRANSFERRED = EventCategory.TRANSFERRED
RETIRED = EventCategory.RETIRED


def _seed(chain):
    chain.add_log(ISSUED, (PRODUCER, 2, 1, 2), block=10, tx="0xaa", index=2)
    chain.add_log(TRANSFERRED, (ZERO, PRODUCER, 1), block=10, tx="0xaa", index=0)
    chain.add_log(TRANSFERRED, (ZERO, PRODUCER, 2), block=10, tx="0xaa", index=1)
    chain.add_log(TRANSFERRED, (PRODUCER, BUYER, 1), block=11, tx="0xbb", index=0)
    chain.add_log(RETIRED, (BUYER, 1), block=12, tx="0xcc", index=0)


@pytest.mark.asyncio
async def test_fetch_all_drops_mint_legs_and_resolves_timestamps(chain, reader):
    _seed(chain)
    fetcher = EventFetcher(reader)

    result = await fetcher.fetch_all(0)

    assert result.from_block == 0
    assert result.to_block == chain.head
    assert len(result.entries[ISSUED]) == 1
    assert [e.args for e in result.entries[TRANSFERRED]] == [(PRODUCER, BUYER, 1)]
    assert len(result.entries[RETIRED]) == 1
    assert result.mint_legs_dropped == 2
    for entries in result.entries.values():
        for entry in entries:
            assert entry.timestamp == chain.timestamps[entry.block_number]


@pytest.mark.asyncio
async def test_timestamps_fetched_once_per_block(chain, reader):
    _seed(chain)
    chain.add_log(RETIRED, (PRODUCER, 2), block=12, tx="0xdd", index=1)

    await EventFetcher(reader).fetch_all(0)

    # blocks 10, 11, 12
    assert chain.calls.count("get_block_timestamp") == 3


@pytest.mark.asyncio
async def test_fetch_all_respects_from_block(chain, reader):
    _seed(chain)

    result = await EventFetcher(reader).fetch_all(11)

    assert result.entries[ISSUED] == []
    assert len(result.entries[TRANSFERRED]) == 1
    assert len(result.entries[RETIRED]) == 1


@pytest.mark.asyncio
async def test_from_block_past_head_is_empty(chain, reader):
    _seed(chain)

    result = await EventFetcher(reader).fetch_all(chain.head + 1)

    assert result.total == 0
    assert "get_logs:Issued" not in chain.calls


@pytest.mark.asyncio
async def test_one_category_failing_fails_whole_fetch(chain, reader):
    """A category that exhausts its retries is never reported as empty."""
    _seed(chain)
    chain.fail_always.add("get_logs:Retired")

    with pytest.raises(PartialFetchFailure) as exc_info:
        await EventFetcher(reader).fetch_all(0)

    assert list(exc_info.value.failed) == ["Retired"]
    assert set(exc_info.value.details["succeeded"]) == {"Issued", "Transferred"}


@pytest.mark.asyncio
async def test_transient_category_failure_is_retried(chain, reader):
    _seed(chain)
    chain.fail_next["get_logs:Transferred"] = 1

    result = await EventFetcher(reader).fetch_all(0)

    assert len(result.entries[TRANSFERRED]) == 1


@pytest.mark.asyncio
async def test_malformed_logs_are_skipped_and_counted(chain, reader):
    _seed(chain)
    chain.logs[RETIRED].append({"args": (BUYER,), "blockNumber": 12, "transactionHash": "0xee", "logIndex": 3})
    chain.logs[ISSUED].append({"args": (PRODUCER, 1, 3, 3), "blockNumber": 12, "transactionHash": None, "logIndex": 0})

    result = await EventFetcher(reader).fetch_all(0)

    assert result.malformed_count == 2
    assert len(result.entries[RETIRED]) == 1
    assert len(result.entries[ISSUED]) == 1


@pytest.mark.asyncio
async def test_single_category_fetch(chain, reader):
    _seed(chain)

    entries = await EventFetcher(reader).fetch(TRANSFERRED, 0)

    assert len(entries) == 1
    assert entries[0].timestamp == chain.timestamps[11]


@pytest.mark.asyncio
async def test_chain_head_failure_propagates(chain, reader):
    chain.fail_always.add("get_block_number")

    with pytest.raises(ReadExhausted):
        await EventFetcher(reader).fetch_all(0)


def test_parse_log_rejects_wrong_arity():
    with pytest.raises(MalformedEvent):
        parse_log(ISSUED, {"args": (PRODUCER, 1), "blockNumber": 1, "transactionHash": "0x1", "logIndex": 0})


def test_is_mint_leg():
    assert is_mint_leg(raw(TRANSFERRED, (ZERO, PRODUCER, 1), block=1, tx="0x1"))
    assert not is_mint_leg(raw(TRANSFERRED, (PRODUCER, BUYER, 1), block=1, tx="0x1"))
    # Burns are not mint legs
    assert not is_mint_leg(raw(TRANSFERRED, (PRODUCER, ZERO, 1), block=1, tx="0x1"))
