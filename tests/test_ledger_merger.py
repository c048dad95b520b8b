"""
Test normalization, deduplication and ordering of the merged ledger.
"""

import pytest

from hydrocred.indexer.ledger_merger import LedgerMerger, normalize
from hydrocred.indexer.types import (
    EventCategory,
    IssuedEvent,
    RetiredEvent,
    TransferredEvent,
)
from hydrocred.core.exceptions import MalformedEvent

from conftest import BUYER, PRODUCER, ZERO, raw


ISSUED = EventCategory.ISSUED
TRANSFERRED = EventCategory.TRANSFERRED
RETIRED = EventCategory.RETIRED


@pytest.fixture
def merger():
    return LedgerMerger()


def _history():
    return {
        ISSUED: [
            raw(ISSUED, (PRODUCER, 2, 1, 2), block=10, tx="0xa1", index=2),
            raw(ISSUED, (PRODUCER, 1, 3, 3), block=14, tx="0xa2", index=0),
        ],
        TRANSFERRED: [
            raw(TRANSFERRED, (PRODUCER, BUYER, 1), block=11, tx="0xb1"),
            raw(TRANSFERRED, (PRODUCER, BUYER, 3), block=14, tx="0xb2", index=1),
        ],
        RETIRED: [
            raw(RETIRED, (BUYER, 1), block=12, tx="0xc1"),
        ],
    }


def test_issue_mint_leg_retire_scenario(merger):
    """Issued + mint-leg Transfer + Retired merge into exactly Issued then Retired."""
    ledger = merger.merge({
        ISSUED: [raw(ISSUED, (PRODUCER, 2, 1, 2), block=10, tx="0x01", index=2)],
        TRANSFERRED: [raw(TRANSFERRED, (ZERO, PRODUCER, 1), block=10, tx="0x01", index=0)],
        RETIRED: [raw(RETIRED, (PRODUCER, 1), block=12, tx="0x02")],
    })

    assert len(ledger) == 2
    assert isinstance(ledger[0], IssuedEvent)
    assert isinstance(ledger[1], RetiredEvent)
    assert ledger[0].to == PRODUCER
    assert (ledger[0].range_start, ledger[0].range_end) == (1, 2)
    assert ledger[1].token_id == 1


def test_mint_legs_never_become_transfers(merger):
    entries = [raw(TRANSFERRED, (ZERO, PRODUCER, i), block=5, tx="0xm", index=i) for i in range(5)]

    ledger = merger.merge({TRANSFERRED: entries})

    assert ledger.of_category(TRANSFERRED) == []


def test_ordered_by_block_then_timestamp(merger):
    ledger = merger.merge(_history())

    keys = [(e.block_number, e.timestamp) for e in ledger]
    assert keys == sorted(keys)
    assert [e.block_number for e in ledger] == [10, 11, 12, 14, 14]


def test_ties_keep_category_priority_then_source_order(merger):
    """Same block and timestamp: Issued, then Transferred, then Retired; source order within."""
    ledger = merger.merge({
        RETIRED: [raw(RETIRED, (BUYER, 9), block=20, tx="0xff")],
        TRANSFERRED: [
            raw(TRANSFERRED, (PRODUCER, BUYER, 9), block=20, tx="0xee", index=5),
            raw(TRANSFERRED, (BUYER, PRODUCER, 8), block=20, tx="0x00", index=1),
        ],
        ISSUED: [raw(ISSUED, (PRODUCER, 2, 8, 9), block=20, tx="0xdd", index=9)],
    })

    assert [type(e) for e in ledger] == [IssuedEvent, TransferredEvent, TransferredEvent, RetiredEvent]
    # Not re-sorted by hash or log index
    assert [e.tx_hash for e in ledger.of_category(TRANSFERRED)] == ["0xee", "0x00"]


def test_merge_is_idempotent(merger):
    history = _history()

    assert merger.merge(history) == merger.merge(history)


def test_duplicate_entries_collapse(merger):
    history = _history()
    doubled = {c: list(entries) + list(entries) for c, entries in history.items()}

    assert merger.merge(doubled).events == merger.merge(history).events


def test_same_tx_distinct_log_index_kept(merger):
    ledger = merger.merge({
        TRANSFERRED: [
            raw(TRANSFERRED, (PRODUCER, BUYER, 1), block=3, tx="0xab", index=0),
            raw(TRANSFERRED, (PRODUCER, BUYER, 2), block=3, tx="0xab", index=1),
        ],
    })

    assert [e.token_id for e in ledger] == [1, 2]


def test_superset_merge_extends_monotonically(merger):
    """Merging X then X plus later blocks keeps merge(X) as an exact prefix."""
    x = _history()
    y = {
        ISSUED: [raw(ISSUED, (BUYER, 1, 4, 4), block=15, tx="0xa3")],
        TRANSFERRED: [raw(TRANSFERRED, (BUYER, PRODUCER, 4), block=16, tx="0xb3")],
        RETIRED: [raw(RETIRED, (BUYER, 3), block=15, tx="0xc2")],
    }
    union = {c: list(x.get(c, [])) + list(y.get(c, [])) for c in EventCategory}

    first = merger.merge(x)
    second = merger.merge(union)

    assert second.events[:len(first)] == first.events
    assert len(second) == len(first) + 3


def test_extend_appends_and_skips_seen(merger):
    first = merger.merge(_history(), from_block=0, to_block=14)
    later = {
        RETIRED: [
            raw(RETIRED, (BUYER, 1), block=12, tx="0xc1"),  # already present
            raw(RETIRED, (BUYER, 3), block=18, tx="0xc9"),
        ],
    }

    extended = merger.extend(first, later, to_block=20)

    assert extended.events[:len(first)] == first.events
    assert len(extended) == len(first) + 1
    assert extended.to_block == 20
    assert extended.from_block == 0


def test_dedup_ignores_tx_hash_case(merger):
    ledger = merger.merge({
        RETIRED: [
            raw(RETIRED, (BUYER, 1), block=12, tx="0xABC"),
            raw(RETIRED, (BUYER, 1), block=12, tx="0xabc"),
        ],
    })

    assert len(ledger) == 1


def test_malformed_entries_skipped_and_counted(merger):
    ledger = merger.merge({
        ISSUED: [raw(ISSUED, (PRODUCER, "lots", 1, 2), block=1, tx="0x1")],
        RETIRED: [raw(RETIRED, (BUYER, 1), block=2, tx="0x2")],
    })

    assert len(ledger) == 1
    assert ledger.malformed_count == 1


def test_normalize_requires_timestamp():
    entry = raw(RETIRED, (BUYER, 1), block=2, tx="0x2")
    entry = type(entry)(entry.category, entry.args, entry.block_number, entry.tx_hash, entry.log_index, None)

    with pytest.raises(MalformedEvent):
        normalize(entry)


def test_merge_entries_groups_flat_input(merger):
    flat = [
        raw(RETIRED, (BUYER, 1), block=10, tx="0x3"),
        raw(ISSUED, (PRODUCER, 1, 1, 1), block=10, tx="0x1"),
    ]

    ledger = merger.merge_entries(flat)

    assert [type(e) for e in ledger] == [IssuedEvent, RetiredEvent]


def test_to_dicts_shape(merger):
    ledger = merger.merge(_history())

    first = ledger.to_dicts()[0]
    assert first == {
        "type": "issued",
        "to": PRODUCER,
        "amount": 2,
        "fromId": 1,
        "toId": 2,
        "blockNumber": 10,
        "timestamp": 1_700_000_000 + 10 * 12,
        "transactionHash": "0xa1",
    }
