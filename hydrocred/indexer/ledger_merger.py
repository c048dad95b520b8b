"""
Merging of raw category logs into one ordered credit ledger.

Ordering rule: events are sorted by ``(block_number, timestamp)`` ascending
with a stable sort. Ties keep fetch order, which is category priority
(Issued, Transferred, Retired) and then contract log order within a category.
Ties are never re-sorted by transaction hash or any other key.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from hydrocred.core.exceptions import MalformedEvent
from hydrocred.utils.formatting import is_zero_address
from .types import (
    EventCategory,
    IssuedEvent,
    Ledger,
    LedgerEvent,
    RawLogEntry,
    RetiredEvent,
    TransferredEvent,
    event_key,
)


logger = structlog.get_logger(__name__)


def _chronological_key(event: LedgerEvent) -> Tuple[int, int]:
    return (event.block_number, event.timestamp)


def normalize(entry: RawLogEntry) -> Optional[LedgerEvent]:
    """
    Convert a raw entry into its typed ledger event.

    Returns None for a Transfer from the zero address, which is the mint leg
    of an issuance already represented by the Issued event.

    Raises:
        MalformedEvent: If the entry lacks a timestamp or its args don't decode
    """
    if entry.timestamp is None:
        raise MalformedEvent(
            "Log entry has no block timestamp",
            {"category": entry.category.value, "tx_hash": entry.tx_hash},
        )

    try:
        if entry.category is EventCategory.ISSUED:
            to, amount, range_start, range_end = entry.args
            return IssuedEvent(
                to=str(to),
                amount=int(amount),
                range_start=int(range_start),
                range_end=int(range_end),
                block_number=entry.block_number,
                timestamp=int(entry.timestamp),
                tx_hash=entry.tx_hash,
                log_index=entry.log_index,
            )

        if entry.category is EventCategory.TRANSFERRED:
            from_address, to_address, token_id = entry.args
            if is_zero_address(from_address):
                return None
            return TransferredEvent(
                token_id=int(token_id),
                from_address=str(from_address),
                to_address=str(to_address),
                block_number=entry.block_number,
                timestamp=int(entry.timestamp),
                tx_hash=entry.tx_hash,
                log_index=entry.log_index,
            )

        owner, token_id = entry.args
        return RetiredEvent(
            token_id=int(token_id),
            from_address=str(owner),
            block_number=entry.block_number,
            timestamp=int(entry.timestamp),
            tx_hash=entry.tx_hash,
            log_index=entry.log_index,
        )
    except (TypeError, ValueError) as e:
        raise MalformedEvent(
            f"Cannot decode {entry.category.value} args",
            {"tx_hash": entry.tx_hash, "args": repr(entry.args), "error": str(e)},
        )


class LedgerMerger:
    """Normalizes, deduplicates and totally orders raw credit events."""

    def __init__(self):
        self.logger = logger.bind(service="ledger_merger")

    def merge(
        self,
        raw_by_category: Mapping[EventCategory, Sequence[RawLogEntry]],
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> Ledger:
        """
        Build a ledger from per-category raw entries.

        Merging the same input twice yields an identical ledger.
        """
        events, malformed = self._normalize_all(self._in_fetch_order(raw_by_category), set())
        events.sort(key=_chronological_key)

        ledger = Ledger(
            events=tuple(events),
            malformed_count=malformed,
            from_block=from_block,
            to_block=to_block,
        )
        self.logger.debug("Ledger merged", events=len(ledger), malformed=malformed)
        return ledger

    def merge_entries(self, entries: Iterable[RawLogEntry], **kwargs) -> Ledger:
        """Merge a flat entry sequence, grouping it by category in source order."""
        grouped: Dict[EventCategory, List[RawLogEntry]] = {c: [] for c in EventCategory}
        for entry in entries:
            grouped[entry.category].append(entry)
        return self.merge(grouped, **kwargs)

    def extend(
        self,
        ledger: Ledger,
        raw_by_category: Mapping[EventCategory, Sequence[RawLogEntry]],
        to_block: Optional[int] = None,
    ) -> Ledger:
        """
        Append a later fetch to an existing ledger.

        Events already in ``ledger`` keep their positions; incoming events
        that duplicate them are dropped.
        """
        seen: Set[Tuple[str, str, int]] = {event_key(e) for e in ledger.events}
        new_events, malformed = self._normalize_all(self._in_fetch_order(raw_by_category), seen)
        new_events.sort(key=_chronological_key)

        if ledger.events and new_events and _chronological_key(new_events[0]) < _chronological_key(ledger.events[-1]):
            self.logger.warning(
                "Incoming events predate ledger tail",
                ledger_tail_block=ledger.events[-1].block_number,
                first_new_block=new_events[0].block_number,
            )

        return Ledger(
            events=ledger.events + tuple(new_events),
            malformed_count=ledger.malformed_count + malformed,
            from_block=ledger.from_block,
            to_block=to_block if to_block is not None else ledger.to_block,
        )

    @staticmethod
    def _in_fetch_order(raw_by_category: Mapping[EventCategory, Sequence[RawLogEntry]]) -> List[RawLogEntry]:
        ordered: List[RawLogEntry] = []
        for category in EventCategory.in_priority_order():
            ordered.extend(raw_by_category.get(category, ()))
        return ordered

    def _normalize_all(
        self,
        entries: Iterable[RawLogEntry],
        seen: Set[Tuple[str, str, int]],
    ) -> Tuple[List[LedgerEvent], int]:
        events: List[LedgerEvent] = []
        malformed = 0
        for entry in entries:
            if entry.dedup_key in seen:
                continue
            try:
                event = normalize(entry)
            except MalformedEvent as e:
                malformed += 1
                self.logger.warning("Skipping malformed event", error=e.message, details=e.details)
                continue
            if event is None:
                continue
            seen.add(entry.dedup_key)
            events.append(event)
        return events, malformed
