"""
Incremental ledger sync driven by a stored ``lastSyncedBlock`` cursor.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from hydrocred.cache.cursor_store import CursorStore
from .event_fetcher import EventFetcher
from .ledger_merger import LedgerMerger
from .types import Ledger


logger = structlog.get_logger(__name__)


@dataclass
class SyncResult:
    key: str
    previous_cursor: Optional[int]
    cursor: int
    ledger: Ledger

    @property
    def new_events(self) -> int:
        return len(self.ledger)


class LedgerSync:
    """
    Fetches events after the stored cursor and advances it.

    Each sync reads ``[cursor + 1, head]``, so consecutive syncs never overlap
    and earlier events never reorder. The cursor only moves after a complete
    fetch; a failed fetch leaves it where it was.
    """

    def __init__(
        self,
        fetcher: EventFetcher,
        merger: LedgerMerger,
        cursor_store: CursorStore,
        start_block: int = 0,
    ):
        self.fetcher = fetcher
        self.merger = merger
        self.cursor_store = cursor_store
        self.start_block = start_block
        self.logger = logger.bind(service="ledger_sync")

    async def sync(self, key: str = "default") -> SyncResult:
        """
        Run one incremental sync step.

        Raises:
            PartialFetchFailure, ReadExhausted: The cursor is left untouched
        """
        previous = await self.cursor_store.get(key)
        from_block = self.start_block if previous is None else previous + 1

        fetch = await self.fetcher.fetch_all(from_block)
        ledger = self.merger.merge(fetch.entries, from_block=fetch.from_block, to_block=fetch.to_block)
        ledger = Ledger(
            events=ledger.events,
            malformed_count=ledger.malformed_count + fetch.malformed_count,
            from_block=ledger.from_block,
            to_block=ledger.to_block,
        )

        cursor = max(fetch.to_block, previous) if previous is not None else fetch.to_block
        await self.cursor_store.set(key, cursor)

        self.logger.info(
            "Ledger synced",
            key=key,
            from_block=from_block,
            cursor=cursor,
            new_events=len(ledger),
        )
        return SyncResult(key=key, previous_cursor=previous, cursor=cursor, ledger=ledger)
