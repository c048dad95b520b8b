"""
Fetching of raw credit events from the token contract.

Each category is read through the resilient reader but failures propagate:
an empty category must always mean "no events", never "fetch failed".
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from hydrocred.core.exceptions import MalformedEvent, PartialFetchFailure
from hydrocred.services.resilient_reader import ResilientReader
from hydrocred.utils.formatting import is_zero_address
from .types import EventCategory, FetchResult, RawLogEntry


logger = structlog.get_logger(__name__)

# Positional argument count per category, in contract ABI order
EXPECTED_ARG_COUNT = {
    EventCategory.ISSUED: 4,       # to, amount, fromId, toId
    EventCategory.TRANSFERRED: 3,  # from, to, tokenId
    EventCategory.RETIRED: 2,      # owner, tokenId
}


def parse_log(category: EventCategory, log: Mapping[str, Any]) -> RawLogEntry:
    """
    Build a RawLogEntry from a node log record.

    Raises:
        MalformedEvent: If a required field is missing or has the wrong shape
    """
    args = log.get("args")
    block_number = log.get("blockNumber")
    tx_hash = log.get("transactionHash")
    log_index = log.get("logIndex")

    if args is None or block_number is None or not tx_hash or log_index is None:
        raise MalformedEvent(
            f"{category.value} log is missing required fields",
            {"category": category.value, "log": dict(log)},
        )
    args = tuple(args)
    if len(args) != EXPECTED_ARG_COUNT[category]:
        raise MalformedEvent(
            f"{category.value} log has {len(args)} args, expected {EXPECTED_ARG_COUNT[category]}",
            {"category": category.value, "tx_hash": tx_hash},
        )
    try:
        block_number = int(block_number)
        log_index = int(log_index)
    except (TypeError, ValueError) as e:
        raise MalformedEvent(
            f"{category.value} log has non-numeric position",
            {"category": category.value, "tx_hash": tx_hash, "error": str(e)},
        )

    return RawLogEntry(
        category=category,
        args=args,
        block_number=block_number,
        tx_hash=str(tx_hash),
        log_index=log_index,
    )


def is_mint_leg(entry: RawLogEntry) -> bool:
    """A Transfer from the zero address is the mint half of an issuance."""
    return entry.category is EventCategory.TRANSFERRED and is_zero_address(entry.args[0])


class EventFetcher:
    """
    Retrieves issuance, transfer and retirement logs over a block range.

    Features:
    - One chain-head read per ``fetch_all`` so all categories share a range
    - Categories fetched concurrently; any failure fails the whole fetch
    - Mint legs of Transfer dropped at the source
    - Block timestamps resolved once per distinct block
    """

    def __init__(self, reader: ResilientReader):
        self.reader = reader
        self.logger = logger.bind(service="event_fetcher")

    async def get_chain_head(self) -> int:
        return await self.reader.execute(lambda conn: conn.get_block_number(), "get_block_number")

    async def fetch(
        self,
        category: EventCategory,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawLogEntry]:
        """
        Fetch one category with timestamps resolved.

        Raises:
            ReadExhausted: If the log or timestamp query could not be completed
        """
        if to_block is None:
            to_block = await self.get_chain_head()
        if from_block > to_block:
            return []

        entries, _, _ = await self._fetch_category(category, from_block, to_block)
        timestamps = await self._resolve_timestamps(e.block_number for e in entries)
        return [replace(e, timestamp=timestamps[e.block_number]) for e in entries]

    async def fetch_all(self, from_block: int) -> FetchResult:
        """
        Fetch all three categories from ``from_block`` to the current head.

        Raises:
            ReadExhausted: If the chain head or a timestamp could not be read
            PartialFetchFailure: If any category's log query failed
        """
        to_block = await self.get_chain_head()
        result = FetchResult(from_block=from_block, to_block=to_block)

        if from_block > to_block:
            self.logger.info("Nothing to fetch", from_block=from_block, to_block=to_block)
            result.entries = {c: [] for c in EventCategory.in_priority_order()}
            return result

        self.logger.info("Fetching credit events", from_block=from_block, to_block=to_block)

        categories = EventCategory.in_priority_order()
        outcomes = await asyncio.gather(
            *(self._fetch_category(c, from_block, to_block) for c in categories),
            return_exceptions=True,
        )

        failed: Dict[str, BaseException] = {}
        fetched: Dict[EventCategory, List[RawLogEntry]] = {}
        for category, outcome in zip(categories, outcomes):
            if isinstance(outcome, BaseException):
                failed[category.value] = outcome
                continue
            entries, malformed, mint_legs = outcome
            fetched[category] = entries
            result.malformed_count += malformed
            result.mint_legs_dropped += mint_legs

        if failed:
            self.logger.error(
                "Event fetch incomplete",
                failed=sorted(failed),
                succeeded=[c.value for c in fetched],
            )
            raise PartialFetchFailure(failed, [c.value for c in fetched])

        timestamps = await self._resolve_timestamps(
            e.block_number for entries in fetched.values() for e in entries
        )
        result.entries = {
            category: [replace(e, timestamp=timestamps[e.block_number]) for e in fetched[category]]
            for category in categories
        }

        self.logger.info(
            "Credit events fetched",
            total=result.total,
            **{c.value.lower(): len(result.entries[c]) for c in categories},
            malformed=result.malformed_count,
            mint_legs_dropped=result.mint_legs_dropped,
        )
        return result

    async def _fetch_category(
        self,
        category: EventCategory,
        from_block: int,
        to_block: int,
    ) -> Tuple[List[RawLogEntry], int, int]:
        logs = await self.reader.execute(
            lambda conn: conn.get_logs(category, from_block, to_block),
            f"get_logs:{category.value}",
        )

        entries: List[RawLogEntry] = []
        malformed = 0
        mint_legs = 0
        for log in logs:
            try:
                entry = parse_log(category, log)
            except MalformedEvent as e:
                malformed += 1
                self.logger.warning("Skipping malformed log", category=category.value, error=e.message)
                continue
            if is_mint_leg(entry):
                mint_legs += 1
                continue
            entries.append(entry)

        self.logger.debug(
            "Category fetched",
            category=category.value,
            found=len(logs),
            kept=len(entries),
        )
        return entries, malformed, mint_legs

    async def _resolve_timestamps(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        timestamps: Dict[int, int] = {}
        for block_number in sorted(set(block_numbers)):
            timestamps[block_number] = await self.reader.execute(
                lambda conn, b=block_number: conn.get_block_timestamp(b),
                "get_block_timestamp",
            )
        return timestamps
