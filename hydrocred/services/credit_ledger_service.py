"""
Outbound interface of the ledger engine.

The workflow/HTTP layer calls:
- ``get_credit_events(from_block)``: full ordered ledger, failures propagate
- ``get_owned_tokens(address)``: empty set when the chain is unreachable
- ``is_token_retired(token_id)``: False when the chain is unreachable
- ``get_holdings(address)``: owned tokens with retirement flags
- ``get_token_owner(token_id)``: failures propagate
- ``has_role(role, address)`` / ``is_certifier(address)``: False when the chain is unreachable
"""

import asyncio
from typing import FrozenSet, Optional

import structlog

from hydrocred.core.config import settings, ChainConfig
from hydrocred.core.exceptions import ReadExhausted
from hydrocred.cache.cursor_store import CursorStore, InMemoryCursorStore
from hydrocred.indexer.event_fetcher import EventFetcher
from hydrocred.indexer.ledger_merger import LedgerMerger
from hydrocred.indexer.ledger_sync import LedgerSync, SyncResult
from hydrocred.indexer.types import Ledger
from .chain_connection import web3_connection_factory
from .endpoint_pool import ConnectionFactory, EndpointPool
from .ownership_snapshot import HoldingsSnapshot, OwnershipSnapshotBuilder
from .resilient_reader import ResilientReader


logger = structlog.get_logger(__name__)


class CreditLedgerService:
    """Wires the endpoint pool, reader, fetcher, merger and snapshot builder."""

    def __init__(
        self,
        pool: EndpointPool,
        reader: Optional[ResilientReader] = None,
        cursor_store: Optional[CursorStore] = None,
        reconcile_timeout: Optional[float] = None,
        start_block: int = 0,
    ):
        self.pool = pool
        self.reader = reader or ResilientReader(pool, **ChainConfig.get_retry_config())
        self.fetcher = EventFetcher(self.reader)
        self.merger = LedgerMerger()
        self.snapshots = OwnershipSnapshotBuilder(self.reader)
        self.cursor_store = cursor_store or InMemoryCursorStore()
        self.ledger_sync = LedgerSync(self.fetcher, self.merger, self.cursor_store, start_block=start_block)
        self.reconcile_timeout = reconcile_timeout
        self.logger = logger.bind(service="credit_ledger_service")

    @classmethod
    def from_settings(
        cls,
        connection_factory: Optional[ConnectionFactory] = None,
        cursor_store: Optional[CursorStore] = None,
    ) -> "CreditLedgerService":
        rpc = ChainConfig.get_rpc_config()
        factory = connection_factory or web3_connection_factory(
            rpc["contract_address"], rpc["request_timeout"]
        )
        pool = EndpointPool(rpc["endpoints"], factory, probe_timeout=rpc["probe_timeout"])
        return cls(
            pool,
            cursor_store=cursor_store,
            reconcile_timeout=settings.reconcile_timeout,
            start_block=settings.start_block,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.pool.close()
        await self.cursor_store.close()

    async def get_credit_events(self, from_block: int = 0) -> Ledger:
        """
        Ordered credit ledger from ``from_block`` to the current head.

        Raises:
            ReadExhausted: Chain head/timestamps unreadable, or the call timed out
            PartialFetchFailure: A category fetch failed
        """
        try:
            if self.reconcile_timeout:
                return await asyncio.wait_for(self._reconcile(from_block), timeout=self.reconcile_timeout)
            return await self._reconcile(from_block)
        except asyncio.TimeoutError as e:
            self.logger.error("Reconciliation timed out", from_block=from_block, timeout=self.reconcile_timeout)
            raise ReadExhausted("get_credit_events", self.reader.max_attempts, e)

    async def _reconcile(self, from_block: int) -> Ledger:
        fetch = await self.fetcher.fetch_all(from_block)
        ledger = self.merger.merge(fetch.entries, from_block=fetch.from_block, to_block=fetch.to_block)
        if fetch.malformed_count:
            ledger = Ledger(
                events=ledger.events,
                malformed_count=ledger.malformed_count + fetch.malformed_count,
                from_block=ledger.from_block,
                to_block=ledger.to_block,
            )
        return ledger

    async def sync(self, key: str = "default") -> SyncResult:
        """Incremental ``get_credit_events`` from the stored cursor for ``key``."""
        return await self.ledger_sync.sync(key)

    async def get_owned_tokens(self, address: str) -> FrozenSet[int]:
        return await self.snapshots.owned_units(address)

    async def is_token_retired(self, token_id: int) -> bool:
        return await self.snapshots.is_retired(token_id)

    async def get_holdings(self, address: str) -> HoldingsSnapshot:
        return await self.snapshots.snapshot(address)

    async def get_token_owner(self, token_id: int) -> str:
        return await self.snapshots.owner_of(token_id)

    async def has_role(self, role: bytes, address: str) -> bool:
        return await self.snapshots.has_role(role, address)

    async def is_certifier(self, address: str) -> bool:
        return await self.snapshots.is_certifier(address)


# Global service instance
_service: Optional[CreditLedgerService] = None


async def get_credit_ledger_service() -> CreditLedgerService:
    """Get or create the global credit ledger service."""
    global _service
    if _service is None:
        _service = CreditLedgerService.from_settings()
    return _service


async def close_credit_ledger_service() -> None:
    """Close the global credit ledger service."""
    global _service
    if _service:
        await _service.close()
        _service = None
