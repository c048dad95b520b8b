"""
Shared fixtures: an in-memory chain and connections that can be told to fail.
"""

from typing import Any, Dict, List, Optional, Set

import pytest

from hydrocred.indexer.types import EventCategory, RawLogEntry
from hydrocred.services.chain_connection import ChainConnection
from hydrocred.services.endpoint_pool import EndpointPool
from hydrocred.services.resilient_reader import ResilientReader


ZERO = "0x0000000000000000000000000000000000000000"
PRODUCER = "0x1111111111111111111111111111111111111111"
BUYER = "0x2222222222222222222222222222222222222222"
CERTIFIER_ROLE = bytes.fromhex("c0" * 32)


class FakeChain:
    """Contract and node state shared by every fake connection."""

    def __init__(self, head: int = 100):
        self.head = head
        self.logs: Dict[EventCategory, List[Dict[str, Any]]] = {c: [] for c in EventCategory}
        self.timestamps: Dict[int, int] = {}
        self.holdings: Dict[str, List[int]] = {}
        self.retired: Set[int] = set()
        self.owners: Dict[int, str] = {}
        self.roles: Dict[bytes, Set[str]] = {}
        self.fail_next: Dict[str, int] = {}
        self.fail_always: Set[str] = set()
        self.calls: List[str] = []

    def add_log(self, category: EventCategory, args, block: int, tx: str, index: int = 0) -> None:
        self.logs[category].append({
            "args": tuple(args),
            "blockNumber": block,
            "transactionHash": tx,
            "logIndex": index,
        })
        self.timestamps.setdefault(block, 1_700_000_000 + block * 12)

    def check(self, method: str) -> None:
        self.calls.append(method)
        if method in self.fail_always:
            raise ConnectionError(f"{method} unavailable")
        remaining = self.fail_next.get(method, 0)
        if remaining > 0:
            self.fail_next[method] = remaining - 1
            raise ConnectionError(f"{method} failed")


class FakeConnection(ChainConnection):
    def __init__(self, url: str, chain: FakeChain, reachable: bool = True):
        self.url = url
        self.chain = chain
        self.reachable = reachable
        self.closed = False

    async def get_block_number(self) -> int:
        if not self.reachable:
            raise ConnectionError(f"{self.url} unreachable")
        self.chain.check("get_block_number")
        return self.chain.head

    async def get_logs(self, category, from_block, to_block):
        self.chain.check(f"get_logs:{category.value}")
        return [
            log for log in self.chain.logs[category]
            if log.get("blockNumber") is None or from_block <= log["blockNumber"] <= to_block
        ]

    async def get_block_timestamp(self, block_number):
        self.chain.check("get_block_timestamp")
        return self.chain.timestamps[block_number]

    async def tokens_of_owner(self, address):
        self.chain.check("tokens_of_owner")
        return list(self.chain.holdings.get(address, []))

    async def is_retired(self, token_id):
        self.chain.check("is_retired")
        return token_id in self.chain.retired

    async def owner_of(self, token_id):
        self.chain.check("owner_of")
        return self.chain.owners[token_id]

    async def has_role(self, role, address):
        self.chain.check("has_role")
        return address in self.chain.roles.get(role, set())

    async def certifier_role(self):
        self.chain.check("certifier_role")
        return CERTIFIER_ROLE

    async def close(self) -> None:
        self.closed = True


class FakeConnectionFactory:
    def __init__(self, chain: FakeChain, bad_urls: Optional[Set[str]] = None):
        self.chain = chain
        self.bad_urls = set(bad_urls or ())
        self.created: List[FakeConnection] = []

    def __call__(self, url: str) -> FakeConnection:
        conn = FakeConnection(url, self.chain, reachable=url not in self.bad_urls)
        self.created.append(conn)
        return conn


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def raw(category: EventCategory, args, block: int, tx: str, index: int = 0, timestamp: Optional[int] = None) -> RawLogEntry:
    return RawLogEntry(
        category=category,
        args=tuple(args),
        block_number=block,
        tx_hash=tx,
        log_index=index,
        timestamp=timestamp if timestamp is not None else 1_700_000_000 + block * 12,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def factory(chain) -> FakeConnectionFactory:
    return FakeConnectionFactory(chain)


@pytest.fixture
def pool(factory) -> EndpointPool:
    return EndpointPool(["http://primary", "http://fallback-1", "http://fallback-2"], factory, probe_timeout=1.0)


@pytest.fixture
def reader(pool, recording_sleep) -> ResilientReader:
    return ResilientReader(pool, max_attempts=3, base_delay=1.0, sleep=recording_sleep)
