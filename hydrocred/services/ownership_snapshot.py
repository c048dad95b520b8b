"""
Point-in-time holdings read straight from the contract's ownership index.

These reads favour availability: on exhaustion ``owned_units`` is empty and
``is_retired`` is False. Results feed read-only dashboard views and must not
be used to authorize a transfer or retirement.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List

import structlog

from .resilient_reader import ResilientReader


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CreditHolding:
    token_id: int
    is_retired: bool


@dataclass
class HoldingsSnapshot:
    """Credits held by one address at one point in time."""
    holder: str
    holdings: List[CreditHolding] = field(default_factory=list)
    taken_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def total_credits(self) -> int:
        return len(self.holdings)

    @property
    def active_credits(self) -> int:
        return sum(1 for h in self.holdings if not h.is_retired)

    @property
    def retired_credits(self) -> int:
        return sum(1 for h in self.holdings if h.is_retired)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holder": self.holder,
            "takenAt": self.taken_at.isoformat(),
            "totalCredits": self.total_credits,
            "activeCredits": self.active_credits,
            "retiredCredits": self.retired_credits,
            "credits": [{"tokenId": h.token_id, "isRetired": h.is_retired} for h in self.holdings],
        }


class OwnershipSnapshotBuilder:
    """Builds holdings views from ``tokensOfOwner`` and ``isRetired`` reads."""

    def __init__(self, reader: ResilientReader):
        self.reader = reader
        self.logger = logger.bind(service="ownership_snapshot")

    async def owned_units(self, holder: str) -> FrozenSet[int]:
        tokens = await self.reader.execute_or_default(
            lambda conn: conn.tokens_of_owner(holder),
            [],
            "tokens_of_owner",
        )
        owned = frozenset(int(t) for t in tokens)
        self.logger.debug("Owned units read", holder=holder, count=len(owned))
        return owned

    async def is_retired(self, token_id: int) -> bool:
        return bool(await self.reader.execute_or_default(
            lambda conn: conn.is_retired(token_id),
            False,
            "is_retired",
        ))

    async def owner_of(self, token_id: int) -> str:
        """
        Current owner of a token.

        Raises:
            ReadExhausted: If the read could not be completed
        """
        return await self.reader.execute(lambda conn: conn.owner_of(token_id), "owner_of")

    async def has_role(self, role: bytes, address: str) -> bool:
        return bool(await self.reader.execute_or_default(
            lambda conn: conn.has_role(role, address),
            False,
            "has_role",
        ))

    async def is_certifier(self, address: str) -> bool:
        """Certifier check for UI gating; False when the chain is unreachable."""
        async def _check(conn):
            return await conn.has_role(await conn.certifier_role(), address)

        return bool(await self.reader.execute_or_default(_check, False, "is_certifier"))

    async def snapshot(self, holder: str) -> HoldingsSnapshot:
        token_ids = sorted(await self.owned_units(holder))
        flags = await asyncio.gather(*(self.is_retired(t) for t in token_ids))
        snapshot = HoldingsSnapshot(
            holder=holder,
            holdings=[CreditHolding(token_id=t, is_retired=f) for t, f in zip(token_ids, flags)],
        )
        self.logger.info(
            "Holdings snapshot built",
            holder=holder,
            total=snapshot.total_credits,
            active=snapshot.active_credits,
        )
        return snapshot
