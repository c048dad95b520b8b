"""
Core types for credit event indexing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


class EventCategory(Enum):
    """Ledger event categories, declared in merge priority order."""
    ISSUED = "Issued"
    TRANSFERRED = "Transferred"
    RETIRED = "Retired"

    @property
    def priority(self) -> int:
        return _CATEGORY_PRIORITY[self]

    @classmethod
    def in_priority_order(cls) -> List["EventCategory"]:
        return sorted(cls, key=lambda c: c.priority)


_CATEGORY_PRIORITY = {
    EventCategory.ISSUED: 0,
    EventCategory.TRANSFERRED: 1,
    EventCategory.RETIRED: 2,
}


@dataclass(frozen=True)
class RawLogEntry:
    """One on-chain event occurrence as returned by the node."""
    category: EventCategory
    args: Tuple[Any, ...]
    block_number: int
    tx_hash: str
    log_index: int
    timestamp: Optional[int] = None

    @property
    def dedup_key(self) -> Tuple[str, str, int]:
        return (self.tx_hash.lower(), self.category.value, self.log_index)


@dataclass(frozen=True)
class IssuedEvent:
    """A batch of credit units minted to a producer."""
    to: str
    amount: int
    range_start: int
    range_end: int
    block_number: int
    timestamp: int
    tx_hash: str
    log_index: int = 0

    category = EventCategory.ISSUED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "issued",
            "to": self.to,
            "amount": self.amount,
            "fromId": self.range_start,
            "toId": self.range_end,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "transactionHash": self.tx_hash,
        }


@dataclass(frozen=True)
class TransferredEvent:
    """A credit unit moving between two holders."""
    token_id: int
    from_address: str
    to_address: str
    block_number: int
    timestamp: int
    tx_hash: str
    log_index: int = 0

    category = EventCategory.TRANSFERRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "transferred",
            "tokenId": self.token_id,
            "from": self.from_address,
            "to": self.to_address,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "transactionHash": self.tx_hash,
        }


@dataclass(frozen=True)
class RetiredEvent:
    """A credit unit permanently retired by its holder."""
    token_id: int
    from_address: str
    block_number: int
    timestamp: int
    tx_hash: str
    log_index: int = 0

    category = EventCategory.RETIRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "retired",
            "tokenId": self.token_id,
            "from": self.from_address,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "transactionHash": self.tx_hash,
        }


LedgerEvent = Union[IssuedEvent, TransferredEvent, RetiredEvent]


def event_key(event: LedgerEvent) -> Tuple[str, str, int]:
    """Identity of a ledger event: transaction, category and log position."""
    return (event.tx_hash.lower(), event.category.value, event.log_index)


@dataclass(frozen=True)
class Ledger:
    """Chronologically ordered credit lifecycle events."""
    events: Tuple[LedgerEvent, ...] = ()
    malformed_count: int = 0
    from_block: Optional[int] = None
    to_block: Optional[int] = None

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[LedgerEvent]:
        return iter(self.events)

    def __getitem__(self, index):
        return self.events[index]

    @property
    def last_block(self) -> Optional[int]:
        if self.to_block is not None:
            return self.to_block
        return self.events[-1].block_number if self.events else None

    def of_category(self, category: EventCategory) -> List[LedgerEvent]:
        return [e for e in self.events if e.category is category]

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.events]


@dataclass
class FetchResult:
    """Raw entries for every category over one block range."""
    from_block: int
    to_block: int
    entries: Dict[EventCategory, List[RawLogEntry]] = field(default_factory=dict)
    malformed_count: int = 0
    mint_legs_dropped: int = 0

    @property
    def total(self) -> int:
        return sum(len(v) for v in self.entries.values())


@dataclass
class CreditUnit:
    """Replayed state of one credit unit."""
    token_id: int
    owner: Optional[str]
    retired: bool = False
    issued_tx: Optional[str] = None
    last_block: Optional[int] = None
