"""
Credit event indexing: types, merge and replay.
"""

from .types import (
    EventCategory,
    RawLogEntry,
    IssuedEvent,
    TransferredEvent,
    RetiredEvent,
    LedgerEvent,
    Ledger,
    FetchResult,
    CreditUnit,
)
from .ledger_merger import LedgerMerger
from .replay import replay_ledger, replay_credit_units

__all__ = [
    "EventCategory",
    "RawLogEntry",
    "IssuedEvent",
    "TransferredEvent",
    "RetiredEvent",
    "LedgerEvent",
    "Ledger",
    "FetchResult",
    "CreditUnit",
    "LedgerMerger",
    "replay_ledger",
    "replay_credit_units",
]
