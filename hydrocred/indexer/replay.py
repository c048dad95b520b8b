"""
Replay of a ledger into per-unit credit state for audit views.

Point-in-time contract reads stay authoritative for current holdings; replay
answers "what did the ledger say" over a historical range.
"""

from dataclasses import dataclass, field
from typing import Dict, List

import structlog

from hydrocred.utils.formatting import is_zero_address
from .types import CreditUnit, IssuedEvent, Ledger, RetiredEvent, TransferredEvent


logger = structlog.get_logger(__name__)


@dataclass
class ReplayResult:
    units: Dict[int, CreditUnit] = field(default_factory=dict)
    # Transfers to the zero address; kept apart from retirements
    burned: List[int] = field(default_factory=list)

    def owned_by(self, address: str) -> List[int]:
        wanted = address.lower()
        return sorted(
            unit.token_id for unit in self.units.values()
            if unit.owner is not None and unit.owner.lower() == wanted
        )

    def retired(self) -> List[int]:
        return sorted(unit.token_id for unit in self.units.values() if unit.retired)


def _unit(result: ReplayResult, token_id: int) -> CreditUnit:
    unit = result.units.get(token_id)
    if unit is None:
        unit = CreditUnit(token_id=token_id, owner=None)
        result.units[token_id] = unit
    return unit


def replay_ledger(ledger: Ledger) -> ReplayResult:
    """Apply every ledger event in order and return the resulting unit states."""
    result = ReplayResult()

    for event in ledger:
        if isinstance(event, IssuedEvent):
            # fromId..toId is inclusive on the contract
            for token_id in range(event.range_start, event.range_end + 1):
                unit = _unit(result, token_id)
                unit.owner = event.to
                unit.issued_tx = event.tx_hash
                unit.last_block = event.block_number
            if event.range_end - event.range_start + 1 != event.amount:
                logger.warning(
                    "Issued range does not match amount",
                    tx_hash=event.tx_hash,
                    amount=event.amount,
                    range_start=event.range_start,
                    range_end=event.range_end,
                )

        elif isinstance(event, TransferredEvent):
            unit = _unit(result, event.token_id)
            unit.owner = event.to_address
            unit.last_block = event.block_number
            if is_zero_address(event.to_address):
                result.burned.append(event.token_id)

        elif isinstance(event, RetiredEvent):
            unit = _unit(result, event.token_id)
            unit.retired = True
            unit.last_block = event.block_number

    return result


def replay_credit_units(ledger: Ledger) -> Dict[int, CreditUnit]:
    """Shortcut for ``replay_ledger(ledger).units``."""
    return replay_ledger(ledger).units
