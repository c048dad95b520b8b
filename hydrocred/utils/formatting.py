"""
Display and address helpers shared by the ledger and CLI.
"""

from typing import Any

from web3 import Web3

from hydrocred.core.config import settings, ChainConfig


def format_token_id(token_id: int) -> str:
    """Render a token id the way the dashboards show it, e.g. ``#0042``."""
    return f"#{int(token_id):04d}"


def explorer_tx_url(tx_hash: str, base_url: str = None) -> str:
    """Block explorer link for a transaction hash."""
    base = (base_url or settings.explorer_base_url).rstrip("/")
    return f"{base}/tx/{tx_hash}"


def normalize_address(address: Any) -> str:
    """Checksum an address when it is valid, otherwise return it unchanged as text."""
    text = str(address)
    if Web3.is_address(text):
        return Web3.to_checksum_address(text)
    return text


def is_zero_address(address: Any) -> bool:
    """True for the mint/burn sentinel address, regardless of casing."""
    if address is None:
        return False
    return str(address).lower() == ChainConfig.ZERO_ADDRESS
