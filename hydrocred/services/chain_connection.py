"""
JSON-RPC connection to one endpoint and the HydroCred token contract.
Provides the read queries the ledger engine needs: chain height, event logs,
block timestamps and point-in-time ownership state.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

import structlog
from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider

from hydrocred.core.config import ChainConfig
from hydrocred.indexer.types import EventCategory


logger = structlog.get_logger(__name__)


# Subset of the HydroCredToken ABI used for reads
HYDROCRED_TOKEN_ABI: List[Dict[str, Any]] = [
    {
        "anonymous": False,
        "name": "CreditsIssued",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "fromId", "type": "uint256"},
            {"indexed": False, "name": "toId", "type": "uint256"},
        ],
    },
    {
        "anonymous": False,
        "name": "Transfer",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": True, "name": "tokenId", "type": "uint256"},
        ],
    },
    {
        "anonymous": False,
        "name": "CreditRetired",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "owner", "type": "address"},
            {"indexed": True, "name": "tokenId", "type": "uint256"},
        ],
    },
    {
        "name": "tokensOfOwner",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
    {
        "name": "isRetired",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "ownerOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "hasRole",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "role", "type": "bytes32"},
            {"name": "account", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "CERTIFIER_ROLE",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
]


def _event_arg_names(event_name: str) -> List[str]:
    for item in HYDROCRED_TOKEN_ABI:
        if item["type"] == "event" and item["name"] == event_name:
            return [inp["name"] for inp in item["inputs"]]
    raise KeyError(event_name)


class ChainConnection(ABC):
    """Read interface to the ledger contract through one endpoint."""

    url: str

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain height; also used as the liveness probe."""

    @abstractmethod
    async def get_logs(self, category: EventCategory, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """
        Event logs of one category in ``[from_block, to_block]``.

        Each log is a dict with ``args`` (positional, ABI order),
        ``blockNumber``, ``transactionHash`` and ``logIndex``.
        """

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> int:
        """Unix timestamp of a block."""

    @abstractmethod
    async def tokens_of_owner(self, address: str) -> List[int]:
        """Token ids currently held by ``address``."""

    @abstractmethod
    async def is_retired(self, token_id: int) -> bool:
        """Whether ``token_id`` has been retired."""

    @abstractmethod
    async def owner_of(self, token_id: int) -> str:
        """Current owner of ``token_id``."""

    @abstractmethod
    async def has_role(self, role: bytes, address: str) -> bool:
        """Whether ``address`` holds the access-control ``role``."""

    @abstractmethod
    async def certifier_role(self) -> bytes:
        """Role id the contract uses for certifiers."""

    async def close(self) -> None:
        """Release transport resources."""


class Web3ChainConnection(ChainConnection):
    """ChainConnection backed by ``web3.AsyncWeb3`` over HTTP."""

    def __init__(self, url: str, contract_address: str, request_timeout: float = 30.0):
        self.url = url
        self.w3 = AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": request_timeout}))
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=HYDROCRED_TOKEN_ABI,
        )
        self.logger = logger.bind(service="chain_connection", endpoint=url)

    async def get_block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def get_logs(self, category: EventCategory, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        event_name = ChainConfig.EVENT_NAMES[category.value]
        arg_names = _event_arg_names(event_name)
        event = getattr(self.contract.events, event_name)

        logs = await event.get_logs(from_block=from_block, to_block=to_block)

        results = []
        for log in logs:
            args = log.get("args") or {}
            results.append({
                "args": tuple(args[name] for name in arg_names if name in args),
                "blockNumber": log.get("blockNumber"),
                "transactionHash": Web3.to_hex(log["transactionHash"]) if log.get("transactionHash") else None,
                "logIndex": log.get("logIndex"),
            })
        self.logger.debug("Fetched logs", event=event_name, count=len(results))
        return results

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self.w3.eth.get_block(block_number)
        return int(block["timestamp"])

    async def tokens_of_owner(self, address: str) -> List[int]:
        tokens = await self.contract.functions.tokensOfOwner(Web3.to_checksum_address(address)).call()
        return [int(t) for t in tokens]

    async def is_retired(self, token_id: int) -> bool:
        return bool(await self.contract.functions.isRetired(int(token_id)).call())

    async def owner_of(self, token_id: int) -> str:
        return await self.contract.functions.ownerOf(int(token_id)).call()

    async def has_role(self, role: bytes, address: str) -> bool:
        if isinstance(role, str):
            role = Web3.to_bytes(hexstr=role)
        return bool(await self.contract.functions.hasRole(role, Web3.to_checksum_address(address)).call())

    async def certifier_role(self) -> bytes:
        return bytes(await self.contract.functions.CERTIFIER_ROLE().call())

    async def close(self) -> None:
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            self.logger.warning("Error closing RPC session", error=str(e))


def web3_connection_factory(contract_address: str, request_timeout: float = 30.0):
    """Build a connection factory for the endpoint pool."""
    def _connect(url: str) -> ChainConnection:
        return Web3ChainConnection(url, contract_address, request_timeout)
    return _connect
