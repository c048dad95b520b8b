"""
Endpoint pool with health-checked selection of a single live RPC connection.

Endpoints are probed in fixed priority order (primary first, then fallbacks).
The first endpoint that answers ``eth_blockNumber`` within the probe timeout
becomes the active connection handle and is reused until an operation on it
fails. Invalidation drops the handle so the next caller re-probes from scratch.

Readers check a handle out for the duration of one operation. A dropped handle
whose connection still has readers in flight is retired rather than closed,
and its connection is closed when the last of them releases it.
"""

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from hydrocred.core.exceptions import ConfigurationError, EndpointUnavailable
from .chain_connection import ChainConnection


logger = structlog.get_logger(__name__)


class EndpointHealth(Enum):
    UNTESTED = "untested"
    HEALTHY = "healthy"
    FAILED = "failed"


@dataclass
class Endpoint:
    """Configuration and health state for a single RPC endpoint."""
    url: str
    priority: int  # lower = higher priority
    health: EndpointHealth = EndpointHealth.UNTESTED
    failure_count: int = 0
    last_error: Optional[str] = None
    last_checked: Optional[datetime] = None

    @property
    def is_fallback(self) -> bool:
        return self.priority > 0


@dataclass(frozen=True)
class ConnectionHandle:
    """Binding to the currently selected endpoint."""
    endpoint: Endpoint
    connection: ChainConnection
    generation: int
    chain_height: int

    @property
    def url(self) -> str:
        return self.endpoint.url


ConnectionFactory = Callable[[str], ChainConnection]


class EndpointPool:
    """
    Owns the ordered endpoint list and the one active connection handle.

    Selection and invalidation are serialized on a single lock, so a handle
    that has been invalidated is never returned to a later caller.
    """

    def __init__(
        self,
        urls: Sequence[str],
        connection_factory: ConnectionFactory,
        probe_timeout: float = 5.0,
    ):
        if not urls:
            raise ConfigurationError("At least one RPC endpoint must be configured")

        self.endpoints: List[Endpoint] = [
            Endpoint(url=url, priority=i) for i, url in enumerate(urls)
        ]
        self._connection_factory = connection_factory
        self.probe_timeout = probe_timeout
        self._handle: Optional[ConnectionHandle] = None
        self._leases: Dict[int, int] = {}
        self._retired: Dict[int, ConnectionHandle] = {}
        self._generation = itertools.count(1)
        self._lock = asyncio.Lock()
        self.logger = logger.bind(service="endpoint_pool")

        self.logger.info(
            "RPC endpoints configured",
            total_endpoints=len(self.endpoints),
            primary_url=self.endpoints[0].url,
            fallback_count=len(self.endpoints) - 1,
        )

    @property
    def active_handle(self) -> Optional[ConnectionHandle]:
        return self._handle

    async def acquire(self) -> ConnectionHandle:
        """Return the cached handle, selecting a new one if none is active."""
        async with self._lock:
            if self._handle is not None:
                return self._handle
            self._handle = await self._select_locked()
            return self._handle

    async def checkout(self) -> ConnectionHandle:
        """Like ``acquire``, but registers the caller as an in-flight user until ``release``."""
        async with self._lock:
            if self._handle is None:
                self._handle = await self._select_locked()
            generation = self._handle.generation
            self._leases[generation] = self._leases.get(generation, 0) + 1
            return self._handle

    async def release(self, handle: ConnectionHandle) -> None:
        """End one checkout of ``handle``; a retired connection is closed once unused."""
        async with self._lock:
            remaining = self._leases.get(handle.generation, 0) - 1
            if remaining > 0:
                self._leases[handle.generation] = remaining
                return
            self._leases.pop(handle.generation, None)
            retired = self._retired.pop(handle.generation, None)
            if retired is not None:
                await self._close_quietly(retired.connection)

    async def select_endpoint(self) -> ConnectionHandle:
        """
        Probe every endpoint in priority order and bind the first live one.

        Any previously cached handle is discarded first.

        Raises:
            EndpointUnavailable: If no endpoint answers the probe
        """
        async with self._lock:
            await self._drop_locked()
            self._handle = await self._select_locked()
            return self._handle

    async def invalidate(self, handle: ConnectionHandle, error: Optional[BaseException] = None) -> None:
        """
        Drop ``handle`` after a failed operation and mark its endpoint FAILED.

        A stale handle (already replaced) leaves the current handle alone and
        does not touch the health of an endpoint that has since been re-bound.
        """
        async with self._lock:
            current = self._handle
            if current is not None and current.generation != handle.generation:
                if current.endpoint is not handle.endpoint:
                    self._mark_failed(handle.endpoint, error)
                return

            self._mark_failed(handle.endpoint, error)
            if current is not None:
                self.logger.warning(
                    "Invalidating connection handle",
                    endpoint=handle.url,
                    generation=handle.generation,
                    error=str(error) if error else None,
                )
                await self._drop_locked()

    async def close(self) -> None:
        async with self._lock:
            await self._drop_locked()
            for handle in self._retired.values():
                await self._close_quietly(handle.connection)
            self._retired.clear()
            self._leases.clear()
        self.logger.info("Endpoint pool closed")

    def health_report(self) -> List[Dict[str, object]]:
        """Per-endpoint health state, in priority order."""
        active_url = self._handle.url if self._handle else None
        return [
            {
                "url": ep.url,
                "priority": ep.priority,
                "health": ep.health.value,
                "failure_count": ep.failure_count,
                "last_error": ep.last_error,
                "last_checked": ep.last_checked.isoformat() if ep.last_checked else None,
                "active": ep.url == active_url,
            }
            for ep in self.endpoints
        ]

    async def _select_locked(self) -> ConnectionHandle:
        errors: Dict[str, str] = {}

        for endpoint in self.endpoints:
            self.logger.debug("Testing RPC connection", endpoint=endpoint.url)
            connection: Optional[ChainConnection] = None
            try:
                connection = self._connection_factory(endpoint.url)
                height = await asyncio.wait_for(connection.get_block_number(), timeout=self.probe_timeout)
            except Exception as e:
                errors[endpoint.url] = str(e) or type(e).__name__
                self._mark_failed(endpoint, e)
                self.logger.warning(
                    "Failed to connect to RPC endpoint",
                    endpoint=endpoint.url,
                    error=errors[endpoint.url],
                )
                if connection is not None:
                    await self._close_quietly(connection)
                continue
            except BaseException:
                # Cancelled mid-probe: the connection never reaches a handle
                if connection is not None:
                    await self._close_quietly(connection)
                raise

            endpoint.health = EndpointHealth.HEALTHY
            endpoint.last_error = None
            endpoint.last_checked = datetime.utcnow()
            handle = ConnectionHandle(
                endpoint=endpoint,
                connection=connection,
                generation=next(self._generation),
                chain_height=height,
            )
            self.logger.info(
                "Connected to RPC endpoint",
                endpoint=endpoint.url,
                chain_height=height,
                is_fallback=endpoint.is_fallback,
            )
            return handle

        self.logger.error("All RPC endpoints failed", endpoints=len(self.endpoints))
        raise EndpointUnavailable([ep.url for ep in self.endpoints], errors)

    async def _drop_locked(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        if self._leases.get(handle.generation):
            self._retired[handle.generation] = handle
            self.logger.debug(
                "Deferring close of in-use connection",
                endpoint=handle.url,
                in_flight=self._leases[handle.generation],
            )
        else:
            await self._close_quietly(handle.connection)

    def _mark_failed(self, endpoint: Endpoint, error: Optional[BaseException]) -> None:
        endpoint.health = EndpointHealth.FAILED
        endpoint.failure_count += 1
        endpoint.last_error = str(error) if error else None
        endpoint.last_checked = datetime.utcnow()

    async def _close_quietly(self, connection: ChainConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            self.logger.warning("Error closing RPC connection", endpoint=connection.url, error=str(e))
