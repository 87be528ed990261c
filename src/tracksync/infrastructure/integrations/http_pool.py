"""Shared HTTP client pool for connection reuse across integrations.

Hey future me - the Spotify client, the cover image fetcher and the Supabase storage backend all
talk HTTPS. Instead of each creating its own httpx.AsyncClient (wasting TCP connections and
ignoring keep-alive), the SyncContainer owns ONE pool and hands its client to all of them.

The pool is an instance, not class state: two containers (or two tests) get independent clients
and nothing survives past close().

Usage:
    pool = HttpClientPool(timeout=30.0)
    client = await pool.get_client()
    ...
    await pool.close()
"""

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)


class HttpClientPool:
    """Lazily created, shared httpx.AsyncClient."""

    DEFAULT_TIMEOUT: float = 30.0
    DEFAULT_MAX_KEEPALIVE: int = 20
    DEFAULT_MAX_CONNECTIONS: int = 50

    def __init__(
        self,
        timeout: float | None = None,
        max_keepalive: int | None = None,
        max_connections: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Configure the pool (the client itself is created on first use).

        Args:
            timeout: Request timeout in seconds (default: 30.0)
            max_keepalive: Max idle connections to keep open (default: 20)
            max_connections: Max total concurrent connections (default: 50)
            transport: Custom transport, e.g. httpx.MockTransport in tests
        """
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._max_keepalive = max_keepalive or self.DEFAULT_MAX_KEEPALIVE
        self._max_connections = max_connections or self.DEFAULT_MAX_CONNECTIONS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client, creating it on first call."""
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=self._max_keepalive,
                        max_connections=self._max_connections,
                    ),
                    # HTTP/2 multiplexing for APIs that support it (needs the h2 extra)
                    http2=self._transport is None,
                    follow_redirects=True,
                    transport=self._transport,
                )
                logger.info(
                    "HTTP client pool initialized (timeout=%.1fs, keepalive=%d, max_conn=%d)",
                    self._timeout,
                    self._max_keepalive,
                    self._max_connections,
                )
            return self._client

    async def close(self) -> None:
        """Close the shared client and release all connections."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
                logger.info("HTTP client pool closed")

    @property
    def is_initialized(self) -> bool:
        """Check if the client has been created."""
        return self._client is not None
