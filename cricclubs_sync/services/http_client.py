"""HTTP client factory for the CricClubs API."""

import httpx
import structlog

from ..models import ClientConfig

log = structlog.stdlib.get_logger()

USER_AGENT = "CricClubs-Data-Sync/1.0"


class HttpClientFactory:
    """Creates ``httpx.AsyncClient`` instances configured from ``ClientConfig``.

    The factory owns every client it hands out; ``close()`` closes them all.
    Retry and rate limiting belong to the sync engine, not to the clients.
    The host owns the factory for the lifetime of the run so the sync engine
    can draw its API clients from it; the current task body makes no requests.
    """

    def __init__(self, config: ClientConfig) -> None:
        self._config = config
        self._clients: list[httpx.AsyncClient] = []
        self._closed = False

        log.info(
            "HTTP client factory initialized",
            base_url=config.api_base_url or None,
            timeout=config.request_timeout_seconds,
            max_connections=config.max_concurrent_requests,
        )

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def create_client(self, headers: dict[str, str] | None = None) -> httpx.AsyncClient:
        """Create a client bound to the configured base URL.

        Args:
            headers: Optional extra default headers

        Returns:
            A new ``httpx.AsyncClient``

        Raises:
            RuntimeError: If the factory has been closed
        """
        if self._closed:
            raise RuntimeError("HTTP client factory is closed")

        default_headers = {"User-Agent": USER_AGENT}
        if self._config.api_key:
            default_headers["X-Api-Key"] = self._config.api_key
        if headers:
            default_headers.update(headers)

        # Non-positive values are passed through as "no limit"
        timeout = self._config.request_timeout_seconds if self._config.request_timeout_seconds > 0 else None
        max_connections = self._config.max_concurrent_requests if self._config.max_concurrent_requests > 0 else None

        client = httpx.AsyncClient(
            base_url=self._config.api_base_url,
            timeout=httpx.Timeout(timeout),
            headers=default_headers,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=max_connections),
        )
        self._clients.append(client)
        log.debug("HTTP client created", client_count=len(self._clients))
        return client

    async def close(self) -> None:
        """Close every client created by this factory."""
        if self._closed:
            return
        self._closed = True
        for client in self._clients:
            await client.aclose()
        log.info("HTTP client factory closed", clients_closed=len(self._clients))
        self._clients.clear()
