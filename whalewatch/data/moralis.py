"""Moralis holder data fetched through the credential-injecting proxy."""

from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import FetchError
from ..core.interfaces import Fetcher
from ..core.types import EntityKey, FetchRequest, TransferRecord
from ..persist.cache import TTLCache
from .normalize import normalize_transfers
from .request_queue import RequestQueue

logger = structlog.get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Extract the provider error message from a non-2xx response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        details = body.get("details")
        if message and details:
            return f"{message}: {details}"
        if message:
            return str(message)
    return response.text or response.reason_phrase


class ProxyFetcher(Fetcher):
    """Fetcher that forwards requests to the upstream proxy.

    The proxy takes the provider path (with its query string) in the
    ``endpoint`` parameter plus optional ``chain`` and ``source`` routing
    hints, injects credentials, and passes provider status codes through.
    """

    def __init__(
        self,
        base_url: str,
        session: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
    ) -> None:
        """Initialize proxy fetcher.

        Args:
            base_url: Proxy URL, e.g. https://host/api/moralis
            session: Optional httpx client session
            timeout: Request timeout in seconds
            max_attempts: Attempts on network errors before giving up
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or httpx.AsyncClient()
        self.timeout = timeout

        # Only connection-level failures are retried; provider errors are not
        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    def build_params(self, request: FetchRequest) -> dict[str, str]:
        """Build the proxy query parameters for a request."""
        endpoint = request.endpoint
        if request.params:
            endpoint = f"{endpoint}?{urlencode(request.params)}"

        params = {"endpoint": endpoint}
        if request.chain:
            params["chain"] = request.chain
        if request.source:
            params["source"] = request.source
        return params

    async def fetch(self, request: FetchRequest) -> Any:
        """Perform the request and return decoded JSON.

        Raises:
            FetchError: On non-2xx responses (provider status) or network
                failure after retries (status 0)
        """
        params = self.build_params(request)

        try:
            async for attempt in self.retry_config:
                with attempt:
                    response = await self.session.get(
                        self.base_url, params=params, timeout=self.timeout
                    )
        except (httpx.NetworkError, httpx.TimeoutException, RetryError) as e:
            logger.warning("Network error in proxy request", endpoint=request.endpoint, error=str(e))
            raise FetchError(0, str(e) or type(e).__name__) from e

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "HTTP error in proxy request",
                endpoint=request.endpoint,
                status_code=response.status_code,
                message=message,
            )
            raise FetchError(response.status_code, message)

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(response.status_code, f"Invalid JSON body: {e}") from e

    async def close(self) -> None:
        await self.session.aclose()


class MoralisHolderSource:
    """Holder and transfer lookups for ERC-20 tokens.

    Every upstream call goes through the shared request queue and its
    response is cached in the TTL cache keyed by the request descriptor.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        queue: RequestQueue,
        cache: TTLCache,
        holder_limit: int = 100,
        transfer_limit: int = 50,
        cache_ttl: float | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.queue = queue
        self.cache = cache
        self.holder_limit = holder_limit
        self.transfer_limit = transfer_limit
        self.cache_ttl = cache_ttl

    def holders_request(self, entity: EntityKey) -> FetchRequest:
        return FetchRequest(
            endpoint=f"/erc20/{entity.entity_id}/owners",
            params={"chain": entity.namespace, "limit": self.holder_limit, "order": "DESC"},
            chain=entity.namespace,
        )

    def transfers_request(self, entity: EntityKey) -> FetchRequest:
        return FetchRequest(
            endpoint=f"/erc20/{entity.entity_id}/transfers",
            params={"chain": entity.namespace, "limit": self.transfer_limit, "order": "DESC"},
            chain=entity.namespace,
        )

    async def _get(self, request: FetchRequest) -> Any:
        return await self.cache.get_or_fetch(
            request.cache_key,
            lambda: self.queue.enqueue(lambda: self.fetcher.fetch(request)),
            ttl=self.cache_ttl,
        )

    async def fetch_holders(self, entity: EntityKey) -> list[dict[str, Any]]:
        """Return raw owner rows for the token, largest first."""
        payload = await self._get(self.holders_request(entity))
        result = payload.get("result") if isinstance(payload, dict) else None
        rows = result if isinstance(result, list) else []

        logger.info("Fetched holders", entity=str(entity), count=len(rows))
        return rows

    async def fetch_transfers(self, entity: EntityKey) -> list[TransferRecord]:
        """Return recent transfers for the token, largest amount first."""
        payload = await self._get(self.transfers_request(entity))
        result = payload.get("result") if isinstance(payload, dict) else None
        transfers = normalize_transfers(result if isinstance(result, list) else [])

        logger.info("Fetched transfers", entity=str(entity), count=len(transfers))
        return transfers
