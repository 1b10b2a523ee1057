"""
================================================================================
QuestLog - Base Catalog Provider
================================================================================
Abstract base class for upstream game catalog APIs (IGDB today).

Providers handle:
  - Rate limiting (token spacing per provider)
  - Retries: exponential backoff on 429, plain retry on 5xx / transport errors
  - Parsing upstream records into CatalogEntry

Every failure that leaves a provider is a ProviderError.
================================================================================
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import time
import asyncio
import logging

import httpx

from ...exceptions import ProviderError
from ..models import CatalogEntry


logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter for API requests.

    IGDB allows 4 requests/second per client.
    """

    def __init__(self, requests_per_minute: int):
        self.requests_per_minute = requests_per_minute
        self.min_interval = 60.0 / requests_per_minute  # Seconds between requests
        self.last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            time_since_last = now - self.last_request

            if time_since_last < self.min_interval:
                wait_time = self.min_interval - time_since_last
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

            self.last_request = time.monotonic()


class BaseCatalogProvider(ABC):
    """
    Abstract base class for catalog providers.

    All providers must implement:
      - search_games(): free-text search, paged up to a target count
      - get_by_ids(): fetch by provider ids
      - count_franchise_games(): total members of a franchise upstream
    """

    id: str = "base"
    name: str = "Base Provider"

    base_url: str = ""

    # Requests per minute
    rate_limit: int = 60

    # Request timeout (seconds)
    timeout: int = 10

    max_retries: int = 3
    retry_delay: float = 1.0

    user_agent: str = "QuestLog/1.0"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            transport: Custom httpx transport (tests pass httpx.MockTransport)
        """
        self.rate_limiter = RateLimiter(self.rate_limit)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    'User-Agent': self.user_agent,
                    'Accept': 'application/json'
                }
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _auth_headers(self) -> Dict[str, str]:
        """Per-request auth headers. Providers with tokens override this."""
        return {}

    async def _on_unauthorized(self) -> bool:
        """Called on 401. Return True to retry once with fresh credentials."""
        return False

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs
    ) -> Any:
        """
        Make rate-limited HTTP request with retries.

        Returns:
            Decoded JSON body

        Raises:
            ProviderError: On request failure after retries
        """
        client = await self._get_client()
        base_headers = dict(kwargs.pop('headers', None) or {})
        reauthorized = False
        attempt = 0

        while attempt < self.max_retries:
            try:
                await self.rate_limiter.acquire()

                headers = dict(base_headers)
                headers.update(await self._auth_headers())
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()

                return response.json()

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 401 and not reauthorized and await self._on_unauthorized():
                    reauthorized = True
                    logger.info(f"{self.id}: Unauthorized (401), retrying with a new token")
                    continue
                if status == 429:
                    wait_time = self.retry_delay * (2 ** attempt)
                    logger.warning(f"{self.id}: Rate limited (429), waiting {wait_time}s")
                    await asyncio.sleep(wait_time)
                    attempt += 1
                    continue
                if status >= 500 and attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.id}: Server error ({status}), "
                        f"retry {attempt + 1}/{self.max_retries}"
                    )
                    await asyncio.sleep(self.retry_delay)
                    attempt += 1
                    continue
                raise ProviderError(self.id, f"HTTP {status} from {url}", status_code=status) from e

            except httpx.RequestError as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.id}: Request error ({e}), "
                        f"retry {attempt + 1}/{self.max_retries}"
                    )
                    await asyncio.sleep(self.retry_delay)
                    attempt += 1
                    continue
                raise ProviderError(self.id, f"Request failed: {e}") from e

            except ValueError as e:
                raise ProviderError(self.id, f"Malformed JSON from {url}") from e

        raise ProviderError(self.id, "Max retries exceeded")

    # =========================================================================
    # ABSTRACT METHODS
    # =========================================================================

    @abstractmethod
    async def search_games(self, query: str, target: int) -> List[CatalogEntry]:
        """
        Search the upstream catalog by free text.

        Args:
            query: Search text
            target: Number of results wanted; providers page until reached
                    or the upstream runs out

        Returns:
            List of CatalogEntry in upstream relevance order
        """
        pass

    @abstractmethod
    async def get_by_ids(self, external_ids: List[int]) -> List[CatalogEntry]:
        pass

    @abstractmethod
    async def count_franchise_games(self, franchise_name: str) -> int:
        """Total games upstream in a franchise (0 if unknown)."""
        pass

    def __repr__(self):
        return f"<{self.__class__.__name__}(id='{self.id}', rate_limit={self.rate_limit}/min)>"
