"""
Registry clients for discovering dependencies.

Queries the GitHub repository search API for C/C++ projects matching a
free-text name. Candidates come back with no resolved version; the caller
picks one and hands it to ``Package.add``.
"""

import time
from typing import Any, Dict, List, Optional

import httpx
from httpx import RequestError

from .cli_config import NetworkConfig, get_config
from .credentials import Credentials
from .dependency import Dependency
from .error_handling import RateLimitedError, RemoteServiceError, log_network_error
from .structured_logging import log_registry_search


def _is_rate_limited(response: httpx.Response) -> bool:
    """
    GitHub signals rate limiting with 429, or with 403 plus either an
    exhausted ``X-RateLimit-Remaining`` header or a "rate limit" message.
    """
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    return "rate limit" in response.text.lower()


def rank_candidates(name: str, candidates: List[Dependency]) -> List[Dependency]:
    """Move exact (case-insensitive) name matches ahead; otherwise keep order."""
    wanted = name.strip().lower()
    exact = [c for c in candidates if c.name.lower() == wanted]
    rest = [c for c in candidates if c.name.lower() != wanted]
    return exact + rest


class GitHubSearchClient:
    """
    Client for the GitHub repository search endpoint.

    Uses the async context manager pattern so the underlying
    ``httpx.AsyncClient`` is opened on entry and closed on exit.
    """

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        config: Optional[NetworkConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials or Credentials()
        self.config = config or get_config().network
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

        self._headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/vnd.github+json",
        }
        self._headers.update(self.credentials.auth_headers())

    async def __aenter__(self):
        timeout = httpx.Timeout(self.config.read_timeout, connect=self.config.connect_timeout)
        self.client = httpx.AsyncClient(
            timeout=timeout, headers=self._headers, transport=self.transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None

    def _build_query(self, name: str) -> str:
        query = f"{name} in:name"
        if self.config.language:
            query += f" language:{self.config.language}"
        return query

    async def search(self, name: str, limit: Optional[int] = None) -> List[Dependency]:
        """
        Search for repositories named like ``name``.

        Returns:
            Up to ``limit`` candidates, exact name matches first

        Raises:
            RateLimitedError: The service throttled the request
            RemoteServiceError: Any other transport or HTTP failure
        """
        if self.client is None:
            raise RemoteServiceError(
                "HTTP client not initialized - use within async context manager"
            )

        name = (name or "").strip()
        if not name:
            return []

        limit = limit or self.config.max_results
        query = self._build_query(name)
        params = {"q": query, "sort": "stars", "order": "desc", "per_page": limit}
        url = self.config.search_url
        start_time = time.time()

        try:
            response = await self.client.get(url, params=params)
        except RequestError as e:
            log_network_error(
                "Search request failed", "registry_clients", "search", url=url, exception=e
            )
            raise RemoteServiceError(f"Search request to {url} failed", cause=e) from e

        if _is_rate_limited(response):
            log_network_error(
                "Search rate limited",
                "registry_clients",
                "search",
                url=url,
                status_code=response.status_code,
            )
            raise RateLimitedError(status_code=response.status_code)

        if response.status_code != 200:
            log_network_error(
                "Search returned an error status",
                "registry_clients",
                "search",
                url=url,
                status_code=response.status_code,
            )
            raise RemoteServiceError(
                f"HTTP {response.status_code}: {response.text[:100]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteServiceError("Search response is not valid JSON", cause=e) from e

        candidates = [
            candidate
            for candidate in (self._to_candidate(item) for item in data.get("items") or [])
            if candidate is not None
        ]
        candidates = rank_candidates(name, candidates)[:limit]

        log_registry_search(
            query,
            len(candidates),
            self.credentials.has_token,
            response_time_ms=int((time.time() - start_time) * 1000),
        )
        return candidates

    @staticmethod
    def _to_candidate(item: Dict[str, Any]) -> Optional[Dependency]:
        if not isinstance(item, dict):
            return None
        name = item.get("name")
        clone_url = item.get("clone_url")
        if not name or not clone_url:
            return None
        return Dependency(
            name=name,
            full_name=item.get("full_name") or name,
            source_url=clone_url,
        )


def get_search_client(credentials: Optional[Credentials] = None) -> GitHubSearchClient:
    """Factory function to get the configured discovery client."""
    return GitHubSearchClient(credentials)
