"""Paged reads of Cloud Controller collections."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from usage_bridge.bridge.errors import PagingError, TokenAcquisitionError
from usage_bridge.bridge.statistics import PagingStatistics
from usage_bridge.bridge.tokens import TokenSource

logger = logging.getLogger(__name__)


class PagingClient:
    """Walks ``next_url`` links of a Cloud Controller v2 collection."""

    def __init__(
        self,
        api_url: str,
        http_client: httpx.AsyncClient | None = None,
        statistics: PagingStatistics | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the paging client.

        Args:
            api_url: Cloud Controller API URL.
            http_client: Optional HTTP client for testing.
            statistics: Counters for page reads.
            timeout: Request timeout in seconds.
        """
        self._api_url = api_url.rstrip("/")
        self._http_client = http_client
        self._statistics = statistics or PagingStatistics()
        self._timeout = timeout

    @property
    def statistics(self) -> PagingStatistics:
        return self._statistics

    async def iter_resources(
        self, path: str, token_source: TokenSource
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every resource of a collection, page after page.

        The token is taken again for every page so a refreshed token is
        picked up during long walks.

        Args:
            path: Collection path with query string, e.g. ``/v2/services?q=...``.
            token_source: Source of the bearer token.

        Raises:
            TokenAcquisitionError: If no token is available.
            PagingError: If a page is answered with a non-200 status.
            httpx.HTTPError: On transport failures.
        """
        next_path: str | None = path
        while next_path:
            page = await self._get_page(next_path, token_source)
            for resource in page.get("resources") or []:
                yield resource
            next_path = page.get("next_url")

    async def _get_page(self, path: str, token_source: TokenSource) -> dict[str, Any]:
        try:
            token = token_source.current()
        except TokenAcquisitionError:
            self._statistics.missing_token += 1
            raise

        url = f"{self._api_url}{path}"
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        logger.debug("Reading page %s", url)

        try:
            if self._http_client:
                response = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, headers=headers, timeout=self._timeout)
        except httpx.HTTPError:
            self._statistics.page_read_failures += 1
            raise

        if response.status_code != 200:
            self._statistics.page_read_failures += 1
            try:
                body = response.json()
            except ValueError:
                body = response.text
            raise PagingError(
                f"Reading {path} failed with status {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        self._statistics.page_read_success += 1
        return response.json()
