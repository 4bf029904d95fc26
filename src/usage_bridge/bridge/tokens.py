"""OAuth tokens for the Cloud Controller and the collector."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

from usage_bridge.bridge.errors import TokenAcquisitionError

logger = logging.getLogger(__name__)


class TokenSource(Protocol):
    """Gives the bearer token to use right now."""

    def current(self) -> str:
        """Get the current access token.

        Raises:
            TokenAcquisitionError: If no token is available.
        """
        ...


class OAuthTokenSource:
    """Client-credentials token, refreshed in the background before it expires."""

    def __init__(
        self,
        name: str,
        auth_server_url: str,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        refresh_margin_seconds: float = 60.0,
        refresh_retry_seconds: float = 5.0,
        min_refresh_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the token source.

        Args:
            name: Name used in logs (e.g. "cf-admin").
            auth_server_url: OAuth authorization server URL.
            client_id: OAuth client ID.
            client_secret: OAuth client secret.
            scopes: Scopes to request.
            http_client: Optional HTTP client for testing.
            timeout: Request timeout in seconds.
            refresh_margin_seconds: Refresh this long before expiry.
            refresh_retry_seconds: Wait between failed background refreshes.
            min_refresh_seconds: Shortest wait between two background refreshes.
            sleep: Coroutine used to wait between refreshes (seconds).
        """
        self._name = name
        self._token_endpoint = f"{auth_server_url.rstrip('/')}/oauth/token"
        self._client_id = client_id
        self._client_secret = client_secret
        self._scopes = list(scopes or [])
        self._http_client = http_client
        self._timeout = timeout
        self._refresh_margin = refresh_margin_seconds
        self._refresh_retry = refresh_retry_seconds
        self._min_refresh = min_refresh_seconds
        self._sleep = sleep

        self._access_token: str | None = None
        self._expires_at: float = 0.0
        self._lifetime: float = 0.0
        self._refresh_task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return self._name

    def current(self) -> str:
        if not self._access_token:
            raise TokenAcquisitionError(f"No {self._name} token available")
        return self._access_token

    async def fetch(self) -> str:
        """Request a new token from the authorization server.

        Returns:
            The new access token.

        Raises:
            TokenAcquisitionError: If the server does not issue a token.
        """
        data = {"grant_type": "client_credentials"}
        if self._scopes:
            data["scope"] = " ".join(self._scopes)
        auth = (self._client_id, self._client_secret)

        try:
            if self._http_client:
                response = await self._http_client.post(
                    self._token_endpoint, data=data, auth=auth
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self._token_endpoint,
                        data=data,
                        auth=auth,
                        timeout=self._timeout,
                    )
        except httpx.HTTPError as e:
            raise TokenAcquisitionError(
                f"Failed to reach {self._token_endpoint} for {self._name} token", e
            ) from e

        if response.status_code != 200:
            raise TokenAcquisitionError(
                f"Token request for {self._name} failed with status {response.status_code}"
            )

        try:
            payload = response.json()
            token = payload.get("access_token")
            lifetime = float(payload.get("expires_in", 3600))
        except (ValueError, TypeError, AttributeError) as e:
            raise TokenAcquisitionError(
                f"Malformed {self._name} token response from {self._token_endpoint}", e
            ) from e
        if not token:
            raise TokenAcquisitionError(f"No access_token in {self._name} token response")

        self._access_token = token
        self._lifetime = lifetime
        self._expires_at = time.monotonic() + lifetime
        logger.debug("Fetched %s token, expires in %ss", self._name, lifetime)
        return token

    def refresh_delay(self) -> float:
        """Seconds to wait before refreshing the current token.

        The refresh margin is capped at half the token lifetime, so short-lived
        tokens are still used for a while before being replaced.
        """
        margin = min(self._refresh_margin, self._lifetime / 2)
        remaining = self._expires_at - time.monotonic() - margin
        return max(remaining, self._min_refresh)

    async def start(self) -> None:
        """Fetch the first token and keep it fresh in the background."""
        await self.fetch()
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(
                self._refresh_loop(), name=f"{self._name}_token_refresh"
            )

    async def stop(self) -> None:
        """Stop refreshing the token."""
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

    async def _refresh_loop(self) -> None:
        while True:
            await self._sleep(self.refresh_delay())
            try:
                await self.fetch()
            except TokenAcquisitionError as e:
                # The old token stays in use until it is replaced
                logger.warning("Refreshing %s token failed: %s", self._name, e)
                await self._sleep(self._refresh_retry)


async def start_token_sources(
    sources: Sequence[OAuthTokenSource],
    retry_interval_seconds: float,
    on_failure=None,
) -> None:
    """Start every token source, retrying each one until it succeeds.

    Args:
        sources: Token sources to start, in order.
        retry_interval_seconds: Wait between attempts.
        on_failure: Optional callable invoked with each acquisition error.
    """
    for source in sources:
        retryer = AsyncRetrying(
            stop=stop_never,
            wait=wait_fixed(retry_interval_seconds),
            retry=retry_if_exception_type(TokenAcquisitionError),
            reraise=True,
            before_sleep=lambda rs, name=source.name: logger.warning(
                "Could not get %s token (attempt %d): %s",
                name,
                rs.attempt_number,
                rs.outcome.exception() if rs.outcome else "unknown error",
            ),
        )
        async for attempt in retryer:
            with attempt:
                try:
                    await source.start()
                except TokenAcquisitionError as e:
                    if on_failure:
                        on_failure(e)
                    raise
        logger.info("Successfully fetched %s token", source.name)
