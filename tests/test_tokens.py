"""Tests for OAuth token sources."""

import asyncio

import httpx
import pytest

from usage_bridge.bridge.errors import TokenAcquisitionError
from usage_bridge.bridge.tokens import OAuthTokenSource, start_token_sources


def token_response(token="token-1", expires_in=3600):
    return httpx.Response(200, json={"access_token": token, "expires_in": expires_in})


def source_for(handler, name="cf-admin", scopes=None, **kwargs):
    return OAuthTokenSource(
        name,
        "http://uaa.test",
        "client",
        "secret",
        scopes=scopes,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


class TestOAuthTokenSource:
    """Tests for OAuthTokenSource."""

    def test_no_token_yet(self):
        """Before the first fetch there is no token."""
        source = source_for(lambda request: token_response())

        with pytest.raises(TokenAcquisitionError):
            source.current()

    @pytest.mark.asyncio
    async def test_fetch(self):
        """Client credentials are exchanged for a token."""
        requests = []

        def handler(request):
            requests.append(request)
            return token_response("abc")

        source = source_for(handler, scopes=["abacus.usage.write", "abacus.usage.read"])

        await source.fetch()

        assert source.current() == "abc"
        request = requests[0]
        assert request.url.path == "/oauth/token"
        assert request.headers["Authorization"].startswith("Basic ")
        body = request.content.decode()
        assert "grant_type=client_credentials" in body
        assert "scope=abacus.usage.write+abacus.usage.read" in body

    @pytest.mark.asyncio
    async def test_rejected(self):
        """A non-200 answer raises TokenAcquisitionError."""
        source = source_for(lambda request: httpx.Response(401))

        with pytest.raises(TokenAcquisitionError):
            await source.fetch()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Transport errors raise TokenAcquisitionError with the cause."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        source = source_for(handler)

        with pytest.raises(TokenAcquisitionError) as exc_info:
            await source.fetch()

        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Starting fetches a token; stopping ends the refresh task."""
        source = source_for(lambda request: token_response("abc"))

        await source.start()
        await source.stop()

        assert source.current() == "abc"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """A 200 answer that is not JSON raises TokenAcquisitionError."""
        source = source_for(lambda request: httpx.Response(200, text="<html>proxy</html>"))

        with pytest.raises(TokenAcquisitionError) as exc_info:
            await source.fetch()

        assert isinstance(exc_info.value.cause, ValueError)

    @pytest.mark.asyncio
    async def test_malformed_expiry(self):
        """A non-numeric expires_in raises TokenAcquisitionError."""
        source = source_for(
            lambda request: httpx.Response(
                200, json={"access_token": "abc", "expires_in": "soon"}
            )
        )

        with pytest.raises(TokenAcquisitionError):
            await source.fetch()

        with pytest.raises(TokenAcquisitionError):
            source.current()


def blocking_sleep(delays, limit):
    """Sleep that records delays and blocks forever once limit is reached."""
    blocked = asyncio.Event()

    async def sleep(seconds):
        delays.append(seconds)
        if len(delays) >= limit:
            blocked.set()
            await asyncio.Event().wait()
        await asyncio.sleep(0)

    return sleep, blocked


class TestRefresh:
    """Tests for the background token refresh."""

    @pytest.mark.asyncio
    async def test_short_lived_token_is_not_refreshed_back_to_back(self):
        """The refresh margin never exceeds half the token lifetime."""
        calls = []

        def handler(request):
            calls.append(request)
            return token_response(f"token-{len(calls)}", expires_in=30)

        delays = []
        sleep, blocked = blocking_sleep(delays, limit=3)
        source = source_for(handler, sleep=sleep)

        await source.start()
        await asyncio.wait_for(blocked.wait(), timeout=5)
        await source.stop()

        assert len(calls) == 3
        assert all(14 < delay <= 15 for delay in delays)
        assert source.current() == "token-3"

    @pytest.mark.asyncio
    async def test_expired_token_waits_minimum_delay(self):
        """A token without lifetime is refreshed no faster than the minimum delay."""
        delays = []
        sleep, blocked = blocking_sleep(delays, limit=3)
        source = source_for(
            lambda request: token_response(expires_in=0),
            sleep=sleep,
            min_refresh_seconds=2.0,
        )

        await source.start()
        await asyncio.wait_for(blocked.wait(), timeout=5)
        await source.stop()

        assert delays == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_token(self):
        """A malformed refresh answer keeps the old token and waits before retrying."""
        responses = [token_response("abc", expires_in=3600)]

        def handler(request):
            return responses.pop(0) if responses else httpx.Response(200, text="<html>")

        delays = []
        sleep, blocked = blocking_sleep(delays, limit=2)
        source = source_for(handler, sleep=sleep, refresh_retry_seconds=7.0)

        await source.start()
        await asyncio.wait_for(blocked.wait(), timeout=5)

        assert source.current() == "abc"
        assert delays[1] == 7.0

        await source.stop()


class TestStartTokenSources:
    """Tests for start_token_sources."""

    @pytest.mark.asyncio
    async def test_retries_until_token(self):
        """Failed attempts are reported and retried."""
        responses = [httpx.Response(500), httpx.Response(500)]

        def handler(request):
            return responses.pop(0) if responses else token_response("abc")

        source = source_for(handler)
        failures = []

        await start_token_sources([source], 0, on_failure=failures.append)
        await source.stop()

        assert source.current() == "abc"
        assert len(failures) == 2
        assert all(isinstance(e, TokenAcquisitionError) for e in failures)

    @pytest.mark.asyncio
    async def test_retries_past_malformed_body(self):
        """A token answer that is not JSON is retried like any other failure."""
        responses = [httpx.Response(200, text="<html>proxy</html>")]

        def handler(request):
            return responses.pop(0) if responses else token_response("abc")

        source = source_for(handler)
        failures = []

        await start_token_sources([source], 0, on_failure=failures.append)
        await source.stop()

        assert source.current() == "abc"
        assert len(failures) == 1
