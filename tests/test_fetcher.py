from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from mediafetch.workers.fetcher import Fetcher, FetchError, FetchTimeout


@pytest.fixture
async def fetcher(settings):
    fetcher = Fetcher(settings)
    yield fetcher
    await fetcher.close()


class TestFetcher:
    @respx.mock
    async def test_get_text(self, fetcher):
        respx.get("https://example.com/").mock(return_value=httpx.Response(200, text="hi"))
        assert await fetcher.get_text("https://example.com/") == "hi"

    @respx.mock
    async def test_error_status_returned_by_get(self, fetcher):
        respx.get("https://example.com/missing").mock(return_value=httpx.Response(404))
        response = await fetcher.get("https://example.com/missing")
        assert response.status_code == 404

    @respx.mock
    async def test_error_status_raised_by_get_json(self, fetcher):
        respx.get("https://example.com/api").mock(return_value=httpx.Response(429))
        with pytest.raises(FetchError) as excinfo:
            await fetcher.get_json("https://example.com/api")
        assert excinfo.value.status_code == 429
        assert excinfo.value.rate_limited

    @respx.mock
    async def test_invalid_json(self, fetcher):
        respx.get("https://example.com/api").mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(FetchError, match="Invalid JSON"):
            await fetcher.get_json("https://example.com/api")

    @respx.mock
    async def test_post_json(self, fetcher):
        route = respx.post("https://example.com/api").mock(
            return_value=httpx.Response(200, json={"ok": True})
        )
        assert await fetcher.post_json("https://example.com/api", data={"a": "1"}) == {"ok": True}
        assert route.calls.last.request.content == b"a=1"

    async def test_timeout_is_not_retried(self, fetcher):
        with patch.object(
            Fetcher, "_send", new_callable=AsyncMock, side_effect=FetchTimeout("slow")
        ) as mock_send:
            with pytest.raises(FetchTimeout):
                await fetcher.get("https://example.com/")
        assert mock_send.call_count == 1

    async def test_connect_error_retries_and_raises(self, fetcher, settings):
        with (
            patch("asyncio.sleep", new_callable=AsyncMock),
            patch.object(
                Fetcher,
                "_send",
                new_callable=AsyncMock,
                side_effect=httpx.ConnectError("refused"),
            ) as mock_send,
        ):
            with pytest.raises(FetchError, match="attempts"):
                await fetcher.get("https://example.com/")
        assert mock_send.call_count == settings.http_max_retries + 1

    async def test_connect_error_then_success(self, fetcher):
        ok = httpx.Response(200, request=httpx.Request("GET", "https://example.com/"))
        with (
            patch("asyncio.sleep", new_callable=AsyncMock),
            patch.object(
                Fetcher,
                "_send",
                new_callable=AsyncMock,
                side_effect=[httpx.ConnectError("refused"), ok],
            ) as mock_send,
        ):
            response = await fetcher.get("https://example.com/")
        assert response.status_code == 200
        assert mock_send.call_count == 2

    @respx.mock
    async def test_transport_timeout_maps_to_fetch_timeout(self, fetcher):
        respx.get("https://example.com/").mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(FetchTimeout):
            await fetcher.get("https://example.com/")
