"""Unit tests for RemoteOCRClient."""

import asyncio
import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from conftest import no_sleep

from cutlist_intake.core.exceptions import OCRExtractionError, PDFConversionError, ProviderServerError
from cutlist_intake.services.ocr.remote_ocr_client import (
    EXTRACT_ENDPOINT,
    HEALTH_ENDPOINT,
    PROVIDER_NAME,
    RemoteOCRClient,
)
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.services.resilience.retry_policy import RetryPolicy


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter() -> ProviderRateLimiter:
    return ProviderRateLimiter(max_concurrent=2, retry_policy=RetryPolicy(max_attempts=3, jitter=0, sleep=no_sleep))


@pytest.fixture
def client(clock, rate_limiter) -> RemoteOCRClient:
    return RemoteOCRClient(
        base_url="http://ocr.local/", health_timeout=2.0, rate_limiter=rate_limiter, clock=clock
    )


class TestHealthCheck:
    """Cached service health."""

    @pytest.mark.asyncio
    async def test_healthy_answer_is_cached_for_a_minute(self, client, clock):
        client.call_api = AsyncMock(return_value={"status": "ok"})

        assert await client.health_check() is True
        clock.now += 59
        assert await client.health_check() is True
        assert client.call_api.await_count == 1

        clock.now += 2
        await client.health_check()
        assert client.call_api.await_count == 2
        client.call_api.assert_awaited_with(HEALTH_ENDPOINT, method="GET", timeout=2.0)

    @pytest.mark.asyncio
    async def test_failure_is_cached_briefly(self, client, clock):
        client.call_api = AsyncMock(side_effect=ProviderServerError("down"))

        assert await client.health_check() is False
        clock.now += 4
        assert await client.health_check() is False
        assert client.call_api.await_count == 1

        client.call_api = AsyncMock(return_value={"status": "ok"})
        clock.now += 2
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_unconfigured_client_is_unhealthy(self):
        client = RemoteOCRClient(base_url="")
        client.call_api = AsyncMock()

        assert client.is_configured() is False
        assert await client.health_check() is False
        client.call_api.assert_not_awaited()


class TestExtractByPage:
    """Per-page OCR."""

    @pytest.mark.asyncio
    async def test_pages_and_tables(self, client):
        client.call_api = AsyncMock(
            return_value={
                "success": True,
                "text": "Project K-12",
                "confidence": 0.88,
                "method": "paddle",
                "pages": [{"page": 1, "text": "Project K-12"}, "Side 720 560"],
                "tables": [[["Part", "L"], ["Side", "720"]]],
            }
        )

        result = await client.extract_by_page(b"%PDF-1.4", "cuts.pdf")

        endpoint = client.call_api.await_args.args[0]
        payload = client.call_api.await_args.kwargs["payload"]
        assert endpoint == EXTRACT_ENDPOINT
        assert base64.b64decode(payload["fileData"]) == b"%PDF-1.4"
        assert payload["fileName"] == "cuts.pdf"
        assert payload["fileType"] == "application/pdf"

        assert [page.text for page in result.pages] == ["Project K-12", "Side 720 560"]
        assert result.pages[1].page_number == 2
        assert result.confidence == 0.88
        assert "=== Table 1 ===\nPart | L\nSide | 720" in result.text

    @pytest.mark.asyncio
    async def test_response_without_pages_is_one_page(self, client):
        client.call_api = AsyncMock(return_value={"text": "Side 720 560", "confidence": 0.7})

        result = await client.extract_by_page(b"img", "photo.png")

        assert result.page_count == 1
        assert result.pages[0].text == "Side 720 560"
        assert client.call_api.await_args.kwargs["payload"]["fileType"] == "image/png"

    @pytest.mark.asyncio
    async def test_service_failure_raises(self, client):
        client.call_api = AsyncMock(return_value={"success": False, "error": "engine crashed"})

        with pytest.raises(OCRExtractionError, match="engine crashed"):
            await client.extract_by_page(b"%PDF", "cuts.pdf")


class TestExtractAsImages:
    """Remote PDF rasterization."""

    @pytest.mark.asyncio
    async def test_data_urls_are_decoded(self, client):
        encoded = base64.b64encode(b"png-bytes").decode("ascii")
        client.call_api = AsyncMock(
            return_value={"success": True, "images": [f"data:image/png;base64,{encoded}", encoded]}
        )

        rendered = await client.extract_as_images(b"%PDF", "cuts.pdf")

        assert rendered.images == [b"png-bytes", b"png-bytes"]
        assert rendered.mime_type == "image/png"
        assert rendered.source == "remote"

    @pytest.mark.asyncio
    async def test_no_images_raises(self, client):
        client.call_api = AsyncMock(return_value={"success": True, "images": []})

        with pytest.raises(PDFConversionError):
            await client.extract_as_images(b"%PDF", "cuts.pdf")


def http_response(status_code: int, body: dict) -> httpx.Response:
    return httpx.Response(status_code, json=body, request=httpx.Request("POST", "http://ocr.local/api/ocr/extract"))


class TestRateLimiting:
    """OCR calls share the process rate limiter and its retry policy."""

    @pytest.mark.asyncio
    async def test_transient_service_error_is_retried(self, client, rate_limiter):
        post = AsyncMock(
            side_effect=[
                http_response(503, {"error": "warming up"}),
                http_response(200, {"success": True, "text": "Side 720 560", "confidence": 0.8}),
            ]
        )

        with patch("httpx.AsyncClient.post", new=post):
            result = await client.extract_by_page(b"%PDF", "cuts.pdf")

        assert post.await_count == 2
        assert result.text == "Side 720 560"
        assert rate_limiter.stats(PROVIDER_NAME).completed == 2

    @pytest.mark.asyncio
    async def test_retries_give_up_after_max_attempts(self, client):
        client.call_api = AsyncMock(side_effect=ProviderServerError("down"))

        with pytest.raises(ProviderServerError):
            await client.extract_as_images(b"%PDF", "cuts.pdf")

        assert client.call_api.await_count == 3

    @pytest.mark.asyncio
    async def test_health_check_is_admitted_but_not_retried(self, client, rate_limiter):
        client.call_api = AsyncMock(side_effect=ProviderServerError("down"))

        assert await client.health_check() is False

        assert client.call_api.await_count == 1
        assert rate_limiter.stats(PROVIDER_NAME).completed == 1

    @pytest.mark.asyncio
    async def test_concurrent_extractions_respect_the_slot_limit(self, client, rate_limiter):
        in_flight = 0
        observed = []

        async def call_api(*args, **kwargs):
            nonlocal in_flight
            in_flight += 1
            observed.append(in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return {"text": "Side 720 560"}

        client.call_api = call_api

        await asyncio.gather(*(client.extract_by_page(b"%PDF", "cuts.pdf") for _ in range(6)))

        assert max(observed) == 2
        assert rate_limiter.stats(PROVIDER_NAME).peak_in_flight == 2
