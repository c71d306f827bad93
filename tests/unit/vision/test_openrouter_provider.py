"""Unit tests for OpenRouterVisionProvider."""

from unittest.mock import AsyncMock

import pytest
from conftest import no_sleep, parts_json

from cutlist_intake.core.exceptions import APIClientError
from cutlist_intake.models.extraction import ParseOptions
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.services.resilience.retry_policy import RetryPolicy
from cutlist_intake.services.vision.openrouter_provider import OpenRouterVisionProvider


@pytest.fixture
def provider() -> OpenRouterVisionProvider:
    return OpenRouterVisionProvider(
        api_key="test-key",
        model="test/model",
        rate_limiter=ProviderRateLimiter(max_concurrent=2, retry_policy=RetryPolicy(max_attempts=1, sleep=no_sleep)),
    )


class TestOpenRouterVisionProvider:
    """Chat-completions request and response handling."""

    @pytest.mark.asyncio
    async def test_image_is_sent_as_data_url(self, provider):
        provider.client.call_api = AsyncMock(
            return_value={
                "choices": [{"message": {"content": parts_json(("Side", 720, 560, 2))}, "finish_reason": "stop"}],
                "usage": {"total_tokens": 120},
            }
        )

        result = await provider.parse_image(b"png", "image/png", ParseOptions())

        payload = provider.client.call_api.await_args.kwargs["payload"]
        content = payload["messages"][1]["content"]
        assert payload["model"] == "test/model"
        assert payload["temperature"] == 0.0
        assert content[1]["image_url"]["url"] == "data:image/png;base64,cG5n"
        assert result.parts[0].label == "Side"

    @pytest.mark.asyncio
    async def test_missing_choices(self, provider):
        provider.client.call_api = AsyncMock(return_value={"error": "overloaded"})

        with pytest.raises(APIClientError):
            await provider._generate("prompt", None, 1000)

    def test_configured_only_with_api_key(self):
        limiter = ProviderRateLimiter(max_concurrent=1)

        assert OpenRouterVisionProvider(api_key="", model="m", rate_limiter=limiter).is_configured() is False
