import asyncio
from typing import Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from cutlist_intake.core.exceptions import (
    APIClientError,
    APITimeoutError,
    ProviderAuthError,
    ProviderRequestError,
    ProviderServerError,
    RateLimitExceededError,
)
from cutlist_intake.services.vision.base_provider import Attachment, GenerationResponse, VisionProvider
from cutlist_intake.services.vision.prompts import SYSTEM_PROMPT
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class GeminiVisionProvider(VisionProvider):
    """Google Gemini provider; accepts images and PDFs natively."""

    name = "gemini"
    supports_documents = True

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", timeout: float = 120.0, **kwargs):
        """Initialize Gemini provider.

        Args:
            api_key: Gemini API key (empty means not configured)
            model: Model name to use
            timeout: Per-call timeout in seconds
            **kwargs: Forwarded to ``VisionProvider``
        """
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client: Optional[genai.Client] = None

        if api_key:
            try:
                self._client = genai.Client(api_key=api_key)
                LOGGER.info(f"Initialized Gemini client with model {self.model}")
            except Exception as e:
                LOGGER.error(f"Failed to initialize Gemini client: {e}")
                raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    def is_configured(self) -> bool:
        return self._client is not None

    async def _generate(
        self,
        prompt: str,
        attachment: Optional[Attachment],
        max_output_tokens: int,
    ) -> GenerationResponse:
        contents = []
        if attachment:
            contents.append(types.Part.from_bytes(data=attachment.data, mime_type=attachment.mime_type))
        contents.append(prompt)

        config = types.GenerateContentConfig(
            temperature=0.0,
            max_output_tokens=max_output_tokens,
            system_instruction=SYSTEM_PROMPT,
            response_mime_type="application/json",
        )

        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(model=self.model, contents=contents, config=config),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise APITimeoutError(f"Gemini call timed out after {self.timeout}s", original_error=e) from e
        except genai_errors.ClientError as e:
            code = getattr(e, "code", None)
            if code == 429:
                raise RateLimitExceededError(f"Gemini rate limit: {e}", original_error=e) from e
            if code in (401, 403):
                raise ProviderAuthError(f"Gemini rejected credentials: {e}", original_error=e) from e
            raise ProviderRequestError(f"Gemini request error: {e}", original_error=e) from e
        except genai_errors.ServerError as e:
            raise ProviderServerError(f"Gemini server error: {e}", original_error=e) from e
        except httpx.TransportError as e:
            raise ProviderServerError(f"Could not reach Gemini: {e}", original_error=e) from e

        stop_reason = None
        if response.candidates:
            finish_reason = response.candidates[0].finish_reason
            stop_reason = getattr(finish_reason, "name", None) or (str(finish_reason) if finish_reason else None)

        if not response.text:
            LOGGER.warning("Empty response from Gemini", extra={"stop_reason": stop_reason})

        usage = {}
        if response.usage_metadata:
            usage = {
                "prompt_tokens": response.usage_metadata.prompt_token_count,
                "output_tokens": response.usage_metadata.candidates_token_count,
            }
        return GenerationResponse(text=response.text or "", stop_reason=stop_reason, usage=usage)
