import base64
from typing import Any, Dict, List, Optional

from cutlist_intake.core.base_llm_client import BaseLLMClient
from cutlist_intake.core.exceptions import APIClientError
from cutlist_intake.services.vision.base_provider import Attachment, GenerationResponse, VisionProvider
from cutlist_intake.services.vision.prompts import SYSTEM_PROMPT
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OpenRouterVisionProvider(VisionProvider):
    """OpenRouter chat-completions provider.

    Images are sent as data URLs; PDFs are not accepted natively.
    """

    name = "openrouter"
    supports_documents = False

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        timeout: float = 120.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self.client = BaseLLMClient(api_key=api_key, base_url=base_url, timeout=timeout)
        LOGGER.info(f"Initialized OpenRouter provider with model {self.model}")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _messages(self, prompt: str, attachment: Optional[Attachment]) -> List[Dict[str, Any]]:
        content: Any = prompt
        if attachment:
            encoded = base64.b64encode(attachment.data).decode("ascii")
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{attachment.mime_type};base64,{encoded}"}},
            ]
        return [
            {"role": "system", "content": f"{SYSTEM_PROMPT}\n\nIMPORTANT: Respond with valid JSON only."},
            {"role": "user", "content": content},
        ]

    async def _generate(
        self,
        prompt: str,
        attachment: Optional[Attachment],
        max_output_tokens: int,
    ) -> GenerationResponse:
        payload = {
            "model": self.model,
            "messages": self._messages(prompt, attachment),
            "temperature": 0.0,
            "max_tokens": max_output_tokens,
        }
        response = await self.client.call_api(method="POST", payload=payload)

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:300]}")
            raise APIClientError("Invalid response format from OpenRouter")

        choice = choices[0]
        text = (choice.get("message") or {}).get("content") or ""
        if not text:
            LOGGER.warning("Empty response from OpenRouter")
        return GenerationResponse(
            text=text,
            stop_reason=choice.get("finish_reason"),
            usage=response.get("usage") or {},
        )
