"""Primary/secondary provider failover."""

from typing import Optional

from cutlist_intake.core.exceptions import ProviderNotConfiguredError, TransientAPIError
from cutlist_intake.services.vision.base_provider import Attachment, GenerationResponse, VisionProvider
from cutlist_intake.services.vision.result_cache import ParseResultCache
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class FailoverVisionProvider(VisionProvider):
    """Sends each model call to the primary, then to the secondary.

    The switch happens per call, only after the primary's retries are spent
    on a transient failure (timeout, 5xx, rate limit) or when the primary has
    no credentials. Request errors such as a rejected prompt are raised as
    is, since the secondary would reject them too. Each call keeps its own
    provider's admission slot and retry policy.

    Attributes:
        primary: Provider tried first
        secondary: Provider used when the primary is unavailable
        failovers: Number of calls answered by the secondary after a
            primary failure
    """

    def __init__(
        self,
        primary: VisionProvider,
        secondary: VisionProvider,
        result_cache: Optional[ParseResultCache] = None,
    ):
        super().__init__(
            rate_limiter=primary.rate_limiter,
            chunker=primary.chunker,
            max_output_tokens=primary.max_output_tokens,
            chunk_row_threshold=primary.chunk_row_threshold,
            chunk_batch_size=primary.chunk_batch_size,
            retry_on_truncation=primary.retry_on_truncation,
            result_cache=result_cache,
        )
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}>{secondary.name}"
        self.supports_documents = primary.supports_documents or secondary.supports_documents
        self.failovers = 0

    def is_configured(self) -> bool:
        return self.primary.is_configured() or self.secondary.is_configured()

    async def _call(self, prompt: str, attachment: Optional[Attachment], budget: int) -> GenerationResponse:
        # Admission and retries happen inside each provider's own _call
        return await self._generate(prompt, attachment, budget)

    def _can_serve(self, provider: VisionProvider, attachment: Optional[Attachment]) -> bool:
        if not provider.is_configured():
            return False
        if attachment is not None and attachment.mime_type == "application/pdf":
            return provider.supports_documents
        return True

    async def _generate(
        self,
        prompt: str,
        attachment: Optional[Attachment],
        max_output_tokens: int,
    ) -> GenerationResponse:
        if not self._can_serve(self.primary, attachment):
            if not self._can_serve(self.secondary, attachment):
                raise ProviderNotConfiguredError(f"No configured provider can handle this input ({self.name})")
            LOGGER.info(f"{self.primary.name} unavailable, using {self.secondary.name}")
            return await self.secondary._call(prompt, attachment, max_output_tokens)

        try:
            return await self.primary._call(prompt, attachment, max_output_tokens)
        except TransientAPIError as e:
            if not self._can_serve(self.secondary, attachment):
                raise
            self.failovers += 1
            LOGGER.warning(
                f"{self.primary.name} failed, failing over to {self.secondary.name}",
                extra={"error": str(e), "error_type": type(e).__name__, "failovers": self.failovers},
            )
            return await self.secondary._call(prompt, attachment, max_output_tokens)
