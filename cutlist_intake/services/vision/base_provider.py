"""Vision/language model provider interface.

Providers only implement ``_generate``; prompting, admission control,
truncation handling, response parsing, normalization and chunked processing
of long text are shared here.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from cutlist_intake.core.exceptions import (
    ConfigurationError,
    ProviderNotConfiguredError,
    ResponseFormatError,
)
from cutlist_intake.models.extraction import ParseOptions, ProviderParseResult, Strategy
from cutlist_intake.models.parts import ExtractedPart
from cutlist_intake.services.chunking.text_chunker import TextChunker, merge_chunk_parts
from cutlist_intake.services.quality.heuristics import classify_text_messiness
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.services.resilience.truncation import classify_error, detect_truncation
from cutlist_intake.services.vision.normalization import normalize_parts, normalize_project_info
from cutlist_intake.services.vision.prompts import (
    build_image_prompt,
    build_text_prompt,
    chunk_note,
)
from cutlist_intake.services.vision.response_parser import parse_model_response
from cutlist_intake.services.vision.result_cache import ParseResultCache
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

UNREADABLE_REMEDIATION = [
    "Re-photograph the cutlist in good light, straight on, with the whole table in frame",
    "Make sure the handwriting or print is in focus",
    "Upload one page per image",
]


@dataclass(frozen=True)
class Attachment:
    data: bytes
    mime_type: str


@dataclass
class GenerationResponse:
    """Raw text returned by a model call."""
    text: str
    stop_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)


class VisionProvider(ABC):
    """Base class for vision-capable model providers.

    Attributes:
        name: Provider name, also the rate-limiter admission key
        supports_documents: Whether ``parse_document`` accepts raw PDFs
    """

    name = "vision"
    supports_documents = False

    def __init__(
        self,
        rate_limiter: ProviderRateLimiter,
        chunker: Optional[TextChunker] = None,
        max_output_tokens: int = 16000,
        chunk_row_threshold: int = 80,
        chunk_batch_size: int = 3,
        retry_on_truncation: bool = False,
        result_cache: Optional[ParseResultCache] = None,
    ):
        self.rate_limiter = rate_limiter
        self.result_cache = result_cache
        self.chunker = chunker or TextChunker()
        self.max_output_tokens = max_output_tokens
        self.chunk_row_threshold = chunk_row_threshold
        self.chunk_batch_size = max(1, chunk_batch_size)
        self.retry_on_truncation = retry_on_truncation

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials are available."""

    @abstractmethod
    async def _generate(
        self,
        prompt: str,
        attachment: Optional[Attachment],
        max_output_tokens: int,
    ) -> GenerationResponse:
        """Perform one model call.

        Raises:
            TransientAPIError: On retryable failures
            APIClientError: On deterministic failures
        """

    async def parse_text(self, text: str, options: ParseOptions) -> ProviderParseResult:
        """Extract parts from text.

        Long text is chunked unless ``options.skip_chunking`` is set (pages
        are already natural chunks). Free-form notes get the free-form
        prompt unless the caller already decided ``options.is_messy_data``.
        """
        strategy = options.source or Strategy.VISION_TEXT.value
        if options.is_messy_data is None and not options.deterministic_prompt:
            messiness = classify_text_messiness(text)
            options = options.model_copy(update={"is_messy_data": messiness.is_("messy", 0.6)})
            if options.is_messy_data:
                LOGGER.debug("Using free-form prompt", extra={"provider": self.name, "signals": messiness.signals})
        if not options.skip_chunking and self.chunker.estimate_rows(text) > self.chunk_row_threshold:
            return await self._parse_chunked(text, options, strategy)

        prompt = build_text_prompt(text, options)
        return await self._complete(prompt, None, options, strategy)

    async def parse_image(self, image_bytes: bytes, mime_type: str, options: ParseOptions) -> ProviderParseResult:
        """Extract parts from an image."""
        strategy = options.source or Strategy.VISION_IMAGE.value
        return await self._with_cache(
            image_bytes,
            mime_type,
            options,
            lambda: self._complete(build_image_prompt(options), Attachment(image_bytes, mime_type), options, strategy),
        )

    async def parse_document(self, pdf_bytes: bytes, options: ParseOptions) -> ProviderParseResult:
        """Extract parts from a PDF using the provider's native document mode."""
        if not self.supports_documents:
            raise ConfigurationError(f"{self.name} does not support native PDF input")
        strategy = options.source or Strategy.NATIVE_DOCUMENT.value
        return await self._with_cache(
            pdf_bytes,
            "application/pdf",
            options,
            lambda: self._complete(
                build_image_prompt(options), Attachment(pdf_bytes, "application/pdf"), options, strategy
            ),
        )

    async def _with_cache(
        self,
        content: bytes,
        mime_type: str,
        options: ParseOptions,
        compute: Callable[[], Awaitable[ProviderParseResult]],
    ) -> ProviderParseResult:
        if self.result_cache is None:
            return await compute()
        key = ParseResultCache.key_for(content, mime_type, options)
        cached = self.result_cache.get(key)
        if cached is not None:
            return cached
        result = await compute()
        self.result_cache.put(key, result)
        return result

    async def _complete(
        self,
        prompt: str,
        attachment: Optional[Attachment],
        options: ParseOptions,
        strategy: str,
        chunk_index: Optional[int] = None,
    ) -> ProviderParseResult:
        if not self.is_configured():
            raise ProviderNotConfiguredError(f"{self.name} provider has no API key configured")

        budget = self.max_output_tokens
        response = await self._call(prompt, attachment, budget)
        warnings: List[str] = []

        report = detect_truncation(response.text, response.stop_reason)
        if report.truncated:
            LOGGER.warning(
                "Model response truncated",
                extra={"provider": self.name, "reason": report.reason, "budget": budget},
            )
            if options.allow_truncation_retry or self.retry_on_truncation:
                response = await self._call(prompt, attachment, budget * 2)
                report = detect_truncation(response.text, response.stop_reason)
            if report.truncated:
                warnings.append(f"Response may be incomplete ({report.reason})")

        parsed = parse_model_response(response.text)
        if not parsed.ok:
            raise ResponseFormatError(
                f"Could not read parts from the model response: {parsed.reason}",
                raw_response=response.text,
                remediation=UNREADABLE_REMEDIATION,
            )
        if parsed.repaired:
            warnings.append("Response JSON needed repair")

        parts = normalize_parts(parsed.raw_parts, options, strategy, chunk_index=chunk_index)
        confidence = sum(p.confidence for p in parts) / len(parts) if parts else 0.0

        LOGGER.info(
            f"{self.name} extracted {len(parts)} parts",
            extra={
                "strategy": strategy,
                "shape": parsed.shape.value,
                "page": options.page_number,
                "chunk": chunk_index,
                "truncated": report.truncated,
            },
        )
        return ProviderParseResult(
            parts=parts,
            confidence=round(confidence, 4),
            raw_response=response.text,
            truncated=report.truncated,
            warnings=warnings,
            project_info=normalize_project_info(parsed.project_info),
        )

    async def _call(self, prompt: str, attachment: Optional[Attachment], budget: int) -> GenerationResponse:
        return await self.rate_limiter.run(
            self.name,
            lambda: self._generate(prompt, attachment, budget),
            description=f"{self.name} generate",
        )

    async def _parse_chunked(self, text: str, options: ParseOptions, strategy: str) -> ProviderParseResult:
        chunks = self.chunker.split(text)
        total = len(chunks)
        results: List[Optional[ProviderParseResult]] = [None] * total
        errors: List[Optional[Exception]] = [None] * total

        async def run_chunk(index: int) -> None:
            prompt = build_text_prompt(chunks[index].render(), options, chunk_note(index, total))
            try:
                results[index] = await self._complete(prompt, None, options, strategy, chunk_index=index)
            except ConfigurationError:
                raise
            except Exception as e:
                errors[index] = e
                classification = classify_error(e)
                LOGGER.warning(
                    f"Chunk {index + 1}/{total} failed",
                    extra={"category": classification.category.value, "error": classification.message},
                )

        for start in range(0, total, self.chunk_batch_size):
            await asyncio.gather(*(run_chunk(i) for i in range(start, min(start + self.chunk_batch_size, total))))

        if all(result is None for result in results):
            raise next(e for e in errors if e is not None)

        warnings: List[str] = []
        chunk_parts: List[List[ExtractedPart]] = []
        for index, result in enumerate(results):
            if result is None:
                warnings.append(f"Section {index + 1} of {total} could not be parsed")
                chunk_parts.append([])
                continue
            warnings.extend(result.warnings)
            chunk_parts.append(result.parts)

        parts = merge_chunk_parts(chunk_parts)
        confidence = sum(p.confidence for p in parts) / len(parts) if parts else 0.0
        project_info = next((r.project_info for r in results if r and r.project_info), None)

        return ProviderParseResult(
            parts=parts,
            confidence=round(confidence, 4),
            raw_response="\n".join(r.raw_response for r in results if r),
            truncated=any(r.truncated for r in results if r),
            warnings=warnings,
            project_info=project_info,
            chunk_count=total,
        )
