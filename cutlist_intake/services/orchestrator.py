"""Extraction strategy orchestrator.

Turns one uploaded cutlist file into a ``DocumentCandidate`` or an
``ExtractionFailure``:

- images: template detection, optimization, one vision call;
- PDFs: local text and remote OCR race, the quality gate picks the text to
  build on, pages or chunks are parsed in bounded batches, and vision
  fallbacks (native document, then rasterized pages) cover scans and
  sparse results.

Input and configuration errors are raised from ``validate``; content
problems come back as structured failures the user can act on.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from cutlist_intake.core.config import ExtractionSettings, settings
from cutlist_intake.core.exceptions import (
    AppError,
    ConfigurationError,
    EmptyFileError,
    FileTooLargeError,
    PDFConversionError,
    ProviderNotConfiguredError,
    ResponseFormatError,
    UnsupportedFileTypeError,
)
from cutlist_intake.models.extraction import (
    AttemptDiagnostic,
    DocumentCandidate,
    ExtractionAttempt,
    ExtractionFailure,
    ExtractionOutcome,
    FileKind,
    ParseOptions,
    ProviderParseResult,
    QualityMetrics,
    Strategy,
    UploadedDocument,
)
from cutlist_intake.models.page_data import PageData
from cutlist_intake.models.parts import ExtractedPart, ProjectInfo
from cutlist_intake.models.templates import TemplateDetection
from cutlist_intake.services.base_service import BaseService
from cutlist_intake.services.ocr.ocr_base import LocalTextExtractor, PdfRenderer, RemoteOCRService, RenderedPages
from cutlist_intake.services.operations.shortcode_resolver import ShortcodeResolver
from cutlist_intake.services.quality.auto_accept import AutoAcceptPolicy
from cutlist_intake.services.quality.heuristics import (
    classify_blank_template,
    classify_continuation_page,
    detect_consecutive_duplicates,
    text_quality_score,
)
from cutlist_intake.services.quality.quality_gate import QualityGate, QualityThresholds
from cutlist_intake.services.sessions.session_merger import MultiPageSessionMerger
from cutlist_intake.services.side_effects import AuditRecorder, DetachedTaskGroup, UploadArchive
from cutlist_intake.services.templates.template_detector import TemplateDetector
from cutlist_intake.services.vision.base_provider import UNREADABLE_REMEDIATION, VisionProvider
from cutlist_intake.services.vision.image_optimizer import ImageOptimizer
from cutlist_intake.utils.file_types import detect_file_kind, resolve_mime_type
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

SPREADSHEET_CODE = "SPREADSHEET_USE_CLIENT_PARSER"
BLANK_TEMPLATE_CODE = "BLANK_TEMPLATE"
NO_TEXT_CODE = "NO_TEXT_EXTRACTED"

BLANK_TEMPLATE_REMEDIATION = [
    "This looks like an empty cutlist template; fill in the part rows before uploading",
    "If the rows are filled in by hand, photograph the page and upload the image",
]
NO_TEXT_REMEDIATION = [
    "Upload a screenshot or photo of the page instead of the PDF",
    "Export the cutlist from your design software as a text-based PDF or spreadsheet",
]
PDF_CONVERSION_REMEDIATION = [
    "Could not render this PDF; try uploading it as an image (screenshot or photo) instead",
]

# Before any vision fallback, only a strongly blank-looking document is
# answered with guidance; after every strategy failed a weaker signal suffices.
EARLY_BLANK_CONFIDENCE = 0.75
FINAL_BLANK_CONFIDENCE = 0.5


@dataclass
class ParsedText:
    """Parts obtained by one strategy, before post-processing."""
    strategy: str
    parts: List[ExtractedPart]
    confidence: float
    warnings: List[str] = field(default_factory=list)
    project_info: Optional[ProjectInfo] = None
    raw_response: str = ""
    page_count: int = 0
    chunk_count: int = 0


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _average_confidence(parts: Sequence[ExtractedPart]) -> float:
    return round(sum(p.confidence for p in parts) / len(parts), 4) if parts else 0.0


def _with_page_marker(project_info: Optional[ProjectInfo], text: str) -> Optional[ProjectInfo]:
    """Fill a missing page number from a printed "Page N of M" marker."""
    if project_info is None or project_info.page_number:
        return project_info
    hint = classify_continuation_page(text)
    page_number = hint.signals.get("page_number")
    if not page_number:
        return project_info
    LOGGER.info(
        "Page number taken from page marker",
        extra={"page_number": page_number, "label": hint.label, "project_code": project_info.project_code},
    )
    return project_info.model_copy(
        update={"page_number": page_number, "total_pages": project_info.total_pages or hint.signals.get("total_pages")}
    )


class ExtractionOrchestrator(BaseService):
    """Chooses and runs extraction strategies for one upload."""

    def __init__(
        self,
        provider: VisionProvider,
        local_extractor: LocalTextExtractor,
        remote_ocr: Optional[RemoteOCRService] = None,
        renderer: Optional[PdfRenderer] = None,
        image_optimizer: Optional[ImageOptimizer] = None,
        template_detector: Optional[TemplateDetector] = None,
        session_merger: Optional[MultiPageSessionMerger] = None,
        shortcode_resolver: Optional[ShortcodeResolver] = None,
        archive: Optional[UploadArchive] = None,
        audit: Optional[AuditRecorder] = None,
        side_effects: Optional[DetachedTaskGroup] = None,
        quality_gate: Optional[QualityGate] = None,
        auto_accept_policy: Optional[AutoAcceptPolicy] = None,
        config: Optional[ExtractionSettings] = None,
    ):
        super().__init__()
        self.config = config or settings.extraction
        self.provider = provider
        self.local_extractor = local_extractor
        self.remote_ocr = remote_ocr
        self.renderer = renderer
        self.image_optimizer = image_optimizer or ImageOptimizer(
            max_dimension=self.config.image_max_dimension,
            target_bytes=self.config.image_target_bytes,
        )
        self.template_detector = template_detector
        self.session_merger = session_merger
        self.shortcode_resolver = shortcode_resolver
        self.archive = archive
        self.audit = audit
        self.side_effects = side_effects or DetachedTaskGroup()
        self.quality_gate = quality_gate or QualityGate(QualityThresholds.from_settings(self.config))
        self.auto_accept_policy = auto_accept_policy or AutoAcceptPolicy()

    def validate(self, document: UploadedDocument) -> None:
        """Reject uploads that can never be extracted.

        Raises:
            EmptyFileError: If the file has no content
            FileTooLargeError: If the file exceeds the size ceiling
            UnsupportedFileTypeError: For spreadsheets and unknown types
            ProviderNotConfiguredError: If the vision provider has no credentials
        """
        if not document.content:
            raise EmptyFileError(f"File {document.filename} is empty")
        if document.size > self.config.max_file_size_bytes:
            limit_mb = self.config.max_file_size_bytes / (1024 * 1024)
            raise FileTooLargeError(f"File exceeds the {limit_mb:g}MB limit")

        kind = detect_file_kind(document.filename, document.mime_type)
        if kind == FileKind.SPREADSHEET:
            raise UnsupportedFileTypeError(
                "Spreadsheets are imported with the spreadsheet importer, not the document parser",
                code=SPREADSHEET_CODE,
            )
        if kind == FileKind.UNKNOWN:
            raise UnsupportedFileTypeError("Unsupported file type. Use images (JPG, PNG, WEBP, GIF) or PDFs.")

        if not self.provider.is_configured():
            raise ProviderNotConfiguredError("AI parsing is not configured. Set the provider API key.")

    async def run(self, document: UploadedDocument) -> ExtractionOutcome:
        """Extract parts from one upload.

        Args:
            document: The uploaded file and the caller's identity

        Returns:
            ExtractionOutcome: Candidate (plus session registration) or failure
        """
        started = time.perf_counter()
        file_id = document.file_id or uuid.uuid4().hex
        self._spawn_archive(document)

        warnings: List[str] = []
        diagnostics: List[AttemptDiagnostic] = []
        kind = detect_file_kind(document.filename, document.mime_type)
        LOGGER.info(
            f"Extracting {document.filename}",
            extra={"file_kind": kind.value, "size_bytes": document.size, "file_id": file_id},
        )

        if kind == FileKind.IMAGE:
            result = await self._process_image(document, warnings, diagnostics)
        else:
            result = await self._process_pdf(document, warnings, diagnostics)

        if isinstance(result, ExtractionFailure):
            LOGGER.warning(
                f"Extraction failed for {document.filename}",
                extra={"code": result.code, "duration_ms": round(_elapsed_ms(started), 1)},
            )
            self._spawn_audit("extraction_failed", document, file_id, {"code": result.code})
            return ExtractionOutcome(success=False, failure=result)

        candidate, detection = result
        outcome = await self._finalize(document, file_id, candidate, detection, started)
        self._spawn_audit(
            "extraction_completed",
            document,
            file_id,
            {"strategy": candidate.strategy, "parts": len(outcome.candidate.parts)},
        )
        return outcome

    # Images

    async def _process_image(
        self,
        document: UploadedDocument,
        warnings: List[str],
        diagnostics: List[AttemptDiagnostic],
    ) -> Union[ExtractionFailure, Tuple[DocumentCandidate, TemplateDetection]]:
        mime_type = resolve_mime_type(document.filename, document.mime_type)
        detection = await self._detect_image_template(document)
        warnings.extend(detection.warnings)

        optimized = await self.image_optimizer.optimize(document.content, mime_type)
        options = self._options(detection, source=Strategy.VISION_IMAGE.value)

        started = time.perf_counter()
        try:
            result = await self.provider.parse_image(optimized.data, optimized.mime_type, options)
        except ResponseFormatError as e:
            diagnostics.append(self._diagnostic(Strategy.VISION_IMAGE.value, started, error=e))
            return ExtractionFailure(
                code=e.code,
                message="Could not read a cutlist from this image",
                remediation=e.remediation or UNREADABLE_REMEDIATION,
                diagnostics=diagnostics,
                warnings=warnings,
            )

        diagnostics.append(self._diagnostic(Strategy.VISION_IMAGE.value, started, parts=len(result.parts)))
        parsed = ParsedText(
            strategy=Strategy.VISION_IMAGE.value,
            parts=result.parts,
            confidence=result.confidence,
            warnings=result.warnings,
            project_info=result.project_info,
            raw_response=result.raw_response,
            page_count=1,
            chunk_count=1,
        )
        return self._candidate(document, parsed, detection, warnings, diagnostics, text_length=0), detection

    async def _detect_image_template(self, document: UploadedDocument) -> TemplateDetection:
        if self.template_detector is None:
            return TemplateDetection.not_detected()
        return await self.template_detector.detect_image(
            document.content, document.filename, document.organization_id
        )

    # PDFs

    async def _process_pdf(
        self,
        document: UploadedDocument,
        warnings: List[str],
        diagnostics: List[AttemptDiagnostic],
    ) -> Union[ExtractionFailure, Tuple[DocumentCandidate, TemplateDetection]]:
        attempts = list(
            await asyncio.gather(
                self._local_text_attempt(document),
                self._remote_ocr_attempt(document),
            )
        )
        decision = self.quality_gate.choose(attempts)
        for attempt in attempts:
            verdict = decision.verdict_for(attempt.strategy)
            diagnostics.append(
                attempt.to_diagnostic().model_copy(
                    update={"accepted": verdict.accepted if verdict else None, "reason": verdict.reason if verdict else None}
                )
            )

        all_text = "\n".join(a.text for a in attempts if a.text)
        detection = await self._detect_text_template(document, decision.winner.text if decision.winner else all_text)
        warnings.extend(detection.warnings)
        options = self._options(detection)

        parsed: Optional[ParsedText] = None
        if decision.winner is not None:
            parsed = await self._parse_text_attempt(decision.winner, options, diagnostics)

        if parsed is None or not parsed.parts:
            blank = classify_blank_template(all_text, document.filename)
            if blank.is_("blank_template", EARLY_BLANK_CONFIDENCE):
                return self._blank_template_failure(diagnostics, warnings, blank.signals)

        escalated = False
        if parsed is None or not parsed.parts:
            if parsed is not None:
                warnings.extend(parsed.warnings)
            fallback = await self._vision_fallback(document, options, diagnostics)
            if fallback is not None:
                parsed = fallback
                escalated = True
        elif self.quality_gate.needs_escalation(decision, len(parsed.parts)):
            LOGGER.info(
                "Escalating to raster fallback",
                extra={"parts": len(parsed.parts), "pre_parse_signal": decision.should_escalate},
            )
            fallback = await self._raster_fallback(document, options, diagnostics)
            escalated = True
            if fallback is not None and len(fallback.parts) > len(parsed.parts):
                warnings.extend(parsed.warnings)
                parsed = fallback

        if parsed is None or not parsed.parts:
            return self._exhausted_failure(document, all_text, parsed, diagnostics, warnings)

        text_length = decision.winner.text_length if decision.winner else 0
        candidate = self._candidate(
            document, parsed, detection, warnings, diagnostics, text_length=text_length, escalated=escalated
        )
        return candidate, detection

    async def _local_text_attempt(self, document: UploadedDocument) -> ExtractionAttempt:
        started = time.perf_counter()
        strategy = Strategy.LOCAL_TEXT.value
        try:
            result = await self.local_extractor.extract(document.content)
        except ConfigurationError:
            raise
        except Exception as e:
            LOGGER.warning(f"Local text extraction failed: {e}", extra={"file_name": document.filename})
            return ExtractionAttempt.failed(strategy, str(e), _elapsed_ms(started))

        return ExtractionAttempt(
            strategy=strategy,
            text=result.text,
            pages=tuple(result.pages),
            page_count=result.page_count,
            confidence=text_quality_score(result.text),
            duration_ms=_elapsed_ms(started),
        )

    async def _remote_ocr_attempt(self, document: UploadedDocument) -> ExtractionAttempt:
        started = time.perf_counter()
        strategy = Strategy.REMOTE_OCR.value
        if self.remote_ocr is None or not self.remote_ocr.is_configured():
            return ExtractionAttempt.failed(strategy, "OCR service not configured")
        try:
            if not await self.remote_ocr.health_check():
                return ExtractionAttempt.failed(strategy, "OCR service unhealthy, skipped", _elapsed_ms(started))
            result = await self.remote_ocr.extract_by_page(document.content, document.filename)
        except ConfigurationError:
            raise
        except Exception as e:
            LOGGER.warning(f"Remote OCR failed: {e}", extra={"file_name": document.filename})
            return ExtractionAttempt.failed(strategy, str(e), _elapsed_ms(started))

        return ExtractionAttempt(
            strategy=strategy,
            text=result.text,
            pages=tuple(result.pages),
            page_count=result.page_count,
            confidence=result.confidence,
            duration_ms=_elapsed_ms(started),
            metadata={"method": result.method, "tables": len(result.tables)},
        )

    async def _detect_text_template(self, document: UploadedDocument, text: str) -> TemplateDetection:
        if self.template_detector is None:
            return TemplateDetection.not_detected()
        return await self.template_detector.detect_text(text, document.filename, document.organization_id)

    async def _parse_text_attempt(
        self,
        attempt: ExtractionAttempt,
        options: ParseOptions,
        diagnostics: List[AttemptDiagnostic],
    ) -> Optional[ParsedText]:
        """Send the winning text to the provider, page by page when possible."""
        strategy = f"{attempt.strategy}+{Strategy.VISION_TEXT.value}"
        started = time.perf_counter()
        try:
            if attempt.has_page_text:
                parsed = await self._parse_pages(list(attempt.pages), options.model_copy(update={"source": strategy}))
            else:
                result = await self.provider.parse_text(attempt.text, options.model_copy(update={"source": strategy}))
                parsed = ParsedText(
                    strategy=strategy,
                    parts=result.parts,
                    confidence=result.confidence,
                    warnings=result.warnings,
                    project_info=result.project_info,
                    raw_response=result.raw_response,
                    page_count=attempt.page_count,
                    chunk_count=result.chunk_count,
                )
        except ConfigurationError:
            raise
        except AppError as e:
            LOGGER.warning(f"Text parsing failed: {e}", extra={"strategy": strategy, "code": e.code})
            diagnostics.append(self._diagnostic(strategy, started, error=e))
            return None

        diagnostics.append(self._diagnostic(strategy, started, parts=len(parsed.parts)))
        parsed.project_info = _with_page_marker(parsed.project_info, attempt.text)
        return parsed

    async def _parse_pages(self, pages: List[PageData], options: ParseOptions) -> ParsedText:
        """Parse per-page text in bounded batches, reassembled in page order.

        Raises:
            AppError: The first page error, when no page could be parsed
        """
        total = len(pages)
        results: List[Optional[ProviderParseResult]] = [None] * total
        page_warnings: List[List[str]] = [[] for _ in range(total)]
        errors: List[Exception] = []

        async def run_page(index: int) -> None:
            page = pages[index]
            if page.is_empty:
                page_warnings[index].append(f"Page {page.page_number}: no extractable text")
                return
            try:
                results[index] = await self.provider.parse_text(
                    page.text, options.for_page(page.page_number, total)
                )
            except ConfigurationError:
                raise
            except AppError as e:
                errors.append(e)
                page_warnings[index].append(f"Page {page.page_number}: {e.message}")

        batch_size = max(1, self.config.page_batch_size)
        for start in range(0, total, batch_size):
            await asyncio.gather(*(run_page(i) for i in range(start, min(start + batch_size, total))))

        if errors and all(result is None for result in results):
            raise errors[0]

        parts: List[ExtractedPart] = []
        warnings: List[str] = []
        project_info = None
        for index, result in enumerate(results):
            warnings.extend(page_warnings[index])
            if result is None:
                continue
            warnings.extend(result.warnings)
            project_info = project_info or result.project_info
            for part in result.parts:
                parts.append(part.model_copy(update={"row_number": len(parts) + 1}))

        return ParsedText(
            strategy=options.source or Strategy.VISION_TEXT.value,
            parts=parts,
            confidence=_average_confidence(parts),
            warnings=warnings,
            project_info=project_info,
            raw_response="\n".join(r.raw_response for r in results if r),
            page_count=total,
            chunk_count=total,
        )

    # Vision fallbacks

    async def _vision_fallback(
        self,
        document: UploadedDocument,
        options: ParseOptions,
        diagnostics: List[AttemptDiagnostic],
    ) -> Optional[ParsedText]:
        if self.provider.supports_documents:
            strategy = Strategy.NATIVE_DOCUMENT.value
            started = time.perf_counter()
            try:
                result = await self.provider.parse_document(
                    document.content, options.model_copy(update={"source": strategy})
                )
            except ConfigurationError:
                raise
            except AppError as e:
                LOGGER.warning(f"Native document parsing failed: {e}", extra={"code": e.code})
                diagnostics.append(self._diagnostic(strategy, started, error=e))
            else:
                diagnostics.append(self._diagnostic(strategy, started, parts=len(result.parts)))
                if result.parts:
                    return ParsedText(
                        strategy=strategy,
                        parts=result.parts,
                        confidence=result.confidence,
                        warnings=result.warnings,
                        project_info=result.project_info,
                        raw_response=result.raw_response,
                        page_count=(result.project_info.total_pages or 0) if result.project_info else 0,
                        chunk_count=1,
                    )

        return await self._raster_fallback(document, options, diagnostics)

    async def _render_pages(self, document: UploadedDocument) -> Optional[RenderedPages]:
        """Rasterize locally, falling back to the OCR service's renderer."""
        if self.renderer is not None:
            try:
                return await self.renderer.render(
                    document.content,
                    scale=self.config.render_scale,
                    max_pages=self.config.render_max_pages,
                )
            except PDFConversionError as e:
                LOGGER.warning(f"Local rendering failed, trying OCR service: {e}")

        if self.remote_ocr is not None and self.remote_ocr.is_configured():
            try:
                if await self.remote_ocr.health_check():
                    return await self.remote_ocr.extract_as_images(document.content, document.filename)
            except AppError as e:
                LOGGER.warning(f"Remote rendering failed: {e}", extra={"code": e.code})
        return None

    async def _raster_fallback(
        self,
        document: UploadedDocument,
        options: ParseOptions,
        diagnostics: List[AttemptDiagnostic],
    ) -> Optional[ParsedText]:
        strategy = Strategy.RASTER_VISION.value
        started = time.perf_counter()
        rendered = await self._render_pages(document)
        if rendered is None or not rendered.images:
            diagnostics.append(
                self._diagnostic(strategy, started, error=PDFConversionError("PDF could not be rendered to images"))
            )
            return None

        total = len(rendered.images)
        results: List[Optional[ProviderParseResult]] = [None] * total
        warnings: List[List[str]] = [[] for _ in range(total)]

        async def run_page(index: int) -> None:
            page_options = options.for_page(index + 1, total).model_copy(update={"source": strategy})
            try:
                results[index] = await self.provider.parse_image(
                    rendered.images[index], rendered.mime_type, page_options
                )
            except ConfigurationError:
                raise
            except AppError as e:
                warnings[index].append(f"Page {index + 1}: {e.message}")

        batch_size = max(1, self.config.page_batch_size)
        for start in range(0, total, batch_size):
            await asyncio.gather(*(run_page(i) for i in range(start, min(start + batch_size, total))))

        parts: List[ExtractedPart] = []
        flat_warnings: List[str] = []
        project_info = None
        for index, result in enumerate(results):
            flat_warnings.extend(warnings[index])
            if result is None:
                continue
            flat_warnings.extend(result.warnings)
            project_info = project_info or result.project_info
            for part in result.parts:
                parts.append(part.model_copy(update={"row_number": len(parts) + 1}))

        succeeded = any(result is not None for result in results)
        diagnostics.append(
            AttemptDiagnostic(
                strategy=strategy,
                success=succeeded,
                duration_ms=round(_elapsed_ms(started), 1),
                page_count=total,
                confidence=_average_confidence(parts),
                error=None if succeeded else "; ".join(flat_warnings)[:500],
                reason=f"rendered by {rendered.source}",
            )
        )
        if not succeeded:
            return None
        return ParsedText(
            strategy=strategy,
            parts=parts,
            confidence=_average_confidence(parts),
            warnings=flat_warnings,
            project_info=project_info,
            raw_response="\n".join(r.raw_response for r in results if r),
            page_count=total,
            chunk_count=total,
        )

    # Failures

    def _blank_template_failure(
        self,
        diagnostics: List[AttemptDiagnostic],
        warnings: List[str],
        signals: dict,
    ) -> ExtractionFailure:
        LOGGER.info("Document looks like a blank template", extra={"signals": signals})
        return ExtractionFailure(
            code=BLANK_TEMPLATE_CODE,
            message="This looks like a blank cutlist template with no parts filled in",
            remediation=BLANK_TEMPLATE_REMEDIATION,
            diagnostics=diagnostics,
            warnings=warnings,
        )

    def _exhausted_failure(
        self,
        document: UploadedDocument,
        all_text: str,
        parsed: Optional[ParsedText],
        diagnostics: List[AttemptDiagnostic],
        warnings: List[str],
    ) -> ExtractionFailure:
        """Pick the most specific failure once every strategy has run."""
        blank = classify_blank_template(all_text, document.filename)
        if blank.is_("blank_template", FINAL_BLANK_CONFIDENCE):
            return self._blank_template_failure(diagnostics, warnings, blank.signals)

        if parsed is not None:
            return ExtractionFailure(
                code=NO_TEXT_CODE,
                message="No parts were found in this document",
                remediation=NO_TEXT_REMEDIATION,
                diagnostics=diagnostics,
                warnings=warnings,
            )

        render_failed = any(
            d.strategy == Strategy.RASTER_VISION.value and not d.success and not d.page_count for d in diagnostics
        )
        if render_failed and not all_text.strip():
            return ExtractionFailure(
                code=PDFConversionError.code,
                message="Could not extract text from this PDF or render it to images",
                remediation=PDF_CONVERSION_REMEDIATION + NO_TEXT_REMEDIATION,
                diagnostics=diagnostics,
                warnings=warnings,
            )

        return ExtractionFailure(
            code=NO_TEXT_CODE,
            message="Could not extract text from this PDF",
            remediation=NO_TEXT_REMEDIATION,
            diagnostics=diagnostics,
            warnings=warnings,
        )

    # Result assembly

    def _options(self, detection: TemplateDetection, source: Optional[str] = None) -> ParseOptions:
        return ParseOptions(
            extract_metadata=detection.is_recognized,
            template_id=detection.template_id,
            template_config=detection.descriptor,
            deterministic_prompt=detection.deterministic_prompt,
            default_material_id=self.config.default_material_id,
            default_thickness_mm=self.config.default_thickness_mm,
            source=source,
        )

    @staticmethod
    def _diagnostic(
        strategy: str,
        started: float,
        parts: Optional[int] = None,
        error: Optional[Exception] = None,
    ) -> AttemptDiagnostic:
        return AttemptDiagnostic(
            strategy=strategy,
            success=error is None,
            duration_ms=round(_elapsed_ms(started), 1),
            error=str(error) if error else None,
            reason=f"{parts} parts" if parts is not None else None,
        )

    def _candidate(
        self,
        document: UploadedDocument,
        parsed: ParsedText,
        detection: TemplateDetection,
        warnings: List[str],
        diagnostics: List[AttemptDiagnostic],
        text_length: int,
        escalated: bool = False,
    ) -> DocumentCandidate:
        return DocumentCandidate(
            file_name=document.filename,
            strategy=parsed.strategy,
            parts=parsed.parts,
            confidence=parsed.confidence,
            metrics=QualityMetrics(
                strategy=parsed.strategy,
                text_length=text_length,
                page_count=parsed.page_count,
                parts_count=len(parsed.parts),
                average_confidence=_average_confidence(parsed.parts),
                parts_needing_review=sum(1 for p in parsed.parts if p.needs_review),
                escalated=escalated,
                chunk_count=parsed.chunk_count,
            ),
            warnings=warnings + parsed.warnings,
            diagnostics=diagnostics,
            project_info=parsed.project_info,
            template=detection,
            raw_response=parsed.raw_response,
        )

    async def _finalize(
        self,
        document: UploadedDocument,
        file_id: str,
        candidate: DocumentCandidate,
        detection: TemplateDetection,
        started: float,
    ) -> ExtractionOutcome:
        """Resolve shortcodes, flag duplicates, decide auto-accept, register pages."""
        parts = await self._resolve_shortcodes(candidate.parts, document.organization_id)
        warnings = list(candidate.warnings)
        warnings.extend(detect_consecutive_duplicates(parts, self.config.duplicate_row_threshold))
        decision = self.auto_accept_policy.evaluate(parts, candidate.confidence or None)

        processing_ms = round(_elapsed_ms(started), 1)
        candidate = candidate.model_copy(
            update={
                "parts": parts,
                "warnings": warnings,
                "auto_accept": decision,
                "processing_time_ms": processing_ms,
            }
        )

        registration = None
        merge = None
        if detection.is_recognized and self.session_merger is not None and document.organization_id:
            registration = await self.session_merger.register_page(
                organization_id=document.organization_id,
                user_id=document.user_id,
                template_id=detection.template_id,
                file_id=file_id,
                parse_result=ProviderParseResult(
                    parts=parts,
                    confidence=candidate.confidence,
                    project_info=candidate.project_info,
                ),
                processing_time_ms=processing_ms,
                file_name=document.filename,
            )
            if registration.is_multi_page and registration.ready_to_merge:
                merge = await self.session_merger.merge_session(registration.session_id)

        LOGGER.info(
            f"Extraction finished for {document.filename}",
            extra={
                "strategy": candidate.strategy,
                "parts": len(parts),
                "confidence": candidate.confidence,
                "auto_accept": decision.auto_accept,
                "escalated": candidate.metrics.escalated,
                "duration_ms": processing_ms,
            },
        )
        return ExtractionOutcome(success=True, candidate=candidate, session=registration, merge=merge)

    async def _resolve_shortcodes(
        self,
        parts: List[ExtractedPart],
        organization_id: Optional[str],
    ) -> List[ExtractedPart]:
        if self.shortcode_resolver is None or not organization_id or not parts:
            return parts
        try:
            return await asyncio.wait_for(
                self.shortcode_resolver.resolve(parts, organization_id),
                timeout=self.config.shortcode_resolution_timeout,
            )
        except Exception as e:
            LOGGER.warning(f"Shortcode resolution skipped: {e!r}", extra={"organization_id": organization_id})
            return parts

    # Side effects

    def _spawn_archive(self, document: UploadedDocument) -> None:
        if self.archive is not None:
            self.side_effects.spawn("archive_upload", self.archive.archive(document))

    def _spawn_audit(self, event: str, document: UploadedDocument, file_id: str, details: dict) -> None:
        if self.audit is None:
            return
        payload = {
            "file_id": file_id,
            "file_name": document.filename,
            "organization_id": document.organization_id,
            "user_id": document.user_id,
            **details,
        }
        self.side_effects.spawn(f"audit_{event}", self.audit.record(event, payload))
