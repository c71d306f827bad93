"""Recognition of printed organization templates.

Detection order: QR code on the image, then markers in the text or the
filename. Detection never fails an upload: errors and timeouts fall back
to generic extraction with a warning.
"""

import asyncio
from typing import Optional

from cutlist_intake.models.templates import DetectionStatus, TemplateDetection, TemplateId
from cutlist_intake.services.templates.prompt_builder import build_deterministic_prompt
from cutlist_intake.services.templates.qr_decoder import QRDecoder
from cutlist_intake.services.templates.template_ids import MarkerMatch, find_text_marker, parse_template_id
from cutlist_intake.services.templates.template_repository import RequestTemplateCache, TemplateRepository
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

QR_CONFIDENCE = 0.99


class TemplateDetector:
    """Finds a template id and loads the organization's layout for it."""

    def __init__(
        self,
        repository: TemplateRepository,
        qr_decoder: Optional[QRDecoder] = None,
        timeout: float = 5.0,
    ):
        self.repository = repository
        self.qr_decoder = qr_decoder
        self.timeout = timeout

    async def detect_image(
        self,
        image_bytes: bytes,
        filename: str = "",
        organization_id: Optional[str] = None,
    ) -> TemplateDetection:
        """Detect a template on an image via QR code, then filename markers."""
        try:
            return await asyncio.wait_for(
                self._detect_image(image_bytes, filename, organization_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Template detection timed out", extra={"file_name": filename, "timeout": self.timeout})
            return TemplateDetection.not_detected("Template detection timed out; using generic extraction")
        except Exception as e:
            LOGGER.warning("Template detection failed", extra={"file_name": filename, "error": str(e)})
            return TemplateDetection.not_detected("Template detection failed; using generic extraction")

    async def detect_text(
        self,
        text: str,
        filename: str = "",
        organization_id: Optional[str] = None,
    ) -> TemplateDetection:
        """Detect a template from extracted document text and the filename."""
        try:
            return await asyncio.wait_for(self._detect_text(text, filename, organization_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Template detection timed out", extra={"file_name": filename, "timeout": self.timeout})
            return TemplateDetection.not_detected("Template detection timed out; using generic extraction")
        except Exception as e:
            LOGGER.warning("Template detection failed", extra={"file_name": filename, "error": str(e)})
            return TemplateDetection.not_detected("Template detection failed; using generic extraction")

    async def _detect_image(
        self,
        image_bytes: bytes,
        filename: str,
        organization_id: Optional[str],
    ) -> TemplateDetection:
        cache = RequestTemplateCache(self.repository)
        qr_failed = False
        if self.qr_decoder is not None:
            try:
                payload = await self.qr_decoder.decode(image_bytes)
            except Exception as e:
                LOGGER.warning("QR decoding failed, trying text markers", extra={"file_name": filename, "error": str(e)})
                payload = None
                qr_failed = True
            if payload:
                template_id = parse_template_id(payload)
                if template_id:
                    return await self._resolve(cache, template_id, "qr", QR_CONFIDENCE, organization_id)
                LOGGER.info("QR code found but it is not a template id", extra={"payload": payload[:80]})

        detection = await self._detect_text(None, filename, organization_id, cache)
        if qr_failed and detection.status == DetectionStatus.NOT_DETECTED:
            return TemplateDetection.not_detected("QR code could not be read; using generic extraction")
        return detection

    async def _detect_text(
        self,
        text: Optional[str],
        filename: str,
        organization_id: Optional[str],
        cache: Optional[TemplateRepository] = None,
    ) -> TemplateDetection:
        cache = cache or RequestTemplateCache(self.repository)
        for source, value in (("text", text), ("filename", filename)):
            marker = find_text_marker(value)
            if marker is None:
                continue
            return await self._from_marker(cache, marker, f"{source}_{marker.kind}", organization_id)
        return TemplateDetection.not_detected()

    async def _from_marker(
        self,
        cache: TemplateRepository,
        marker: MarkerMatch,
        method: str,
        organization_id: Optional[str],
    ) -> TemplateDetection:
        template_id = marker.template_id
        if template_id is None and marker.payload:
            org = marker.payload.get("orgId") or marker.payload.get("organization_id")
            version = marker.payload.get("version")
            if org and version:
                template_id = TemplateId(raw=f"CAI-{org}-v{version}", version=str(version), organization_id=org)

        if template_id is None:
            LOGGER.info("Template marker without identifier", extra={"method": method})
            return TemplateDetection(
                status=DetectionStatus.RECOGNIZED_UNCONFIGURED,
                method=method,
                confidence=marker.confidence,
                warnings=["Template recognized but its identifier could not be read; using generic extraction"],
            )
        return await self._resolve(cache, template_id, method, marker.confidence, organization_id)

    async def _resolve(
        self,
        cache: TemplateRepository,
        template_id: TemplateId,
        method: str,
        confidence: float,
        organization_id: Optional[str],
    ) -> TemplateDetection:
        base = dict(
            template_id=template_id.raw,
            organization_id=template_id.organization_id,
            version=template_id.version,
            method=method,
            confidence=confidence,
        )

        if template_id.is_legacy:
            return TemplateDetection(
                status=DetectionStatus.RECOGNIZED_UNCONFIGURED,
                warnings=[f"Legacy template {template_id.raw} has no stored layout; using generic extraction"],
                **base,
            )

        if organization_id and template_id.organization_id != organization_id:
            LOGGER.warning(
                "Template belongs to another organization",
                extra={"template_id": template_id.raw, "organization_id": organization_id},
            )
            return TemplateDetection(
                status=DetectionStatus.RECOGNIZED_UNCONFIGURED,
                warnings=[f"Template {template_id.raw} belongs to another organization; using generic extraction"],
                **base,
            )

        descriptor = await cache.get(template_id.organization_id, template_id.version)
        if descriptor is None:
            LOGGER.info("Template recognized but not configured", extra={"template_id": template_id.raw})
            return TemplateDetection(
                status=DetectionStatus.RECOGNIZED_UNCONFIGURED,
                warnings=[f"Template {template_id.raw} is recognized but not configured; using generic extraction"],
                **base,
            )

        LOGGER.info("Template recognized", extra={"template_id": template_id.raw, "method": method})
        return TemplateDetection(
            status=DetectionStatus.RECOGNIZED,
            descriptor=descriptor,
            deterministic_prompt=build_deterministic_prompt(descriptor),
            **base,
        )
