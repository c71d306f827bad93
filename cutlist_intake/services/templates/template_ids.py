"""Template identifier parsing and text marker search."""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cutlist_intake.models.templates import TemplateId

TEMPLATE_ID = re.compile(r"^CAI-(.+)-v(\d+\.\d+)$")
LEGACY_TEMPLATE_ID = re.compile(r"^CAI-(\d+\.\d+)-([A-Z0-9]+)$", re.IGNORECASE)

# Searched inside free text and filenames
EMBEDDED_ID = re.compile(r"\bCAI-([A-Za-z0-9_\-]+?)-v(\d+\.\d+)\b")
EMBEDDED_LEGACY_ID = re.compile(r"\bCAI-(\d+\.\d+)-([A-Z0-9]+)\b", re.IGNORECASE)
EMBEDDED_JSON = re.compile(r"CABINETAI_TEMPLATE\s*:\s*(\{.*?\})", re.IGNORECASE | re.DOTALL)
TEMPLATE_TITLE = re.compile(r"CabinetAI\s+Cutlist\s+Template|CAI\s+Intake\s+Template", re.IGNORECASE)

EMBEDDED_JSON_CONFIDENCE = 0.97
LEGACY_ID_CONFIDENCE = 0.9
TEMPLATE_TITLE_CONFIDENCE = 0.85
TEMPLATE_ID_CONFIDENCE = 0.95


def parse_template_id(value: Optional[str]) -> Optional[TemplateId]:
    """Parse ``CAI-{org}-v{X.Y}`` or the legacy ``CAI-{X.Y}-{serial}``.

    Returns:
        TemplateId, or None if the value is not a template identifier
    """
    if not value:
        return None
    raw = value.strip()

    legacy = LEGACY_TEMPLATE_ID.match(raw)
    if legacy:
        return TemplateId(raw=raw, version=legacy.group(1), serial=legacy.group(2).upper())

    match = TEMPLATE_ID.match(raw)
    if match:
        return TemplateId(raw=raw, version=match.group(2), organization_id=match.group(1))
    return None


@dataclass(frozen=True)
class MarkerMatch:
    """A template marker found in text."""
    kind: str
    confidence: float
    template_id: Optional[TemplateId] = None
    payload: Optional[Dict[str, Any]] = None


def find_text_marker(text: Optional[str]) -> Optional[MarkerMatch]:
    """Search text (or a filename) for the strongest template marker.

    Markers, strongest first: embedded ``CABINETAI_TEMPLATE: {json}``,
    a full template id, a legacy id, a template title line.
    """
    if not text:
        return None

    embedded = EMBEDDED_JSON.search(text)
    if embedded:
        try:
            payload = json.loads(embedded.group(1))
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            template_id = parse_template_id(payload.get("templateId") or payload.get("template_id"))
            return MarkerMatch("embedded_json", EMBEDDED_JSON_CONFIDENCE, template_id, payload)

    match = EMBEDDED_ID.search(text)
    if match:
        return MarkerMatch("template_id", TEMPLATE_ID_CONFIDENCE, parse_template_id(match.group(0)))

    legacy = EMBEDDED_LEGACY_ID.search(text)
    if legacy:
        return MarkerMatch("legacy_id", LEGACY_ID_CONFIDENCE, parse_template_id(legacy.group(0)))

    if TEMPLATE_TITLE.search(text):
        return MarkerMatch("title", TEMPLATE_TITLE_CONFIDENCE)
    return None
