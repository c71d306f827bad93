"""Pure scoring functions over text and part statistics.

Each classifier returns a ``HeuristicLabel`` with the signals it looked at,
so callers can log why a decision was made and tests can exercise the
scoring without any provider in the loop.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cutlist_intake.models.parts import ExtractedPart

DIMENSION_PAIR = re.compile(r"\d+(?:\.\d+)?\s*(?:mm)?\s*[x×X*]\s*\d+")
NUMBER_TOKEN = re.compile(r"(?<![\d.])\d{2,4}(?![\d.])")
CONVERSATIONAL = re.compile(r"\b(please|can you|i need|want|like|same as|thanks)\b", re.IGNORECASE)
PAGE_OF = re.compile(r"page\s*(\d+)\s*(?:of|/)\s*(\d+)", re.IGNORECASE)
CONTINUED = re.compile(r"\b(?:cont(?:inued|'d|\.)|carried forward)\b", re.IGNORECASE)
TEMPLATE_MARKERS = re.compile(
    r"CAI[-\s]?\d+\.\d+|CAI[-\s]?[a-z0-9]+[-\s]?v\d|CAI\s*Intake|Cutlist\s*(?:AI|Assistant)|CabinetAI",
    re.IGNORECASE,
)
COLUMN_HEADERS = (
    "part name",
    "l(mm)",
    "w(mm)",
    "thk",
    "qty",
    "mat",
    "edge",
    "groove",
    "drill",
    "cnc",
    "notes",
    "project code",
)

REVIEW_CONFIDENCE = 0.7
MAX_REASONABLE_LENGTH = 3000
MAX_REASONABLE_WIDTH = 1500
MIN_REASONABLE_DIMENSION = 50
MAX_REASONABLE_QUANTITY = 50


@dataclass
class HeuristicLabel:
    """A label plus how sure the classifier is about it."""

    label: str
    confidence: float
    signals: Dict[str, Any] = field(default_factory=dict)

    def is_(self, label: str, min_confidence: float = 0.5) -> bool:
        return self.label == label and self.confidence >= min_confidence


def _data_rows(lines: Sequence[str]) -> int:
    return sum(1 for line in lines if len(NUMBER_TOKEN.findall(line)) >= 2)


def text_quality_score(text: Optional[str]) -> float:
    """Score how much a block of text looks like a readable cutlist.

    Used as the derived confidence of strategies that report none.
    """
    if not text or not text.strip():
        return 0.0
    stripped = text.strip()
    readable = sum(1 for ch in stripped if ch.isalnum() or ch.isspace() or ch in ".,-x×/()#:")
    readable_ratio = readable / len(stripped)

    lines = [line for line in stripped.splitlines() if line.strip()]
    row_ratio = _data_rows(lines) / len(lines) if lines else 0.0
    has_dimensions = 1.0 if NUMBER_TOKEN.search(stripped) else 0.0

    score = 0.5 * readable_ratio + 0.3 * min(1.0, row_ratio * 2) + 0.2 * has_dimensions
    return round(min(1.0, score), 3)


def classify_text_messiness(text: Optional[str]) -> HeuristicLabel:
    """Label text as ``messy`` (free-form notes) or ``structured`` (a table)."""
    text = text or ""
    lines = [line for line in text.splitlines() if line.strip()]
    signals = {
        "line_count": len(lines),
        "has_dimension_pairs": bool(DIMENSION_PAIR.search(text)),
        "conversational": bool(CONVERSATIONAL.search(text)),
        "data_rows": _data_rows(lines),
    }

    if len(lines) < 3 and len(text) < 100:
        return HeuristicLabel("messy", 0.8, signals)
    if signals["conversational"]:
        return HeuristicLabel("messy", 0.75, signals)

    row_ratio = signals["data_rows"] / len(lines) if lines else 0.0
    signals["row_ratio"] = round(row_ratio, 3)
    if row_ratio >= 0.5:
        return HeuristicLabel("structured", min(0.95, 0.5 + row_ratio / 2), signals)
    if not signals["has_dimension_pairs"] and row_ratio < 0.2:
        return HeuristicLabel("messy", 0.6, signals)
    return HeuristicLabel("structured", 0.5, signals)


def classify_blank_template(text: Optional[str], filename: Optional[str] = None) -> HeuristicLabel:
    """Label a document as ``blank_template`` when it has layout but no rows."""
    text = text or ""
    lowered = text.lower()
    lines = [line for line in text.splitlines() if line.strip()]
    header_hits = sum(1 for header in COLUMN_HEADERS if header in lowered)
    has_marker = bool(TEMPLATE_MARKERS.search(text))
    filename_marker = bool(filename and (TEMPLATE_MARKERS.search(filename) or "template" in filename.lower()))
    data_rows = _data_rows(lines)

    signals = {
        "header_hits": header_hits,
        "template_marker": has_marker,
        "filename_marker": filename_marker,
        "data_rows": data_rows,
    }

    if data_rows >= 2:
        return HeuristicLabel("filled", min(0.95, 0.5 + data_rows * 0.1), signals)
    if (has_marker or filename_marker) and header_hits >= 3:
        return HeuristicLabel("blank_template", 0.9, signals)
    if header_hits >= 4:
        return HeuristicLabel("blank_template", 0.75, signals)
    if has_marker or filename_marker:
        return HeuristicLabel("blank_template", 0.55, signals)
    return HeuristicLabel("unknown", 0.3, signals)


def classify_continuation_page(text: Optional[str]) -> HeuristicLabel:
    """Label a page as ``continuation`` of a previous page or ``first_page``."""
    text = text or ""
    lowered = text.lower()
    page_match = PAGE_OF.search(text)
    signals: Dict[str, Any] = {
        "page_number": int(page_match.group(1)) if page_match else None,
        "total_pages": int(page_match.group(2)) if page_match else None,
        "continued_marker": bool(CONTINUED.search(text)),
        "header_hits": sum(1 for header in COLUMN_HEADERS if header in lowered),
    }

    if signals["page_number"] and signals["page_number"] > 1:
        return HeuristicLabel("continuation", 0.9, signals)
    if signals["continued_marker"]:
        return HeuristicLabel("continuation", 0.7, signals)
    if signals["page_number"] == 1 or signals["header_hits"] >= 3:
        return HeuristicLabel("first_page", 0.7, signals)
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    leading = re.match(r"(\d{1,3})\b", first_line)
    if leading and int(leading.group(1)) > 1 and signals["header_hits"] == 0:
        signals["leading_row_number"] = int(leading.group(1))
        return HeuristicLabel("continuation", 0.6, signals)
    return HeuristicLabel("first_page", 0.4, signals)


def review_reasons(part: ExtractedPart) -> List[str]:
    """Reasons a part should be checked by a person."""
    reasons = []
    if part.confidence < REVIEW_CONFIDENCE:
        reasons.append(f"low confidence ({part.confidence:.2f})")
    if part.length and part.length > MAX_REASONABLE_LENGTH:
        reasons.append(f"unusually long ({part.length:g}mm)")
    if part.width and part.width > MAX_REASONABLE_WIDTH:
        reasons.append(f"unusually wide ({part.width:g}mm)")
    if (part.length and part.length < MIN_REASONABLE_DIMENSION) or (
        part.width and part.width < MIN_REASONABLE_DIMENSION
    ):
        reasons.append("very small dimension")
    if part.quantity and part.quantity > MAX_REASONABLE_QUANTITY:
        reasons.append(f"high quantity ({part.quantity})")
    missing = part.missing_required_fields()
    if missing:
        reasons.append(f"missing {', '.join(missing)}")
    return reasons


def detect_consecutive_duplicates(parts: Sequence[ExtractedPart], threshold: int = 10) -> List[str]:
    """Report runs of identical dimensions that look like a model loop.

    Diagnostic only: the parts are kept as extracted.
    """
    warnings = []
    run_start = 0
    for index in range(1, len(parts) + 1):
        same = (
            index < len(parts)
            and parts[index].length == parts[run_start].length
            and parts[index].width == parts[run_start].width
        )
        if same:
            continue
        run_length = index - run_start
        if run_length >= threshold:
            first = parts[run_start]
            warnings.append(
                f"{run_length} consecutive rows share dimensions "
                f"{first.length:g}x{first.width:g}; check for repeated extraction"
                if first.length and first.width
                else f"{run_length} consecutive rows share the same dimensions"
            )
        run_start = index
    return warnings
