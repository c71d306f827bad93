"""Turns raw part dictionaries from a model into ``ExtractedPart`` records."""

import re
from typing import Any, Dict, Iterable, List, Optional

from cutlist_intake.models.extraction import ParseOptions
from cutlist_intake.models.parts import ExtractedPart, OperationSet, ProjectInfo, Provenance
from cutlist_intake.services.quality.heuristics import review_reasons
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

LABEL_KEYS = ("label", "name", "partName", "part_name", "Part Name", "description")
LENGTH_KEYS = ("length", "L", "l", "L(mm)", "length_mm", "len")
WIDTH_KEYS = ("width", "W", "w", "W(mm)", "width_mm")
THICKNESS_KEYS = ("thickness", "thk", "Thk", "T", "thickness_mm")
QUANTITY_KEYS = ("quantity", "qty", "Qty", "count", "pcs")
MATERIAL_KEYS = ("material", "mat", "Mat", "materialId", "material_id")
ROW_KEYS = ("row", "rowNumber", "row_number", "#")
EDGE_KEYS = ("edgeBanding", "edging", "edge", "Edge", "edgebanding")
GROOVE_KEYS = ("grooving", "groove", "Groove")
DRILL_KEYS = ("drilling", "drill", "Drill", "holes")
CNC_KEYS = ("cncOperations", "cnc", "CNC")

EMPTY_CODES = {"", "-", "0", "n", "no", "none", "null", "x", "false"}
NUMBER = re.compile(r"-?\d+(?:[.,]\d+)?")
INCH_MM = 25.4


def _first(raw: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _has_any(raw: Dict[str, Any], keys: Iterable[str]) -> bool:
    return any(key in raw for key in keys)


def parse_dimension(value: Any) -> Optional[float]:
    """Parse "720", "720mm" or '28.3"' into millimetres."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    text = str(value).strip().lower()
    match = NUMBER.search(text)
    if not match:
        return None
    number = float(match.group().replace(",", "."))
    if '"' in text or text.endswith("in") or "inch" in text:
        number = round(number * INCH_MM, 1)
    return number if number > 0 else None


def parse_quantity(value: Any) -> Optional[int]:
    """Parse "2", "x2", "2pcs" or "(2)" into an integer count."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    match = re.search(r"\d+", str(value))
    if not match:
        return None
    quantity = int(match.group())
    return quantity if quantity > 0 else None


def _edge_code(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if value.get("detected") is False:
            return None
        if value.get("code"):
            return _edge_code(value["code"])
        edges = value.get("edges")
        if not isinstance(edges, list):
            edges = [key for key in ("L1", "L2", "W1", "W2") if value.get(key)]
        long_edges = sum(1 for edge in edges if str(edge).upper().startswith("L"))
        short_edges = sum(1 for edge in edges if str(edge).upper().startswith("W"))
        code = (f"{long_edges}L" if long_edges else "") + (f"{short_edges}W" if short_edges else "")
        return code or None
    return _text_code(value)


def _groove_code(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if value.get("detected") is False:
            return None
        if value.get("code"):
            return _text_code(value["code"])
        flags = [key for key in ("GL", "GW") if value.get(key)]
        if flags:
            return "+".join(flags)
        return _text_code(value.get("description"))
    return _text_code(value)


def _cnc_code(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if value.get("detected") is False:
            return None
        if value.get("code"):
            return _text_code(value["code"])
        if value.get("description"):
            return _text_code(value["description"])
        kinds = [key for key in ("routing", "pockets", "holes", "drilling") if value.get(key)]
        return "+".join(kinds) or None
    return _text_code(value)


def _drill_code(raw: Dict[str, Any]) -> Optional[str]:
    value = _first(raw, DRILL_KEYS)
    if value is None:
        cnc = raw.get("cncOperations")
        if isinstance(cnc, dict):
            value = cnc.get("drilling") or cnc.get("holes")
    if isinstance(value, list):
        value = ", ".join(str(item) for item in value if item)
    return _text_code(value)


def _text_code(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "Y" if value else None
    text = str(value).strip()
    if text.lower() in EMPTY_CODES:
        return None
    return text.upper() if len(text) <= 12 else text


def _confidence(value: Any, default: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    if confidence > 1:
        confidence = confidence / 100
    return max(0.0, min(1.0, confidence))


def normalize_part(
    raw: Dict[str, Any],
    options: ParseOptions,
    strategy: str,
    chunk_index: Optional[int] = None,
    default_confidence: float = 0.8,
) -> Optional[ExtractedPart]:
    """Normalize one raw part.

    Rows with neither length nor width are treated as empty and dropped.
    A quantity key that is present but unreadable is kept as missing so the
    part is flagged; an absent quantity defaults to 1.

    Args:
        raw: Part dictionary from the model
        options: Parse options supplying defaults and page hints
        strategy: Strategy id recorded as provenance
        chunk_index: Chunk the part came from, if chunked

    Returns:
        ExtractedPart or None for empty rows
    """
    length = parse_dimension(_first(raw, LENGTH_KEYS))
    width = parse_dimension(_first(raw, WIDTH_KEYS))
    if length is None and width is None:
        return None

    thickness = parse_dimension(_first(raw, THICKNESS_KEYS)) or options.default_thickness_mm
    quantity = parse_quantity(_first(raw, QUANTITY_KEYS)) if _has_any(raw, QUANTITY_KEYS) else 1
    material = _first(raw, MATERIAL_KEYS)
    material = str(material).strip() if material not in (None, "") else options.default_material_id
    row = _first(raw, ROW_KEYS)

    part = ExtractedPart(
        label=str(_first(raw, LABEL_KEYS) or "").strip(),
        length=length,
        width=width,
        thickness=thickness,
        quantity=quantity,
        material=material,
        operations=OperationSet(
            edging=_edge_code(_first(raw, EDGE_KEYS)),
            grooving=_groove_code(_first(raw, GROOVE_KEYS)),
            drilling=_drill_code(raw),
            cnc=_cnc_code(_first(raw, CNC_KEYS)),
        ),
        confidence=_confidence(raw.get("confidence"), default_confidence),
        provenance=Provenance(strategy=strategy, page_number=options.page_number, chunk_index=chunk_index),
        row_number=parse_quantity(row),
        notes=(str(raw["notes"]).strip() or None) if raw.get("notes") else None,
    )

    reasons = review_reasons(part)
    if reasons:
        part = part.model_copy(update={"needs_review": True, "review_reasons": reasons})
    return part


def normalize_parts(
    raw_parts: List[Dict[str, Any]],
    options: ParseOptions,
    strategy: str,
    chunk_index: Optional[int] = None,
) -> List[ExtractedPart]:
    """Normalize a list of raw parts, dropping empty rows."""
    parts = []
    for raw in raw_parts:
        try:
            part = normalize_part(raw, options, strategy, chunk_index=chunk_index)
        except (TypeError, ValueError) as e:
            LOGGER.warning(f"Skipping malformed part: {e}", extra={"raw": str(raw)[:200]})
            continue
        if part is not None:
            parts.append(part)

    dropped = len(raw_parts) - len(parts)
    if dropped:
        LOGGER.debug(f"Dropped {dropped} empty or malformed rows", extra={"strategy": strategy})
    return parts


def normalize_project_info(raw: Optional[Dict[str, Any]]) -> Optional[ProjectInfo]:
    """Map a ``projectInfo`` object onto ``ProjectInfo``."""
    if not raw:
        return None
    project_code = raw.get("projectCode") or raw.get("project_code")
    return ProjectInfo(
        project_code=str(project_code).strip() if project_code else None,
        page_number=parse_quantity(raw.get("page") or raw.get("pageNumber")),
        total_pages=parse_quantity(raw.get("totalPages") or raw.get("total_pages")),
        customer=raw.get("customerName") or raw.get("customer"),
        notes=raw.get("notes"),
    )
