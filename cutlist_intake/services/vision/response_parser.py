"""Tagged-variant parser for model responses.

Models answer in a handful of JSON shapes. The response is first decoded
strictly; when that fails the repaired decode from ``parse_json_safely`` is
used. The decoded value is then matched against the known shapes in a fixed
order. Anything else becomes an explicit ``UNPARSEABLE`` variant carrying the
reason, never an empty part list.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from cutlist_intake.utils.json_parser import clean_model_output, parse_json_safely
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

NESTED_LIST_KEYS = ("items", "rows", "cutlist", "data", "results")


class ResponseShape(str, Enum):
    TEMPLATE_OBJECT = "template_object"
    PARTS_OBJECT = "parts_object"
    PARTS_ARRAY = "parts_array"
    NESTED_ITEMS = "nested_items"
    SINGLE_PART = "single_part"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True)
class ParsedResponse:
    """One decoded model response."""

    shape: ResponseShape
    raw_parts: List[Dict[str, Any]] = field(default_factory=list)
    project_info: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    repaired: bool = False
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.shape != ResponseShape.UNPARSEABLE


class _TemplateEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    project_info: Dict[str, Any] = Field(alias="projectInfo")
    parts: List[Dict[str, Any]]


class _PartsEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    parts: List[Dict[str, Any]]
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _match_shape(value: Any, repaired: bool) -> ParsedResponse:
    if isinstance(value, list):
        parts = [item for item in value if isinstance(item, dict)]
        if len(parts) == len(value):
            return ParsedResponse(ResponseShape.PARTS_ARRAY, raw_parts=parts, repaired=repaired)
        return ParsedResponse(
            ResponseShape.UNPARSEABLE,
            repaired=repaired,
            reason=f"array holds {len(value) - len(parts)} non-object item(s)",
        )

    if not isinstance(value, dict):
        return ParsedResponse(
            ResponseShape.UNPARSEABLE, repaired=repaired, reason=f"unexpected JSON type {type(value).__name__}"
        )

    try:
        envelope = _TemplateEnvelope.model_validate(value)
        return ParsedResponse(
            ResponseShape.TEMPLATE_OBJECT,
            raw_parts=envelope.parts,
            project_info=envelope.project_info,
            metadata=value.get("metadata") or {},
            repaired=repaired,
        )
    except PydanticValidationError:
        pass

    try:
        envelope = _PartsEnvelope.model_validate(value)
        return ParsedResponse(
            ResponseShape.PARTS_OBJECT,
            raw_parts=envelope.parts,
            metadata=envelope.metadata,
            repaired=repaired,
        )
    except PydanticValidationError:
        pass

    for key in NESTED_LIST_KEYS:
        nested = value.get(key)
        if isinstance(nested, list) and all(isinstance(item, dict) for item in nested):
            return ParsedResponse(
                ResponseShape.NESTED_ITEMS, raw_parts=nested, metadata={"container": key}, repaired=repaired
            )

    lowered = {str(k).lower() for k in value}
    if {"length", "width"} <= lowered or {"l", "w"} <= lowered:
        return ParsedResponse(ResponseShape.SINGLE_PART, raw_parts=[value], repaired=repaired)

    return ParsedResponse(
        ResponseShape.UNPARSEABLE,
        repaired=repaired,
        reason=f"no parts found in object with keys {sorted(value)[:8]}",
    )


def parse_model_response(text: Optional[str]) -> ParsedResponse:
    """Decode a model response into one of the known shapes.

    Args:
        text: Raw model output

    Returns:
        ParsedResponse: The matched variant (``UNPARSEABLE`` with a reason
        when nothing matched)
    """
    if not text or not text.strip():
        return ParsedResponse(ResponseShape.UNPARSEABLE, reason="empty response")

    try:
        value = json.loads(clean_model_output(text))
        repaired = False
    except json.JSONDecodeError:
        value = parse_json_safely(text)
        repaired = True
        if value is None:
            return ParsedResponse(ResponseShape.UNPARSEABLE, repaired=True, reason="response is not valid JSON")

    parsed = _match_shape(value, repaired)
    LOGGER.debug(
        "Parsed model response",
        extra={"shape": parsed.shape.value, "parts": len(parsed.raw_parts), "repaired": repaired},
    )
    return parsed
