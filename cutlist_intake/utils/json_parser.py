import json
import re
from typing import Any, Dict, List, Optional, Union

from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

JSONValue = Union[Dict[str, Any], List[Any]]

MAX_REPAIR_ATTEMPTS = 200

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def clean_model_output(text: str) -> str:
    """Strip markdown fences and any prose before the first JSON bracket."""
    cleaned = _FENCE.sub("", (text or "").strip()).strip()
    starts = [i for i in (cleaned.find("["), cleaned.find("{")) if i != -1]
    if starts and min(starts) > 0:
        cleaned = cleaned[min(starts):]
    return cleaned


def parse_json_safely(text: str) -> Optional[JSONValue]:
    """Parse JSON from model output, handling common formatting issues.

    Handles:
    - Markdown code blocks (```json ... ```) and leading prose
    - Concatenated JSON values ({...}\\n{...} or [...]\\n[...])
    - Arrays cut off mid-element (keeps the complete elements)

    Args:
        text: The text containing JSON

    Returns:
        Parsed JSON value or None if nothing could be recovered
    """
    if not text:
        return None

    cleaned = clean_model_output(text)
    if not cleaned:
        return None

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Initial JSON parse failed: {e}, attempting repairs...")
        error = e

    if "Extra data" in str(error):
        merged = _parse_concatenated_json(cleaned)
        if merged is not None:
            LOGGER.info("Parsed concatenated JSON values into a single result")
            return merged

    repaired = _close_truncated_array(cleaned)
    if repaired is not None:
        LOGGER.info("Recovered complete elements from truncated JSON")
        return repaired

    LOGGER.error(f"Failed to parse JSON: {error}")
    return None


def _parse_concatenated_json(text: str) -> Optional[JSONValue]:
    """Decode back-to-back JSON values and merge them.

    Lists are flattened; dicts carrying a ``parts`` list have their parts
    concatenated into the first dict.
    """
    decoder = json.JSONDecoder()
    values = []
    index = 0
    while index < len(text):
        while index < len(text) and text[index].isspace():
            index += 1
        if index >= len(text):
            break
        try:
            value, index = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            break
        values.append(value)

    if not values:
        return None
    if len(values) == 1:
        return values[0]

    if all(isinstance(v, list) for v in values):
        return [item for value in values for item in value]

    if all(isinstance(v, dict) for v in values):
        merged = dict(values[0])
        if isinstance(merged.get("parts"), list):
            merged["parts"] = list(merged["parts"])
            for value in values[1:]:
                merged["parts"].extend(value.get("parts") or [])
            return merged
        return list(values)

    return values[0]


def _close_truncated_array(text: str) -> Optional[JSONValue]:
    """Cut the payload after the last complete array element and close it.

    Works for a top-level array and for ``{"parts": [...`` objects.
    """
    last_close = text.rfind("}")
    attempts = 0
    while last_close > 0 and attempts < MAX_REPAIR_ATTEMPTS:
        attempts += 1
        candidate = text[: last_close + 1]
        for suffix in ("]", "]}", "]}}"):
            try:
                return json.loads(candidate + suffix)
            except json.JSONDecodeError:
                continue
        last_close = text.rfind("}", 0, last_close)
    return None
