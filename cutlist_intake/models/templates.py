"""Template layout configuration and detection results."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TEMPLATE_COLUMNS = [
    "#",
    "Part Name",
    "L(mm)",
    "W(mm)",
    "Thk",
    "Qty",
    "Mat",
    "Edge",
    "Groove",
    "Drill",
    "CNC",
    "Notes",
]

SHORTCODE_CATEGORIES = ("edgebanding", "grooving", "drilling", "cnc")


class ShortcodeEntry(BaseModel):
    """One organization-defined operation abbreviation."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: Optional[str] = None


class TemplateDescriptor(BaseModel):
    """Organization-specific layout of a printed cutlist template.

    Read-only for the duration of a request.
    """

    model_config = ConfigDict(frozen=True)

    template_id: str
    organization_id: str
    version: str
    organization_name: Optional[str] = None
    columns: List[str] = Field(default_factory=lambda: list(DEFAULT_TEMPLATE_COLUMNS))
    shortcodes: Dict[str, List[ShortcodeEntry]] = Field(default_factory=dict)

    def shortcodes_for(self, category: str) -> List[ShortcodeEntry]:
        return self.shortcodes.get(category, [])


@dataclass(frozen=True)
class TemplateId:
    """A parsed template identifier.

    Attributes:
        raw: Identifier as found in the document
        version: Layout version ("1.0")
        organization_id: Owning organization, absent for legacy ids
        serial: Serial number carried by legacy ids
    """

    raw: str
    version: str
    organization_id: Optional[str] = None
    serial: Optional[str] = None

    @property
    def is_legacy(self) -> bool:
        return self.organization_id is None


class DetectionStatus(str, Enum):
    NOT_DETECTED = "not_detected"
    RECOGNIZED_UNCONFIGURED = "recognized_unconfigured"
    RECOGNIZED = "recognized"


class TemplateDetection(BaseModel):
    """Outcome of template recognition for one file."""

    status: DetectionStatus = DetectionStatus.NOT_DETECTED
    template_id: Optional[str] = None
    organization_id: Optional[str] = None
    version: Optional[str] = None
    method: Optional[str] = None
    confidence: float = 0.0
    descriptor: Optional[TemplateDescriptor] = None
    deterministic_prompt: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_recognized(self) -> bool:
        return self.status == DetectionStatus.RECOGNIZED

    @classmethod
    def not_detected(cls, warning: Optional[str] = None) -> "TemplateDetection":
        return cls(warnings=[warning] if warning else [])
