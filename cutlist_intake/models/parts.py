"""Part records produced by extraction."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationSet(BaseModel):
    """Manufacturing operations attached to a part, as shortcodes.

    Attributes:
        edging: Edge banding shortcode (e.g. "2L2W")
        grooving: Grooving shortcode (e.g. "GL")
        drilling: Drilling shortcode or hole pattern
        cnc: CNC operation shortcode or description
        resolved: Organization-specific descriptions keyed by operation kind
    """

    model_config = ConfigDict(frozen=True)

    edging: Optional[str] = None
    grooving: Optional[str] = None
    drilling: Optional[str] = None
    cnc: Optional[str] = None
    resolved: Dict[str, str] = Field(default_factory=dict)

    def codes(self) -> Dict[str, str]:
        """Return the non-empty shortcodes keyed by operation kind."""
        return {
            kind: code
            for kind, code in (
                ("edging", self.edging),
                ("grooving", self.grooving),
                ("drilling", self.drilling),
                ("cnc", self.cnc),
            )
            if code
        }


class Provenance(BaseModel):
    """Where a part came from."""

    model_config = ConfigDict(frozen=True)

    strategy: str
    page_number: Optional[int] = None
    chunk_index: Optional[int] = None


class ExtractedPart(BaseModel):
    """One physical piece to be cut.

    Instances are frozen once normalized; enrichment steps such as shortcode
    resolution or row renumbering produce copies via ``model_copy``.
    """

    model_config = ConfigDict(frozen=True)

    label: str = ""
    length: Optional[float] = None
    width: Optional[float] = None
    thickness: Optional[float] = 18.0
    quantity: Optional[int] = 1
    material: Optional[str] = None
    operations: OperationSet = Field(default_factory=OperationSet)
    confidence: float = 0.8
    provenance: Provenance = Field(default_factory=lambda: Provenance(strategy="unknown"))
    row_number: Optional[int] = None
    notes: Optional[str] = None
    needs_review: bool = False
    review_reasons: List[str] = Field(default_factory=list)

    def missing_required_fields(self) -> List[str]:
        """Return the names of required fields that are absent."""
        missing = []
        if not self.length:
            missing.append("length")
        if not self.width:
            missing.append("width")
        if not self.quantity:
            missing.append("quantity")
        return missing

    def dimension_key(self) -> str:
        """Key used to spot the same row repeated across chunk boundaries."""
        return (
            f"{self.length}x{self.width}x{self.thickness or 18}"
            f"_q{self.quantity or 1}_{self.material or ''}"
        )


class ProjectInfo(BaseModel):
    """Header fields printed on a template page."""

    project_code: Optional[str] = None
    page_number: Optional[int] = None
    total_pages: Optional[int] = None
    customer: Optional[str] = None
    notes: Optional[str] = None
