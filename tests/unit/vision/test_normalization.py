"""Unit tests for part normalization."""

import pytest

from cutlist_intake.models.extraction import ParseOptions
from cutlist_intake.services.vision.normalization import (
    normalize_part,
    normalize_parts,
    normalize_project_info,
    parse_dimension,
    parse_quantity,
)


@pytest.fixture
def options() -> ParseOptions:
    return ParseOptions(default_material_id="MAT-WHITE-18", default_thickness_mm=18.0, page_number=2)


class TestValueParsing:
    """Dimension and quantity parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [(720, 720.0), ("720mm", 720.0), ("564,5", 564.5), ('28"', 711.2), ("abc", None), (0, None), (None, None)],
    )
    def test_parse_dimension(self, value, expected):
        assert parse_dimension(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(2, 2), ("x2", 2), ("2pcs", 2), ("(3)", 3), ("?", None), (0, None), (True, None)],
    )
    def test_parse_quantity(self, value, expected):
        assert parse_quantity(value) == expected


class TestNormalizePart:
    """Mapping raw model output to ExtractedPart."""

    def test_template_style_row(self, options):
        raw = {
            "rowNumber": 3,
            "Part Name": "Carcass side",
            "L(mm)": "720",
            "W(mm)": "560",
            "Qty": "2",
            "edge": "2l",
            "groove": "gl",
            "confidence": 95,
        }

        part = normalize_part(raw, options, "vision_text")

        assert part.label == "Carcass side"
        assert (part.length, part.width, part.quantity) == (720.0, 560.0, 2)
        assert part.operations.edging == "2L"
        assert part.operations.grooving == "GL"
        assert part.confidence == 0.95
        assert part.row_number == 3
        assert part.provenance.strategy == "vision_text"
        assert part.provenance.page_number == 2

    def test_structured_operations(self, options):
        raw = {
            "label": "Base",
            "length": 564,
            "width": 520,
            "edgeBanding": {"detected": True, "edges": ["L1", "L2", "W1"]},
            "grooving": {"detected": True, "GL": True, "GW": False},
            "cncOperations": {"detected": False},
        }

        part = normalize_part(raw, options, "vision_image")

        assert part.operations.edging == "2L1W"
        assert part.operations.grooving == "GL"
        assert part.operations.cnc is None

    def test_defaults_are_applied(self, options):
        part = normalize_part({"length": 400, "width": 300}, options, "vision_text")

        assert part.material == "MAT-WHITE-18"
        assert part.thickness == 18.0
        assert part.quantity == 1
        assert part.needs_review is False

    def test_unreadable_quantity_is_flagged(self, options):
        part = normalize_part({"length": 400, "width": 300, "qty": "?"}, options, "vision_text")

        assert part.quantity is None
        assert part.needs_review is True
        assert "missing quantity" in part.review_reasons

    def test_rows_without_dimensions_are_dropped(self, options):
        parts = normalize_parts(
            [{"label": "", "length": None}, {"length": 700, "width": 400}], options, "vision_text"
        )

        assert len(parts) == 1


class TestNormalizeProjectInfo:
    """Header fields from template responses."""

    def test_project_info_fields(self):
        info = normalize_project_info({"projectCode": " K-12 ", "page": 2, "totalPages": "3", "customerName": "Lee"})

        assert info.project_code == "K-12"
        assert (info.page_number, info.total_pages) == (2, 3)
        assert info.customer == "Lee"

    def test_missing_project_info(self):
        assert normalize_project_info(None) is None
