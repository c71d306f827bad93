"""Unit tests for upload file type detection."""

import pytest

from cutlist_intake.models.extraction import FileKind
from cutlist_intake.utils.file_types import detect_file_kind, resolve_mime_type


@pytest.mark.parametrize(
    "filename,mime_type,expected",
    [
        ("cuts.pdf", "application/pdf", FileKind.PDF),
        ("cuts.PDF", None, FileKind.PDF),
        ("photo.jpg", "image/jpeg", FileKind.IMAGE),
        ("screenshot", "image/png", FileKind.IMAGE),
        ("photo.webp", "application/octet-stream", FileKind.IMAGE),
        ("cuts.xlsx", None, FileKind.SPREADSHEET),
        ("cuts.csv", "text/csv", FileKind.SPREADSHEET),
        ("notes.docx", None, FileKind.UNKNOWN),
    ],
)
def test_detect_file_kind(filename, mime_type, expected):
    assert detect_file_kind(filename, mime_type) == expected


def test_declared_mime_type_is_normalized():
    assert resolve_mime_type("x", "Image/JPEG; charset=binary") == "image/jpeg"


def test_generic_mime_type_falls_back_to_extension():
    assert resolve_mime_type("scan.pdf", "application/octet-stream") == "application/pdf"
