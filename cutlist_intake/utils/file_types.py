"""File type detection for uploads."""

import mimetypes
from pathlib import Path
from typing import Optional

from cutlist_intake.models.extraction import FileKind

IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xls", ".xlsm", ".csv", ".ods", ".tsv"}
SPREADSHEET_MIME_TYPES = {
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.oasis.opendocument.spreadsheet",
}


def resolve_mime_type(filename: str, mime_type: Optional[str] = None) -> str:
    """Return the declared MIME type, or one guessed from the extension."""
    if mime_type and mime_type != "application/octet-stream":
        return mime_type.split(";")[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def detect_file_kind(filename: str, mime_type: Optional[str] = None) -> FileKind:
    """Classify an upload as image, PDF, spreadsheet or unknown."""
    extension = Path(filename or "").suffix.lower()
    mime = resolve_mime_type(filename, mime_type)

    if mime == "application/pdf" or extension == ".pdf":
        return FileKind.PDF
    if mime in IMAGE_MIME_TYPES or extension in IMAGE_EXTENSIONS:
        return FileKind.IMAGE
    if mime in SPREADSHEET_MIME_TYPES or extension in SPREADSHEET_EXTENSIONS:
        return FileKind.SPREADSHEET
    return FileKind.UNKNOWN
