"""Splits oversized cutlist text into chunks a model can process whole.

Two layouts are handled. Line-structured text (exported PDFs, most OCR
output) is grouped by lines under a repeated header block. OCR output that
collapsed a whole table onto one line is split at detected row starts, or at
safe character positions when no row pattern can be found.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from cutlist_intake.models.parts import ExtractedPart
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

# index token, one to four words, then a 2-4 digit dimension
ROW_SIGNATURE = re.compile(
    r"(?<!\S)\d{1,3}[.)]?\s+[A-Za-z][\w\-/&']*(?:\s+[A-Za-z][\w\-/&']*){0,3}\s+\d{2,4}(?!\d)"
)
SAFE_SPLIT = re.compile(r"[A-Za-z]\s+(?=\d)")
HEADER_BREAK = re.compile(r"\d{3,}")
DATA_LINE = re.compile(r"\d")

CHARS_PER_ROW_ESTIMATE = 50


@dataclass(frozen=True)
class TextChunk:
    """One chunk of a larger document.

    Attributes:
        index: Position of the chunk in the document (0-based)
        header: Context repeated at the top of every chunk
        body: The rows owned by this chunk
        row_count: Number of rows in ``body``
    """

    index: int
    header: str
    body: str
    row_count: int

    def render(self) -> str:
        if not self.header:
            return self.body
        return f"{self.header}\n{self.body}"


class TextChunker:
    """Row-aware text splitter."""

    def __init__(
        self,
        rows_per_chunk: int = 75,
        min_line_length: int = 8,
        min_row_boundaries: int = 5,
        max_header_lines: int = 6,
        max_header_chars: int = 400,
        window_chars: Optional[int] = None,
        min_window_ratio: float = 0.3,
    ):
        """Initialize the chunker.

        Args:
            rows_per_chunk: Default maximum rows per chunk
            min_line_length: Lines at least this long count as real rows
            min_row_boundaries: Row signatures needed before trusting them
            max_header_lines: Upper bound on the repeated header block
            max_header_chars: Upper bound on a flattened-text header prefix
            window_chars: Character window for the last-resort split
            min_window_ratio: Trailing windows smaller than this share of a
                window are merged into the previous one
        """
        self.rows_per_chunk = rows_per_chunk
        self.min_line_length = min_line_length
        self.min_row_boundaries = min_row_boundaries
        self.max_header_lines = max_header_lines
        self.max_header_chars = max_header_chars
        self.window_chars = window_chars
        self.min_window_ratio = min_window_ratio

    def has_line_structure(self, text: str) -> bool:
        """Whether most non-empty lines are long enough to be rows."""
        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) < 2:
            return False
        long_lines = sum(1 for line in lines if len(line.strip()) >= self.min_line_length)
        return long_lines * 2 > len(lines)

    def estimate_rows(self, text: str) -> int:
        """Estimate how many data rows the text holds."""
        if not text or not text.strip():
            return 0
        if self.has_line_structure(text):
            _, data_lines = self._split_header(text.splitlines())
            return sum(1 for line in data_lines if DATA_LINE.search(line))

        boundaries = self._row_boundaries(text)
        if len(boundaries) >= self.min_row_boundaries:
            return len(boundaries)
        return len(text) // CHARS_PER_ROW_ESTIMATE

    def split(self, text: str, rows_per_chunk: Optional[int] = None) -> List[TextChunk]:
        """Split text into ordered chunks.

        Text that fits in one chunk (including empty text) is returned
        unchanged as a single chunk.

        Args:
            text: Raw document text
            rows_per_chunk: Override for the maximum rows per chunk

        Returns:
            List[TextChunk]: Chunks in document order
        """
        limit = rows_per_chunk or self.rows_per_chunk
        estimated = self.estimate_rows(text)
        if estimated <= limit:
            return [TextChunk(index=0, header="", body=text, row_count=estimated)]

        if self.has_line_structure(text):
            chunks = self._split_lines(text, limit)
            mode = "lines"
        else:
            boundaries = self._row_boundaries(text)
            if len(boundaries) >= self.min_row_boundaries:
                chunks = self._split_boundaries(text, boundaries, limit)
                mode = "row_signature"
            else:
                chunks = self._split_windows(text, limit)
                mode = "char_windows"

        LOGGER.info(
            f"Split text into {len(chunks)} chunks",
            extra={"mode": mode, "estimated_rows": estimated, "rows_per_chunk": limit},
        )
        return chunks

    def chunk_text(self, text: str, rows_per_chunk: Optional[int] = None) -> List[str]:
        """Split text and return each chunk ready to submit."""
        return [chunk.render() for chunk in self.split(text, rows_per_chunk)]

    def _split_header(self, lines: Sequence[str]):
        header: List[str] = []
        index = 0
        for index, line in enumerate(lines):
            if HEADER_BREAK.search(line) or len(header) >= self.max_header_lines:
                break
            header.append(line)
        else:
            # no line carries a dimension: nothing to treat as header
            return [], [line for line in lines if line.strip()]
        data_lines = [line for line in lines[index:] if line.strip()]
        return [line for line in header if line.strip()], data_lines

    def _split_lines(self, text: str, limit: int) -> List[TextChunk]:
        header_lines, data_lines = self._split_header(text.splitlines())
        header = "\n".join(header_lines)
        chunks = []
        for start in range(0, len(data_lines), limit):
            window = data_lines[start:start + limit]
            chunks.append(
                TextChunk(index=len(chunks), header=header, body="\n".join(window), row_count=len(window))
            )
        return chunks

    def _row_boundaries(self, text: str) -> List[int]:
        return [match.start() for match in ROW_SIGNATURE.finditer(text)]

    def _split_boundaries(self, text: str, boundaries: List[int], limit: int) -> List[TextChunk]:
        prefix = text[:boundaries[0]].strip()
        if len(prefix) <= self.max_header_chars:
            header = prefix
            starts = list(boundaries)
        else:
            header = ""
            starts = [0] + list(boundaries[1:])

        segments = [
            text[start:end] for start, end in zip(starts, starts[1:] + [len(text)])
        ]
        chunks = []
        for first in range(0, len(segments), limit):
            group = segments[first:first + limit]
            chunks.append(
                TextChunk(
                    index=len(chunks),
                    header=header,
                    body="".join(group).strip(),
                    row_count=len(group),
                )
            )
        return chunks

    def _split_windows(self, text: str, limit: int) -> List[TextChunk]:
        window = self.window_chars or limit * CHARS_PER_ROW_ESTIMATE
        bodies: List[str] = []
        position = 0
        while position < len(text):
            target = position + window
            end = len(text) if target >= len(text) else self._snap(text, target, position, window)
            bodies.append(text[position:end])
            position = end

        if len(bodies) > 1 and len(bodies[-1].strip()) < window * self.min_window_ratio:
            tail = bodies.pop()
            bodies[-1] += tail

        return [
            TextChunk(
                index=i,
                header="",
                body=body,
                row_count=max(1, len(body) // CHARS_PER_ROW_ESTIMATE),
            )
            for i, body in enumerate(bodies)
        ]

    def _snap(self, text: str, target: int, floor: int, window: int) -> int:
        """Move a window edge to the closest safe split point."""
        radius = max(1, window // 4)
        low = max(floor + 1, target - radius)
        high = min(len(text), target + radius)

        best = None
        for match in SAFE_SPLIT.finditer(text, low, high):
            split_at = match.end()
            if split_at <= floor:
                continue
            if best is None or abs(split_at - target) < abs(best - target):
                best = split_at
        if best is not None:
            return best

        space = text.rfind(" ", low, target)
        return space + 1 if space > floor else target


def merge_chunk_parts(
    chunk_results: Sequence[Sequence[ExtractedPart]],
    overlap_window: int = 3,
) -> List[ExtractedPart]:
    """Concatenate per-chunk parts in order.

    A part whose dimension key matches one of the last ``overlap_window``
    parts of the previous chunk is treated as repeated across the boundary
    and dropped. Row numbers are reassigned sequentially.
    """
    merged: List[ExtractedPart] = []
    previous_tail: List[str] = []
    dropped = 0

    for parts in chunk_results:
        for position, part in enumerate(parts):
            if position < overlap_window and part.dimension_key() in previous_tail:
                dropped += 1
                continue
            merged.append(part)
        previous_tail = [part.dimension_key() for part in list(parts)[-overlap_window:]]

    if dropped:
        LOGGER.info(f"Dropped {dropped} parts repeated across chunk boundaries")

    return [part.model_copy(update={"row_number": row}) for row, part in enumerate(merged, start=1)]
