"""Prompts for generic (non-template) cutlist extraction."""

from typing import Optional

from cutlist_intake.models.extraction import ParseOptions

SYSTEM_PROMPT = """You are a parser for manufacturing cutlists used by cabinet and furniture workshops.
Inputs are photos, scans and exports of part lists: printed tables, handwritten notes and order forms.
Always answer with valid JSON only, with no commentary."""

GENERIC_CUTLIST_PROMPT = """Extract every part from this cutlist.

Recognize dimension formats such as 720x560, 720 x 560, 720mm x 560mm and 28.3" x 22".
Recognize quantity notation such as qty 2, x2, 2pcs, (2), 2 off.
Edge banding columns are usually L1, L2, W1, W2 with ticks; grooves are GL / GW.

Return JSON of the form:
{
  "parts": [
    {
      "row": 1,
      "label": "Side panel",
      "length": 720,
      "width": 560,
      "thickness": 18,
      "quantity": 2,
      "material": "W",
      "edgeBanding": {"detected": true, "edges": ["L1", "L2"]},
      "grooving": {"detected": false, "GL": false, "GW": false},
      "cncOperations": {"detected": false, "holes": [], "routing": [], "description": ""},
      "notes": "",
      "confidence": 0.95
    }
  ]
}

Rules:
- Dimensions are millimetres; length is the grain direction.
- One entry per row; do not merge or invent rows.
- confidence is 0-1 and reflects how clearly the row could be read.
- If there are no parts, return {"parts": []}."""

FREE_FORM_CUTLIST_PROMPT = """Extract every part mentioned in these free-form notes, even where the format is inconsistent.

The text may mix notation styles, natural language ("I need 2 side panels 720x560"),
transcribed handwriting, email excerpts, section headers and job notes.

Recognize:
- Numbered rows with L/W suffixes: "1..2430Lx1210wx 4 pcs" is row 1, length 2430, width 1210, quantity 4.
- Edge codes after the dimensions: "1L" is one long edge, "2L2W" is all four edges, "groove 1L" is GL.
- Dimension formats: 600 x 520, 764*520, 400 by 540, 720×560, 2430Lx1210w.
- Quantity formats: Qty 20, x5, qty:2, (3pcs), QTY=9, pcs 6, (1).
- Section headers such as "Drawer boxes:"; carry the section name into notes.

Return JSON of the form {"parts": [...]} using the same fields as a table row:
row, label, length, width, thickness, quantity, material, edgeBanding, grooving,
cncOperations, notes, confidence.

Rules:
- Dimensions are millimetres; the larger of two unlabelled numbers is the length.
- Do not invent parts that are not mentioned.
- Lower confidence for rows you had to interpret.
- If there are no parts, return {"parts": []}."""

METADATA_SUFFIX = """
Also include a "projectInfo" object with projectCode, page, totalPages and customerName when they are visible."""


def build_generic_prompt(options: ParseOptions) -> str:
    """Prompt used when no template was recognized."""
    prompt = FREE_FORM_CUTLIST_PROMPT if options.is_messy_data else GENERIC_CUTLIST_PROMPT
    if options.extract_metadata:
        prompt += METADATA_SUFFIX
    if options.default_thickness_mm:
        prompt += f"\nWhen thickness is not given, use {options.default_thickness_mm:g}."
    return prompt


def build_text_prompt(text: str, options: ParseOptions, chunk_note: Optional[str] = None) -> str:
    """Prompt for text input (OCR or extracted PDF text)."""
    base = options.deterministic_prompt or build_generic_prompt(options)
    context = []
    if options.page_number and options.total_pages:
        context.append(f"This text is page {options.page_number} of {options.total_pages}.")
    if chunk_note:
        context.append(chunk_note)
    context_block = ("\n" + "\n".join(context)) if context else ""
    return f"{base}{context_block}\n\n---\n\nINPUT DATA:\n{text}\n\nRespond with JSON only."


def build_image_prompt(options: ParseOptions) -> str:
    """Prompt for an image or document attachment."""
    base = options.deterministic_prompt or build_generic_prompt(options)
    if options.page_number and options.total_pages:
        base += f"\nThe attached image is page {options.page_number} of {options.total_pages}."
    return base


def chunk_note(index: int, total: int) -> str:
    return (
        f"This is section {index + 1} of {total} of a longer list. "
        "The header lines are repeated for context; extract only the rows below them."
    )
