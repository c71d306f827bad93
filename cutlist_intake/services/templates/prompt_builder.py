"""Deterministic prompts for recognized templates."""

from typing import List

from cutlist_intake.models.templates import SHORTCODE_CATEGORIES, TemplateDescriptor

CATEGORY_TITLES = {
    "edgebanding": "Edgebanding",
    "grooving": "Grooving",
    "drilling": "Drilling",
    "cnc": "CNC",
}

PROJECT_INFO_FIELDS = [
    "Project Name",
    "Project Code (needed to match pages of one project)",
    "Customer Name",
    "Phone",
    "Customer Email",
    "Section/Area",
    "Page ___ of ___ (needed to order pages)",
]


def _shortcode_lines(descriptor: TemplateDescriptor) -> List[str]:
    lines = []
    for category in SHORTCODE_CATEGORIES:
        entries = descriptor.shortcodes_for(category)
        if not entries:
            continue
        lines.append(f"{CATEGORY_TITLES[category]} codes:")
        for entry in entries:
            meaning = entry.name if not entry.description else f"{entry.name} ({entry.description})"
            lines.append(f"  {entry.code} = {meaning}")
    return lines


def build_deterministic_prompt(descriptor: TemplateDescriptor) -> str:
    """Build a prompt naming the exact column order and shortcode meanings.

    Args:
        descriptor: The organization's template layout

    Returns:
        Prompt text for image or text extraction
    """
    columns = "\n".join(f"{index}. {column}" for index, column in enumerate(descriptor.columns, start=1))
    shortcodes = _shortcode_lines(descriptor)
    shortcode_block = "VALID SHORTCODES:\n" + "\n".join(shortcodes) + "\n\n" if shortcodes else ""
    project_fields = "\n".join(f"- {field}" for field in PROJECT_INFO_FIELDS)

    return f"""You are reading a printed cutlist template with a known column layout.

TEMPLATE:
- Organization: {descriptor.organization_name or descriptor.organization_id}
- Template: {descriptor.template_id} (version {descriptor.version})

COLUMNS (exact order, left to right):
{columns}

{shortcode_block}PROJECT INFORMATION FIELDS (header of the form):
{project_fields}

RULES:
1. The first column is the row number; keep it as "rowNumber".
2. Read filled rows in order and skip empty rows.
3. Handwritten digits are easy to confuse (1/7, 6/0, 5/S); lower confidence when unsure.
4. Operation columns must use the shortcodes listed above exactly.
5. Dimensions are millimetres.

Return JSON:
{{
  "projectInfo": {{"projectName": null, "projectCode": null, "customerName": null, "phone": null,
                  "email": null, "sectionArea": null, "page": null, "totalPages": null}},
  "parts": [
    {{"rowNumber": 1, "label": "Side", "length": 720, "width": 560, "thickness": 18, "quantity": 2,
      "material": "W", "edge": "2L", "groove": null, "drill": null, "cnc": null, "notes": "", "confidence": 0.95}}
  ]
}}

Parse ALL filled rows. Do not summarize."""
