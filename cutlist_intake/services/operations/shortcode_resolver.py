"""Resolution of operation shortcodes to organization descriptions."""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Sequence

from cutlist_intake.models.parts import ExtractedPart
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Part operation field -> catalog category
OPERATION_CATEGORIES = {
    "edging": "edgebanding",
    "grooving": "grooving",
    "drilling": "drilling",
    "cnc": "cnc",
}


class ShortcodeResolver(ABC):
    @abstractmethod
    async def resolve(self, parts: Sequence[ExtractedPart], organization_id: str) -> List[ExtractedPart]:
        """Return copies of ``parts`` with ``operations.resolved`` filled in."""


class CatalogShortcodeResolver(ShortcodeResolver):
    """Looks shortcodes up in per-organization catalogs.

    Catalogs map category -> shortcode -> description, e.g.
    ``{"edgebanding": {"2L": "Both long edges"}}``. Matching ignores case.
    """

    def __init__(self, catalogs: Mapping[str, Mapping[str, Mapping[str, str]]] = None):
        self.catalogs: Dict[str, Dict[str, Dict[str, str]]] = {
            org: {
                category: {code.upper(): description for code, description in codes.items()}
                for category, codes in categories.items()
            }
            for org, categories in (catalogs or {}).items()
        }

    async def resolve(self, parts: Sequence[ExtractedPart], organization_id: str) -> List[ExtractedPart]:
        catalog = self.catalogs.get(organization_id)
        if not catalog:
            return list(parts)

        resolved_parts = []
        unknown = set()
        for part in parts:
            resolved = dict(part.operations.resolved)
            for field, code in part.operations.codes().items():
                description = catalog.get(OPERATION_CATEGORIES[field], {}).get(code.upper())
                if description:
                    resolved[field] = description
                else:
                    unknown.add(code)
            if resolved == part.operations.resolved:
                resolved_parts.append(part)
                continue
            operations = part.operations.model_copy(update={"resolved": resolved})
            resolved_parts.append(part.model_copy(update={"operations": operations}))

        if unknown:
            LOGGER.info(
                "Unknown operation shortcodes",
                extra={"organization_id": organization_id, "codes": sorted(unknown)},
            )
        return resolved_parts
