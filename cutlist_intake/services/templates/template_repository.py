"""Lookup of organization template layouts."""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Tuple

from cutlist_intake.models.templates import TemplateDescriptor
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TemplateRepository(ABC):
    @abstractmethod
    async def get(self, organization_id: str, version: str) -> Optional[TemplateDescriptor]:
        """Return the layout for an organization and version, if configured."""


class InMemoryTemplateRepository(TemplateRepository):
    """Template layouts registered at startup or in tests."""

    def __init__(self, descriptors: Optional[Iterable[TemplateDescriptor]] = None):
        self._descriptors: Dict[Tuple[str, str], TemplateDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: TemplateDescriptor) -> None:
        self._descriptors[(descriptor.organization_id, descriptor.version)] = descriptor

    async def get(self, organization_id: str, version: str) -> Optional[TemplateDescriptor]:
        return self._descriptors.get((organization_id, version))


class RequestTemplateCache(TemplateRepository):
    """Per-request memo in front of another repository.

    A new instance is created for each upload so layouts are never shared
    across requests.
    """

    def __init__(self, repository: TemplateRepository):
        self.repository = repository
        self._cache: Dict[Tuple[str, str], Optional[TemplateDescriptor]] = {}

    async def get(self, organization_id: str, version: str) -> Optional[TemplateDescriptor]:
        key = (organization_id, version)
        if key not in self._cache:
            self._cache[key] = await self.repository.get(organization_id, version)
            LOGGER.debug(
                "Template lookup",
                extra={"organization_id": organization_id, "version": version, "found": self._cache[key] is not None},
            )
        return self._cache[key]
