"""Best-effort work that must never affect an extraction result.

Archiving uploads and writing audit records run as detached tasks; their
errors are logged and otherwise dropped.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Dict, Optional, Set

from cutlist_intake.models.extraction import UploadedDocument
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DetachedTaskGroup:
    """Fire-and-forget tasks with their own error channel."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_done(name, done))
        return task

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            LOGGER.debug(f"Side effect {name} cancelled")
            return
        error = task.exception()
        if error is not None:
            LOGGER.warning(f"Side effect {name} failed: {error}", extra={"side_effect": name})

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding tasks; used on shutdown and in tests."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)


class UploadArchive(ABC):
    @abstractmethod
    async def archive(self, document: UploadedDocument) -> str:
        """Store the original upload; returns its location."""


class FileSystemArchive(UploadArchive):
    """Writes uploads under ``{directory}/{organization_id}/``."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    async def archive(self, document: UploadedDocument) -> str:
        target_dir = self.directory / (document.organization_id or "unassigned")
        target = target_dir / f"{document.file_id or 'upload'}_{Path(document.filename).name}"

        def write() -> None:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(document.content)

        await asyncio.to_thread(write)
        LOGGER.debug("Upload archived", extra={"path": str(target)})
        return str(target)


class AuditRecorder(ABC):
    @abstractmethod
    async def record(self, event: str, details: Dict[str, Any]) -> None:
        """Persist an audit event."""


class LoggingAuditRecorder(AuditRecorder):
    """Writes audit events to the application log as JSON."""

    async def record(self, event: str, details: Dict[str, Any]) -> None:
        LOGGER.info(f"AUDIT {event} {json.dumps(details, default=str, sort_keys=True)}")
