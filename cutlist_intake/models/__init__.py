"""Domain models for cutlist extraction."""

from cutlist_intake.models.page_data import PageData
from cutlist_intake.models.parts import ExtractedPart, OperationSet, ProjectInfo, Provenance
from cutlist_intake.models.templates import (
    DetectionStatus,
    TemplateDescriptor,
    TemplateDetection,
    TemplateId,
)
from cutlist_intake.models.sessions import (
    AutoAcceptDecision,
    MultiPageMergeResult,
    PageRegistration,
    ParseSession,
    RegistrationResult,
    SessionStatus,
)
from cutlist_intake.models.extraction import (
    DocumentCandidate,
    ExtractionAttempt,
    ExtractionFailure,
    ExtractionOutcome,
    FileKind,
    ParseOptions,
    ProviderParseResult,
    Strategy,
    UploadedDocument,
)

__all__ = [
    "PageData",
    "ExtractedPart",
    "OperationSet",
    "ProjectInfo",
    "Provenance",
    "DetectionStatus",
    "TemplateDescriptor",
    "TemplateDetection",
    "TemplateId",
    "AutoAcceptDecision",
    "MultiPageMergeResult",
    "PageRegistration",
    "ParseSession",
    "RegistrationResult",
    "SessionStatus",
    "DocumentCandidate",
    "ExtractionAttempt",
    "ExtractionFailure",
    "ExtractionOutcome",
    "FileKind",
    "ParseOptions",
    "ProviderParseResult",
    "Strategy",
    "UploadedDocument",
]
