# -*- coding: utf-8 -*-
"""
TRRCMS Import Pipeline Service Layer
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "ImportPipelineService",
    "CommitEngine",
    "ConflictQueueService",
    "DuplicateMatcher",
    "RecordValidator",
    "UHCContainerService",
    "VocabularyService",
    "StaticVocabularyValidator",
    "DatabaseAuditSink",
    "FileSystemAttachmentStore",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name == "ImportPipelineService":
        from .package_service import ImportPipelineService
        return ImportPipelineService
    elif name == "CommitEngine":
        from .commit_service import CommitEngine
        return CommitEngine
    elif name == "ConflictQueueService":
        from .conflict_resolution import ConflictQueueService
        return ConflictQueueService
    elif name == "DuplicateMatcher":
        from .matching_service import DuplicateMatcher
        return DuplicateMatcher
    elif name == "RecordValidator":
        from .record_validator import RecordValidator
        return RecordValidator
    elif name == "UHCContainerService":
        from .uhc_container_service import UHCContainerService
        return UHCContainerService
    elif name == "VocabularyService":
        from .vocab_service import VocabularyService
        return VocabularyService
    elif name == "StaticVocabularyValidator":
        from .vocab_service import StaticVocabularyValidator
        return StaticVocabularyValidator
    elif name == "DatabaseAuditSink":
        from .audit_service import DatabaseAuditSink
        return DatabaseAuditSink
    elif name == "FileSystemAttachmentStore":
        from .attachment_store import FileSystemAttachmentStore
        return FileSystemAttachmentStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
