# -*- coding: utf-8 -*-
"""
Import package entity model.

One ImportPackage exists per uploaded .uhc package. Its status is the
pipeline state machine; only the import pipeline mutates it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
import uuid

from utils.datetime_utils import utc_now, to_isoformat


class ImportStatus(Enum):
    """Package lifecycle states."""
    RECEIVED = "Received"
    STAGING = "Staging"
    VALIDATING = "Validating"
    REVIEWING_CONFLICTS = "ReviewingConflicts"
    READY_TO_COMMIT = "ReadyToCommit"
    COMMITTING = "Committing"
    COMPLETED = "Completed"
    PARTIALLY_COMPLETED = "PartiallyCompleted"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    QUARANTINED = "Quarantined"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[ImportStatus] = frozenset({
    ImportStatus.COMPLETED,
    ImportStatus.PARTIALLY_COMPLETED,
    ImportStatus.FAILED,
    ImportStatus.CANCELLED,
    ImportStatus.QUARANTINED,
})

# Statuses from which each operation may run
STAGE_ALLOWED = frozenset({ImportStatus.RECEIVED, ImportStatus.STAGING})
VALIDATE_ALLOWED = frozenset({
    ImportStatus.STAGING,
    ImportStatus.VALIDATING,
    ImportStatus.REVIEWING_CONFLICTS,
    ImportStatus.READY_TO_COMMIT,
})
DETECT_ALLOWED = frozenset({
    ImportStatus.STAGING,
    ImportStatus.VALIDATING,
    ImportStatus.REVIEWING_CONFLICTS,
})
APPROVE_ALLOWED = frozenset({ImportStatus.REVIEWING_CONFLICTS, ImportStatus.READY_TO_COMMIT})
COMMIT_ALLOWED = frozenset({ImportStatus.READY_TO_COMMIT})
QUARANTINE_ALLOWED = frozenset({ImportStatus.RECEIVED, ImportStatus.STAGING})
RESET_COMMIT_ALLOWED = frozenset({ImportStatus.COMMITTING, ImportStatus.FAILED})
RETENTION_PURGE_STATUSES = frozenset({
    ImportStatus.COMPLETED,
    ImportStatus.PARTIALLY_COMPLETED,
    ImportStatus.FAILED,
    ImportStatus.CANCELLED,
})


def generate_package_number(year: int, sequence: int) -> str:
    """Human-readable package number, e.g. PKG-2025-0042."""
    return f"PKG-{year}-{sequence:04d}"


@dataclass
class ImportPackage:
    """
    Uploaded field package and its pipeline state.

    Counters mirror the latest validation, detection and commit runs so that
    a commit report can still be produced after staging data is purged.
    """

    # Identity
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    package_number: str = ""
    package_id: Optional[str] = None  # From manifest, unique per package
    file_name: str = ""
    file_size_bytes: int = 0
    file_path: Optional[str] = None

    # Manifest data
    checksum: Optional[str] = None
    device_id: Optional[str] = None
    exported_by_user_id: Optional[str] = None
    schema_version: Optional[str] = None
    vocabulary_versions: Dict[str, str] = field(default_factory=dict)
    package_created_at: Optional[datetime] = None
    package_exported_at: Optional[datetime] = None

    # Integrity
    is_checksum_valid: Optional[bool] = None
    is_vocabulary_compatible: Optional[bool] = None
    vocabulary_issues: list = field(default_factory=list)

    status: ImportStatus = ImportStatus.RECEIVED

    # Staging / validation counters
    staged_count: int = 0
    valid_count: int = 0
    warning_count: int = 0
    invalid_count: int = 0
    skipped_count: int = 0

    # Detection counters
    conflict_count: int = 0
    person_duplicate_count: int = 0
    property_duplicate_count: int = 0

    # Commit counters
    committed_count: int = 0
    failed_count: int = 0
    commit_skipped_count: int = 0
    duplicate_attachments_found: int = 0
    deduplication_bytes_saved: int = 0
    merges_performed: int = 0

    # Lifecycle timestamps
    uploaded_at: datetime = field(default_factory=utc_now)
    staged_at: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    committed_at: Optional[datetime] = None
    uploaded_by: Optional[str] = None
    committed_by: Optional[str] = None

    # Archive
    archive_path: Optional[str] = None
    is_archived: bool = False

    error_message: Optional[str] = None
    processing_notes: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, package_number: str, file_name: str, file_size_bytes: int,
               uploaded_by: str, **kwargs) -> "ImportPackage":
        """Factory for a freshly uploaded package."""
        return cls(
            package_number=package_number,
            file_name=file_name,
            file_size_bytes=file_size_bytes,
            uploaded_by=uploaded_by,
            **kwargs
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def add_processing_note(self, note: str) -> None:
        """Append a line to the processing notes."""
        if self.processing_notes:
            self.processing_notes = f"{self.processing_notes}\n{note}"
        else:
            self.processing_notes = note

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "package_number": self.package_number,
            "package_id": self.package_id,
            "file_name": self.file_name,
            "file_size_bytes": self.file_size_bytes,
            "status": self.status.value,
            "device_id": self.device_id,
            "exported_by_user_id": self.exported_by_user_id,
            "schema_version": self.schema_version,
            "is_checksum_valid": self.is_checksum_valid,
            "is_vocabulary_compatible": self.is_vocabulary_compatible,
            "staged_count": self.staged_count,
            "valid_count": self.valid_count,
            "warning_count": self.warning_count,
            "invalid_count": self.invalid_count,
            "skipped_count": self.skipped_count,
            "conflict_count": self.conflict_count,
            "committed_count": self.committed_count,
            "failed_count": self.failed_count,
            "commit_skipped_count": self.commit_skipped_count,
            "uploaded_at": to_isoformat(self.uploaded_at),
            "committed_at": to_isoformat(self.committed_at),
            "archive_path": self.archive_path,
            "error_message": self.error_message,
            "processing_notes": self.processing_notes,
        }
