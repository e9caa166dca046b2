# -*- coding: utf-8 -*-
"""
Commit report model.

Derived on read from the package counters and the staging records'
committed entity links; never stored as its own row.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from utils.datetime_utils import to_isoformat


@dataclass
class CommitError:
    """A single record that failed to commit."""
    entity_type: str
    staging_record_id: str
    original_entity_id: str
    error_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "staging_record_id": self.staging_record_id,
            "original_entity_id": self.original_entity_id,
            "error_message": self.error_message,
        }


@dataclass
class EntityTypeSummary:
    """Per-entity-type commit counts and staging -> production id mappings."""
    entity_type: str
    approved: int = 0
    committed: int = 0
    failed: int = 0
    skipped: int = 0
    id_mappings: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "approved": self.approved,
            "committed": self.committed,
            "failed": self.failed,
            "skipped": self.skipped,
            "id_mappings": dict(self.id_mappings),
        }


@dataclass
class CommitReport:
    """Outcome of committing one package."""
    import_package_id: str
    package_number: str
    status: str
    committed_by: Optional[str] = None
    committed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    entity_summaries: Dict[str, EntityTypeSummary] = field(default_factory=dict)
    errors: List[CommitError] = field(default_factory=list)

    duplicate_attachments_found: int = 0
    deduplication_bytes_saved: int = 0
    merges_performed: int = 0

    is_archived: bool = False
    archive_path: Optional[str] = None

    # Used when staging rows were purged and only package counters remain
    totals_override: Optional[Dict[str, int]] = None

    def summary_for(self, entity_type: str) -> EntityTypeSummary:
        if entity_type not in self.entity_summaries:
            self.entity_summaries[entity_type] = EntityTypeSummary(entity_type=entity_type)
        return self.entity_summaries[entity_type]

    def _total(self, attr: str) -> int:
        if self.totals_override is not None:
            return self.totals_override.get(attr, 0)
        return sum(getattr(s, attr) for s in self.entity_summaries.values())

    @property
    def total_records_approved(self) -> int:
        return self._total("approved")

    @property
    def total_records_committed(self) -> int:
        return self._total("committed")

    @property
    def total_records_failed(self) -> int:
        return self._total("failed")

    @property
    def total_records_skipped(self) -> int:
        return self._total("skipped")

    @property
    def success_rate(self) -> float:
        approved = self.total_records_approved
        if approved == 0:
            return 0.0
        return round(self.total_records_committed / approved * 100, 2)

    @property
    def is_fully_successful(self) -> bool:
        return (
            not self.errors
            and self.total_records_failed == 0
            and self.total_records_skipped == 0
            and self.total_records_committed > 0
        )

    def summary_lines(self) -> List[str]:
        """Human-readable import summary."""
        lines = [
            f"Package {self.package_number}: {self.status}",
            f"Committed: {self.total_records_committed}, Failed: {self.total_records_failed}, "
            f"Skipped: {self.total_records_skipped}",
            f"Success rate: {self.success_rate}%",
        ]
        if self.duplicate_attachments_found:
            lines.append(
                f"Deduplicated attachments: {self.duplicate_attachments_found} "
                f"({self.deduplication_bytes_saved} bytes saved)"
            )
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "import_package_id": self.import_package_id,
            "package_number": self.package_number,
            "status": self.status,
            "committed_by": self.committed_by,
            "committed_at": to_isoformat(self.committed_at),
            "duration_seconds": self.duration_seconds,
            "total_records_approved": self.total_records_approved,
            "total_records_committed": self.total_records_committed,
            "total_records_failed": self.total_records_failed,
            "total_records_skipped": self.total_records_skipped,
            "success_rate": self.success_rate,
            "entity_summaries": {k: v.to_dict() for k, v in self.entity_summaries.items()},
            "errors": [e.to_dict() for e in self.errors],
            "duplicate_attachments_found": self.duplicate_attachments_found,
            "deduplication_bytes_saved": self.deduplication_bytes_saved,
            "merges_performed": self.merges_performed,
            "is_archived": self.is_archived,
            "archive_path": self.archive_path,
            "is_fully_successful": self.is_fully_successful,
        }
