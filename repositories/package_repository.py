# -*- coding: utf-8 -*-
"""
Import package repository.
"""

import json
from datetime import datetime
from typing import Iterable, List, Optional

from models.import_package import ImportPackage, ImportStatus, generate_package_number
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)

# Columns written on insert/update, in order
_COLUMNS = [
    "id", "package_number", "package_id", "file_name", "file_size_bytes", "file_path",
    "checksum", "device_id", "exported_by_user_id", "schema_version",
    "vocabulary_versions", "package_created_at", "package_exported_at",
    "is_checksum_valid", "is_vocabulary_compatible", "vocabulary_issues",
    "status",
    "staged_count", "valid_count", "warning_count", "invalid_count", "skipped_count",
    "conflict_count", "person_duplicate_count", "property_duplicate_count",
    "committed_count", "failed_count", "commit_skipped_count",
    "duplicate_attachments_found", "deduplication_bytes_saved", "merges_performed",
    "uploaded_at", "staged_at", "validated_at", "committed_at",
    "uploaded_by", "committed_by",
    "archive_path", "is_archived",
    "error_message", "processing_notes",
    "created_at", "updated_at",
]


def _bool_or_none(value) -> Optional[int]:
    if value is None:
        return None
    return 1 if value else 0


class ImportPackageRepository:
    """Repository for ImportPackage persistence."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def _params(self, package: ImportPackage) -> tuple:
        return (
            package.id, package.package_number, package.package_id,
            package.file_name, package.file_size_bytes, package.file_path,
            package.checksum, package.device_id, package.exported_by_user_id,
            package.schema_version,
            json.dumps(package.vocabulary_versions or {}),
            to_isoformat(package.package_created_at),
            to_isoformat(package.package_exported_at),
            _bool_or_none(package.is_checksum_valid),
            _bool_or_none(package.is_vocabulary_compatible),
            json.dumps(package.vocabulary_issues or []),
            package.status.value,
            package.staged_count, package.valid_count, package.warning_count,
            package.invalid_count, package.skipped_count,
            package.conflict_count, package.person_duplicate_count,
            package.property_duplicate_count,
            package.committed_count, package.failed_count, package.commit_skipped_count,
            package.duplicate_attachments_found, package.deduplication_bytes_saved,
            package.merges_performed,
            to_isoformat(package.uploaded_at), to_isoformat(package.staged_at),
            to_isoformat(package.validated_at), to_isoformat(package.committed_at),
            package.uploaded_by, package.committed_by,
            package.archive_path, 1 if package.is_archived else 0,
            package.error_message, package.processing_notes,
            to_isoformat(package.created_at), to_isoformat(package.updated_at),
        )

    def create(self, package: ImportPackage) -> ImportPackage:
        """Insert a new package."""
        placeholders = ", ".join("?" for _ in _COLUMNS)
        query = f"INSERT INTO import_packages ({', '.join(_COLUMNS)}) VALUES ({placeholders})"
        self.db.execute(query, self._params(package))
        logger.debug(f"Created import package: {package.package_number}")
        return package

    def update(self, package: ImportPackage) -> ImportPackage:
        """Persist every column of an existing package."""
        package.updated_at = utc_now()
        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
        query = f"UPDATE import_packages SET {assignments} WHERE id = ?"
        params = self._params(package)
        self.db.execute(query, params[1:] + (package.id,))
        return package

    def get_by_id(self, package_id: str) -> Optional[ImportPackage]:
        row = self.db.fetch_one("SELECT * FROM import_packages WHERE id = ?", (package_id,))
        return self._row_to_package(row) if row else None

    def get_by_manifest_package_id(self, manifest_package_id: str) -> Optional[ImportPackage]:
        """Find a package by the id its field device assigned."""
        row = self.db.fetch_one(
            "SELECT * FROM import_packages WHERE package_id = ?",
            (manifest_package_id,)
        )
        return self._row_to_package(row) if row else None

    def list_for_retention(self, statuses: Iterable[ImportStatus],
                           updated_before: datetime) -> List[ImportPackage]:
        """Packages in one of the given statuses last touched before the cutoff."""
        values = [s.value for s in statuses]
        placeholders = ", ".join("?" for _ in values)
        rows = self.db.fetch_all(
            f"SELECT * FROM import_packages WHERE status IN ({placeholders}) AND updated_at < ?",
            tuple(values) + (to_isoformat(updated_before),)
        )
        return [self._row_to_package(row) for row in rows]

    def next_package_number(self, year: Optional[int] = None) -> str:
        """Next PKG-YYYY-NNNN number for the given year."""
        year = year or utc_now().year
        prefix = f"PKG-{year}-"
        row = self.db.fetch_one(
            "SELECT MAX(package_number) AS last_number FROM import_packages WHERE package_number LIKE ?",
            (f"{prefix}%",)
        )
        sequence = 1
        if row and row["last_number"]:
            sequence = int(row["last_number"][len(prefix):]) + 1
        return generate_package_number(year, sequence)

    def transition_status(self, package_id: str, expected: Iterable[ImportStatus],
                          new_status: ImportStatus) -> bool:
        """
        Compare-and-set the status column.

        Returns False when the stored status is not one of ``expected``,
        which means another caller moved the package first.
        """
        values = [s.value for s in expected]
        placeholders = ", ".join("?" for _ in values)
        count = self.db.execute_update(
            f"UPDATE import_packages SET status = ?, updated_at = ? "
            f"WHERE id = ? AND status IN ({placeholders})",
            (new_status.value, to_isoformat(utc_now()), package_id) + tuple(values)
        )
        return count == 1

    def count(self) -> int:
        result = self.db.fetch_one("SELECT COUNT(*) as count FROM import_packages")
        return result["count"] if result else 0

    def _row_to_package(self, row) -> ImportPackage:
        """Convert database row to ImportPackage."""
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)

        def _flag(key):
            value = data.get(key)
            return None if value is None else bool(value)

        return ImportPackage(
            id=data["id"],
            package_number=data["package_number"],
            package_id=data.get("package_id"),
            file_name=data.get("file_name") or "",
            file_size_bytes=data.get("file_size_bytes") or 0,
            file_path=data.get("file_path"),
            checksum=data.get("checksum"),
            device_id=data.get("device_id"),
            exported_by_user_id=data.get("exported_by_user_id"),
            schema_version=data.get("schema_version"),
            vocabulary_versions=json.loads(data.get("vocabulary_versions") or "{}"),
            package_created_at=from_isoformat(data.get("package_created_at")),
            package_exported_at=from_isoformat(data.get("package_exported_at")),
            is_checksum_valid=_flag("is_checksum_valid"),
            is_vocabulary_compatible=_flag("is_vocabulary_compatible"),
            vocabulary_issues=json.loads(data.get("vocabulary_issues") or "[]"),
            status=ImportStatus(data["status"]),
            staged_count=data.get("staged_count") or 0,
            valid_count=data.get("valid_count") or 0,
            warning_count=data.get("warning_count") or 0,
            invalid_count=data.get("invalid_count") or 0,
            skipped_count=data.get("skipped_count") or 0,
            conflict_count=data.get("conflict_count") or 0,
            person_duplicate_count=data.get("person_duplicate_count") or 0,
            property_duplicate_count=data.get("property_duplicate_count") or 0,
            committed_count=data.get("committed_count") or 0,
            failed_count=data.get("failed_count") or 0,
            commit_skipped_count=data.get("commit_skipped_count") or 0,
            duplicate_attachments_found=data.get("duplicate_attachments_found") or 0,
            deduplication_bytes_saved=data.get("deduplication_bytes_saved") or 0,
            merges_performed=data.get("merges_performed") or 0,
            uploaded_at=from_isoformat(data.get("uploaded_at")) or utc_now(),
            staged_at=from_isoformat(data.get("staged_at")),
            validated_at=from_isoformat(data.get("validated_at")),
            committed_at=from_isoformat(data.get("committed_at")),
            uploaded_by=data.get("uploaded_by"),
            committed_by=data.get("committed_by"),
            archive_path=data.get("archive_path"),
            is_archived=bool(data.get("is_archived")),
            error_message=data.get("error_message"),
            processing_notes=data.get("processing_notes"),
            created_at=from_isoformat(data.get("created_at")) or utc_now(),
            updated_at=from_isoformat(data.get("updated_at")) or utc_now(),
        )
