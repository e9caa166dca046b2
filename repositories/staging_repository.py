# -*- coding: utf-8 -*-
"""
Staging record repository.
"""

import json
from typing import Dict, List, Optional

from models.staging_record import StagingRecord, EntityType, ValidationOutcome
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)


class StagingRepository:
    """Repository for StagingRecord persistence, always scoped by package."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create_many(self, records: List[StagingRecord]) -> int:
        """Insert a batch of freshly staged records."""
        if not records:
            return 0
        query = """
            INSERT INTO staging_records (
                id, import_package_id, entity_type, original_entity_id, row_number,
                payload, outcome, validation_errors, validation_warnings,
                is_approved_for_commit, committed_entity_id, commit_error,
                merged_into_entity_id, staged_at, validated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params_list = [
            (
                r.id, r.import_package_id, r.entity_type.value, r.original_entity_id,
                r.row_number,
                json.dumps(r.payload, ensure_ascii=False, default=str),
                r.outcome.value,
                json.dumps(r.validation_errors, ensure_ascii=False),
                json.dumps(r.validation_warnings, ensure_ascii=False),
                1 if r.is_approved_for_commit else 0,
                r.committed_entity_id, r.commit_error, r.merged_into_entity_id,
                to_isoformat(r.staged_at), to_isoformat(r.validated_at),
            )
            for r in records
        ]
        self.db.execute_many(query, params_list)
        logger.debug(f"Staged {len(records)} records")
        return len(records)

    def update(self, record: StagingRecord) -> StagingRecord:
        """Persist the mutable columns of a staging record."""
        self.db.execute("""
            UPDATE staging_records SET
                payload = ?, outcome = ?, validation_errors = ?, validation_warnings = ?,
                is_approved_for_commit = ?, committed_entity_id = ?, commit_error = ?,
                merged_into_entity_id = ?, validated_at = ?
            WHERE id = ?
        """, (
            json.dumps(record.payload, ensure_ascii=False, default=str),
            record.outcome.value,
            json.dumps(record.validation_errors, ensure_ascii=False),
            json.dumps(record.validation_warnings, ensure_ascii=False),
            1 if record.is_approved_for_commit else 0,
            record.committed_entity_id,
            record.commit_error,
            record.merged_into_entity_id,
            to_isoformat(record.validated_at),
            record.id,
        ))
        return record

    def update_many(self, records: List[StagingRecord]) -> None:
        with self.db.transaction():
            for record in records:
                self.update(record)

    def get_by_id(self, record_id: str) -> Optional[StagingRecord]:
        row = self.db.fetch_one("SELECT * FROM staging_records WHERE id = ?", (record_id,))
        return self._row_to_record(row) if row else None

    def get_for_package(self, import_package_id: str,
                        entity_type: Optional[EntityType] = None,
                        outcome: Optional[ValidationOutcome] = None,
                        approved_only: bool = False) -> List[StagingRecord]:
        """Records of a package in staging order, optionally filtered."""
        conditions = ["import_package_id = ?"]
        params = [import_package_id]

        if entity_type:
            conditions.append("entity_type = ?")
            params.append(entity_type.value)

        if outcome:
            conditions.append("outcome = ?")
            params.append(outcome.value)

        if approved_only:
            conditions.append("is_approved_for_commit = 1")

        query = f"""
            SELECT * FROM staging_records
            WHERE {' AND '.join(conditions)}
            ORDER BY row_number ASC
        """
        rows = self.db.fetch_all(query, tuple(params))
        return [self._row_to_record(row) for row in rows]

    def find_by_original_id(self, import_package_id: str, entity_type: EntityType,
                            original_entity_id: str) -> Optional[StagingRecord]:
        """Look up a staged record by the id its field device assigned."""
        row = self.db.fetch_one("""
            SELECT * FROM staging_records
            WHERE import_package_id = ? AND entity_type = ? AND original_entity_id = ?
        """, (import_package_id, entity_type.value, str(original_entity_id)))
        return self._row_to_record(row) if row else None

    def count_by_type_and_outcome(self, import_package_id: str) -> Dict[str, Dict[str, int]]:
        """{entity_type: {outcome: count}} for one package."""
        rows = self.db.fetch_all("""
            SELECT entity_type, outcome, COUNT(*) as count
            FROM staging_records
            WHERE import_package_id = ?
            GROUP BY entity_type, outcome
        """, (import_package_id,))

        breakdown: Dict[str, Dict[str, int]] = {}
        for row in rows:
            breakdown.setdefault(row["entity_type"], {})[row["outcome"]] = row["count"]
        return breakdown

    def count_for_package(self, import_package_id: str) -> int:
        row = self.db.fetch_one(
            "SELECT COUNT(*) as count FROM staging_records WHERE import_package_id = ?",
            (import_package_id,)
        )
        return row["count"] if row else 0

    def set_committed(self, record_id: str, committed_entity_id: str) -> None:
        self.db.execute(
            "UPDATE staging_records SET committed_entity_id = ?, commit_error = NULL WHERE id = ?",
            (committed_entity_id, record_id)
        )

    def set_commit_error(self, record_id: str, error: Optional[str]) -> None:
        self.db.execute(
            "UPDATE staging_records SET commit_error = ? WHERE id = ?",
            (error, record_id)
        )

    def clear_approvals(self, import_package_id: str) -> None:
        self.db.execute(
            "UPDATE staging_records SET is_approved_for_commit = 0 WHERE import_package_id = ?",
            (import_package_id,)
        )

    def delete_for_package(self, import_package_id: str) -> int:
        """Remove every staging record of a package."""
        count = self.db.execute_update(
            "DELETE FROM staging_records WHERE import_package_id = ?",
            (import_package_id,)
        )
        logger.debug(f"Deleted {count} staging records for package {import_package_id}")
        return count

    def _row_to_record(self, row) -> StagingRecord:
        """Convert database row to StagingRecord."""
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        return StagingRecord(
            id=data["id"],
            import_package_id=data["import_package_id"],
            entity_type=EntityType(data["entity_type"]),
            original_entity_id=data["original_entity_id"],
            row_number=data.get("row_number") or 0,
            payload=json.loads(data.get("payload") or "{}"),
            outcome=ValidationOutcome(data["outcome"]),
            validation_errors=json.loads(data.get("validation_errors") or "[]"),
            validation_warnings=json.loads(data.get("validation_warnings") or "[]"),
            is_approved_for_commit=bool(data.get("is_approved_for_commit")),
            committed_entity_id=data.get("committed_entity_id"),
            commit_error=data.get("commit_error"),
            merged_into_entity_id=data.get("merged_into_entity_id"),
            staged_at=from_isoformat(data.get("staged_at")) or utc_now(),
            validated_at=from_isoformat(data.get("validated_at")),
        )
