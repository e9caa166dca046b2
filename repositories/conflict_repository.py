# -*- coding: utf-8 -*-
"""
Conflict resolution repository.

Queue queries are built from a single ConflictQueueFilter value into one
parameterized statement.
"""

import json
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from models.conflict import (
    ConflictResolution, ConflictType, ConflictStatus, ConflictPriority,
    ConfidenceLevel, ResolutionAction, EntityReference, EntitySource,
    ConflictQueueFilter, PagedResult, SUPERSEDED_REASON, generate_conflict_number,
)
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)

# Allowed sort keys mapped to SQL expressions
SORT_COLUMNS = {
    "detected_date": "detected_date",
    "priority": "CASE priority WHEN 'High' THEN 1 ELSE 2 END",
    "similarity_score": "similarity_score",
    "conflict_number": "conflict_number",
    "status": "status",
    "due_at": "due_at",
}

_PENDING = ConflictStatus.PENDING_REVIEW.value

_COLUMNS = [
    "id", "conflict_number", "conflict_type", "entity_type", "import_package_id",
    "first_entity_id", "first_entity_identifier", "first_entity_source",
    "second_entity_id", "second_entity_identifier", "second_entity_source",
    "similarity_score", "confidence_level", "matching_criteria", "data_comparison",
    "status", "priority", "is_escalated", "escalation_reason", "escalated_date",
    "is_auto_detected", "is_auto_resolved", "auto_resolution_rule",
    "assigned_to", "assigned_date", "review_attempt_count", "review_history",
    "resolution_action", "resolution_reason", "resolution_notes",
    "merged_entity_id", "discarded_entity_id", "merge_mapping",
    "resolved_by", "resolved_date",
    "target_resolution_hours", "detected_date", "due_at", "is_overdue",
    "created_by", "updated_at",
]


class ConflictRepository:
    """Repository for ConflictResolution persistence and queue queries."""

    _number_lock = threading.Lock()

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def _params(self, c: ConflictResolution) -> tuple:
        return (
            c.id, c.conflict_number, c.conflict_type.value, c.entity_type, c.import_package_id,
            c.first.entity_id, c.first.identifier, c.first.source.value,
            c.second.entity_id, c.second.identifier, c.second.source.value,
            c.similarity_score, c.confidence_level.value,
            json.dumps(c.matching_criteria, ensure_ascii=False),
            json.dumps(c.data_comparison, ensure_ascii=False, default=str),
            c.status.value, c.priority.value,
            1 if c.is_escalated else 0, c.escalation_reason, to_isoformat(c.escalated_date),
            1 if c.is_auto_detected else 0, 1 if c.is_auto_resolved else 0,
            c.auto_resolution_rule,
            c.assigned_to, to_isoformat(c.assigned_date), c.review_attempt_count,
            json.dumps(c.review_history, ensure_ascii=False),
            c.resolution_action.value if c.resolution_action else None,
            c.resolution_reason, c.resolution_notes,
            c.merged_entity_id, c.discarded_entity_id,
            json.dumps(c.merge_mapping, ensure_ascii=False) if c.merge_mapping is not None else None,
            c.resolved_by, to_isoformat(c.resolved_date),
            c.target_resolution_hours, to_isoformat(c.detected_date), to_isoformat(c.due_at),
            1 if c.is_overdue else 0,
            c.created_by, to_isoformat(utc_now()),
        )

    def create(self, conflict: ConflictResolution) -> ConflictResolution:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        self.db.execute(
            f"INSERT INTO conflict_resolutions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            self._params(conflict)
        )
        logger.debug(f"Created conflict {conflict.conflict_number}")
        return conflict

    def update(self, conflict: ConflictResolution) -> ConflictResolution:
        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
        params = self._params(conflict)
        self.db.execute(
            f"UPDATE conflict_resolutions SET {assignments} WHERE id = ?",
            params[1:] + (conflict.id,)
        )
        return conflict

    def get_by_id(self, conflict_id: str) -> Optional[ConflictResolution]:
        row = self.db.fetch_one("SELECT * FROM conflict_resolutions WHERE id = ?", (conflict_id,))
        return self._row_to_conflict(row) if row else None

    def next_conflict_number(self, year: Optional[int] = None) -> str:
        """Next CNF-YYYY-NNNN number; callers insert while holding number_lock."""
        year = year or utc_now().year
        prefix = f"CNF-{year}-"
        row = self.db.fetch_one(
            "SELECT MAX(conflict_number) AS last_number FROM conflict_resolutions "
            "WHERE conflict_number LIKE ?",
            (f"{prefix}%",)
        )
        sequence = 1
        if row and row["last_number"]:
            sequence = int(row["last_number"][len(prefix):]) + 1
        return generate_conflict_number(year, sequence)

    @property
    def number_lock(self) -> threading.Lock:
        return self._number_lock

    def exists_for_pair(self, first_entity_id: str, second_entity_id: str) -> bool:
        """
        True if a conflict links the two entities, in either order.

        Reviewer decisions of any status count; only conflicts superseded
        by a detection re-run are disregarded.
        """
        row = self.db.fetch_one("""
            SELECT COUNT(*) as count FROM conflict_resolutions
            WHERE NOT (status = ? AND COALESCE(resolution_reason, '') = ?)
              AND ((first_entity_id = ? AND second_entity_id = ?)
                OR (first_entity_id = ? AND second_entity_id = ?))
        """, (
            ConflictStatus.IGNORED.value, SUPERSEDED_REASON,
            first_entity_id, second_entity_id,
            second_entity_id, first_entity_id,
        ))
        return bool(row and row["count"])

    def count_pending(self, import_package_id: str) -> int:
        row = self.db.fetch_one(
            "SELECT COUNT(*) as count FROM conflict_resolutions "
            "WHERE import_package_id = ? AND status = ?",
            (import_package_id, _PENDING)
        )
        return row["count"] if row else 0

    def list_for_package(self, import_package_id: str,
                         status: Optional[ConflictStatus] = None) -> List[ConflictResolution]:
        query = "SELECT * FROM conflict_resolutions WHERE import_package_id = ?"
        params: List[Any] = [import_package_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY conflict_number ASC"
        rows = self.db.fetch_all(query, tuple(params))
        return [self._row_to_conflict(row) for row in rows]

    def _build_where(self, flt: ConflictQueueFilter, now: datetime) -> Tuple[str, List[Any]]:
        conditions = []
        params: List[Any] = []

        if flt.import_package_id:
            conditions.append("import_package_id = ?")
            params.append(flt.import_package_id)

        if flt.entity_type:
            conditions.append("entity_type = ?")
            params.append(flt.entity_type)

        if flt.conflict_type:
            conditions.append("conflict_type = ?")
            params.append(flt.conflict_type.value)

        if flt.status:
            conditions.append("status = ?")
            params.append(flt.status.value)

        if flt.priority:
            conditions.append("priority = ?")
            params.append(flt.priority.value)

        if flt.assigned_to:
            conditions.append("assigned_to = ?")
            params.append(flt.assigned_to)

        if flt.is_escalated is not None:
            conditions.append("is_escalated = ?")
            params.append(1 if flt.is_escalated else 0)

        if flt.is_overdue is not None:
            overdue = "(status = ? AND due_at IS NOT NULL AND due_at < ?)"
            conditions.append(overdue if flt.is_overdue else f"NOT {overdue}")
            params.extend([_PENDING, to_isoformat(now)])

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        return where_clause, params

    def query(self, flt: ConflictQueueFilter, now: Optional[datetime] = None) -> PagedResult:
        """One page of conflicts matching the filter."""
        now = now or utc_now()
        where_clause, params = self._build_where(flt, now)

        total_row = self.db.fetch_one(
            f"SELECT COUNT(*) as count FROM conflict_resolutions WHERE {where_clause}",
            tuple(params)
        )
        total = total_row["count"] if total_row else 0

        sort_expr = SORT_COLUMNS.get(flt.sort_by)
        if sort_expr is None:
            raise ValueError(f"Unsupported sort field: {flt.sort_by}")
        direction = "DESC" if flt.sort_descending else "ASC"

        page = max(flt.page, 1)
        page_size = max(flt.page_size, 1)

        rows = self.db.fetch_all(f"""
            SELECT * FROM conflict_resolutions
            WHERE {where_clause}
            ORDER BY {sort_expr} {direction}, conflict_number ASC
            LIMIT ? OFFSET ?
        """, tuple(params) + (page_size, (page - 1) * page_size))

        return PagedResult(
            items=[self._row_to_conflict(row) for row in rows],
            total_count=total,
            page=page,
            page_size=page_size,
        )

    def summary(self, import_package_id: Optional[str] = None,
                now: Optional[datetime] = None) -> Dict[str, Any]:
        """Aggregate counts by type, status and priority plus flag totals."""
        now = now or utc_now()
        query = """
            SELECT conflict_type, status, priority,
                   COUNT(*) as count,
                   SUM(is_escalated) as escalated,
                   SUM(is_auto_resolved) as auto_resolved,
                   SUM(CASE WHEN status = ? AND due_at IS NOT NULL AND due_at < ?
                            THEN 1 ELSE 0 END) as overdue
            FROM conflict_resolutions
        """
        params: List[Any] = [_PENDING, to_isoformat(now)]
        if import_package_id:
            query += " WHERE import_package_id = ?"
            params.append(import_package_id)
        query += " GROUP BY conflict_type, status, priority"

        stats: Dict[str, Any] = {
            "total": 0,
            "by_type": {},
            "by_status": {},
            "by_priority": {},
            "escalated": 0,
            "overdue": 0,
            "auto_resolved": 0,
        }

        for row in self.db.fetch_all(query, tuple(params)):
            count = row["count"]
            stats["total"] += count
            for key, column in (("by_type", "conflict_type"), ("by_status", "status"),
                                ("by_priority", "priority")):
                stats[key][row[column]] = stats[key].get(row[column], 0) + count
            stats["escalated"] += int(row["escalated"] or 0)
            stats["auto_resolved"] += int(row["auto_resolved"] or 0)
            stats["overdue"] += int(row["overdue"] or 0)

        return stats

    def _row_to_conflict(self, row) -> ConflictResolution:
        """Convert database row to ConflictResolution."""
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        merge_mapping = data.get("merge_mapping")
        return ConflictResolution(
            id=data["id"],
            conflict_number=data["conflict_number"],
            conflict_type=ConflictType(data["conflict_type"]),
            entity_type=data["entity_type"],
            import_package_id=data.get("import_package_id"),
            first=EntityReference(
                entity_id=data["first_entity_id"],
                identifier=data.get("first_entity_identifier") or "",
                source=EntitySource(data.get("first_entity_source") or EntitySource.STAGING.value),
            ),
            second=EntityReference(
                entity_id=data["second_entity_id"],
                identifier=data.get("second_entity_identifier") or "",
                source=EntitySource(data.get("second_entity_source") or EntitySource.STAGING.value),
            ),
            similarity_score=float(data.get("similarity_score") or 0.0),
            confidence_level=ConfidenceLevel(data.get("confidence_level") or ConfidenceLevel.LOW.value),
            matching_criteria=json.loads(data.get("matching_criteria") or "[]"),
            data_comparison=json.loads(data.get("data_comparison") or "{}"),
            status=ConflictStatus(data["status"]),
            priority=ConflictPriority(data["priority"]),
            is_escalated=bool(data.get("is_escalated")),
            escalation_reason=data.get("escalation_reason"),
            escalated_date=from_isoformat(data.get("escalated_date")),
            is_auto_detected=bool(data.get("is_auto_detected")),
            is_auto_resolved=bool(data.get("is_auto_resolved")),
            auto_resolution_rule=data.get("auto_resolution_rule"),
            assigned_to=data.get("assigned_to"),
            assigned_date=from_isoformat(data.get("assigned_date")),
            review_attempt_count=data.get("review_attempt_count") or 0,
            review_history=json.loads(data.get("review_history") or "[]"),
            resolution_action=ResolutionAction(data["resolution_action"]) if data.get("resolution_action") else None,
            resolution_reason=data.get("resolution_reason"),
            resolution_notes=data.get("resolution_notes"),
            merged_entity_id=data.get("merged_entity_id"),
            discarded_entity_id=data.get("discarded_entity_id"),
            merge_mapping=json.loads(merge_mapping) if merge_mapping else None,
            resolved_by=data.get("resolved_by"),
            resolved_date=from_isoformat(data.get("resolved_date")),
            target_resolution_hours=data.get("target_resolution_hours"),
            detected_date=from_isoformat(data.get("detected_date")) or utc_now(),
            is_overdue=bool(data.get("is_overdue")),
            created_by=data.get("created_by"),
        )
