# -*- coding: utf-8 -*-
"""
Evidence repository for database operations.
"""

from typing import List, Optional

from models.evidence import Evidence
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)


class EvidenceRepository:
    """Repository for evidence reference rows."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, evidence: Evidence) -> Evidence:
        self.db.execute("""
            INSERT INTO evidence (
                evidence_id, person_id, claim_id, evidence_type, description,
                attachment_hash, file_name, mime_type, file_size_bytes,
                import_package_id, source_staging_id, created_at, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            evidence.evidence_id, evidence.person_id, evidence.claim_id,
            evidence.evidence_type, evidence.description,
            evidence.attachment_hash, evidence.file_name, evidence.mime_type,
            evidence.file_size_bytes, evidence.import_package_id, evidence.source_staging_id,
            to_isoformat(evidence.created_at), evidence.created_by
        ))
        logger.debug(f"Created evidence: {evidence.evidence_id}")
        return evidence

    def get_by_id(self, evidence_id: str) -> Optional[Evidence]:
        row = self.db.fetch_one("SELECT * FROM evidence WHERE evidence_id = ?", (evidence_id,))
        return self._row_to_evidence(row) if row else None

    def get_by_attachment_hash(self, attachment_hash: str) -> List[Evidence]:
        """Evidence rows sharing one stored attachment."""
        rows = self.db.fetch_all(
            "SELECT * FROM evidence WHERE attachment_hash = ?", (attachment_hash.lower(),)
        )
        return [self._row_to_evidence(row) for row in rows]

    def count(self) -> int:
        result = self.db.fetch_one("SELECT COUNT(*) as count FROM evidence")
        return result["count"] if result else 0

    def _row_to_evidence(self, row) -> Evidence:
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        return Evidence(
            evidence_id=data["evidence_id"],
            person_id=data.get("person_id"),
            claim_id=data.get("claim_id"),
            evidence_type=data.get("evidence_type"),
            description=data.get("description") or "",
            attachment_hash=data.get("attachment_hash"),
            file_name=data.get("file_name"),
            mime_type=data.get("mime_type"),
            file_size_bytes=data.get("file_size_bytes"),
            import_package_id=data.get("import_package_id"),
            source_staging_id=data.get("source_staging_id"),
            created_at=from_isoformat(data.get("created_at")) or utc_now(),
            created_by=data.get("created_by"),
        )
