# -*- coding: utf-8 -*-
"""
Claim repository for database operations.
"""

from typing import List, Optional

from models.claim import Claim
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)


class ClaimRepository:
    """Repository for Claim CRUD operations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, claim: Claim) -> Claim:
        """Create a new claim record."""
        self.db.execute("""
            INSERT INTO claims (
                claim_uuid, unit_id, claimant_person_id, claim_source, claim_type,
                case_status, description, import_package_id, source_staging_id,
                created_at, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            claim.claim_uuid, claim.unit_id, claim.claimant_person_id,
            claim.claim_source, claim.claim_type, claim.case_status, claim.description,
            claim.import_package_id, claim.source_staging_id,
            to_isoformat(claim.created_at), claim.created_by
        ))
        logger.debug(f"Created claim: {claim.claim_uuid}")
        return claim

    def get_by_id(self, claim_uuid: str) -> Optional[Claim]:
        row = self.db.fetch_one("SELECT * FROM claims WHERE claim_uuid = ?", (claim_uuid,))
        return self._row_to_claim(row) if row else None

    def exists(self, claim_uuid: str) -> bool:
        row = self.db.fetch_one("SELECT 1 AS found FROM claims WHERE claim_uuid = ?", (claim_uuid,))
        return row is not None

    def get_by_unit(self, unit_id: str) -> List[Claim]:
        rows = self.db.fetch_all(
            "SELECT * FROM claims WHERE unit_id = ? ORDER BY created_at DESC", (unit_id,)
        )
        return [self._row_to_claim(row) for row in rows]

    def count(self) -> int:
        result = self.db.fetch_one("SELECT COUNT(*) as count FROM claims")
        return result["count"] if result else 0

    def _row_to_claim(self, row) -> Claim:
        """Convert database row to Claim."""
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        return Claim(
            claim_uuid=data["claim_uuid"],
            unit_id=data["unit_id"],
            claimant_person_id=data.get("claimant_person_id"),
            claim_source=data.get("claim_source"),
            claim_type=data.get("claim_type") or "ownership",
            case_status=data.get("case_status") or "submitted",
            description=data.get("description") or "",
            import_package_id=data.get("import_package_id"),
            source_staging_id=data.get("source_staging_id"),
            created_at=from_isoformat(data.get("created_at")) or utc_now(),
            created_by=data.get("created_by"),
        )
