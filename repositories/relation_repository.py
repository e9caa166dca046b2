# -*- coding: utf-8 -*-
"""
Person-Unit Relation repository.
"""

from typing import List, Optional

from models.relation import PersonUnitRelation
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)


class RelationRepository:
    """Repository for person-unit relations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, relation: PersonUnitRelation) -> PersonUnitRelation:
        self.db.execute("""
            INSERT INTO person_property_relations (
                relation_id, person_id, unit_id, relation_type, ownership_share,
                start_date, import_package_id, source_staging_id, created_at, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            relation.relation_id, relation.person_id, relation.unit_id,
            relation.relation_type, relation.ownership_share, relation.start_date,
            relation.import_package_id, relation.source_staging_id,
            to_isoformat(relation.created_at), relation.created_by
        ))
        logger.debug(f"Created relation: {relation.person_id} -> {relation.unit_id}")
        return relation

    def get_by_id(self, relation_id: str) -> Optional[PersonUnitRelation]:
        row = self.db.fetch_one(
            "SELECT * FROM person_property_relations WHERE relation_id = ?", (relation_id,)
        )
        return self._row_to_relation(row) if row else None

    def exists(self, relation_id: str) -> bool:
        row = self.db.fetch_one(
            "SELECT 1 AS found FROM person_property_relations WHERE relation_id = ?", (relation_id,)
        )
        return row is not None

    def get_by_unit(self, unit_id: str) -> List[PersonUnitRelation]:
        rows = self.db.fetch_all(
            "SELECT * FROM person_property_relations WHERE unit_id = ?", (unit_id,)
        )
        return [self._row_to_relation(row) for row in rows]

    def _row_to_relation(self, row) -> PersonUnitRelation:
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        return PersonUnitRelation(
            relation_id=data["relation_id"],
            person_id=data["person_id"],
            unit_id=data["unit_id"],
            relation_type=data.get("relation_type"),
            ownership_share=data.get("ownership_share"),
            start_date=data.get("start_date"),
            import_package_id=data.get("import_package_id"),
            source_staging_id=data.get("source_staging_id"),
            created_at=from_isoformat(data.get("created_at")) or utc_now(),
            created_by=data.get("created_by"),
        )
