# -*- coding: utf-8 -*-
"""
Property Unit repository for database operations.
"""

from typing import Any, Dict, List, Optional

from models.unit import PropertyUnit
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.helpers import normalize_building_code, normalize_unit_identifier, to_int
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)

UPDATABLE_FIELDS = (
    "unit_identifier", "unit_type", "unit_status", "floor_number", "area_sqm", "description",
)


class PropertyUnitRepository:
    """Repository for PropertyUnit CRUD operations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, unit: PropertyUnit) -> PropertyUnit:
        """Create a new unit record."""
        query = """
            INSERT INTO property_units (
                unit_uuid, building_code, unit_identifier, unit_identifier_normalized,
                unit_type, unit_status, floor_number, area_sqm, description,
                import_package_id, source_staging_id, created_at, updated_at, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            unit.unit_uuid, unit.building_code, unit.unit_identifier,
            normalize_unit_identifier(unit.unit_identifier),
            unit.unit_type, unit.unit_status, unit.floor_number, unit.area_sqm,
            unit.description, unit.import_package_id, unit.source_staging_id,
            to_isoformat(unit.created_at), to_isoformat(unit.updated_at), unit.created_by
        )
        self.db.execute(query, params)
        logger.debug(f"Created unit: {unit.composite_key}")
        return unit

    def get_by_id(self, unit_uuid: str) -> Optional[PropertyUnit]:
        """Get unit by UUID."""
        row = self.db.fetch_one("SELECT * FROM property_units WHERE unit_uuid = ?", (unit_uuid,))
        if row:
            return self._row_to_unit(row)
        return None

    def exists(self, unit_uuid: str) -> bool:
        row = self.db.fetch_one("SELECT 1 AS found FROM property_units WHERE unit_uuid = ?", (unit_uuid,))
        return row is not None

    def get_by_building(self, building_code: str) -> List[PropertyUnit]:
        """All units of a building; the candidate block for property matching."""
        rows = self.db.fetch_all(
            "SELECT * FROM property_units WHERE building_code = ? ORDER BY unit_identifier",
            (normalize_building_code(building_code),)
        )
        return [self._row_to_unit(row) for row in rows]

    def update_fields(self, unit_uuid: str, fields: Dict[str, Any]) -> int:
        """Overwrite selected fields from a merge mapping."""
        unit = self.get_by_id(unit_uuid)
        if unit is None:
            return 0

        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS:
                logger.warning(f"Ignoring non-updatable unit field: {key}")
                continue
            if key in ("unit_type", "unit_status", "floor_number"):
                value = to_int(value)
            elif key == "area_sqm":
                value = float(value) if value not in (None, "") else None
            setattr(unit, key, value)

        unit.updated_at = utc_now()
        return self.db.execute_update("""
            UPDATE property_units SET
                unit_identifier = ?, unit_identifier_normalized = ?,
                unit_type = ?, unit_status = ?, floor_number = ?, area_sqm = ?,
                description = ?, updated_at = ?
            WHERE unit_uuid = ?
        """, (
            unit.unit_identifier, normalize_unit_identifier(unit.unit_identifier),
            unit.unit_type, unit.unit_status, unit.floor_number, unit.area_sqm,
            unit.description, to_isoformat(unit.updated_at),
            unit_uuid
        ))

    def count(self) -> int:
        """Count total units."""
        result = self.db.fetch_one("SELECT COUNT(*) as count FROM property_units")
        return result["count"] if result else 0

    def _row_to_unit(self, row) -> PropertyUnit:
        """Convert database row to PropertyUnit."""
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        return PropertyUnit(
            unit_uuid=data["unit_uuid"],
            building_code=data.get("building_code") or "",
            unit_identifier=data.get("unit_identifier") or "",
            unit_type=data.get("unit_type"),
            unit_status=data.get("unit_status"),
            floor_number=data.get("floor_number"),
            area_sqm=data.get("area_sqm"),
            description=data.get("description") or "",
            import_package_id=data.get("import_package_id"),
            source_staging_id=data.get("source_staging_id"),
            created_at=from_isoformat(data.get("created_at")) or utc_now(),
            updated_at=from_isoformat(data.get("updated_at")) or utc_now(),
            created_by=data.get("created_by"),
        )
