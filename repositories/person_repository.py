# -*- coding: utf-8 -*-
"""
Person repository for database operations.
"""

from typing import Any, Dict, List, Optional

from models.person import Person
from utils.datetime_utils import utc_now, to_isoformat, from_isoformat
from utils.helpers import normalize_arabic, normalize_gender, to_int
from utils.logger import get_logger
from .db_adapter import DatabaseAdapter

logger = get_logger(__name__)

# Columns a merge mapping may overwrite
UPDATABLE_FIELDS = (
    "first_name", "father_name", "mother_name", "family_name",
    "gender", "year_of_birth", "national_id", "phone_number", "mobile_number",
)


class PersonRepository:
    """Repository for Person CRUD operations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, person: Person) -> Person:
        """Create a new person record."""
        query = """
            INSERT INTO persons (
                person_id, first_name, father_name, mother_name, family_name,
                family_name_normalized, gender, year_of_birth, national_id,
                phone_number, mobile_number, phone_normalized,
                import_package_id, source_staging_id,
                created_at, updated_at, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            person.person_id, person.first_name, person.father_name,
            person.mother_name, person.family_name,
            normalize_arabic(person.family_name),
            person.gender, person.year_of_birth, person.national_id,
            person.phone_number, person.mobile_number, person.primary_phone or None,
            person.import_package_id, person.source_staging_id,
            to_isoformat(person.created_at), to_isoformat(person.updated_at),
            person.created_by
        )
        self.db.execute(query, params)
        logger.debug(f"Created person: {person.person_id}")
        return person

    def get_by_id(self, person_id: str) -> Optional[Person]:
        """Get person by ID."""
        row = self.db.fetch_one("SELECT * FROM persons WHERE person_id = ?", (person_id,))
        if row:
            return self._row_to_person(row)
        return None

    def exists(self, person_id: str) -> bool:
        row = self.db.fetch_one("SELECT 1 AS found FROM persons WHERE person_id = ?", (person_id,))
        return row is not None

    def get_by_national_id(self, national_id: str) -> List[Person]:
        """Get persons sharing a national ID."""
        rows = self.db.fetch_all("SELECT * FROM persons WHERE national_id = ?", (national_id,))
        return [self._row_to_person(row) for row in rows]

    def find_candidates(self, national_id: Optional[str] = None,
                        phone: Optional[str] = None,
                        family_name: Optional[str] = None,
                        limit: int = 50) -> List[Person]:
        """
        Blocking query for duplicate detection.

        Any one of national ID, normalized phone or normalized family name
        is enough to make a person a candidate.
        """
        conditions = []
        params: List[Any] = []

        if national_id:
            conditions.append("national_id = ?")
            params.append(national_id)

        if phone:
            conditions.append("phone_normalized = ?")
            params.append(phone)

        norm_family = normalize_arabic(family_name)
        if norm_family:
            conditions.append("family_name_normalized = ?")
            params.append(norm_family)

        if not conditions:
            return []

        query = f"""
            SELECT * FROM persons
            WHERE {' OR '.join(conditions)}
            ORDER BY created_at ASC
            LIMIT ?
        """
        params.append(limit)
        rows = self.db.fetch_all(query, tuple(params))
        return [self._row_to_person(row) for row in rows]

    def update_fields(self, person_id: str, fields: Dict[str, Any]) -> int:
        """Overwrite selected fields, keeping the search columns in sync."""
        person = self.get_by_id(person_id)
        if person is None:
            return 0

        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS:
                logger.warning(f"Ignoring non-updatable person field: {key}")
                continue
            if key == "gender":
                value = normalize_gender(value)
            elif key == "year_of_birth":
                value = to_int(value)
            setattr(person, key, value)

        person.updated_at = utc_now()
        return self.db.execute_update("""
            UPDATE persons SET
                first_name = ?, father_name = ?, mother_name = ?, family_name = ?,
                family_name_normalized = ?, gender = ?, year_of_birth = ?, national_id = ?,
                phone_number = ?, mobile_number = ?, phone_normalized = ?, updated_at = ?
            WHERE person_id = ?
        """, (
            person.first_name, person.father_name, person.mother_name, person.family_name,
            normalize_arabic(person.family_name), person.gender, person.year_of_birth,
            person.national_id, person.phone_number, person.mobile_number,
            person.primary_phone or None, to_isoformat(person.updated_at),
            person_id
        ))

    def count(self) -> int:
        """Count total persons."""
        result = self.db.fetch_one("SELECT COUNT(*) as count FROM persons")
        return result["count"] if result else 0

    def _row_to_person(self, row) -> Person:
        """Convert database row to Person."""
        data = row.to_dict() if hasattr(row, "to_dict") else dict(row)
        return Person(
            person_id=data["person_id"],
            first_name=data.get("first_name") or "",
            father_name=data.get("father_name") or "",
            mother_name=data.get("mother_name") or "",
            family_name=data.get("family_name") or "",
            gender=data.get("gender"),
            year_of_birth=data.get("year_of_birth"),
            national_id=data.get("national_id"),
            phone_number=data.get("phone_number"),
            mobile_number=data.get("mobile_number"),
            import_package_id=data.get("import_package_id"),
            source_staging_id=data.get("source_staging_id"),
            created_at=from_isoformat(data.get("created_at")) or utc_now(),
            updated_at=from_isoformat(data.get("updated_at")) or utc_now(),
            created_by=data.get("created_by"),
        )
