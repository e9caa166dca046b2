# -*- coding: utf-8 -*-
"""
Staging record model.

One StagingRecord per entity extracted from a package. Records carry the
raw payload from the field device plus validation and commit state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from utils.datetime_utils import utc_now, to_isoformat


class EntityType(Enum):
    """Staged entity types, in commit dependency order."""
    PERSON = "person"
    PROPERTY_UNIT = "property_unit"
    RELATION = "relation"
    CLAIM = "claim"
    EVIDENCE = "evidence"


# Parents first, mirroring foreign-key direction
COMMIT_ORDER: List[EntityType] = [
    EntityType.PERSON,
    EntityType.PROPERTY_UNIT,
    EntityType.RELATION,
    EntityType.CLAIM,
    EntityType.EVIDENCE,
]

# Package container table for each entity type
PACKAGE_TABLES: Dict[EntityType, str] = {
    EntityType.PERSON: "persons",
    EntityType.PROPERTY_UNIT: "property_units",
    EntityType.RELATION: "person_property_relations",
    EntityType.CLAIM: "claims",
    EntityType.EVIDENCE: "evidence",
}


class ValidationOutcome(Enum):
    """Per-record validation result."""
    PENDING = "Pending"
    VALID = "Valid"
    WARNING = "Warning"
    INVALID = "Invalid"
    SKIPPED = "Skipped"


APPROVABLE_OUTCOMES = frozenset({ValidationOutcome.VALID, ValidationOutcome.WARNING})


@dataclass
class StagingRecord:
    """
    An extracted, not-yet-committed entity awaiting validation and commit.

    Invariant: an Invalid or Skipped record is never approved for commit.
    """

    import_package_id: str
    entity_type: EntityType
    original_entity_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    row_number: int = 0

    outcome: ValidationOutcome = ValidationOutcome.PENDING
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)

    is_approved_for_commit: bool = False
    committed_entity_id: Optional[str] = None
    commit_error: Optional[str] = None
    merged_into_entity_id: Optional[str] = None

    staged_at: datetime = field(default_factory=utc_now)
    validated_at: Optional[datetime] = None

    @property
    def is_committed(self) -> bool:
        return self.committed_entity_id is not None

    @property
    def can_be_approved(self) -> bool:
        return self.outcome in APPROVABLE_OUTCOMES

    def apply_validation(self, errors: List[str], warnings: List[str]) -> None:
        """Overwrite the validation outcome from a fresh validation run."""
        self.validation_errors = list(errors)
        self.validation_warnings = list(warnings)
        self.validated_at = utc_now()
        if errors:
            self.outcome = ValidationOutcome.INVALID
            self.is_approved_for_commit = False
        elif warnings:
            self.outcome = ValidationOutcome.WARNING
        else:
            self.outcome = ValidationOutcome.VALID

    def approve_for_commit(self) -> None:
        if not self.can_be_approved:
            raise ValueError(
                f"Staging record {self.id} with outcome {self.outcome.value} cannot be approved"
            )
        self.is_approved_for_commit = True

    def mark_as_skipped(self, reason: str, merged_into_entity_id: Optional[str] = None) -> None:
        """Exclude the record from commit, e.g. after a conflict discards it."""
        self.outcome = ValidationOutcome.SKIPPED
        self.is_approved_for_commit = False
        self.merged_into_entity_id = merged_into_entity_id
        self.validation_warnings = list(self.validation_warnings) + [reason]

    def display_name(self) -> str:
        """Short identifier string shown to conflict reviewers."""
        p = self.payload
        if self.entity_type == EntityType.PERSON:
            name = " ".join(
                str(part) for part in (p.get("first_name"), p.get("father_name"), p.get("family_name"))
                if part
            )
            return f"{name} (NID: {p.get('national_id') or '-'})"
        if self.entity_type == EntityType.PROPERTY_UNIT:
            return f"{p.get('building_code', '')}/{p.get('unit_identifier', '')}"
        return f"{self.entity_type.value}:{self.original_entity_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "import_package_id": self.import_package_id,
            "entity_type": self.entity_type.value,
            "original_entity_id": self.original_entity_id,
            "payload": self.payload,
            "outcome": self.outcome.value,
            "validation_errors": self.validation_errors,
            "validation_warnings": self.validation_warnings,
            "is_approved_for_commit": self.is_approved_for_commit,
            "committed_entity_id": self.committed_entity_id,
            "commit_error": self.commit_error,
            "merged_into_entity_id": self.merged_into_entity_id,
            "staged_at": to_isoformat(self.staged_at),
            "validated_at": to_isoformat(self.validated_at),
        }
