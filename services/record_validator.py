# -*- coding: utf-8 -*-
"""
Staging record validation.

Checks each staged record against required-field, format and reference-code
rules, and checks that references to other entities resolve either inside
the same package or in production.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from models.staging_record import StagingRecord, EntityType, ValidationOutcome, COMMIT_ORDER
from services.vocab_service import ReferenceCodeValidator
from utils.datetime_utils import utc_now
from utils.helpers import normalize_building_code, normalize_gender, to_int
from utils.logger import get_logger

logger = get_logger(__name__)

NATIONAL_ID_PATTERN = re.compile(r"^\d{11}$")
MIN_YEAR_OF_BIRTH = 1900


@dataclass
class ValidationResult:
    """Result of validating one record."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class PackageIndex:
    """
    Original ids of the records in one package that other records may
    reference. Invalid records are left out, so references to them fail.
    """
    ids: Dict[EntityType, Set[str]] = field(default_factory=dict)
    attachment_hashes: Set[str] = field(default_factory=set)

    def add(self, entity_type: EntityType, original_id: str) -> None:
        self.ids.setdefault(entity_type, set()).add(str(original_id))

    def contains(self, entity_type: EntityType, original_id: Any) -> bool:
        return str(original_id) in self.ids.get(entity_type, set())


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RecordValidator:
    """Validates staged records of one package."""

    def __init__(
        self,
        code_validator: ReferenceCodeValidator,
        person_exists: Optional[Callable[[str], bool]] = None,
        unit_exists: Optional[Callable[[str], bool]] = None,
        claim_exists: Optional[Callable[[str], bool]] = None,
        current_year: Optional[int] = None
    ):
        """
        Args:
            code_validator: Reference-code validator for enumerated fields
            person_exists / unit_exists / claim_exists: production lookups
                used when a reference is not found inside the package
        """
        self.code_validator = code_validator
        self._production_exists = {
            EntityType.PERSON: person_exists or (lambda _id: False),
            EntityType.PROPERTY_UNIT: unit_exists or (lambda _id: False),
            EntityType.CLAIM: claim_exists or (lambda _id: False),
        }
        self.current_year = current_year

        self._validators = {
            EntityType.PERSON: self._validate_person,
            EntityType.PROPERTY_UNIT: self._validate_property_unit,
            EntityType.RELATION: self._validate_relation,
            EntityType.CLAIM: self._validate_claim,
            EntityType.EVIDENCE: self._validate_evidence,
        }

    # ==================== Package level ====================

    def validate_records(self, records: Iterable[StagingRecord],
                         attachment_hashes: Iterable[str]) -> List[StagingRecord]:
        """
        Validate every non-Skipped record in dependency order and apply the
        outcome to it. Returns the records that were validated.
        """
        by_type: Dict[EntityType, List[StagingRecord]] = {t: [] for t in COMMIT_ORDER}
        for record in records:
            by_type[record.entity_type].append(record)

        index = PackageIndex(attachment_hashes={h.lower() for h in attachment_hashes if h})
        validated: List[StagingRecord] = []

        # Parents first, so a child of an Invalid parent fails to resolve
        for entity_type in COMMIT_ORDER:
            for record in by_type[entity_type]:
                if record.outcome == ValidationOutcome.SKIPPED:
                    index.add(entity_type, record.original_entity_id)
                    continue
                result = self.validate_record(record, index)
                record.apply_validation(result.errors, result.warnings)
                validated.append(record)
                if record.outcome != ValidationOutcome.INVALID:
                    index.add(entity_type, record.original_entity_id)

        logger.debug(f"Validated {len(validated)} records")
        return validated

    def validate_record(self, record: StagingRecord, index: PackageIndex) -> ValidationResult:
        result = ValidationResult()
        self._validators[record.entity_type](record.payload, index, result)
        return result

    # ==================== Helpers ====================

    def _require(self, payload: Dict[str, Any], field_name: str, result: ValidationResult) -> bool:
        if _is_blank(payload.get(field_name)):
            result.errors.append(f"{field_name} is required")
            return False
        return True

    def _check_code(self, payload: Dict[str, Any], field_name: str, domain: str,
                    result: ValidationResult, required: bool = True) -> None:
        value = payload.get(field_name)
        if _is_blank(value):
            if required:
                result.errors.append(f"{field_name} is required")
            else:
                result.warnings.append(f"{field_name} is missing")
            return
        if not self.code_validator.is_valid_code(domain, value):
            result.errors.append(f"{field_name} '{value}' is not a valid {domain} code")

    def _check_reference(self, payload: Dict[str, Any], field_name: str,
                         target: EntityType, index: PackageIndex,
                         result: ValidationResult, required: bool) -> None:
        value = payload.get(field_name)
        if _is_blank(value):
            if required:
                result.errors.append(f"{field_name} is required")
            return
        if index.contains(target, value):
            return
        if self._production_exists[target](str(value)):
            return
        result.errors.append(f"{field_name} '{value}' does not reference a valid {target.value}")

    # ==================== Entity rules ====================

    def _validate_person(self, payload: Dict[str, Any], index: PackageIndex,
                         result: ValidationResult) -> None:
        self._require(payload, "first_name", result)
        self._require(payload, "family_name", result)

        national_id = payload.get("national_id")
        if _is_blank(national_id):
            result.warnings.append("national_id is missing")
        elif not NATIONAL_ID_PATTERN.match(str(national_id).strip()):
            result.errors.append(f"national_id '{national_id}' must be 11 digits")

        gender = payload.get("gender")
        if _is_blank(gender):
            result.warnings.append("gender is missing")
        elif not self.code_validator.is_valid_code("gender", normalize_gender(gender) or gender):
            result.errors.append(f"gender '{gender}' is not a valid gender code")

        year = payload.get("year_of_birth")
        if not _is_blank(year):
            year_int = to_int(year)
            max_year = self.current_year or utc_now().year
            if year_int is None or not MIN_YEAR_OF_BIRTH <= year_int <= max_year:
                result.errors.append(
                    f"year_of_birth '{year}' must be between {MIN_YEAR_OF_BIRTH} and {max_year}"
                )

    def _validate_property_unit(self, payload: Dict[str, Any], index: PackageIndex,
                                result: ValidationResult) -> None:
        building_code = payload.get("building_code")
        if _is_blank(building_code):
            result.errors.append("building_code is required")
        elif len(normalize_building_code(building_code)) != 17:
            result.errors.append(f"building_code '{building_code}' must contain exactly 17 digits")

        self._require(payload, "unit_identifier", result)
        self._check_code(payload, "unit_type", "property_unit_type", result)
        self._check_code(payload, "unit_status", "property_unit_status", result, required=False)

        if _is_blank(payload.get("floor_number")):
            result.warnings.append("floor_number is missing")
        elif to_int(payload.get("floor_number")) is None:
            result.errors.append(f"floor_number '{payload.get('floor_number')}' must be an integer")

    def _validate_relation(self, payload: Dict[str, Any], index: PackageIndex,
                           result: ValidationResult) -> None:
        self._check_reference(payload, "person_id", EntityType.PERSON, index, result, required=True)
        self._check_reference(payload, "property_unit_id", EntityType.PROPERTY_UNIT, index, result,
                              required=True)
        self._check_code(payload, "relation_type", "relation_type", result)

        share = payload.get("ownership_share")
        if not _is_blank(share):
            try:
                share_value = float(share)
            except (TypeError, ValueError):
                result.errors.append(f"ownership_share '{share}' must be a number")
            else:
                if not 0 <= share_value <= 100:
                    result.errors.append(f"ownership_share {share_value} must be between 0 and 100")

    def _validate_claim(self, payload: Dict[str, Any], index: PackageIndex,
                        result: ValidationResult) -> None:
        self._check_reference(payload, "property_unit_id", EntityType.PROPERTY_UNIT, index, result,
                              required=True)
        self._check_reference(payload, "claimant_person_id", EntityType.PERSON, index, result,
                              required=False)
        self._check_code(payload, "claim_source", "claim_source", result)

    def _validate_evidence(self, payload: Dict[str, Any], index: PackageIndex,
                           result: ValidationResult) -> None:
        self._check_code(payload, "evidence_type", "evidence_type", result)

        attachment_hash = payload.get("attachment_hash")
        if not _is_blank(attachment_hash) and str(attachment_hash).lower() not in index.attachment_hashes:
            result.errors.append(f"attachment '{attachment_hash}' is not included in the package")

        self._check_reference(payload, "person_id", EntityType.PERSON, index, result, required=False)
        self._check_reference(payload, "claim_id", EntityType.CLAIM, index, result, required=False)
