# -*- coding: utf-8 -*-
"""
Tests for staged record validation rules.
"""

import pytest

from conftest import ATTACHMENT_HASH, BUILDING_CODE
from models.staging_record import EntityType, StagingRecord, ValidationOutcome
from services.record_validator import RecordValidator
from services.vocab_service import StaticVocabularyValidator


def _record(entity_type, original_id, row_number=1, **payload):
    return StagingRecord(import_package_id="pkg-1", entity_type=entity_type,
                         original_entity_id=original_id, payload=payload, row_number=row_number)


def _person(original_id="p-1", **overrides):
    payload = {"first_name": "Omar", "family_name": "Haddad", "national_id": "01234567890",
               "gender": "M", "year_of_birth": 1980}
    payload.update(overrides)
    return _record(EntityType.PERSON, original_id, **payload)


def _unit(original_id="u-1", **overrides):
    payload = {"building_code": BUILDING_CODE, "unit_identifier": "A1", "unit_type": 1,
               "unit_status": 1, "floor_number": 0}
    payload.update(overrides)
    return _record(EntityType.PROPERTY_UNIT, original_id, **payload)


@pytest.fixture
def validator():
    return RecordValidator(StaticVocabularyValidator(), current_year=2025)


class TestPersonRules:
    """Test person validation."""

    def test_valid_person(self, validator):
        person = _person()
        validator.validate_records([person], [])
        assert person.outcome == ValidationOutcome.VALID

    def test_missing_national_id_is_warning(self, validator):
        person = _person(national_id=None)
        validator.validate_records([person], [])
        assert person.outcome == ValidationOutcome.WARNING

    def test_bad_national_id_is_error(self, validator):
        person = _person(national_id="12-34")
        validator.validate_records([person], [])
        assert person.outcome == ValidationOutcome.INVALID

    def test_year_of_birth_in_future(self, validator):
        person = _person(year_of_birth=2030)
        validator.validate_records([person], [])
        assert person.outcome == ValidationOutcome.INVALID

    def test_required_names(self, validator):
        person = _person(first_name="  ")
        validator.validate_records([person], [])
        assert "first_name is required" in person.validation_errors


class TestUnitRules:
    """Test property unit validation."""

    def test_short_building_code(self, validator):
        unit = _unit(building_code="0101")
        validator.validate_records([unit], [])
        assert unit.outcome == ValidationOutcome.INVALID

    def test_dashed_building_code_is_accepted(self, validator):
        unit = _unit(building_code="01-01-01-001-001-00001")
        validator.validate_records([unit], [])
        assert unit.outcome == ValidationOutcome.VALID

    def test_unknown_unit_type(self, validator):
        unit = _unit(unit_type=42)
        validator.validate_records([unit], [])
        assert unit.outcome == ValidationOutcome.INVALID


class TestReferences:
    """Test reference resolution inside the package and production."""

    def test_relation_to_package_entities(self, validator):
        relation = _record(EntityType.RELATION, "r-1", person_id="p-1", property_unit_id="u-1",
                           relation_type=1, ownership_share=50)
        validator.validate_records([relation, _unit(), _person()], [])
        assert relation.outcome == ValidationOutcome.VALID

    def test_relation_to_production_entities(self):
        validator = RecordValidator(
            StaticVocabularyValidator(),
            person_exists=lambda pid: pid == "prod-person",
            unit_exists=lambda uid: uid == "prod-unit",
        )
        relation = _record(EntityType.RELATION, "r-1", person_id="prod-person",
                           property_unit_id="prod-unit", relation_type=1)
        validator.validate_records([relation], [])
        assert relation.outcome == ValidationOutcome.VALID

    def test_unresolved_reference(self, validator):
        claim = _record(EntityType.CLAIM, "c-1", property_unit_id="nowhere", claim_source=1)
        validator.validate_records([claim], [])
        assert claim.outcome == ValidationOutcome.INVALID

    def test_ownership_share_range(self, validator):
        relation = _record(EntityType.RELATION, "r-1", person_id="p-1", property_unit_id="u-1",
                           relation_type=1, ownership_share=150)
        validator.validate_records([_person(), _unit(), relation], [])
        assert relation.outcome == ValidationOutcome.INVALID

    def test_skipped_parent_still_resolves(self, validator):
        person = _person()
        person.mark_as_skipped("Discarded by conflict")
        relation = _record(EntityType.RELATION, "r-1", person_id="p-1", property_unit_id="u-1",
                           relation_type=1)

        validated = validator.validate_records([person, _unit(), relation], [])

        assert person not in validated
        assert person.outcome == ValidationOutcome.SKIPPED
        assert relation.outcome == ValidationOutcome.VALID

    def test_evidence_attachment_must_be_present(self, validator):
        evidence = _record(EntityType.EVIDENCE, "e-1", evidence_type=2, attachment_hash=ATTACHMENT_HASH)

        validator.validate_records([evidence], [])
        assert evidence.outcome == ValidationOutcome.INVALID

        validator.validate_records([evidence], [ATTACHMENT_HASH.upper()])
        assert evidence.outcome == ValidationOutcome.VALID
