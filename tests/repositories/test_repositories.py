# -*- coding: utf-8 -*-
"""
Tests for the SQLite adapter and pipeline repositories.
"""

import pytest

from models.import_package import ImportPackage, ImportStatus
from models.staging_record import EntityType, StagingRecord, ValidationOutcome
from repositories.package_repository import ImportPackageRepository
from repositories.staging_repository import StagingRepository


@pytest.fixture
def scratch_table(db):
    db.execute("CREATE TABLE scratch (value TEXT)")
    return db


def _count(db, table):
    return db.fetch_one(f"SELECT COUNT(*) AS count FROM {table}")["count"]


class TestSQLiteAdapter:
    """Test transactions and savepoints."""

    def test_transaction_rolls_back_on_error(self, scratch_table):
        with pytest.raises(RuntimeError):
            with scratch_table.transaction():
                scratch_table.execute("INSERT INTO scratch VALUES (?)", ("a",))
                raise RuntimeError("boom")

        assert _count(scratch_table, "scratch") == 0

    def test_nested_transaction_joins_outer(self, scratch_table):
        with pytest.raises(RuntimeError):
            with scratch_table.transaction():
                with scratch_table.transaction():
                    scratch_table.execute("INSERT INTO scratch VALUES (?)", ("inner",))
                raise RuntimeError("outer failure")

        assert _count(scratch_table, "scratch") == 0

    def test_savepoint_rolls_back_only_its_statements(self, scratch_table):
        with scratch_table.transaction():
            scratch_table.execute("INSERT INTO scratch VALUES (?)", ("kept",))
            with pytest.raises(ValueError):
                with scratch_table.savepoint("sp_test"):
                    scratch_table.execute("INSERT INTO scratch VALUES (?)", ("dropped",))
                    raise ValueError("record failed")

        rows = scratch_table.fetch_all("SELECT value FROM scratch")
        assert [row["value"] for row in rows] == ["kept"]

    def test_execute_update_returns_rowcount(self, scratch_table):
        scratch_table.execute_many("INSERT INTO scratch VALUES (?)", [("a",), ("b",)])
        assert scratch_table.execute_update("UPDATE scratch SET value = 'c'") == 2


class TestImportPackageRepository:
    """Test package persistence."""

    def test_package_numbers_increment(self, db):
        repo = ImportPackageRepository(db)
        assert repo.next_package_number(2025) == "PKG-2025-0001"

        repo.create(ImportPackage.create("PKG-2025-0001", "a.uhc", 10, "user-1"))
        assert repo.next_package_number(2025) == "PKG-2025-0002"
        assert repo.next_package_number(2026) == "PKG-2026-0001"

    def test_transition_status_compare_and_set(self, db):
        repo = ImportPackageRepository(db)
        package = repo.create(ImportPackage.create("PKG-2025-0001", "a.uhc", 10, "user-1"))

        assert repo.transition_status(package.id, [ImportStatus.RECEIVED], ImportStatus.STAGING)
        assert not repo.transition_status(package.id, [ImportStatus.RECEIVED], ImportStatus.STAGING)
        assert repo.get_by_id(package.id).status == ImportStatus.STAGING

    def test_round_trip_preserves_vocabulary_versions(self, db):
        repo = ImportPackageRepository(db)
        package = ImportPackage.create("PKG-2025-0001", "a.uhc", 10, "user-1",
                                       package_id="manifest-1",
                                       vocabulary_versions={"gender": "1.0.0"})
        repo.create(package)

        loaded = repo.get_by_manifest_package_id("manifest-1")
        assert loaded.id == package.id
        assert loaded.vocabulary_versions == {"gender": "1.0.0"}


class TestStagingRepository:
    """Test staging record queries."""

    @pytest.fixture
    def package_id(self, db):
        package = ImportPackage.create("PKG-2025-0001", "a.uhc", 10, "user-1")
        return ImportPackageRepository(db).create(package).id

    def _records(self, package_id):
        person = StagingRecord(package_id, EntityType.PERSON, "p-1", {"first_name": "Omar"}, row_number=1)
        unit = StagingRecord(package_id, EntityType.PROPERTY_UNIT, "u-1", {"unit_identifier": "A1"},
                             row_number=2)
        return person, unit

    def test_counts_by_type_and_outcome(self, db, package_id):
        repo = StagingRepository(db)
        person, unit = self._records(package_id)
        person.apply_validation([], [])
        unit.apply_validation(["unit_identifier is required"], [])
        repo.create_many([person, unit])

        breakdown = repo.count_by_type_and_outcome(package_id)

        assert breakdown[EntityType.PERSON.value][ValidationOutcome.VALID.value] == 1
        assert breakdown[EntityType.PROPERTY_UNIT.value][ValidationOutcome.INVALID.value] == 1
        assert repo.count_for_package(package_id) == 2

    def test_filters_and_lookup(self, db, package_id):
        repo = StagingRepository(db)
        person, unit = self._records(package_id)
        person.apply_validation([], [])
        person.approve_for_commit()
        repo.create_many([person, unit])

        assert [r.id for r in repo.get_for_package(package_id, approved_only=True)] == [person.id]
        assert repo.find_by_original_id(package_id, EntityType.PROPERTY_UNIT, "u-1").id == unit.id

        repo.clear_approvals(package_id)
        assert repo.get_for_package(package_id, approved_only=True) == []
