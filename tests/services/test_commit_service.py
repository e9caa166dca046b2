# -*- coding: utf-8 -*-
"""
Tests for the commit engine.

Tests cover:
- Integrity failures roll back the whole package
- Reference remapping through chained duplicate resolutions
- Rejection of a commit that lost the race to another worker
- Attachment deduplication across packages
- Commit report derivation
- Attachment store behaviour
"""

import pytest

from conftest import ATTACHMENT_DATA, ATTACHMENT_HASH, default_tables, person_row
from models.conflict import ResolutionAction
from models.import_package import ImportStatus
from models.staging_record import EntityType
from services.attachment_store import FileSystemAttachmentStore, compute_sha256
from services.exceptions import CommitIntegrityException, StateConflictException


def _count(db, table: str) -> int:
    return db.fetch_one(f"SELECT COUNT(*) as count FROM {table}")["count"]


def _ready(pipeline, package_id, context, record_ids=None):
    pipeline.validate_package(package_id, context)
    pipeline.detect_duplicates(package_id, context)
    pipeline.approve_for_commit(package_id, context, record_ids=record_ids)


class TestIntegrity:
    """Test all-or-nothing behaviour on broken references."""

    def test_unapproved_parent_fails_package(self, pipeline, staged_package, context, db, audit):
        package_id = staged_package()
        records = pipeline.staging_repo.get_for_package(package_id)
        chosen = [r.id for r in records
                  if r.entity_type in (EntityType.PROPERTY_UNIT, EntityType.RELATION)]
        _ready(pipeline, package_id, context, record_ids=chosen)

        with pytest.raises(CommitIntegrityException) as exc_info:
            pipeline.commit_package(package_id, context)

        assert exc_info.value.missing_reference == "p-1"
        package = pipeline.get_package(package_id)
        assert package.status == ImportStatus.FAILED
        assert "[Commit failed]" in package.processing_notes
        assert _count(db, "property_units") == 0
        assert _count(db, "person_property_relations") == 0
        assert "package_commit_failed" in audit.actions(package_id)

    def test_failed_commit_can_be_reset_and_retried(self, pipeline, staged_package, context):
        package_id = staged_package()
        records = pipeline.staging_repo.get_for_package(package_id)
        chosen = [r.id for r in records
                  if r.entity_type in (EntityType.PROPERTY_UNIT, EntityType.RELATION)]
        _ready(pipeline, package_id, context, record_ids=chosen)
        with pytest.raises(CommitIntegrityException):
            pipeline.commit_package(package_id, context)

        pipeline.reset_commit(package_id, "Approve the missing person", context)
        pipeline.approve_for_commit(package_id, context)
        report = pipeline.commit_package(package_id, context)

        assert report.status == ImportStatus.COMPLETED.value


class TestAttachments:
    """Test content-addressed attachment handling."""

    def test_deduplicates_across_packages(self, pipeline, staged_package, context):
        first_id = staged_package(package_id="pkg-first")
        _ready(pipeline, first_id, context)
        first = pipeline.commit_package(first_id, context)
        assert first.duplicate_attachments_found == 0

        tables = {"evidence": [{"id": "e-2", "evidence_type": 5, "attachment_hash": ATTACHMENT_HASH}]}
        second_id = staged_package(tables, package_id="pkg-second")
        _ready(pipeline, second_id, context)
        second = pipeline.commit_package(second_id, context)

        assert second.status == ImportStatus.COMPLETED.value
        assert second.duplicate_attachments_found == 1
        assert second.deduplication_bytes_saved == len(ATTACHMENT_DATA)
        assert pipeline.get_package(second_id).duplicate_attachments_found == 1
        assert len(pipeline.evidence_repo.get_by_attachment_hash(ATTACHMENT_HASH)) == 2
        assert all(r.is_committed for r in pipeline.staging_repo.get_for_package(second_id))

    def test_store_is_content_addressed(self, tmp_path):
        store = FileSystemAttachmentStore(tmp_path / "store")

        content_hash = store.store(ATTACHMENT_DATA)

        assert content_hash == compute_sha256(ATTACHMENT_DATA) == ATTACHMENT_HASH
        assert store.exists(content_hash)
        assert store.store(ATTACHMENT_DATA) == content_hash
        assert store.read(content_hash) == ATTACHMENT_DATA
        assert store.read("0" * 64) is None
        assert not store.exists("")


class TestReport:
    """Test commit report derivation."""

    def test_report_lines_and_mappings(self, pipeline, staged_package, context):
        package_id = staged_package()
        _ready(pipeline, package_id, context)
        pipeline.commit_package(package_id, context)

        report = pipeline.get_commit_report(package_id)

        assert report.success_rate == 100.0
        assert len(report.summary_for(EntityType.PERSON.value).id_mappings) == 2
        assert report.summary_lines()[0].endswith("Completed")
        assert report.to_dict()["status"] == "Completed"

    def test_report_requires_commit(self, pipeline, staged_package, context):
        package_id = staged_package()
        with pytest.raises(StateConflictException):
            pipeline.get_commit_report(package_id)


class TestMergeChains:
    """Test references to records discarded through several resolutions."""

    def test_three_way_duplicate_remaps_to_final_survivor(self, pipeline, staged_package, context, db):
        tables = default_tables()
        tables["persons"] = [
            person_row(row_id, "Omar", "Haddad", "01234567890", "0944111222")
            for row_id in ("p-1", "p-2", "p-3")
        ]
        tables["person_property_relations"][0]["person_id"] = "p-3"
        package_id = staged_package(tables)
        pipeline.validate_package(package_id, context)
        detection = pipeline.detect_duplicates(package_id, context)
        assert detection.conflicts_created == 3

        staged = {
            original: pipeline.staging_repo.find_by_original_id(package_id, EntityType.PERSON, original).id
            for original in ("p-1", "p-2", "p-3")
        }
        conflicts = [pipeline.conflicts.get_conflict(cid) for cid in detection.conflict_ids]
        last_pair = {staged["p-2"], staged["p-3"]}
        conflicts.sort(key=lambda c: {c.first.entity_id, c.second.entity_id} == last_pair)
        for conflict in conflicts:
            pipeline.resolve_conflict(conflict.id, ResolutionAction.KEEP_FIRST, context)

        assert pipeline.staging_repo.get_by_id(staged["p-3"]).merged_into_entity_id == staged["p-2"]

        pipeline.approve_for_commit(package_id, context)
        report = pipeline.commit_package(package_id, context)

        assert report.status == ImportStatus.PARTIALLY_COMPLETED.value
        survivor_id = pipeline.staging_repo.get_by_id(staged["p-1"]).committed_entity_id
        relation = db.fetch_one("SELECT person_id FROM person_property_relations")
        assert relation["person_id"] == survivor_id
        assert _count(db, "persons") == 1


class TestConcurrentCommit:
    """Test the compare-and-set guard on the commit entry point."""

    def test_stale_package_loses_the_race(self, pipeline, staged_package, context, db):
        package_id = staged_package()
        _ready(pipeline, package_id, context)
        stale = pipeline.get_package(package_id)
        assert stale.status == ImportStatus.READY_TO_COMMIT

        pipeline.package_repo.transition_status(
            package_id, {ImportStatus.READY_TO_COMMIT}, ImportStatus.COMMITTING
        )

        with pytest.raises(StateConflictException) as exc_info:
            pipeline.commit_engine.commit(stale, context)

        assert exc_info.value.current_status == ImportStatus.COMMITTING.value
        assert _count(db, "persons") == 0
        assert pipeline.get_package(package_id).status == ImportStatus.COMMITTING
