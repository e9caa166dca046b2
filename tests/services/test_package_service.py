# -*- coding: utf-8 -*-
"""
Tests for the import pipeline orchestration.

Tests cover:
- Upload (duplicates, checksum and manifest failures)
- Staging with cancellation and progress
- Validation idempotency
- State machine ordering
- Duplicate review effects on commit
- Cancel, quarantine, reset and retention purge
"""

from datetime import timedelta
from pathlib import Path

import pytest

from conftest import ATTACHMENT_HASH, default_tables, person_row, unit_row
from models.conflict import ConflictQueueFilter, ConflictStatus, MergeDetails, ResolutionAction
from models.import_package import ImportStatus
from models.staging_record import EntityType, ValidationOutcome
from services.exceptions import (
    ManifestException, NotFoundException, OperationCancelledException,
    StateConflictException, ValidationException,
)
from services.package_service import SUPERSEDED_REASON
from utils.datetime_utils import utc_now


def _count(db, table: str) -> int:
    return db.fetch_one(f"SELECT COUNT(*) as count FROM {table}")["count"]


def _duplicate_tables():
    """Two persons sharing a national ID; the relation points at the second."""
    tables = default_tables()
    tables["persons"] = [
        person_row("p-1", "Omar", "Haddad", "01234567890", "0944111222"),
        person_row("p-2", "Omar", "Haddad", "01234567890", "0944111222"),
    ]
    tables["person_property_relations"][0]["person_id"] = "p-2"
    return tables


def _review(pipeline, package_id, context):
    pipeline.validate_package(package_id, context)
    return pipeline.detect_duplicates(package_id, context)


class TestUpload:
    """Test package upload."""

    def test_upload_registers_received_package(self, pipeline, build_package, context, audit):
        result = pipeline.upload_package(build_package(package_id="pkg-001"), "field.uhc", context)

        package = result.package
        assert result.is_duplicate is False
        assert package.status == ImportStatus.RECEIVED
        assert package.package_id == "pkg-001"
        assert package.package_number.startswith("PKG-")
        assert package.is_checksum_valid is True
        assert package.is_vocabulary_compatible is True
        assert package.device_id == "tablet-07"
        assert Path(package.file_path).exists()
        assert "package_uploaded" in audit.actions(package.id)

    def test_duplicate_upload_returns_existing_package(self, pipeline, build_package, context, config):
        data = build_package(package_id="pkg-dup")
        first = pipeline.upload_package(data, "field.uhc", context)
        second = pipeline.upload_package(data, "field-again.uhc", context)

        assert second.is_duplicate is True
        assert second.package.id == first.package.id
        assert pipeline.package_repo.count() == 1
        assert len(list(Path(config.PACKAGE_STORAGE_PATH).iterdir())) == 1

    def test_checksum_mismatch_quarantines(self, pipeline, build_package, context):
        result = pipeline.upload_package(build_package(checksum="0" * 64), "field.uhc", context)

        assert result.package.status == ImportStatus.QUARANTINED
        assert result.package.is_checksum_valid is False
        assert result.is_quarantined
        assert "[Quarantined]" in result.package.processing_notes

    def test_major_vocabulary_mismatch_quarantines(self, pipeline, build_package, context):
        data = build_package(vocab_versions={"gender": "2.0.0"})
        result = pipeline.upload_package(data, "field.uhc", context)

        assert result.package.status == ImportStatus.QUARANTINED
        assert result.package.is_vocabulary_compatible is False
        assert any("gender" in issue for issue in result.issues)

    def test_minor_vocabulary_difference_only_warns(self, pipeline, build_package, context):
        data = build_package(vocab_versions={"gender": "1.2.0"})
        result = pipeline.upload_package(data, "field.uhc", context)

        assert result.package.status == ImportStatus.RECEIVED
        assert result.warnings

    def test_unreadable_container_is_failed(self, pipeline, context):
        result = pipeline.upload_package(b"not a sqlite file at all", "broken.uhc", context)

        assert result.package.status == ImportStatus.FAILED
        assert result.package.error_message

    def test_rejects_other_extensions(self, pipeline, build_package, context):
        with pytest.raises(ValidationException):
            pipeline.upload_package(build_package(), "field.zip", context)

    def test_rejects_empty_file(self, pipeline, context):
        with pytest.raises(ValidationException):
            pipeline.upload_package(b"", "field.uhc", context)


class TestStaging:
    """Test extraction into staging."""

    def test_stage_creates_one_record_per_row(self, pipeline, build_package, context, config):
        package_id = pipeline.upload_package(build_package(), "field.uhc", context).package.id
        summary = pipeline.stage_package(package_id, context)

        assert summary.total_records == 6
        assert summary.pending_count == 6
        assert summary.by_entity_type[EntityType.PERSON.value] == {"Pending": 2}

        package = pipeline.get_package(package_id)
        assert package.status == ImportStatus.STAGING
        assert package.staged_count == 6
        assert (Path(config.STAGING_ATTACHMENTS_PATH) / package_id / ATTACHMENT_HASH).exists()

    def test_evidence_payload_gets_attachment_metadata(self, pipeline, staged_package):
        package_id = staged_package()

        evidence = pipeline.staging_repo.get_for_package(package_id, EntityType.EVIDENCE)[0]
        assert evidence.payload["file_name"] == "deed.pdf"
        assert evidence.payload["mime_type"] == "application/pdf"

    def test_progress_callback(self, pipeline, build_package, context):
        package_id = pipeline.upload_package(build_package(), "field.uhc", context).package.id
        calls = []
        pipeline.stage_package(package_id, context, progress_callback=lambda c, t: calls.append((c, t)))

        assert calls[0] == (1, 6)
        assert calls[-1] == (6, 6)

    def test_cancel_leaves_partial_records(self, pipeline, build_package, context):
        package_id = pipeline.upload_package(build_package(), "field.uhc", context).package.id
        checks = {"count": 0}

        def should_cancel():
            checks["count"] += 1
            return checks["count"] > 2

        with pytest.raises(OperationCancelledException) as exc_info:
            pipeline.stage_package(package_id, context, should_cancel=should_cancel)

        assert exc_info.value.records_staged == 2
        assert pipeline.get_package(package_id).status == ImportStatus.STAGING
        assert pipeline.staging_repo.count_for_package(package_id) == 2

        # Re-staging starts from a clean slate
        summary = pipeline.stage_package(package_id, context)
        assert summary.total_records == 6

    def test_missing_package_file_fails(self, pipeline, build_package, context):
        package = pipeline.upload_package(build_package(), "field.uhc", context).package
        Path(package.file_path).unlink()

        with pytest.raises(ManifestException):
            pipeline.stage_package(package.id, context)
        assert pipeline.get_package(package.id).status == ImportStatus.FAILED

    def test_unknown_package(self, pipeline, context):
        with pytest.raises(NotFoundException):
            pipeline.stage_package("no-such-package", context)


class TestValidation:
    """Test validation runs."""

    def test_valid_package(self, pipeline, staged_package, context):
        package_id = staged_package()
        summary = pipeline.validate_package(package_id, context)

        assert summary.status == ImportStatus.VALIDATING.value
        assert summary.invalid_count == 0
        assert summary.valid_count + summary.warning_count == 6

    def test_validation_is_idempotent(self, pipeline, staged_package, context):
        tables = default_tables()
        tables["persons"].append(person_row("p-3", "", "Nassar", "123", "0966777888"))
        package_id = staged_package(tables)

        pipeline.validate_package(package_id, context)
        first = {r.id: (r.outcome, r.validation_errors)
                 for r in pipeline.staging_repo.get_for_package(package_id)}
        pipeline.validate_package(package_id, context)
        second = {r.id: (r.outcome, r.validation_errors)
                  for r in pipeline.staging_repo.get_for_package(package_id)}

        assert first == second
        assert pipeline.get_package(package_id).invalid_count == 1

    def test_child_of_invalid_parent_is_invalid(self, pipeline, staged_package, context):
        tables = default_tables()
        tables["property_units"][0]["building_code"] = "123"
        package_id = staged_package(tables)

        pipeline.validate_package(package_id, context)

        relation = pipeline.staging_repo.get_for_package(package_id, EntityType.RELATION)[0]
        assert relation.outcome == ValidationOutcome.INVALID
        assert any("property_unit_id" in e for e in relation.validation_errors)

    def test_missing_attachment_is_invalid(self, pipeline, staged_package, context):
        package_id = staged_package(attachments=[])
        pipeline.validate_package(package_id, context)

        evidence = pipeline.staging_repo.get_for_package(package_id, EntityType.EVIDENCE)[0]
        assert evidence.outcome == ValidationOutcome.INVALID


class TestStateMachine:
    """Test operation ordering."""

    def test_commit_after_stage_is_rejected(self, pipeline, staged_package, context):
        package_id = staged_package()

        with pytest.raises(StateConflictException):
            pipeline.commit_package(package_id, context)
        assert pipeline.get_package(package_id).status == ImportStatus.STAGING

    def test_validate_before_stage_is_rejected(self, pipeline, build_package, context):
        package_id = pipeline.upload_package(build_package(), "field.uhc", context).package.id

        with pytest.raises(StateConflictException):
            pipeline.validate_package(package_id, context)

    def test_pending_conflicts_block_approve_and_commit(self, pipeline, staged_package, context):
        package_id = staged_package(_duplicate_tables())
        _review(pipeline, package_id, context)

        assert pipeline.get_package(package_id).status == ImportStatus.REVIEWING_CONFLICTS
        with pytest.raises(StateConflictException):
            pipeline.approve_for_commit(package_id, context)
        with pytest.raises(StateConflictException):
            pipeline.commit_package(package_id, context)

    def test_quarantine_only_before_validation(self, pipeline, staged_package, context):
        package_id = staged_package()
        pipeline.validate_package(package_id, context)

        with pytest.raises(StateConflictException):
            pipeline.quarantine_package(package_id, "suspicious device", context)


class TestDuplicateDetection:
    """Test duplicate detection through the pipeline."""

    def test_identical_national_id_yields_one_conflict(self, pipeline, staged_package, context):
        package_id = staged_package(_duplicate_tables())
        result = _review(pipeline, package_id, context)

        assert result.conflicts_created == 1
        assert result.person_duplicates == 1
        conflict = pipeline.conflicts.get_conflict(result.conflict_ids[0])
        assert conflict.similarity_score == 1.0
        assert conflict.confidence_level.value == "High"
        assert conflict.conflict_type.value == "PersonDuplicate_WithinBatch"

    def test_no_duplicates_goes_ready_to_commit(self, pipeline, staged_package, context):
        package_id = staged_package()
        result = _review(pipeline, package_id, context)

        assert result.conflicts_created == 0
        assert result.status == ImportStatus.READY_TO_COMMIT.value

    def test_rerun_supersedes_pending_conflicts(self, pipeline, staged_package, context):
        package_id = staged_package(_duplicate_tables())
        first = _review(pipeline, package_id, context)
        second = pipeline.detect_duplicates(package_id, context)

        assert second.superseded_count == 1
        old = pipeline.conflicts.get_conflict(first.conflict_ids[0])
        assert old.status == ConflictStatus.IGNORED
        assert old.resolution_reason == SUPERSEDED_REASON
        assert pipeline.conflicts.count_pending(package_id) == 1

    def test_rerun_keeps_reviewer_ignore(self, pipeline, staged_package, context):
        tables = default_tables()
        tables["persons"] = [
            person_row("p-1", "Omar", "Haddad", "01234567890", "0944111222"),
            person_row("p-2", "Omar", "Haddad", "01234567890", "0944111222"),
            person_row("p-3", "Sami", "Khoury", "09876543210", "0955333444"),
            person_row("p-4", "Sami", "Khoury", "09876543210", "0955333444"),
        ]
        package_id = staged_package(tables)
        first = _review(pipeline, package_id, context)
        assert first.conflicts_created == 2

        ignored = pipeline.ignore_conflict(first.conflict_ids[0], "Different people", context)
        second = pipeline.detect_duplicates(package_id, context)

        pending = pipeline.conflicts.list_for_package(package_id, ConflictStatus.PENDING_REVIEW)
        ignored_pair = {ignored.first.entity_id, ignored.second.entity_id}
        assert second.superseded_count == 1
        assert len(pending) == 1
        assert all({c.first.entity_id, c.second.entity_id} != ignored_pair for c in pending)
        assert pipeline.conflicts.get_conflict(ignored.id).status == ConflictStatus.IGNORED

    def test_matches_against_production(self, pipeline, staged_package, context):
        first_id = staged_package(package_id="pkg-a")
        _review(pipeline, first_id, context)
        pipeline.approve_for_commit(first_id, context)
        pipeline.commit_package(first_id, context)

        tables = default_tables()
        tables["persons"] = [person_row("p-9", "Omar", "Haddad", "01234567890", "0944111222")]
        tables["person_property_relations"] = []
        tables["claims"] = []
        tables["evidence"] = []
        tables["property_units"] = [unit_row("u-9", "A1")]
        second_id = staged_package(tables, package_id="pkg-b")
        result = _review(pipeline, second_id, context)

        assert result.person_duplicates == 1
        assert result.property_duplicates == 1
        conflicts = pipeline.conflicts.list_for_package(second_id)
        assert {c.conflict_type.value for c in conflicts} == {"PersonDuplicate", "PropertyDuplicate"}
        assert all(c.first.source.value == "production" for c in conflicts)

    def test_auto_resolution(self, pipeline, staged_package, context, config):
        config.AUTO_RESOLVE_CONFLICT_TYPES = ("PersonDuplicate_WithinBatch",)
        package_id = staged_package(_duplicate_tables())

        result = _review(pipeline, package_id, context)

        assert result.auto_resolved_count == 1
        assert result.status == ImportStatus.READY_TO_COMMIT.value
        persons = pipeline.staging_repo.get_for_package(package_id, EntityType.PERSON)
        assert persons[1].outcome == ValidationOutcome.SKIPPED
        assert persons[1].merged_into_entity_id == persons[0].id


class TestCommitScenarios:
    """Test full package round-trips."""

    def test_full_round_trip(self, pipeline, staged_package, context, db, config):
        package_id = staged_package(package_id="pkg-round-trip")
        _review(pipeline, package_id, context)
        approval = pipeline.approve_for_commit(package_id, context)
        assert approval.approved_count == 6

        report = pipeline.commit_package(package_id, context)

        assert report.status == ImportStatus.COMPLETED.value
        assert report.total_records_committed == 6
        assert report.is_fully_successful
        assert _count(db, "persons") == 2
        assert _count(db, "property_units") == 1
        assert _count(db, "person_property_relations") == 1
        assert _count(db, "claims") == 1
        assert _count(db, "evidence") == 1
        assert pipeline.commit_engine.attachment_store.exists(ATTACHMENT_HASH)

        package = pipeline.get_package(package_id)
        assert package.is_archived
        assert Path(package.archive_path).name == "pkg-round-trip.uhc"
        assert package.archive_path.startswith(str(config.ARCHIVE_BASE_PATH))

        # Provenance links staging to production
        person = db.fetch_one("SELECT * FROM persons WHERE national_id = ?", ("01234567890",))
        assert person["import_package_id"] == package_id
        mappings = report.summary_for(EntityType.PERSON.value).id_mappings
        assert person["person_id"] in mappings.values()

    def test_keep_first_skips_second_and_remaps_references(self, pipeline, staged_package,
                                                           context, db):
        package_id = staged_package(_duplicate_tables())
        result = _review(pipeline, package_id, context)

        pipeline.resolve_conflict(result.conflict_ids[0], ResolutionAction.KEEP_FIRST, context,
                                  reason="Same person")
        pipeline.approve_for_commit(package_id, context)
        report = pipeline.commit_package(package_id, context)

        assert report.status == ImportStatus.PARTIALLY_COMPLETED.value
        assert report.total_records_committed == 5
        assert report.total_records_skipped == 1
        assert _count(db, "persons") == 1

        persons = pipeline.staging_repo.get_for_package(package_id, EntityType.PERSON)
        assert persons[1].outcome == ValidationOutcome.SKIPPED
        relation = db.fetch_one("SELECT person_id FROM person_property_relations")
        assert relation["person_id"] == persons[0].committed_entity_id

    def test_merge_applies_mapping_to_survivor(self, pipeline, staged_package, context, db):
        package_id = staged_package(_duplicate_tables())
        result = _review(pipeline, package_id, context)
        conflict = pipeline.conflicts.get_conflict(result.conflict_ids[0])

        pipeline.resolve_conflict(
            conflict.id, ResolutionAction.MERGE, context,
            merge_details=MergeDetails(conflict.first.entity_id, conflict.second.entity_id,
                                       {"mother_name": "Fatima"}),
        )
        pipeline.approve_for_commit(package_id, context)
        report = pipeline.commit_package(package_id, context)

        assert report.merges_performed == 1
        person = db.fetch_one("SELECT mother_name FROM persons")
        assert person["mother_name"] == "Fatima"

    def test_invalid_record_is_skipped(self, pipeline, staged_package, context, db):
        tables = {
            "persons": [
                person_row("p-1", "Omar", "Haddad", "01234567890", "0944111222"),
                person_row("p-2", "Sami", "Khoury", "09876543210", "0955333444"),
                person_row("p-3", "Rami", "Nassar", "123", "0966777888"),
            ],
        }
        package_id = staged_package(tables, attachments=[])
        _review(pipeline, package_id, context)
        pipeline.approve_for_commit(package_id, context)
        report = pipeline.commit_package(package_id, context)

        assert report.status == ImportStatus.PARTIALLY_COMPLETED.value
        assert report.total_records_committed == 2
        assert report.total_records_skipped == 1
        assert _count(db, "persons") == 2

    def test_block_policy_requires_acknowledgement(self, pipeline, staged_package, context, config):
        config.INVALID_RECORD_POLICY = "block"
        tables = {"persons": [
            person_row("p-1", "Omar", "Haddad", "01234567890"),
            person_row("p-3", "Rami", "Nassar", "123"),
        ]}
        package_id = staged_package(tables, attachments=[])
        _review(pipeline, package_id, context)
        pipeline.approve_for_commit(package_id, context)

        with pytest.raises(StateConflictException):
            pipeline.commit_package(package_id, context)
        report = pipeline.commit_package(package_id, context, acknowledge_invalid=True)
        assert report.total_records_committed == 1

    def test_second_commit_is_rejected(self, pipeline, staged_package, context):
        package_id = staged_package()
        _review(pipeline, package_id, context)
        pipeline.approve_for_commit(package_id, context)
        pipeline.commit_package(package_id, context)

        with pytest.raises(StateConflictException):
            pipeline.commit_package(package_id, context)

    def test_cleanup_after_full_success(self, pipeline, staged_package, context):
        package_id = staged_package()
        _review(pipeline, package_id, context)
        pipeline.approve_for_commit(package_id, context)
        pipeline.commit_package(package_id, context, cleanup_staging=True)

        assert pipeline.staging_repo.count_for_package(package_id) == 0
        report = pipeline.get_commit_report(package_id)
        assert report.total_records_committed == 6


class TestConflictReview:
    """Test conflict review operations through the pipeline."""

    def test_queue_and_summary_for_package(self, pipeline, staged_package, context):
        package_id = staged_package(_duplicate_tables())
        _review(pipeline, package_id, context)

        page = pipeline.get_conflict_queue(ConflictQueueFilter(import_package_id=package_id))
        summary = pipeline.get_conflict_summary(package_id)

        assert page.total_count == 1
        assert summary["by_status"] == {ConflictStatus.PENDING_REVIEW.value: 1}
        assert summary["by_priority"] == {"High": 1}

    def test_assign_escalate_then_ignore(self, pipeline, staged_package, context, audit):
        package_id = staged_package(_duplicate_tables())
        conflict_id = _review(pipeline, package_id, context).conflict_ids[0]

        pipeline.assign_conflict(conflict_id, "reviewer-7", context, target_hours=48)
        pipeline.escalate_conflict(conflict_id, "Same NID, different households", context)
        conflict = pipeline.ignore_conflict(conflict_id, "Twins registered separately", context)

        assert conflict.status == ConflictStatus.IGNORED
        assert conflict.assigned_to == "reviewer-7"
        assert conflict.is_escalated
        assert audit.actions(conflict_id) == [
            "conflict_detected", "conflict_assigned", "conflict_escalated", "conflict_ignored",
        ]

        result = pipeline.approve_for_commit(package_id, context)
        assert result.approved_count == 6

    def test_review_rejected_after_commit(self, pipeline, staged_package, context):
        package_id = staged_package(_duplicate_tables())
        conflict_id = _review(pipeline, package_id, context).conflict_ids[0]
        pipeline.resolve_conflict(conflict_id, ResolutionAction.KEEP_BOTH, context)
        pipeline.approve_for_commit(package_id, context)
        pipeline.commit_package(package_id, context)

        with pytest.raises(StateConflictException):
            pipeline.assign_conflict(conflict_id, "reviewer-7", context)
        pipeline.record_review_attempt(conflict_id, context, notes="Post-commit audit")


class TestApproval:
    """Test record approval."""

    def test_explicit_ids_report_ineligible(self, pipeline, staged_package, context):
        tables = {"persons": [
            person_row("p-1", "Omar", "Haddad", "01234567890"),
            person_row("p-3", "Rami", "Nassar", "123"),
        ]}
        package_id = staged_package(tables, attachments=[])
        _review(pipeline, package_id, context)
        records = pipeline.staging_repo.get_for_package(package_id)

        result = pipeline.approve_for_commit(package_id, context, record_ids=[r.id for r in records])

        assert result.approved_count == 1
        assert result.ineligible == [{"id": records[1].id, "outcome": "Invalid"}]

    def test_unknown_record_id(self, pipeline, staged_package, context):
        package_id = staged_package()
        _review(pipeline, package_id, context)

        with pytest.raises(NotFoundException):
            pipeline.approve_for_commit(package_id, context, record_ids=["missing"])


class TestLifecycleOperations:
    """Test cancel, quarantine, reset and retention."""

    def test_cancel_in_review_with_cleanup_empties_summary(self, pipeline, staged_package, context):
        package_id = staged_package(_duplicate_tables())
        _review(pipeline, package_id, context)
        assert pipeline.get_package(package_id).status == ImportStatus.REVIEWING_CONFLICTS

        pipeline.cancel_package(package_id, "Superseded by newer export", context, cleanup_staging=True)
        summary = pipeline.get_staging_summary(package_id)

        assert summary.total_records == 0
        assert summary.by_entity_type == {}
        assert summary.status == ImportStatus.CANCELLED.value

    def test_cancel_with_cleanup(self, pipeline, staged_package, context, config, audit):
        package_id = staged_package()
        package = pipeline.cancel_package(package_id, "Wrong neighborhood", context,
                                          cleanup_staging=True)

        assert package.status == ImportStatus.CANCELLED
        assert "[Cancelled]: Wrong neighborhood" in package.processing_notes
        assert pipeline.staging_repo.count_for_package(package_id) == 0
        assert not (Path(config.STAGING_ATTACHMENTS_PATH) / package_id).exists()
        assert "package_cancelled" in audit.actions(package_id)

    def test_cancel_terminal_package_is_rejected(self, pipeline, staged_package, context):
        package_id = staged_package()
        pipeline.cancel_package(package_id, "first", context)

        with pytest.raises(StateConflictException):
            pipeline.cancel_package(package_id, "second", context)

    def test_quarantine_received_package(self, pipeline, build_package, context):
        package_id = pipeline.upload_package(build_package(), "field.uhc", context).package.id
        package = pipeline.quarantine_package(package_id, "Tampered device", context)

        assert package.status == ImportStatus.QUARANTINED
        assert package.error_message == "Tampered device"

    def test_reset_stuck_commit(self, pipeline, staged_package, context):
        package_id = staged_package()
        _review(pipeline, package_id, context)
        pipeline.approve_for_commit(package_id, context)
        pipeline.package_repo.transition_status(
            package_id, {ImportStatus.READY_TO_COMMIT}, ImportStatus.COMMITTING
        )

        package = pipeline.reset_commit(package_id, "Worker crashed", context)
        assert package.status == ImportStatus.READY_TO_COMMIT

        report = pipeline.commit_package(package_id, context)
        assert report.status == ImportStatus.COMPLETED.value

    def test_reset_rejects_upload_failure(self, pipeline, context):
        package_id = pipeline.upload_package(b"garbage", "broken.uhc", context).package.id

        with pytest.raises(StateConflictException):
            pipeline.reset_commit(package_id, "retry", context)

    def test_purge_expired_staging(self, pipeline, staged_package, build_package, context):
        committed_id = staged_package(package_id="pkg-old")
        _review(pipeline, committed_id, context)
        pipeline.approve_for_commit(committed_id, context)
        pipeline.commit_package(committed_id, context)

        quarantined_id = staged_package(package_id="pkg-quarantined")
        pipeline.quarantine_package(quarantined_id, "forensics", context)

        purged = pipeline.purge_expired_staging(context, now=utc_now() + timedelta(days=91))

        assert purged == 1
        assert pipeline.staging_repo.count_for_package(committed_id) == 0
        assert pipeline.staging_repo.count_for_package(quarantined_id) == 6
        assert pipeline.get_commit_report(committed_id).total_records_committed == 6

    def test_purge_respects_retention_window(self, pipeline, staged_package, context):
        package_id = staged_package()
        pipeline.cancel_package(package_id, "duplicate upload", context)

        assert pipeline.purge_expired_staging(context) == 0
        assert pipeline.staging_repo.count_for_package(package_id) == 6
