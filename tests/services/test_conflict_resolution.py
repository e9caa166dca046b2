# -*- coding: utf-8 -*-
"""
Tests for the conflict queue service.

Tests cover:
- Persisting candidates and pair de-duplication
- Auto-resolution rules
- Queue filtering, paging and overdue evaluation
- Assignment, escalation, resolution and ignore
"""

from datetime import timedelta

import pytest

from models.conflict import (
    ConfidenceLevel, ConflictPriority, ConflictQueueFilter, ConflictStatus,
    ConflictType, EntityReference, EntitySource, MergeDetails, ResolutionAction,
    SUPERSEDED_REASON,
)
from repositories.conflict_repository import ConflictRepository
from services.conflict_resolution import ConflictQueueService
from services.exceptions import NotFoundException, StateConflictException, ValidationException
from services.matching_service import DuplicateCandidate
from utils.datetime_utils import utc_now


def _candidate(first_id="s-1", second_id="s-2", score=1.0,
               conflict_type=ConflictType.PERSON_DUPLICATE_WITHIN_BATCH,
               confidence=ConfidenceLevel.HIGH):
    return DuplicateCandidate(
        conflict_type=conflict_type,
        entity_type="person",
        first=EntityReference(first_id, f"Person {first_id}", EntitySource.STAGING),
        second=EntityReference(second_id, f"Person {second_id}", EntitySource.STAGING),
        score=score,
        confidence=confidence,
        matching_criteria=[{"field": "national_id", "score": 1.0, "details": None}],
    )


@pytest.fixture
def service(db, audit, config):
    return ConflictQueueService(ConflictRepository(db), audit, config)


@pytest.fixture
def conflict(service, context):
    created, _ = service.persist_candidates("pkg-1", [_candidate()], context)
    return created[0]


class TestPersistCandidates:
    """Test conflict creation from detection output."""

    def test_creates_numbered_pending_conflict(self, service, context, audit):
        created, auto_resolved = service.persist_candidates("pkg-1", [_candidate()], context)

        assert auto_resolved == 0
        conflict = created[0]
        assert conflict.conflict_number.startswith("CNF-")
        assert conflict.status == ConflictStatus.PENDING_REVIEW
        assert conflict.priority == ConflictPriority.HIGH
        assert conflict.target_resolution_hours == 72
        assert "conflict_detected" in audit.actions(conflict.id)

    def test_existing_pair_is_not_duplicated(self, service, context):
        service.persist_candidates("pkg-1", [_candidate()], context)
        created, _ = service.persist_candidates("pkg-1", [_candidate("s-2", "s-1")], context)

        assert created == []
        assert service.count_pending("pkg-1") == 1

    def test_ignored_pair_stays_ignored(self, service, conflict, context):
        service.ignore(conflict.id, "Different people", context)

        created, _ = service.persist_candidates("pkg-1", [_candidate()], context)

        assert created == []
        assert service.count_pending("pkg-1") == 0

    def test_superseded_pair_can_be_raised_again(self, service, conflict, context):
        service.ignore(conflict.id, SUPERSEDED_REASON, context)

        created, _ = service.persist_candidates("pkg-1", [_candidate()], context)

        assert len(created) == 1
        assert created[0].status == ConflictStatus.PENDING_REVIEW

    def test_numbers_are_sequential(self, service, context):
        created, _ = service.persist_candidates(
            "pkg-1", [_candidate("a", "b", 0.8), _candidate("c", "d", 0.95)], context
        )
        numbers = sorted(c.conflict_number for c in created)
        assert numbers[1][-4:] == f"{int(numbers[0][-4:]) + 1:04d}"

    def test_auto_resolution_for_allowed_type(self, service, context, config, audit):
        config.AUTO_RESOLVE_CONFLICT_TYPES = ("PersonDuplicate_WithinBatch",)
        created, auto_resolved = service.persist_candidates("pkg-1", [_candidate()], context)

        assert auto_resolved == 1
        conflict = created[0]
        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.is_auto_resolved
        assert conflict.resolution_action == ResolutionAction.KEEP_FIRST
        assert conflict.auto_resolution_rule == "AUTO_PersonDuplicate_WithinBatch_SCORE_GTE_1.0"
        assert "conflict_auto_resolved" in audit.actions(conflict.id)

    def test_auto_resolution_respects_threshold(self, service, context, config):
        config.AUTO_RESOLVE_CONFLICT_TYPES = ("PersonDuplicate_WithinBatch",)
        _, auto_resolved = service.persist_candidates("pkg-1", [_candidate(score=0.95)], context)
        assert auto_resolved == 0

    def test_ignore_is_not_an_auto_action(self, service, context, config):
        config.AUTO_RESOLVE_ACTION = "Ignore"
        with pytest.raises(ValidationException):
            service.persist_candidates("pkg-1", [_candidate()], context)


class TestQueue:
    """Test queue queries."""

    def test_filter_and_page(self, service, context):
        candidates = [_candidate(f"a{i}", f"b{i}", 0.6 + i * 0.05, confidence=ConfidenceLevel.MEDIUM)
                      for i in range(5)]
        service.persist_candidates("pkg-1", candidates, context)
        service.persist_candidates("pkg-2", [_candidate("x", "y")], context)

        page = service.get_queue(ConflictQueueFilter(import_package_id="pkg-1", page=2, page_size=2,
                                                     sort_by="similarity_score", sort_descending=True))
        assert page.total_count == 5
        assert page.total_pages == 3
        assert page.has_next_page
        assert [c.similarity_score for c in page.items] == [0.7, 0.65]

    def test_page_size_is_clamped(self, service, context, config):
        flt = ConflictQueueFilter(page_size=100000)
        page = service.get_queue(flt)

        assert page.page_size == config.MAX_PAGE_SIZE
        assert flt.page_size == 100000

    def test_unknown_sort_field(self, service):
        with pytest.raises(ValidationException):
            service.get_queue(ConflictQueueFilter(sort_by="payload"))

    def test_overdue_is_evaluated_live(self, service, conflict):
        later = utc_now() + timedelta(hours=100)

        overdue = service.get_queue(ConflictQueueFilter(is_overdue=True), now=later)
        assert [c.id for c in overdue.items] == [conflict.id]
        assert service.get_queue(ConflictQueueFilter(is_overdue=True)).total_count == 0
        assert service.get_summary("pkg-1", now=later)["overdue"] == 1

    def test_summary_counts(self, service, conflict, context):
        service.escalate(conflict.id, "Needs legal review", context)
        summary = service.get_summary("pkg-1")

        assert summary["total"] == 1
        assert summary["by_status"] == {"PendingReview": 1}
        assert summary["escalated"] == 1


class TestMutations:
    """Test reviewer operations."""

    def test_assign(self, service, conflict, context):
        updated = service.assign(conflict.id, "reviewer-2", context, target_hours=24)

        stored = service.get_conflict(conflict.id)
        assert updated.assigned_to == "reviewer-2"
        assert stored.assigned_to == "reviewer-2"
        assert stored.target_resolution_hours == 24

    def test_escalate_requires_reason(self, service, conflict, context):
        with pytest.raises(ValidationException):
            service.escalate(conflict.id, "  ", context)

    def test_escalate_twice_is_rejected(self, service, conflict, context):
        service.escalate(conflict.id, "Needs legal review", context)
        with pytest.raises(StateConflictException):
            service.escalate(conflict.id, "Again", context)

    def test_escalate_resolved_is_rejected(self, service, conflict, context):
        service.resolve(conflict.id, ResolutionAction.KEEP_BOTH, context)
        with pytest.raises(StateConflictException):
            service.escalate(conflict.id, "Too late", context)

    def test_merge_requires_matching_details(self, service, conflict, context):
        with pytest.raises(ValidationException):
            service.resolve(conflict.id, ResolutionAction.MERGE, context)
        with pytest.raises(ValidationException):
            service.resolve(conflict.id, ResolutionAction.MERGE, context,
                            merge_details=MergeDetails("s-1", "other"))

    def test_merge(self, service, conflict, context):
        resolved = service.resolve(conflict.id, ResolutionAction.MERGE, context,
                                   merge_details=MergeDetails("s-2", "s-1", {"mother_name": "Fatima"}))

        stored = service.get_conflict(conflict.id)
        assert resolved.status == ConflictStatus.RESOLVED
        assert stored.merged_entity_id == "s-2"
        assert stored.discarded_entity_id == "s-1"
        assert stored.merge_mapping == {"mother_name": "Fatima"}
        assert stored.resolved_by == context.user_id

    def test_ignore_action_routes_to_ignore(self, service, conflict, context):
        ignored = service.resolve(conflict.id, ResolutionAction.IGNORE, context, reason="Not related")
        assert ignored.status == ConflictStatus.IGNORED

    def test_resolved_conflict_is_terminal(self, service, conflict, context):
        service.resolve(conflict.id, ResolutionAction.KEEP_FIRST, context)
        with pytest.raises(StateConflictException):
            service.ignore(conflict.id, "changed my mind", context)

    def test_review_attempt_on_terminal_conflict(self, service, conflict, context):
        service.ignore(conflict.id, None, context)
        updated = service.record_review_attempt(conflict.id, context, notes="Double-checked")

        assert updated.review_attempt_count == 1
        assert service.get_conflict(conflict.id).review_history[0]["notes"] == "Double-checked"

    def test_unknown_conflict(self, service, context):
        with pytest.raises(NotFoundException):
            service.assign("missing", "reviewer-2", context)
