# -*- coding: utf-8 -*-
"""
Conflict Resolution Service
===========================
Queue of detected duplicates awaiting human review.

Features:
- Persisting detected candidates as numbered conflicts
- Configurable auto-resolution for high-score, allow-listed conflict types
- Filtered, paged queue queries with live overdue evaluation
- Assignment, review attempts, escalation, resolution and ignore
- Audit trail for every mutation
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from models.conflict import (
    ConflictResolution, ConflictStatus, ConflictQueueFilter, PagedResult,
    ResolutionAction, MergeDetails,
)
from models.context import RequestContext
from repositories.conflict_repository import ConflictRepository
from services.audit_service import AuditSink
from services.exceptions import NotFoundException, StateConflictException, ValidationException
from services.matching_service import DuplicateCandidate
from utils.logger import get_logger

logger = get_logger(__name__)

AUDIT_ENTITY_TYPE = "ConflictResolution"


class ConflictQueueService:
    """
    Conflict queue for duplicate review.

    Conflicts move PendingReview -> Resolved | Ignored. Both outcomes are
    terminal; only review-history appends are accepted afterwards.
    """

    def __init__(self, conflict_repo: ConflictRepository, audit: AuditSink, config=None):
        """
        Args:
            conflict_repo: Conflict persistence
            audit: Audit sink receiving one entry per mutation
            config: Configuration class (defaults to app.config.Config)
        """
        if config is None:
            from app.config import Config
            config = Config
        self.repo = conflict_repo
        self.audit = audit
        self.config = config

    # ==================== Detection output ====================

    def auto_resolution_rule(self, candidate: DuplicateCandidate) -> Optional[str]:
        """Rule name if the candidate qualifies for auto-resolution, else None."""
        allowed = self.config.AUTO_RESOLVE_CONFLICT_TYPES
        threshold = self.config.AUTO_RESOLVE_MIN_SCORE
        if not allowed or candidate.conflict_type.value not in allowed:
            return None
        if candidate.score < threshold:
            return None
        return f"AUTO_{candidate.conflict_type.value}_SCORE_GTE_{threshold}"

    def persist_candidates(self, import_package_id: str,
                           candidates: List[DuplicateCandidate],
                           context: RequestContext) -> Tuple[List[ConflictResolution], int]:
        """
        Store candidates as conflicts.

        Pairs that already have a conflict are skipped, unless that conflict
        was superseded by a detection re-run.

        Returns:
            (created conflicts, number auto-resolved)
        """
        action = ResolutionAction(self.config.AUTO_RESOLVE_ACTION)
        if action == ResolutionAction.IGNORE:
            raise ValidationException("Ignore is not a valid auto-resolution action",
                                      field="AUTO_RESOLVE_ACTION")

        created: List[ConflictResolution] = []
        auto_resolved = 0

        ordered = sorted(candidates, key=lambda c: (-c.score, c.first.entity_id, c.second.entity_id))
        with self.repo.number_lock:
            for candidate in ordered:
                if self.repo.exists_for_pair(candidate.first.entity_id, candidate.second.entity_id):
                    logger.debug(
                        f"Conflict already exists for {candidate.first.entity_id} / "
                        f"{candidate.second.entity_id}"
                    )
                    continue

                conflict = ConflictResolution.create(
                    conflict_number=self.repo.next_conflict_number(),
                    conflict_type=candidate.conflict_type,
                    entity_type=candidate.entity_type,
                    first=candidate.first,
                    second=candidate.second,
                    similarity_score=candidate.score,
                    confidence_level=candidate.confidence,
                    created_by=context.user_id,
                    import_package_id=import_package_id,
                    matching_criteria=candidate.matching_criteria,
                    data_comparison=candidate.data_comparison,
                    target_resolution_hours=self.config.DEFAULT_CONFLICT_TARGET_HOURS,
                )

                rule = self.auto_resolution_rule(candidate)
                if rule:
                    conflict.auto_resolve(rule, action)
                    auto_resolved += 1

                self.repo.create(conflict)
                created.append(conflict)

                self._log_action(
                    "conflict_detected", f"Detected {conflict.conflict_type.value} "
                    f"{conflict.conflict_number} (score {conflict.similarity_score})",
                    conflict, None, {"status": conflict.status.value}, context
                )
                if rule:
                    self._log_action(
                        "conflict_auto_resolved", f"Auto-resolved {conflict.conflict_number} using {rule}",
                        conflict, {"status": ConflictStatus.PENDING_REVIEW.value},
                        {"status": conflict.status.value, "action": action.value}, context
                    )

        logger.info(
            f"Persisted {len(created)} conflicts for package {import_package_id} "
            f"({auto_resolved} auto-resolved)"
        )
        return created, auto_resolved

    # ==================== Queries ====================

    def get_queue(self, flt: Optional[ConflictQueueFilter] = None,
                  now: Optional[datetime] = None) -> PagedResult:
        """Get one page of the conflict queue."""
        flt = flt or ConflictQueueFilter()
        flt = replace(flt, page_size=min(max(flt.page_size, 1), self.config.MAX_PAGE_SIZE))
        try:
            return self.repo.query(flt, now)
        except ValueError as e:
            raise ValidationException(str(e), field="sort_by")

    def get_conflict(self, conflict_id: str) -> ConflictResolution:
        conflict = self.repo.get_by_id(conflict_id)
        if not conflict:
            raise NotFoundException("ConflictResolution", conflict_id)
        return conflict

    def get_summary(self, import_package_id: Optional[str] = None,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts by type, status and priority plus escalated/overdue/auto-resolved."""
        return self.repo.summary(import_package_id, now)

    def count_pending(self, import_package_id: str) -> int:
        return self.repo.count_pending(import_package_id)

    def list_for_package(self, import_package_id: str,
                         status: Optional[ConflictStatus] = None) -> List[ConflictResolution]:
        return self.repo.list_for_package(import_package_id, status)

    # ==================== Mutations ====================

    def _mutate(self, conflict_id: str, action_type: str, description: str,
                mutation, context: RequestContext) -> ConflictResolution:
        conflict = self.get_conflict(conflict_id)
        old_values = self._snapshot(conflict)
        try:
            mutation(conflict)
        except ValueError as e:
            raise StateConflictException(
                str(e),
                current_status=conflict.status.value,
                allowed_statuses=[ConflictStatus.PENDING_REVIEW.value],
            )
        self.repo.update(conflict)
        self._log_action(action_type, description, conflict, old_values,
                         self._snapshot(conflict), context)
        return conflict

    def assign(self, conflict_id: str, user_id: str, context: RequestContext,
               target_hours: Optional[int] = None) -> ConflictResolution:
        """Assign a pending conflict to a reviewer."""
        conflict = self._mutate(
            conflict_id, "conflict_assigned", f"Assigned to {user_id}",
            lambda c: c.assign_to(user_id, target_hours), context
        )
        logger.info(f"Assigned conflict {conflict.conflict_number} to {user_id}")
        return conflict

    def record_review_attempt(self, conflict_id: str, context: RequestContext,
                              notes: Optional[str] = None) -> ConflictResolution:
        """Append a review attempt; status is unchanged."""
        return self._mutate(
            conflict_id, "conflict_review_attempt", "Review attempt recorded",
            lambda c: c.record_review_attempt(notes), context
        )

    def escalate(self, conflict_id: str, reason: str, context: RequestContext) -> ConflictResolution:
        """Flag a pending conflict as escalated and raise its priority."""
        if not reason or not reason.strip():
            raise ValidationException("Escalation reason is required", field="reason")
        conflict = self._mutate(
            conflict_id, "conflict_escalated", f"Escalated: {reason}",
            lambda c: c.escalate(reason), context
        )
        logger.info(f"Escalated conflict {conflict.conflict_number}: {reason}")
        return conflict

    def resolve(self, conflict_id: str, action: ResolutionAction, context: RequestContext,
                reason: Optional[str] = None, notes: Optional[str] = None,
                merge_details: Optional[MergeDetails] = None) -> ConflictResolution:
        """
        Resolve a pending conflict.

        Args:
            action: Merge, KeepBoth, KeepFirst or KeepSecond (Ignore goes
                through ignore())
            merge_details: Required for Merge; both ids must be this
                conflict's entities
        """
        if action == ResolutionAction.IGNORE:
            return self.ignore(conflict_id, reason, context)

        if action == ResolutionAction.MERGE:
            if merge_details is None:
                raise ValidationException("Merge resolution requires merge details",
                                          field="merge_details")
            conflict = self.get_conflict(conflict_id)
            pair = {merge_details.merged_entity_id, merge_details.discarded_entity_id}
            if pair != {conflict.first.entity_id, conflict.second.entity_id}:
                raise ValidationException(
                    "Merge details must reference both entities of the conflict",
                    field="merge_details"
                )

        conflict = self._mutate(
            conflict_id, "conflict_resolved", f"Resolved with {action.value}",
            lambda c: c.resolve(action, context.user_id, reason, notes, merge_details), context
        )
        logger.info(f"Resolved conflict {conflict.conflict_number} with action {action.value}")
        return conflict

    def ignore(self, conflict_id: str, reason: Optional[str], context: RequestContext) -> ConflictResolution:
        """Dismiss a pending conflict without touching either entity."""
        conflict = self._mutate(
            conflict_id, "conflict_ignored", f"Ignored: {reason or '-'}",
            lambda c: c.ignore(context.user_id, reason), context
        )
        logger.info(f"Ignored conflict {conflict.conflict_number}")
        return conflict

    # ==================== Audit ====================

    @staticmethod
    def _snapshot(conflict: ConflictResolution) -> Dict[str, Any]:
        return {
            "status": conflict.status.value,
            "priority": conflict.priority.value,
            "is_escalated": conflict.is_escalated,
            "assigned_to": conflict.assigned_to,
            "review_attempt_count": conflict.review_attempt_count,
            "resolution_action": conflict.resolution_action.value if conflict.resolution_action else None,
        }

    def _log_action(self, action_type: str, description: str, conflict: ConflictResolution,
                    old_values: Optional[Dict[str, Any]], new_values: Optional[Dict[str, Any]],
                    context: RequestContext) -> None:
        """Log conflict action for audit trail."""
        self.audit.log_action(
            action_type, description, AUDIT_ENTITY_TYPE, conflict.id,
            old_values, new_values, context
        )
