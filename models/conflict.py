# -*- coding: utf-8 -*-
"""
Conflict resolution model.

A ConflictResolution records one detected potential duplicate between two
entities (staged or production), its review lifecycle and the outcome.

Lifecycle:
    PendingReview -> Resolved | Ignored
Escalation and review attempts keep the conflict in PendingReview.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from utils.datetime_utils import utc_now, to_isoformat


# Reason recorded on pending conflicts replaced by a detection re-run
SUPERSEDED_REASON = "Superseded by re-run of duplicate detection"


class ConflictType(Enum):
    """Types of conflicts."""
    PERSON_DUPLICATE = "PersonDuplicate"
    PERSON_DUPLICATE_WITHIN_BATCH = "PersonDuplicate_WithinBatch"
    PROPERTY_DUPLICATE = "PropertyDuplicate"
    PROPERTY_DUPLICATE_WITHIN_BATCH = "PropertyDuplicate_WithinBatch"
    CLAIM_CONFLICT = "ClaimConflict"


class ConflictStatus(Enum):
    """Status of a conflict."""
    PENDING_REVIEW = "PendingReview"
    RESOLVED = "Resolved"
    IGNORED = "Ignored"


class ConflictPriority(Enum):
    """Priority levels for conflicts."""
    NORMAL = "Normal"
    HIGH = "High"


class ConfidenceLevel(Enum):
    """Discrete bucket derived from the similarity score."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ResolutionAction(Enum):
    """Resolution actions for conflicts."""
    MERGE = "Merge"
    KEEP_BOTH = "KeepBoth"
    KEEP_FIRST = "KeepFirst"
    KEEP_SECOND = "KeepSecond"
    IGNORE = "Ignore"


class EntitySource(Enum):
    """Where a compared entity lives."""
    STAGING = "staging"
    PRODUCTION = "production"


def confidence_for_score(score: float, high: float = 0.9, medium: float = 0.7) -> ConfidenceLevel:
    """Bucket a similarity score."""
    if score >= high:
        return ConfidenceLevel.HIGH
    if score >= medium:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def generate_conflict_number(year: int, sequence: int) -> str:
    """Human-readable conflict number, e.g. CNF-2025-0007."""
    return f"CNF-{year}-{sequence:04d}"


@dataclass
class EntityReference:
    """One side of a conflict."""
    entity_id: str
    identifier: str
    source: EntitySource

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "identifier": self.identifier,
            "source": self.source.value,
        }


@dataclass
class MergeDetails:
    """How two conflicting entities were merged."""
    merged_entity_id: str
    discarded_entity_id: str
    merge_mapping: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConflictResolution:
    """A detected potential duplicate awaiting or past human review."""

    conflict_number: str
    conflict_type: ConflictType
    entity_type: str
    first: EntityReference
    second: EntityReference
    similarity_score: float
    confidence_level: ConfidenceLevel
    import_package_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    matching_criteria: List[Dict[str, Any]] = field(default_factory=list)
    data_comparison: Dict[str, Any] = field(default_factory=dict)

    status: ConflictStatus = ConflictStatus.PENDING_REVIEW
    priority: ConflictPriority = ConflictPriority.NORMAL
    is_escalated: bool = False
    escalation_reason: Optional[str] = None
    escalated_date: Optional[datetime] = None
    is_auto_detected: bool = True
    is_auto_resolved: bool = False
    auto_resolution_rule: Optional[str] = None

    # Review metadata
    assigned_to: Optional[str] = None
    assigned_date: Optional[datetime] = None
    review_attempt_count: int = 0
    review_history: List[Dict[str, Any]] = field(default_factory=list)

    # Outcome
    resolution_action: Optional[ResolutionAction] = None
    resolution_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    merged_entity_id: Optional[str] = None
    discarded_entity_id: Optional[str] = None
    merge_mapping: Optional[Dict[str, Any]] = None
    resolved_by: Optional[str] = None
    resolved_date: Optional[datetime] = None

    # SLA
    target_resolution_hours: Optional[int] = None
    detected_date: datetime = field(default_factory=utc_now)
    is_overdue: bool = False

    created_by: Optional[str] = None

    @classmethod
    def create(cls, conflict_number: str, conflict_type: ConflictType, entity_type: str,
               first: EntityReference, second: EntityReference, similarity_score: float,
               confidence_level: ConfidenceLevel, created_by: str, **kwargs) -> "ConflictResolution":
        """Factory for a newly detected conflict."""
        conflict = cls(
            conflict_number=conflict_number,
            conflict_type=conflict_type,
            entity_type=entity_type,
            first=first,
            second=second,
            similarity_score=round(float(similarity_score), 4),
            confidence_level=confidence_level,
            created_by=created_by,
            **kwargs
        )
        conflict.priority = conflict.determine_priority()
        return conflict

    @property
    def is_pending(self) -> bool:
        return self.status == ConflictStatus.PENDING_REVIEW

    @property
    def is_terminal(self) -> bool:
        return self.status in (ConflictStatus.RESOLVED, ConflictStatus.IGNORED)

    @property
    def due_at(self) -> Optional[datetime]:
        if not self.target_resolution_hours:
            return None
        return self.detected_date + timedelta(hours=self.target_resolution_hours)

    def side(self, entity_id: str) -> EntityReference:
        return self.first if entity_id == self.first.entity_id else self.second

    def determine_priority(self) -> ConflictPriority:
        if self.confidence_level == ConfidenceLevel.HIGH and self.similarity_score >= 0.9:
            return ConflictPriority.HIGH
        return ConflictPriority.NORMAL

    def check_if_overdue(self, now: Optional[datetime] = None) -> bool:
        """Live overdue computation; authoritative over the stored flag."""
        if not self.target_resolution_hours or self.is_terminal:
            return False
        return (now or utc_now()) > self.due_at

    def _require_pending(self, operation: str) -> None:
        if not self.is_pending:
            raise ValueError(
                f"Cannot {operation} conflict {self.conflict_number} in status {self.status.value}"
            )

    def assign_to(self, user_id: str, target_hours: Optional[int] = None) -> None:
        self._require_pending("assign")
        self.assigned_to = user_id
        self.assigned_date = utc_now()
        if target_hours is not None:
            self.target_resolution_hours = target_hours
        self.is_overdue = self.check_if_overdue()

    def record_review_attempt(self, notes: Optional[str] = None) -> None:
        """Append to review history; allowed on terminal conflicts too."""
        self.review_attempt_count += 1
        self.review_history.append({
            "attempt_number": self.review_attempt_count,
            "date": to_isoformat(utc_now()),
            "notes": notes,
        })

    def escalate(self, reason: str) -> None:
        self._require_pending("escalate")
        if self.is_escalated:
            raise ValueError(f"Conflict {self.conflict_number} is already escalated")
        self.is_escalated = True
        self.escalation_reason = reason
        self.escalated_date = utc_now()
        self.priority = ConflictPriority.HIGH

    def resolve(self, action: ResolutionAction, resolved_by: str, reason: Optional[str] = None,
                notes: Optional[str] = None, merge_details: Optional[MergeDetails] = None) -> None:
        self._require_pending("resolve")
        if action == ResolutionAction.IGNORE:
            raise ValueError("Use ignore() for the Ignore action")
        if action == ResolutionAction.MERGE:
            if merge_details is None:
                raise ValueError("Merge resolution requires merge details")
            pair = {merge_details.merged_entity_id, merge_details.discarded_entity_id}
            if pair != {self.first.entity_id, self.second.entity_id}:
                raise ValueError("Merge details must reference both entities of the conflict")
            self.merged_entity_id = merge_details.merged_entity_id
            self.discarded_entity_id = merge_details.discarded_entity_id
            self.merge_mapping = dict(merge_details.merge_mapping)
        elif action == ResolutionAction.KEEP_FIRST:
            self.merged_entity_id = self.first.entity_id
            self.discarded_entity_id = self.second.entity_id
        elif action == ResolutionAction.KEEP_SECOND:
            self.merged_entity_id = self.second.entity_id
            self.discarded_entity_id = self.first.entity_id
        self.status = ConflictStatus.RESOLVED
        self.resolution_action = action
        self.resolution_reason = reason
        self.resolution_notes = notes
        self.resolved_by = resolved_by
        self.resolved_date = utc_now()
        self.is_overdue = False

    def ignore(self, resolved_by: str, reason: Optional[str] = None) -> None:
        self._require_pending("ignore")
        self.status = ConflictStatus.IGNORED
        self.resolution_action = ResolutionAction.IGNORE
        self.resolution_reason = reason
        self.resolved_by = resolved_by
        self.resolved_date = utc_now()
        self.is_overdue = False

    def auto_resolve(self, rule: str, action: ResolutionAction) -> None:
        merge_details = None
        if action == ResolutionAction.MERGE:
            # Survivor is always the first entity
            merge_details = MergeDetails(self.first.entity_id, self.second.entity_id)
        self.resolve(action, resolved_by="system", reason=f"Auto-resolved using rule: {rule}",
                     merge_details=merge_details)
        self.is_auto_resolved = True
        self.auto_resolution_rule = rule

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conflict_number": self.conflict_number,
            "conflict_type": self.conflict_type.value,
            "entity_type": self.entity_type,
            "import_package_id": self.import_package_id,
            "first": self.first.to_dict(),
            "second": self.second.to_dict(),
            "similarity_score": self.similarity_score,
            "confidence_level": self.confidence_level.value,
            "matching_criteria": self.matching_criteria,
            "data_comparison": self.data_comparison,
            "status": self.status.value,
            "priority": self.priority.value,
            "is_escalated": self.is_escalated,
            "escalation_reason": self.escalation_reason,
            "is_auto_detected": self.is_auto_detected,
            "is_auto_resolved": self.is_auto_resolved,
            "auto_resolution_rule": self.auto_resolution_rule,
            "assigned_to": self.assigned_to,
            "review_attempt_count": self.review_attempt_count,
            "review_history": self.review_history,
            "resolution_action": self.resolution_action.value if self.resolution_action else None,
            "resolution_reason": self.resolution_reason,
            "resolution_notes": self.resolution_notes,
            "merged_entity_id": self.merged_entity_id,
            "discarded_entity_id": self.discarded_entity_id,
            "merge_mapping": self.merge_mapping,
            "target_resolution_hours": self.target_resolution_hours,
            "detected_date": to_isoformat(self.detected_date),
            "is_overdue": self.check_if_overdue(),
        }


@dataclass
class ConflictQueueFilter:
    """Optional filters for a single conflict-queue query."""
    import_package_id: Optional[str] = None
    entity_type: Optional[str] = None
    conflict_type: Optional[ConflictType] = None
    status: Optional[ConflictStatus] = None
    priority: Optional[ConflictPriority] = None
    assigned_to: Optional[str] = None
    is_escalated: Optional[bool] = None
    is_overdue: Optional[bool] = None
    page: int = 1
    page_size: int = 50
    sort_by: str = "detected_date"
    sort_descending: bool = False


@dataclass
class PagedResult:
    """One page of query results."""
    items: List[Any]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages
