# -*- coding: utf-8 -*-
"""
TRRCMS Data Models
"""

from .import_package import ImportPackage, ImportStatus
from .staging_record import StagingRecord, EntityType, ValidationOutcome
from .conflict import (
    ConflictResolution, ConflictType, ConflictStatus, ConflictPriority,
    ConfidenceLevel, ResolutionAction, MergeDetails, ConflictQueueFilter,
)
from .commit_report import CommitReport, CommitError, EntityTypeSummary
from .context import RequestContext
from .person import Person
from .unit import PropertyUnit
from .relation import PersonUnitRelation
from .claim import Claim
from .evidence import Evidence

__all__ = [
    "ImportPackage",
    "ImportStatus",
    "StagingRecord",
    "EntityType",
    "ValidationOutcome",
    "ConflictResolution",
    "ConflictType",
    "ConflictStatus",
    "ConflictPriority",
    "ConfidenceLevel",
    "ResolutionAction",
    "MergeDetails",
    "ConflictQueueFilter",
    "CommitReport",
    "CommitError",
    "EntityTypeSummary",
    "RequestContext",
    "Person",
    "PropertyUnit",
    "PersonUnitRelation",
    "Claim",
    "Evidence",
]
