# -*- coding: utf-8 -*-
"""
TRRCMS Repository Layer
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "get_database",
    "ImportPackageRepository",
    "StagingRepository",
    "ConflictRepository",
    "PersonRepository",
    "PropertyUnitRepository",
    "RelationRepository",
    "ClaimRepository",
    "EvidenceRepository",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name == "get_database":
        from .db_adapter import get_database
        return get_database
    elif name == "ImportPackageRepository":
        from .package_repository import ImportPackageRepository
        return ImportPackageRepository
    elif name == "StagingRepository":
        from .staging_repository import StagingRepository
        return StagingRepository
    elif name == "ConflictRepository":
        from .conflict_repository import ConflictRepository
        return ConflictRepository
    elif name == "PersonRepository":
        from .person_repository import PersonRepository
        return PersonRepository
    elif name == "PropertyUnitRepository":
        from .unit_repository import PropertyUnitRepository
        return PropertyUnitRepository
    elif name == "RelationRepository":
        from .relation_repository import RelationRepository
        return RelationRepository
    elif name == "ClaimRepository":
        from .claim_repository import ClaimRepository
        return ClaimRepository
    elif name == "EvidenceRepository":
        from .evidence_repository import EvidenceRepository
        return EvidenceRepository
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
