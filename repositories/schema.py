# -*- coding: utf-8 -*-
"""
Database schema for the import pipeline and the production tables it writes.

Portable DDL accepted by both SQLite and PostgreSQL: TEXT/INTEGER/REAL
columns only, UUID primary keys stored as TEXT, timestamps as ISO strings
and JSON documents as TEXT.
"""

from typing import List

# Pipeline tables
IMPORT_PACKAGES_TABLE = """
CREATE TABLE IF NOT EXISTS import_packages (
    id TEXT PRIMARY KEY,
    package_number TEXT UNIQUE NOT NULL,
    package_id TEXT,
    file_name TEXT NOT NULL,
    file_size_bytes INTEGER DEFAULT 0,
    file_path TEXT,
    checksum TEXT,
    device_id TEXT,
    exported_by_user_id TEXT,
    schema_version TEXT,
    vocabulary_versions TEXT,
    package_created_at TEXT,
    package_exported_at TEXT,
    is_checksum_valid INTEGER,
    is_vocabulary_compatible INTEGER,
    vocabulary_issues TEXT,
    status TEXT NOT NULL,
    staged_count INTEGER DEFAULT 0,
    valid_count INTEGER DEFAULT 0,
    warning_count INTEGER DEFAULT 0,
    invalid_count INTEGER DEFAULT 0,
    skipped_count INTEGER DEFAULT 0,
    conflict_count INTEGER DEFAULT 0,
    person_duplicate_count INTEGER DEFAULT 0,
    property_duplicate_count INTEGER DEFAULT 0,
    committed_count INTEGER DEFAULT 0,
    failed_count INTEGER DEFAULT 0,
    commit_skipped_count INTEGER DEFAULT 0,
    duplicate_attachments_found INTEGER DEFAULT 0,
    deduplication_bytes_saved INTEGER DEFAULT 0,
    merges_performed INTEGER DEFAULT 0,
    uploaded_at TEXT,
    staged_at TEXT,
    validated_at TEXT,
    committed_at TEXT,
    uploaded_by TEXT,
    committed_by TEXT,
    archive_path TEXT,
    is_archived INTEGER DEFAULT 0,
    error_message TEXT,
    processing_notes TEXT,
    created_at TEXT,
    updated_at TEXT
)
"""

STAGING_RECORDS_TABLE = """
CREATE TABLE IF NOT EXISTS staging_records (
    id TEXT PRIMARY KEY,
    import_package_id TEXT NOT NULL REFERENCES import_packages(id) ON DELETE CASCADE,
    entity_type TEXT NOT NULL,
    original_entity_id TEXT NOT NULL,
    row_number INTEGER DEFAULT 0,
    payload TEXT,
    outcome TEXT NOT NULL,
    validation_errors TEXT,
    validation_warnings TEXT,
    is_approved_for_commit INTEGER DEFAULT 0,
    committed_entity_id TEXT,
    commit_error TEXT,
    merged_into_entity_id TEXT,
    staged_at TEXT,
    validated_at TEXT
)
"""

CONFLICT_RESOLUTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS conflict_resolutions (
    id TEXT PRIMARY KEY,
    conflict_number TEXT UNIQUE NOT NULL,
    conflict_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    import_package_id TEXT,
    first_entity_id TEXT NOT NULL,
    first_entity_identifier TEXT,
    first_entity_source TEXT,
    second_entity_id TEXT NOT NULL,
    second_entity_identifier TEXT,
    second_entity_source TEXT,
    similarity_score REAL,
    confidence_level TEXT,
    matching_criteria TEXT,
    data_comparison TEXT,
    status TEXT NOT NULL,
    priority TEXT NOT NULL,
    is_escalated INTEGER DEFAULT 0,
    escalation_reason TEXT,
    escalated_date TEXT,
    is_auto_detected INTEGER DEFAULT 1,
    is_auto_resolved INTEGER DEFAULT 0,
    auto_resolution_rule TEXT,
    assigned_to TEXT,
    assigned_date TEXT,
    review_attempt_count INTEGER DEFAULT 0,
    review_history TEXT,
    resolution_action TEXT,
    resolution_reason TEXT,
    resolution_notes TEXT,
    merged_entity_id TEXT,
    discarded_entity_id TEXT,
    merge_mapping TEXT,
    resolved_by TEXT,
    resolved_date TEXT,
    target_resolution_hours INTEGER,
    detected_date TEXT NOT NULL,
    due_at TEXT,
    is_overdue INTEGER DEFAULT 0,
    created_by TEXT,
    updated_at TEXT
)
"""

AUDIT_LOG_TABLE = """
CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    action_type TEXT NOT NULL,
    description TEXT,
    entity_type TEXT,
    entity_id TEXT,
    old_values TEXT,
    new_values TEXT,
    user_id TEXT,
    user_name TEXT,
    correlation_id TEXT,
    created_at TEXT NOT NULL
)
"""

# Production tables
PERSONS_TABLE = """
CREATE TABLE IF NOT EXISTS persons (
    person_id TEXT PRIMARY KEY,
    first_name TEXT,
    father_name TEXT,
    mother_name TEXT,
    family_name TEXT,
    family_name_normalized TEXT,
    gender TEXT,
    year_of_birth INTEGER,
    national_id TEXT,
    phone_number TEXT,
    mobile_number TEXT,
    phone_normalized TEXT,
    import_package_id TEXT,
    source_staging_id TEXT,
    created_at TEXT,
    updated_at TEXT,
    created_by TEXT
)
"""

PROPERTY_UNITS_TABLE = """
CREATE TABLE IF NOT EXISTS property_units (
    unit_uuid TEXT PRIMARY KEY,
    building_code TEXT NOT NULL,
    unit_identifier TEXT NOT NULL,
    unit_identifier_normalized TEXT,
    unit_type INTEGER,
    unit_status INTEGER,
    floor_number INTEGER,
    area_sqm REAL,
    description TEXT,
    import_package_id TEXT,
    source_staging_id TEXT,
    created_at TEXT,
    updated_at TEXT,
    created_by TEXT
)
"""

RELATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS person_property_relations (
    relation_id TEXT PRIMARY KEY,
    person_id TEXT NOT NULL REFERENCES persons(person_id),
    unit_id TEXT NOT NULL REFERENCES property_units(unit_uuid),
    relation_type INTEGER,
    ownership_share REAL,
    start_date TEXT,
    import_package_id TEXT,
    source_staging_id TEXT,
    created_at TEXT,
    created_by TEXT
)
"""

CLAIMS_TABLE = """
CREATE TABLE IF NOT EXISTS claims (
    claim_uuid TEXT PRIMARY KEY,
    unit_id TEXT NOT NULL REFERENCES property_units(unit_uuid),
    claimant_person_id TEXT REFERENCES persons(person_id),
    claim_source INTEGER,
    claim_type TEXT,
    case_status TEXT,
    description TEXT,
    import_package_id TEXT,
    source_staging_id TEXT,
    created_at TEXT,
    created_by TEXT
)
"""

EVIDENCE_TABLE = """
CREATE TABLE IF NOT EXISTS evidence (
    evidence_id TEXT PRIMARY KEY,
    person_id TEXT REFERENCES persons(person_id),
    claim_id TEXT REFERENCES claims(claim_uuid),
    evidence_type INTEGER,
    description TEXT,
    attachment_hash TEXT,
    file_name TEXT,
    mime_type TEXT,
    file_size_bytes INTEGER,
    import_package_id TEXT,
    source_staging_id TEXT,
    created_at TEXT,
    created_by TEXT
)
"""

INDEXES: List[str] = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_import_packages_package_id ON import_packages(package_id)",
    "CREATE INDEX IF NOT EXISTS idx_import_packages_status ON import_packages(status)",
    "CREATE INDEX IF NOT EXISTS idx_staging_package_type ON staging_records(import_package_id, entity_type)",
    "CREATE INDEX IF NOT EXISTS idx_conflicts_package ON conflict_resolutions(import_package_id)",
    "CREATE INDEX IF NOT EXISTS idx_conflicts_status ON conflict_resolutions(status)",
    "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id)",
    "CREATE INDEX IF NOT EXISTS idx_persons_national_id ON persons(national_id)",
    "CREATE INDEX IF NOT EXISTS idx_persons_phone ON persons(phone_normalized)",
    "CREATE INDEX IF NOT EXISTS idx_persons_family_name ON persons(family_name_normalized)",
    "CREATE INDEX IF NOT EXISTS idx_units_building ON property_units(building_code)",
    "CREATE INDEX IF NOT EXISTS idx_evidence_hash ON evidence(attachment_hash)",
]

SCHEMA_STATEMENTS: List[str] = [
    IMPORT_PACKAGES_TABLE,
    STAGING_RECORDS_TABLE,
    CONFLICT_RESOLUTIONS_TABLE,
    AUDIT_LOG_TABLE,
    PERSONS_TABLE,
    PROPERTY_UNITS_TABLE,
    RELATIONS_TABLE,
    CLAIMS_TABLE,
    EVIDENCE_TABLE,
] + INDEXES
