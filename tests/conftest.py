# -*- coding: utf-8 -*-
"""
Shared fixtures for the import pipeline tests.

Every test gets its own SQLite database and storage directories under
pytest's tmp_path.
"""

import hashlib
from typing import Any, Dict, List, Optional

import pytest

from app.config import Config
from models.context import RequestContext
from repositories.db_adapter import SQLiteAdapter
from services.audit_service import AuditSink
from services.package_service import ImportPipelineService
from services.uhc_container_service import UHCContainerService
from services.vocab_service import StaticVocabularyValidator

BUILDING_CODE = "01010100100100001"
ATTACHMENT_DATA = b"%PDF-1.4 ownership deed scan"
ATTACHMENT_HASH = hashlib.sha256(ATTACHMENT_DATA).hexdigest()


class RecordingAuditSink(AuditSink):
    """Keeps audit entries in memory."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def log_action(self, action_type, description, entity_type, entity_id,
                   old_values, new_values, context):
        self.entries.append({
            "action_type": action_type,
            "description": description,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "old_values": old_values,
            "new_values": new_values,
            "user_id": context.user_id,
        })

    def actions(self, entity_id: Optional[str] = None) -> List[str]:
        return [e["action_type"] for e in self.entries
                if entity_id is None or e["entity_id"] == entity_id]


@pytest.fixture
def config(tmp_path):
    """Configuration pointing every storage path into tmp_path."""
    class TestConfig(Config):
        DB_PATH = tmp_path / "pipeline.db"
        PACKAGE_STORAGE_PATH = tmp_path / "packages"
        STAGING_ATTACHMENTS_PATH = tmp_path / "staging_attachments"
        ATTACHMENT_STORE_PATH = tmp_path / "attachments"
        ARCHIVE_BASE_PATH = tmp_path / "archives"
        AUTO_RESOLVE_CONFLICT_TYPES = ()
        AUTO_RESOLVE_MIN_SCORE = 1.0
        AUTO_RESOLVE_ACTION = "KeepFirst"
        INVALID_RECORD_POLICY = "skip"
        MATCHING_MAX_WORKERS = 2
        SERVER_VOCABULARY_VERSIONS = {"gender": "1.0.0", "relation_type": "1.0.0"}

    return TestConfig


@pytest.fixture
def db(config):
    """Initialized SQLite adapter."""
    adapter = SQLiteAdapter(config.DB_PATH)
    adapter.connect()
    adapter.initialize()
    yield adapter
    adapter.close()


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def context():
    return RequestContext(user_id="data-manager-1", user_name="Data Manager")


@pytest.fixture
def pipeline(db, audit, config):
    """Pipeline service wired to the test database and storage."""
    return ImportPipelineService(
        db=db,
        code_validator=StaticVocabularyValidator(),
        audit=audit,
        config=config,
    )


def person_row(row_id: str, first: str, family: str, national_id: Optional[str],
               phone: Optional[str] = None, **extra) -> Dict[str, Any]:
    row = {
        "id": row_id,
        "first_name": first,
        "father_name": "Ahmad",
        "family_name": family,
        "gender": "M",
        "year_of_birth": 1980,
        "national_id": national_id,
        "mobile_number": phone,
    }
    row.update(extra)
    return row


def unit_row(row_id: str = "u-1", unit_identifier: str = "A1", **extra) -> Dict[str, Any]:
    row = {
        "id": row_id,
        "building_code": BUILDING_CODE,
        "unit_identifier": unit_identifier,
        "unit_type": 1,
        "unit_status": 1,
        "floor_number": 2,
    }
    row.update(extra)
    return row


def default_tables() -> Dict[str, List[Dict[str, Any]]]:
    """Two distinct persons, one unit, one relation, one claim and one evidence."""
    return {
        "persons": [
            person_row("p-1", "Omar", "Haddad", "01234567890", "0944111222"),
            person_row("p-2", "Sami", "Khoury", "09876543210", "0955333444", gender="F",
                       year_of_birth=1990),
        ],
        "property_units": [unit_row()],
        "person_property_relations": [
            {"id": "r-1", "person_id": "p-1", "property_unit_id": "u-1",
             "relation_type": 1, "ownership_share": 100},
        ],
        "claims": [
            {"id": "c-1", "property_unit_id": "u-1", "claimant_person_id": "p-1",
             "claim_source": 1},
        ],
        "evidence": [
            {"id": "e-1", "evidence_type": 2, "claim_id": "c-1", "person_id": "p-1",
             "attachment_hash": ATTACHMENT_HASH},
        ],
    }


@pytest.fixture
def build_package():
    """Factory returning .uhc bytes for the given tables."""
    container = UHCContainerService()

    def _build(tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
               package_id: Optional[str] = None, checksum: Optional[str] = None,
               vocab_versions: Optional[Dict[str, str]] = None,
               attachments: Optional[List[Dict[str, Any]]] = None) -> bytes:
        manifest = {
            "package_id": package_id,
            "device_id": "tablet-07",
            "exported_by_user_id": "collector-3",
            "vocab_versions": vocab_versions if vocab_versions is not None else {"gender": "1.0.0"},
        }
        if attachments is None:
            attachments = [{"data": ATTACHMENT_DATA, "file_name": "deed.pdf",
                            "mime_type": "application/pdf"}]
        return container.build_package(
            manifest, tables if tables is not None else default_tables(), attachments, checksum
        )

    return _build


@pytest.fixture
def staged_package(pipeline, build_package, context):
    """Factory: upload and stage a package, returning its id."""
    def _stage(tables=None, **kwargs) -> str:
        result = pipeline.upload_package(build_package(tables, **kwargs), "field.uhc", context)
        pipeline.stage_package(result.package.id, context)
        return result.package.id

    return _stage
