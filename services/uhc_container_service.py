# -*- coding: utf-8 -*-
"""
UHC Container Service
=====================
Reads and writes .uhc package containers produced by field devices.

A .uhc container is a SQLite database file:
- _manifest(key, value): package metadata; JSON values for vocab_versions
  and record_counts
- persons, property_units, person_property_relations, claims, evidence:
  one table per entity type, one row per record
- attachments(content_hash, file_name, mime_type, size_bytes, data BLOB)

The manifest checksum is a SHA-256 over the data tables only, so it can be
stored inside the container it describes.
"""

import hashlib
import json
import os
import sqlite3
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from services.exceptions import ManifestException
from utils.datetime_utils import now_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)

APP_VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"
FORM_SCHEMA_VERSION = "1.0.0"

MANIFEST_TABLE = "_manifest"
ATTACHMENTS_TABLE = "attachments"
DATA_TABLES = ("persons", "property_units", "person_property_relations", "claims", "evidence")

# Manifest keys holding JSON documents
_JSON_KEYS = ("vocab_versions", "record_counts")


@dataclass
class PackageManifest:
    """Manifest structure for .uhc containers."""
    package_id: str
    schema_version: str
    created_utc: Optional[str] = None
    device_id: Optional[str] = None
    app_version: Optional[str] = None
    exported_by_user_id: Optional[str] = None
    exported_date_utc: Optional[str] = None
    form_schema_version: Optional[str] = None
    vocab_versions: Dict[str, str] = field(default_factory=dict)
    record_counts: Dict[str, int] = field(default_factory=dict)
    checksum: Optional[str] = None

    def to_rows(self) -> List[Tuple[str, Optional[str]]]:
        rows = []
        for key, value in self.__dict__.items():
            if key in _JSON_KEYS:
                value = json.dumps(value)
            rows.append((key, str(value) if value is not None else None))
        return rows


@dataclass
class AttachmentMeta:
    """Attachment row metadata, without the bytes."""
    content_hash: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: int = 0


class UHCContainerService:
    """
    Service for reading and building .uhc container files.
    """

    def __init__(self, supported_schema_versions: Optional[Tuple[str, ...]] = None):
        if supported_schema_versions is None:
            from app.config import Config
            supported_schema_versions = Config.SUPPORTED_SCHEMA_VERSIONS
        self.supported_schema_versions = tuple(supported_schema_versions)

    @contextmanager
    def _open(self, container_path: Path) -> Iterator[sqlite3.Connection]:
        """Open a container read-only, mapping SQLite failures to ManifestException."""
        container_path = Path(container_path)
        if not container_path.exists():
            raise ManifestException("Container file not found", file_path=str(container_path))

        try:
            conn = sqlite3.connect(f"{container_path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise ManifestException(
                f"Cannot open container: {e}", file_path=str(container_path), original_error=e
            )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.DatabaseError as e:
            raise ManifestException(
                f"Container is not a readable package: {e}",
                file_path=str(container_path), original_error=e
            )
        finally:
            conn.close()

    def _table_names(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        return [row["name"] for row in rows]

    # ==================== Reading ====================

    def read_manifest(self, container_path: Path) -> PackageManifest:
        """
        Parse the container manifest.

        Raises:
            ManifestException: not a SQLite file, no manifest table, missing
                required keys, malformed JSON or unsupported schema version
        """
        with self._open(container_path) as conn:
            if MANIFEST_TABLE not in self._table_names(conn):
                raise ManifestException("Container has no manifest", file_path=str(container_path))
            data = {row["key"]: row["value"] for row in conn.execute(
                f"SELECT key, value FROM {MANIFEST_TABLE}"
            )}

        for required in ("package_id", "schema_version"):
            if not data.get(required):
                raise ManifestException(
                    f"Manifest is missing '{required}'", file_path=str(container_path)
                )

        parsed: Dict[str, Any] = {}
        for key in _JSON_KEYS:
            raw = data.get(key)
            try:
                parsed[key] = json.loads(raw) if raw else {}
            except ValueError as e:
                raise ManifestException(
                    f"Manifest value '{key}' is not valid JSON",
                    file_path=str(container_path), original_error=e
                )
            if not isinstance(parsed[key], dict):
                raise ManifestException(
                    f"Manifest value '{key}' must be an object", file_path=str(container_path)
                )

        if data["schema_version"] not in self.supported_schema_versions:
            raise ManifestException(
                f"Unsupported schema version {data['schema_version']}",
                file_path=str(container_path)
            )

        return PackageManifest(
            package_id=data["package_id"],
            schema_version=data["schema_version"],
            created_utc=data.get("created_utc"),
            device_id=data.get("device_id"),
            app_version=data.get("app_version"),
            exported_by_user_id=data.get("exported_by_user_id"),
            exported_date_utc=data.get("exported_date_utc"),
            form_schema_version=data.get("form_schema_version"),
            vocab_versions=parsed["vocab_versions"],
            record_counts=parsed["record_counts"],
            checksum=data.get("checksum"),
        )

    def read_entities(self, container_path: Path) -> Dict[str, List[Dict[str, Any]]]:
        """Rows of every entity table, in rowid order. Missing tables are empty."""
        entities: Dict[str, List[Dict[str, Any]]] = {}
        with self._open(container_path) as conn:
            present = set(self._table_names(conn))
            for table in DATA_TABLES:
                if table not in present:
                    entities[table] = []
                    continue
                rows = conn.execute(f'SELECT * FROM "{table}" ORDER BY rowid').fetchall()
                entities[table] = [dict(row) for row in rows]
        return entities

    def read_attachments(self, container_path: Path) -> Iterator[Tuple[str, AttachmentMeta, bytes]]:
        """Yield (content_hash, metadata, bytes) for every attachment."""
        with self._open(container_path) as conn:
            if ATTACHMENTS_TABLE not in self._table_names(conn):
                return
            cursor = conn.execute(
                f"SELECT content_hash, file_name, mime_type, size_bytes, data "
                f"FROM {ATTACHMENTS_TABLE} ORDER BY rowid"
            )
            for row in cursor:
                data = bytes(row["data"] or b"")
                content_hash = (row["content_hash"] or hashlib.sha256(data).hexdigest()).lower()
                meta = AttachmentMeta(
                    content_hash=content_hash,
                    file_name=row["file_name"],
                    mime_type=row["mime_type"],
                    size_bytes=row["size_bytes"] or len(data),
                )
                yield content_hash, meta, data

    def compute_content_checksum(self, container_path: Path) -> str:
        """
        SHA-256 over the data and attachment tables.

        Tables in sorted order, rows in rowid order, each row as canonical
        JSON with BLOBs hex-encoded. The manifest is excluded.
        """
        sha256_hash = hashlib.sha256()
        with self._open(container_path) as conn:
            present = set(self._table_names(conn))
            for table in sorted(set(DATA_TABLES + (ATTACHMENTS_TABLE,)) & present):
                sha256_hash.update(f"#{table}\n".encode("utf-8"))
                for row in conn.execute(f'SELECT * FROM "{table}" ORDER BY rowid'):
                    record = {
                        key: (row[key].hex() if isinstance(row[key], (bytes, memoryview)) else row[key])
                        for key in row.keys()
                    }
                    line = json.dumps(record, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
                    sha256_hash.update(line.encode("utf-8"))
                    sha256_hash.update(b"\n")
        return sha256_hash.hexdigest()

    def verify_checksum(self, container_path: Path, manifest: PackageManifest) -> bool:
        """True when the manifest checksum matches the container content."""
        if not manifest.checksum:
            return False
        return self.compute_content_checksum(container_path) == manifest.checksum.lower()

    # ==================== Writing ====================

    def build_package(
        self,
        manifest_fields: Dict[str, Any],
        tables: Dict[str, List[Dict[str, Any]]],
        attachments: Optional[List[Dict[str, Any]]] = None,
        checksum: Optional[str] = None
    ) -> bytes:
        """
        Build a container and return its bytes.

        The manifest checksum is computed from the written content unless an
        explicit ``checksum`` is given.
        """
        manifest = PackageManifest(
            package_id=manifest_fields.get("package_id") or str(uuid.uuid4()),
            schema_version=manifest_fields.get("schema_version", SCHEMA_VERSION),
            created_utc=manifest_fields.get("created_utc", now_isoformat()),
            device_id=manifest_fields.get("device_id"),
            app_version=manifest_fields.get("app_version", APP_VERSION),
            exported_by_user_id=manifest_fields.get("exported_by_user_id"),
            exported_date_utc=manifest_fields.get("exported_date_utc", now_isoformat()),
            form_schema_version=manifest_fields.get("form_schema_version", FORM_SCHEMA_VERSION),
            vocab_versions=dict(manifest_fields.get("vocab_versions") or {}),
            record_counts={name: len(rows) for name, rows in tables.items()},
        )

        fd, tmp_name = tempfile.mkstemp(suffix=".uhc")
        os.close(fd)
        container_path = Path(tmp_name)
        try:
            self._create_sqlite_container(container_path, manifest, tables, attachments or [])
            manifest.checksum = checksum or self.compute_content_checksum(container_path)
            self._update_manifest_in_container(container_path, manifest)
            return container_path.read_bytes()
        finally:
            container_path.unlink()

    def _create_sqlite_container(
        self,
        container_path: Path,
        manifest: PackageManifest,
        tables: Dict[str, List[Dict[str, Any]]],
        attachments: List[Dict[str, Any]]
    ) -> None:
        """Create the SQLite .uhc container file."""
        conn = sqlite3.connect(str(container_path))
        cursor = conn.cursor()

        try:
            cursor.execute(f"CREATE TABLE {MANIFEST_TABLE} (key TEXT PRIMARY KEY, value TEXT)")

            for table_name, records in tables.items():
                columns: List[str] = []
                for record in records:
                    for col in record:
                        if col not in columns:
                            columns.append(col)
                if not columns:
                    columns = ["id"]

                # Untyped columns keep the device's value types
                column_defs = ", ".join(f'"{col}"' for col in columns)
                cursor.execute(f'CREATE TABLE "{table_name}" ({column_defs})')

                placeholders = ", ".join("?" for _ in columns)
                insert_sql = f'INSERT INTO "{table_name}" VALUES ({placeholders})'
                for record in records:
                    values = []
                    for col in columns:
                        val = record.get(col)
                        if isinstance(val, (dict, list)):
                            val = json.dumps(val)
                        values.append(val)
                    cursor.execute(insert_sql, values)

            cursor.execute(f"""
                CREATE TABLE {ATTACHMENTS_TABLE} (
                    content_hash TEXT PRIMARY KEY,
                    file_name TEXT,
                    mime_type TEXT,
                    size_bytes INTEGER,
                    data BLOB
                )
            """)
            for attachment in attachments:
                data = attachment["data"]
                cursor.execute(
                    f"INSERT INTO {ATTACHMENTS_TABLE} VALUES (?, ?, ?, ?, ?)",
                    (
                        attachment.get("content_hash") or hashlib.sha256(data).hexdigest(),
                        attachment.get("file_name"),
                        attachment.get("mime_type"),
                        len(data),
                        sqlite3.Binary(data),
                    )
                )

            conn.commit()
        finally:
            conn.close()

    def _update_manifest_in_container(self, container_path: Path, manifest: PackageManifest) -> None:
        """Write the manifest rows, including the checksum."""
        conn = sqlite3.connect(str(container_path))
        try:
            conn.execute(f"DELETE FROM {MANIFEST_TABLE}")
            conn.executemany(
                f"INSERT INTO {MANIFEST_TABLE} (key, value) VALUES (?, ?)",
                manifest.to_rows()
            )
            conn.commit()
        finally:
            conn.close()
