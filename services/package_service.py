# -*- coding: utf-8 -*-
"""
Import Pipeline Service
=======================
Orchestrates one field package through the import state machine:

    Received -> Staging -> Validating -> ReviewingConflicts -> ReadyToCommit
             -> Committing -> Completed | PartiallyCompleted | Failed

with the side transitions Cancelled (any non-terminal state) and
Quarantined (Received / Staging). Stages run sequentially per package;
calling one out of order raises StateConflictException and leaves the
package untouched.
"""

import hashlib
import shutil
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from models.conflict import (
    ConflictResolution, ConflictStatus, ConflictQueueFilter, EntitySource,
    MergeDetails, PagedResult, ResolutionAction, SUPERSEDED_REASON,
)
from models.commit_report import CommitReport
from models.context import RequestContext
from models.import_package import (
    ImportPackage, ImportStatus, STAGE_ALLOWED, VALIDATE_ALLOWED, DETECT_ALLOWED,
    APPROVE_ALLOWED, QUARANTINE_ALLOWED, RESET_COMMIT_ALLOWED, RETENTION_PURGE_STATUSES,
)
from models.staging_record import (
    StagingRecord, EntityType, ValidationOutcome, PACKAGE_TABLES, COMMIT_ORDER,
)
from repositories.claim_repository import ClaimRepository
from repositories.conflict_repository import ConflictRepository
from repositories.evidence_repository import EvidenceRepository
from repositories.package_repository import ImportPackageRepository
from repositories.person_repository import PersonRepository
from repositories.relation_repository import RelationRepository
from repositories.staging_repository import StagingRepository
from repositories.unit_repository import PropertyUnitRepository
from services.attachment_store import AttachmentStore, FileSystemAttachmentStore
from services.audit_service import AuditSink, DatabaseAuditSink
from services.commit_service import CommitEngine
from services.conflict_resolution import ConflictQueueService
from services.exceptions import (
    ManifestException, NotFoundException, OperationCancelledException,
    StateConflictException, ValidationException,
)
from services.matching_service import DuplicateMatcher
from services.record_validator import RecordValidator
from services.uhc_container_service import UHCContainerService
from services.vocab_service import (
    ReferenceCodeValidator, StaticVocabularyValidator, check_vocabulary_compatibility,
)
from utils.datetime_utils import utc_now, from_isoformat
from utils.helpers import sanitize_filename
from utils.logger import get_logger

logger = get_logger(__name__)

AUDIT_ENTITY_TYPE = "ImportPackage"
STAGING_BATCH_SIZE = 200

# Conflict decisions only make sense before the package starts committing
CONFLICT_REVIEW_ALLOWED = DETECT_ALLOWED | {ImportStatus.READY_TO_COMMIT}

_package_number_lock = threading.Lock()


@dataclass
class UploadResult:
    """Outcome of uploading one package file."""
    package: ImportPackage
    is_duplicate: bool = False
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def package_id(self) -> str:
        return self.package.id

    @property
    def is_quarantined(self) -> bool:
        return self.package.status == ImportStatus.QUARANTINED


@dataclass
class StagingSummary:
    """Validation counts of one package, overall and per entity type."""
    import_package_id: str
    status: str
    total_records: int = 0
    pending_count: int = 0
    valid_count: int = 0
    warning_count: int = 0
    invalid_count: int = 0
    skipped_count: int = 0
    by_entity_type: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "import_package_id": self.import_package_id,
            "status": self.status,
            "total_records": self.total_records,
            "pending_count": self.pending_count,
            "valid_count": self.valid_count,
            "warning_count": self.warning_count,
            "invalid_count": self.invalid_count,
            "skipped_count": self.skipped_count,
            "by_entity_type": self.by_entity_type,
        }


@dataclass
class ValidationSummary:
    """Outcome of one validation run."""
    import_package_id: str
    status: str
    validated_count: int = 0
    valid_count: int = 0
    warning_count: int = 0
    invalid_count: int = 0
    skipped_count: int = 0


@dataclass
class DetectionResult:
    """Outcome of one duplicate-detection run."""
    import_package_id: str
    status: str
    conflicts_created: int = 0
    auto_resolved_count: int = 0
    person_duplicates: int = 0
    property_duplicates: int = 0
    superseded_count: int = 0
    conflict_ids: List[str] = field(default_factory=list)


@dataclass
class ApprovalResult:
    """Outcome of approving records for commit."""
    package: ImportPackage
    approved_count: int = 0
    ineligible: List[Dict[str, str]] = field(default_factory=list)


class ImportPipelineService:
    """
    Entry point for every import pipeline operation.

    Every operation takes an explicit RequestContext identifying the caller.
    """

    def __init__(self, db=None, code_validator: Optional[ReferenceCodeValidator] = None,
                 attachment_store: Optional[AttachmentStore] = None,
                 audit: Optional[AuditSink] = None,
                 container_service: Optional[UHCContainerService] = None,
                 config=None):
        """
        Args:
            db: Database adapter (defaults to the shared instance)
            code_validator: Reference-code validator (defaults to the static
                vocabularies)
            attachment_store: Permanent attachment store
            audit: Audit sink (defaults to the audit_log table)
            container_service: .uhc reader
            config: Configuration class (defaults to app.config.Config)
        """
        if config is None:
            from app.config import Config
            config = Config
        if db is None:
            from repositories.db_adapter import get_database
            db = get_database()

        self.config = config
        self.db = db
        self.code_validator = code_validator or StaticVocabularyValidator()
        self.audit = audit or DatabaseAuditSink(db)
        self.container = container_service or UHCContainerService(config.SUPPORTED_SCHEMA_VERSIONS)

        self.package_repo = ImportPackageRepository(db)
        self.staging_repo = StagingRepository(db)
        self.conflict_repo = ConflictRepository(db)
        self.person_repo = PersonRepository(db)
        self.unit_repo = PropertyUnitRepository(db)
        self.relation_repo = RelationRepository(db)
        self.claim_repo = ClaimRepository(db)
        self.evidence_repo = EvidenceRepository(db)

        self.conflicts = ConflictQueueService(self.conflict_repo, self.audit, config)
        self.matcher = DuplicateMatcher(self.person_repo, self.unit_repo, config)
        self.commit_engine = CommitEngine(
            db, self.package_repo, self.staging_repo, self.conflict_repo,
            self.person_repo, self.unit_repo, self.relation_repo, self.claim_repo,
            self.evidence_repo,
            attachment_store or FileSystemAttachmentStore(config.ATTACHMENT_STORE_PATH),
            self.audit, config,
        )

    # ==================== Helpers ====================

    def get_package(self, package_id: str) -> ImportPackage:
        package = self.package_repo.get_by_id(package_id)
        if not package:
            raise NotFoundException("ImportPackage", package_id)
        return package

    @staticmethod
    def _require_status(package: ImportPackage, allowed, operation: str) -> None:
        if package.status not in allowed:
            raise StateConflictException(
                f"Cannot {operation} package {package.package_number} in status {package.status.value}",
                current_status=package.status.value,
                allowed_statuses=sorted(s.value for s in allowed),
            )

    def _save(self, package: ImportPackage, old_status: ImportStatus, action_type: str,
              description: str, context: RequestContext,
              details: Optional[Dict[str, Any]] = None) -> ImportPackage:
        """Persist the package and audit the transition."""
        self.package_repo.update(package)
        new_values = {"status": package.status.value}
        new_values.update(details or {})
        self.audit.log_action(
            action_type, description, AUDIT_ENTITY_TYPE, package.id,
            {"status": old_status.value}, new_values, context
        )
        return package

    def _staging_attachment_dir(self, package: ImportPackage) -> Path:
        return Path(self.config.STAGING_ATTACHMENTS_PATH) / package.id

    def _staged_attachment_hashes(self, package: ImportPackage) -> Set[str]:
        directory = self._staging_attachment_dir(package)
        if not directory.exists():
            return set()
        return {p.name.lower() for p in directory.iterdir() if p.is_file()}

    # ==================== Upload ====================

    def upload_package(self, data: bytes, file_name: str, context: RequestContext) -> UploadResult:
        """
        Store an uploaded .uhc file and register it as a Received package.

        Integrity failures (checksum mismatch, incompatible vocabularies)
        quarantine the package. A package whose manifest id was already
        uploaded is returned as a duplicate instead of being registered again.
        """
        extension = Path(file_name or "").suffix.lower()
        if extension not in self.config.ALLOWED_EXTENSIONS:
            raise ValidationException(
                f"Unsupported file type '{extension or file_name}'", field="file_name"
            )
        if not data:
            raise ValidationException("Package file is empty", field="data")
        max_bytes = self.config.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        if len(data) > max_bytes:
            raise ValidationException(
                f"Package exceeds the maximum size of {self.config.MAX_UPLOAD_SIZE_MB} MB",
                field="data"
            )

        storage_dir = Path(self.config.PACKAGE_STORAGE_PATH)
        storage_dir.mkdir(parents=True, exist_ok=True)
        stored_path = storage_dir / f"{uuid.uuid4()}_{sanitize_filename(file_name)}"
        stored_path.write_bytes(data)
        logger.info(f"Received package file {file_name} ({len(data)} bytes) from {context.user_id}")

        try:
            manifest = self.container.read_manifest(stored_path)
        except ManifestException as e:
            return UploadResult(
                package=self._register_unreadable(file_name, len(data), stored_path, str(e), context),
                issues=[str(e)],
            )

        existing = self.package_repo.get_by_manifest_package_id(manifest.package_id)
        if existing:
            stored_path.unlink()
            logger.info(f"Package {manifest.package_id} already uploaded as {existing.package_number}")
            return UploadResult(package=existing, is_duplicate=True)

        is_checksum_valid = self.container.verify_checksum(stored_path, manifest)
        is_compatible, issues, warnings = check_vocabulary_compatibility(
            manifest.vocab_versions, self.config.SERVER_VOCABULARY_VERSIONS or {}
        )
        if not is_checksum_valid:
            issues = ["Package checksum does not match its content"] + issues

        with _package_number_lock:
            package = ImportPackage.create(
                package_number=self.package_repo.next_package_number(),
                file_name=file_name,
                file_size_bytes=len(data),
                uploaded_by=context.user_id,
                package_id=manifest.package_id,
                file_path=str(stored_path),
                checksum=manifest.checksum,
                device_id=manifest.device_id,
                exported_by_user_id=manifest.exported_by_user_id,
                schema_version=manifest.schema_version,
                vocabulary_versions=dict(manifest.vocab_versions),
                package_created_at=from_isoformat(manifest.created_utc),
                package_exported_at=from_isoformat(manifest.exported_date_utc),
                is_checksum_valid=is_checksum_valid,
                is_vocabulary_compatible=is_compatible,
                vocabulary_issues=issues + warnings,
            )
            self.package_repo.create(package)

        self.audit.log_action(
            "package_uploaded", f"Uploaded package {package.package_number} ({file_name})",
            AUDIT_ENTITY_TYPE, package.id, None,
            {"status": package.status.value, "package_id": package.package_id}, context
        )
        logger.info(f"Registered package {package.package_number} ({package.package_id})")

        if issues:
            self._quarantine(package, "; ".join(issues), context)

        return UploadResult(package=package, issues=issues, warnings=warnings)

    def _register_unreadable(self, file_name: str, size: int, stored_path: Path,
                             error: str, context: RequestContext) -> ImportPackage:
        """Record a package whose manifest cannot be parsed as Failed."""
        with _package_number_lock:
            package = ImportPackage.create(
                package_number=self.package_repo.next_package_number(),
                file_name=file_name,
                file_size_bytes=size,
                uploaded_by=context.user_id,
                file_path=str(stored_path),
                status=ImportStatus.FAILED,
                error_message=error,
            )
            self.package_repo.create(package)
        logger.error(f"Package {package.package_number} has an unreadable manifest: {error}")
        self.audit.log_action(
            "package_failed", f"Manifest could not be parsed: {error}",
            AUDIT_ENTITY_TYPE, package.id, None, {"status": package.status.value}, context
        )
        return package

    # ==================== Staging ====================

    def stage_package(self, package_id: str, context: RequestContext,
                      should_cancel: Optional[Callable[[], bool]] = None,
                      progress_callback: Optional[Callable[[int, int], None]] = None) -> StagingSummary:
        """
        Extract the entities and attachments of a package into staging.

        Re-invoking on a package left in Staging by a cancelled run starts
        over from a clean slate.

        Args:
            should_cancel: Checked between records; returning True stops
                staging with OperationCancelledException
            progress_callback: Called as progress_callback(current, total)
        """
        package = self.get_package(package_id)
        self._require_status(package, STAGE_ALLOWED, "stage")

        old_status = package.status
        if package.status == ImportStatus.RECEIVED:
            if not self.package_repo.transition_status(package.id, STAGE_ALLOWED, ImportStatus.STAGING):
                raise StateConflictException(
                    f"Package {package.package_number} changed status during staging",
                    current_status=package.status.value,
                )
            package.status = ImportStatus.STAGING

        self.staging_repo.delete_for_package(package.id)
        attachment_dir = self._staging_attachment_dir(package)
        if attachment_dir.exists():
            shutil.rmtree(attachment_dir)

        try:
            if not package.file_path or not Path(package.file_path).exists():
                raise ManifestException("Package file is missing", file_path=package.file_path)
            container_path = Path(package.file_path)
            self.container.read_manifest(container_path)
            attachment_meta = self._stage_attachments(package, container_path)
            entities = self.container.read_entities(container_path)
        except ManifestException as e:
            package.status = ImportStatus.FAILED
            package.error_message = str(e)
            self._save(package, old_status, "package_failed", f"Staging failed: {e}", context)
            logger.error(f"Staging of package {package.package_number} failed: {e}")
            raise

        rows = [
            (entity_type, row)
            for entity_type in COMMIT_ORDER
            for row in entities.get(PACKAGE_TABLES[entity_type], [])
        ]
        total = len(rows)
        staged = 0
        batch: List[StagingRecord] = []

        for row_number, (entity_type, row) in enumerate(rows, start=1):
            if should_cancel and should_cancel():
                staged += self.staging_repo.create_many(batch)
                package.staged_count = staged
                self.package_repo.update(package)
                logger.warning(f"Staging of package {package.package_number} cancelled after {staged} records")
                raise OperationCancelledException(
                    f"Staging of package {package.package_number} was cancelled",
                    records_staged=staged,
                )

            payload = dict(row)
            if entity_type == EntityType.EVIDENCE:
                self._fill_attachment_meta(payload, attachment_meta)
            original_id = payload.get("id")
            batch.append(StagingRecord(
                import_package_id=package.id,
                entity_type=entity_type,
                original_entity_id=str(original_id) if original_id not in (None, "") else str(uuid.uuid4()),
                payload=payload,
                row_number=row_number,
            ))

            if len(batch) >= STAGING_BATCH_SIZE:
                staged += self.staging_repo.create_many(batch)
                batch = []
            if progress_callback:
                progress_callback(row_number, total)

        staged += self.staging_repo.create_many(batch)

        package.staged_count = staged
        package.staged_at = utc_now()
        self._save(
            package, old_status, "package_staged",
            f"Staged {staged} records and {len(attachment_meta)} attachments",
            context, {"staged_count": staged}
        )
        logger.info(f"Staged package {package.package_number}: {staged} records")
        return self.get_staging_summary(package.id)

    def _stage_attachments(self, package: ImportPackage, container_path: Path) -> Dict[str, Dict[str, Any]]:
        """Write attachment bytes to the package staging directory, keyed by hash."""
        directory = self._staging_attachment_dir(package)
        directory.mkdir(parents=True, exist_ok=True)
        staged: Dict[str, Dict[str, Any]] = {}
        for content_hash, meta, data in self.container.read_attachments(container_path):
            actual = hashlib.sha256(data).hexdigest()
            if actual != content_hash:
                logger.warning(f"Attachment {content_hash} content hash mismatch, not staged")
                continue
            (directory / content_hash).write_bytes(data)
            staged[content_hash] = {
                "file_name": meta.file_name,
                "mime_type": meta.mime_type,
                "file_size_bytes": len(data),
            }
        return staged

    @staticmethod
    def _fill_attachment_meta(payload: Dict[str, Any], attachment_meta: Dict[str, Dict[str, Any]]) -> None:
        content_hash = str(payload.get("attachment_hash") or "").lower()
        for key, value in attachment_meta.get(content_hash, {}).items():
            if payload.get(key) in (None, ""):
                payload[key] = value

    # ==================== Validation ====================

    def _validator(self) -> RecordValidator:
        return RecordValidator(
            self.code_validator,
            person_exists=self.person_repo.exists,
            unit_exists=self.unit_repo.exists,
            claim_exists=self.claim_repo.exists,
        )

    def _revalidate(self, package: ImportPackage) -> List[StagingRecord]:
        records = self.staging_repo.get_for_package(package.id)
        validated = self._validator().validate_records(records, self._staged_attachment_hashes(package))
        self.staging_repo.update_many(validated)
        return records

    def validate_package(self, package_id: str, context: RequestContext) -> ValidationSummary:
        """
        Validate every non-Skipped record, overwriting earlier outcomes.

        Running it twice without data changes yields the same outcomes.
        """
        package = self.get_package(package_id)
        self._require_status(package, VALIDATE_ALLOWED, "validate")
        old_status = package.status

        records = self._revalidate(package)
        counts = {outcome: 0 for outcome in ValidationOutcome}
        for record in records:
            counts[record.outcome] += 1

        if old_status in (ImportStatus.STAGING, ImportStatus.VALIDATING):
            package.status = ImportStatus.VALIDATING
        elif self.conflicts.count_pending(package.id):
            package.status = ImportStatus.REVIEWING_CONFLICTS
        else:
            package.status = ImportStatus.READY_TO_COMMIT

        package.valid_count = counts[ValidationOutcome.VALID]
        package.warning_count = counts[ValidationOutcome.WARNING]
        package.invalid_count = counts[ValidationOutcome.INVALID]
        package.skipped_count = counts[ValidationOutcome.SKIPPED]
        package.validated_at = utc_now()

        self._save(
            package, old_status, "package_validated",
            f"Validated {len(records)} records: {package.valid_count} valid, "
            f"{package.warning_count} warning, {package.invalid_count} invalid",
            context,
            {"valid": package.valid_count, "warning": package.warning_count,
             "invalid": package.invalid_count},
        )
        logger.info(f"Validated package {package.package_number}: {package.invalid_count} invalid")

        return ValidationSummary(
            import_package_id=package.id,
            status=package.status.value,
            validated_count=len(records) - package.skipped_count,
            valid_count=package.valid_count,
            warning_count=package.warning_count,
            invalid_count=package.invalid_count,
            skipped_count=package.skipped_count,
        )

    # ==================== Duplicate detection ====================

    def detect_duplicates(self, package_id: str, context: RequestContext) -> DetectionResult:
        """
        Match staged persons and units against production and each other,
        and queue the candidates as conflicts.
        """
        package = self.get_package(package_id)
        self._require_status(package, DETECT_ALLOWED, "detect duplicates for")
        old_status = package.status

        superseded = 0
        if old_status == ImportStatus.REVIEWING_CONFLICTS:
            for conflict in self.conflicts.list_for_package(package.id, ConflictStatus.PENDING_REVIEW):
                self.conflicts.ignore(conflict.id, SUPERSEDED_REASON, context)
                superseded += 1

        excluded = (ValidationOutcome.INVALID, ValidationOutcome.SKIPPED)
        persons = [r for r in self.staging_repo.get_for_package(package.id, EntityType.PERSON)
                   if r.outcome not in excluded]
        units = [r for r in self.staging_repo.get_for_package(package.id, EntityType.PROPERTY_UNIT)
                 if r.outcome not in excluded]

        matching = self.matcher.find_duplicates(persons, units)
        created, auto_resolved = self.conflicts.persist_candidates(
            package.id, matching.all_candidates, context
        )
        for conflict in created:
            if conflict.status == ConflictStatus.RESOLVED:
                self._apply_resolution(conflict, package)

        person_created = sum(1 for c in created if c.entity_type == EntityType.PERSON.value)
        package.person_duplicate_count = person_created
        package.property_duplicate_count = len(created) - person_created
        package.conflict_count = len(self.conflicts.list_for_package(package.id))
        package.status = (ImportStatus.REVIEWING_CONFLICTS if self.conflicts.count_pending(package.id)
                          else ImportStatus.READY_TO_COMMIT)

        self._save(
            package, old_status, "package_duplicates_detected",
            f"Detected {len(created)} conflicts ({auto_resolved} auto-resolved)",
            context, {"conflicts_created": len(created), "auto_resolved": auto_resolved},
        )

        return DetectionResult(
            import_package_id=package.id,
            status=package.status.value,
            conflicts_created=len(created),
            auto_resolved_count=auto_resolved,
            person_duplicates=person_created,
            property_duplicates=len(created) - person_created,
            superseded_count=superseded,
            conflict_ids=[c.id for c in created],
        )

    # ==================== Conflict review ====================

    def _package_for_conflict(self, conflict_id: str) -> ImportPackage:
        conflict = self.conflicts.get_conflict(conflict_id)
        package = self.get_package(conflict.import_package_id)
        self._require_status(package, CONFLICT_REVIEW_ALLOWED, "review conflicts of")
        return package

    def get_conflict_queue(self, flt: Optional[ConflictQueueFilter] = None,
                           now: Optional[datetime] = None) -> PagedResult:
        return self.conflicts.get_queue(flt, now)

    def get_conflict_summary(self, import_package_id: Optional[str] = None) -> Dict[str, Any]:
        return self.conflicts.get_summary(import_package_id)

    def assign_conflict(self, conflict_id: str, user_id: str, context: RequestContext,
                        target_hours: Optional[int] = None) -> ConflictResolution:
        self._package_for_conflict(conflict_id)
        return self.conflicts.assign(conflict_id, user_id, context, target_hours)

    def record_review_attempt(self, conflict_id: str, context: RequestContext,
                              notes: Optional[str] = None) -> ConflictResolution:
        return self.conflicts.record_review_attempt(conflict_id, context, notes)

    def escalate_conflict(self, conflict_id: str, reason: str, context: RequestContext) -> ConflictResolution:
        self._package_for_conflict(conflict_id)
        return self.conflicts.escalate(conflict_id, reason, context)

    def ignore_conflict(self, conflict_id: str, reason: Optional[str],
                        context: RequestContext) -> ConflictResolution:
        self._package_for_conflict(conflict_id)
        return self.conflicts.ignore(conflict_id, reason, context)

    def resolve_conflict(self, conflict_id: str, action: ResolutionAction, context: RequestContext,
                         reason: Optional[str] = None, notes: Optional[str] = None,
                         merge_details: Optional[MergeDetails] = None) -> ConflictResolution:
        """
        Resolve a conflict and carry the decision onto the staged records.

        KeepFirst / KeepSecond / Merge skip the discarded staged record;
        Merge also applies the merge mapping to a surviving staged record.
        """
        package = self._package_for_conflict(conflict_id)
        conflict = self.conflicts.resolve(conflict_id, action, context, reason, notes, merge_details)
        self._apply_resolution(conflict, package)
        return conflict

    def _apply_resolution(self, conflict: ConflictResolution, package: ImportPackage) -> None:
        if conflict.resolution_action not in (ResolutionAction.KEEP_FIRST, ResolutionAction.KEEP_SECOND,
                                              ResolutionAction.MERGE):
            return

        survivor = conflict.side(conflict.merged_entity_id)
        discarded = conflict.side(conflict.discarded_entity_id)
        reason = f"Discarded by conflict {conflict.conflict_number} ({conflict.resolution_action.value})"

        if discarded.source == EntitySource.STAGING:
            record = self.staging_repo.get_by_id(discarded.entity_id)
            if record:
                record.mark_as_skipped(reason, merged_into_entity_id=survivor.entity_id)
                self.staging_repo.update(record)
                logger.info(f"Skipped staging record {record.id}: {reason}")

        if (conflict.resolution_action == ResolutionAction.MERGE
                and survivor.source == EntitySource.STAGING and conflict.merge_mapping):
            record = self.staging_repo.get_by_id(survivor.entity_id)
            if record:
                record.payload.update(conflict.merge_mapping)
                self.staging_repo.update(record)
                self._revalidate(package)
                logger.info(f"Applied merge {conflict.conflict_number} to staging record {record.id}")

    # ==================== Approval ====================

    def approve_for_commit(self, package_id: str, context: RequestContext,
                           approve_all_valid: bool = True,
                           record_ids: Optional[List[str]] = None) -> ApprovalResult:
        """
        Approve Valid / Warning records for commit.

        With explicit ``record_ids`` only those records are considered;
        Invalid, Skipped and unvalidated ones are reported as ineligible.
        """
        package = self.get_package(package_id)
        self._require_status(package, APPROVE_ALLOWED, "approve")
        pending = self.conflicts.count_pending(package.id)
        if pending:
            raise StateConflictException(
                f"Package {package.package_number} has {pending} conflicts pending review",
                current_status=package.status.value,
            )

        if record_ids:
            candidates = []
            for record_id in record_ids:
                record = self.staging_repo.get_by_id(record_id)
                if record is None or record.import_package_id != package.id:
                    raise NotFoundException("StagingRecord", record_id)
                candidates.append(record)
        elif approve_all_valid:
            candidates = [r for r in self.staging_repo.get_for_package(package.id)
                          if r.can_be_approved]
        else:
            raise ValidationException("No records selected for approval", field="record_ids")

        approved: List[StagingRecord] = []
        ineligible: List[Dict[str, str]] = []
        for record in candidates:
            try:
                record.approve_for_commit()
            except ValueError:
                ineligible.append({"id": record.id, "outcome": record.outcome.value})
                continue
            approved.append(record)
        self.staging_repo.update_many(approved)

        old_status = package.status
        package.status = ImportStatus.READY_TO_COMMIT
        self._save(
            package, old_status, "package_approved",
            f"Approved {len(approved)} records for commit", context,
            {"approved": len(approved), "ineligible": len(ineligible)},
        )
        logger.info(f"Approved {len(approved)} records of package {package.package_number}")
        return ApprovalResult(package=package, approved_count=len(approved), ineligible=ineligible)

    # ==================== Commit ====================

    def commit_package(self, package_id: str, context: RequestContext,
                       cleanup_staging: bool = False,
                       acknowledge_invalid: bool = False) -> CommitReport:
        package = self.get_package(package_id)
        return self.commit_engine.commit(package, context, cleanup_staging, acknowledge_invalid)

    def reset_commit(self, package_id: str, reason: str, context: RequestContext) -> ImportPackage:
        """
        Return a package whose commit failed or got stuck to ReadyToCommit.

        Only packages that reached approval qualify; a package that failed
        during upload or staging cannot be reset.
        """
        package = self.get_package(package_id)
        self._require_status(package, RESET_COMMIT_ALLOWED, "reset commit of")
        if not self.staging_repo.get_for_package(package.id, approved_only=True):
            raise StateConflictException(
                f"Package {package.package_number} did not fail during commit",
                current_status=package.status.value,
            )

        old_status = package.status
        package.status = ImportStatus.READY_TO_COMMIT
        package.error_message = None
        package.add_processing_note(f"[Commit reset]: {reason}")
        self._save(package, old_status, "package_commit_reset", f"Commit reset: {reason}", context)
        logger.info(f"Reset commit of package {package.package_number}: {reason}")
        return package

    def get_commit_report(self, package_id: str) -> CommitReport:
        package = self.get_package(package_id)
        committed_statuses = {ImportStatus.COMPLETED, ImportStatus.PARTIALLY_COMPLETED, ImportStatus.FAILED}
        self._require_status(package, committed_statuses, "report on")
        return self.commit_engine.build_report(package)

    # ==================== Cancel / quarantine ====================

    def cancel_package(self, package_id: str, reason: str, context: RequestContext,
                       cleanup_staging: bool = False) -> ImportPackage:
        """Cancel a package that has not finished; optionally purge its staging data."""
        package = self.get_package(package_id)
        if package.is_terminal or package.status == ImportStatus.COMMITTING:
            raise StateConflictException(
                f"Cannot cancel package {package.package_number} in status {package.status.value}",
                current_status=package.status.value,
            )

        old_status = package.status
        package.status = ImportStatus.CANCELLED
        package.add_processing_note(f"[Cancelled]: {reason}")
        if cleanup_staging:
            self.commit_engine.purge_staging(package)
        self._save(package, old_status, "package_cancelled", f"Cancelled: {reason}", context,
                   {"cleanup_staging": cleanup_staging})
        logger.info(f"Cancelled package {package.package_number}: {reason}")
        return package

    def quarantine_package(self, package_id: str, reason: str, context: RequestContext) -> ImportPackage:
        """Quarantine a package for forensic review; its staging data is kept."""
        package = self.get_package(package_id)
        self._require_status(package, QUARANTINE_ALLOWED, "quarantine")
        return self._quarantine(package, reason, context)

    def _quarantine(self, package: ImportPackage, reason: str, context: RequestContext) -> ImportPackage:
        old_status = package.status
        package.status = ImportStatus.QUARANTINED
        package.error_message = reason
        package.add_processing_note(f"[Quarantined]: {reason}")
        self._save(package, old_status, "package_quarantined", f"Quarantined: {reason}", context)
        logger.warning(f"Quarantined package {package.package_number}: {reason}")
        return package

    # ==================== Summaries / retention ====================

    def get_staging_summary(self, package_id: str) -> StagingSummary:
        package = self.get_package(package_id)
        breakdown = self.staging_repo.count_by_type_and_outcome(package.id)

        summary = StagingSummary(import_package_id=package.id, status=package.status.value,
                                 by_entity_type=breakdown)
        for outcomes in breakdown.values():
            for outcome, count in outcomes.items():
                summary.total_records += count
                if outcome == ValidationOutcome.PENDING.value:
                    summary.pending_count += count
                elif outcome == ValidationOutcome.VALID.value:
                    summary.valid_count += count
                elif outcome == ValidationOutcome.WARNING.value:
                    summary.warning_count += count
                elif outcome == ValidationOutcome.INVALID.value:
                    summary.invalid_count += count
                elif outcome == ValidationOutcome.SKIPPED.value:
                    summary.skipped_count += count
        return summary

    def purge_expired_staging(self, context: RequestContext, now: Optional[datetime] = None) -> int:
        """
        Delete staging data of finished packages older than the retention
        window. Quarantined packages are never purged.

        Returns:
            Number of packages purged
        """
        cutoff = (now or utc_now()) - timedelta(days=self.config.STAGING_RETENTION_DAYS)
        purged = 0
        for package in self.package_repo.list_for_retention(RETENTION_PURGE_STATUSES, cutoff):
            if not self.staging_repo.count_for_package(package.id):
                continue
            deleted = self.commit_engine.purge_staging(package)
            self.audit.log_action(
                "package_staging_purged",
                f"Purged {deleted} staging records after retention window",
                AUDIT_ENTITY_TYPE, package.id, None, {"deleted": deleted}, context
            )
            purged += 1
        logger.info(f"Retention purge removed staging data of {purged} packages")
        return purged
