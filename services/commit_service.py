# -*- coding: utf-8 -*-
"""
Commit Service
==============
Moves approved staging records of one package into production tables.

The whole commit runs in one database transaction. Each record runs in its
own savepoint so an individual failure is recorded and skipped, while a
reference to a parent that was never committed aborts the transaction and
fails the package.
"""

import os
import shutil
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from models.claim import Claim
from models.commit_report import CommitReport, CommitError
from models.conflict import ConflictStatus, EntitySource, ResolutionAction
from models.context import RequestContext
from models.evidence import Evidence
from models.import_package import ImportPackage, ImportStatus, COMMIT_ALLOWED
from models.person import Person
from models.relation import PersonUnitRelation
from models.staging_record import StagingRecord, EntityType, ValidationOutcome, COMMIT_ORDER
from models.unit import PropertyUnit
from services.exceptions import CommitIntegrityException, StateConflictException
from utils.datetime_utils import utc_now
from utils.helpers import to_int
from utils.logger import get_logger

logger = get_logger(__name__)

AUDIT_ENTITY_TYPE = "ImportPackage"


@dataclass
class _CommitState:
    """Working state of one commit run."""
    # (entity_type, original_entity_id) -> production id
    by_original: Dict[Tuple[EntityType, str], str] = field(default_factory=dict)
    # staging record id -> production id
    by_staging: Dict[str, str] = field(default_factory=dict)
    # (entity_type, original_entity_id) -> staging record
    staged: Dict[Tuple[EntityType, str], StagingRecord] = field(default_factory=dict)
    # staging record id -> staging record
    by_id: Dict[str, StagingRecord] = field(default_factory=dict)
    duplicate_attachments: int = 0
    bytes_saved: int = 0
    merges_performed: int = 0

    def remember(self, record: StagingRecord, production_id: str) -> None:
        self.by_original[(record.entity_type, str(record.original_entity_id))] = production_id
        self.by_staging[record.id] = production_id


class CommitEngine:
    """
    Commits approved staging records in dependency order.

    Production ids are fresh UUIDs written back to each staging record as
    committed_entity_id, which is also what makes a record never commit twice.
    """

    def __init__(self, db, package_repo, staging_repo, conflict_repo,
                 person_repo, unit_repo, relation_repo, claim_repo, evidence_repo,
                 attachment_store, audit, config=None):
        if config is None:
            from app.config import Config
            config = Config
        self.db = db
        self.package_repo = package_repo
        self.staging_repo = staging_repo
        self.conflict_repo = conflict_repo
        self.person_repo = person_repo
        self.unit_repo = unit_repo
        self.relation_repo = relation_repo
        self.claim_repo = claim_repo
        self.evidence_repo = evidence_repo
        self.attachment_store = attachment_store
        self.audit = audit
        self.config = config

        self._production_exists = {
            EntityType.PERSON: person_repo.exists,
            EntityType.PROPERTY_UNIT: unit_repo.exists,
            EntityType.CLAIM: claim_repo.exists,
        }

    # ==================== Pre-conditions ====================

    def check_preconditions(self, package: ImportPackage, acknowledge_invalid: bool = False) -> None:
        """Raise StateConflictException unless the package may be committed."""
        if package.status not in COMMIT_ALLOWED:
            raise StateConflictException(
                f"Package {package.package_number} cannot be committed in status {package.status.value}",
                current_status=package.status.value,
                allowed_statuses=[s.value for s in COMMIT_ALLOWED],
            )

        pending = self.conflict_repo.count_pending(package.id)
        if pending:
            raise StateConflictException(
                f"Package {package.package_number} has {pending} conflicts pending review",
                current_status=package.status.value,
            )

        if not self.staging_repo.get_for_package(package.id, approved_only=True):
            raise StateConflictException(
                f"Package {package.package_number} has no records approved for commit",
                current_status=package.status.value,
            )

        if self.config.INVALID_RECORD_POLICY == "block" and not acknowledge_invalid:
            invalid = self.staging_repo.get_for_package(package.id, outcome=ValidationOutcome.INVALID)
            if invalid:
                raise StateConflictException(
                    f"Package {package.package_number} has {len(invalid)} invalid records; "
                    f"commit requires acknowledgement",
                    current_status=package.status.value,
                )

    # ==================== Commit ====================

    def commit(self, package: ImportPackage, context: RequestContext,
               cleanup_staging: bool = False, acknowledge_invalid: bool = False) -> CommitReport:
        """
        Commit the approved records of a ReadyToCommit package.

        Raises:
            StateConflictException: pre-conditions fail or another commit
                already moved the package to Committing
            CommitIntegrityException: a referenced parent was never committed;
                nothing is committed and the package is Failed
        """
        self.check_preconditions(package, acknowledge_invalid)

        if not self.package_repo.transition_status(package.id, COMMIT_ALLOWED, ImportStatus.COMMITTING):
            current = self.package_repo.get_by_id(package.id)
            raise StateConflictException(
                f"Package {package.package_number} is already being committed",
                current_status=current.status.value if current else None,
                allowed_statuses=[s.value for s in COMMIT_ALLOWED],
            )
        package.status = ImportStatus.COMMITTING
        logger.info(f"Committing package {package.package_number} by {context.user_id}")

        started = time.monotonic()
        records = self.staging_repo.get_for_package(package.id)
        state = _CommitState()
        for record in records:
            state.staged[(record.entity_type, str(record.original_entity_id))] = record
            state.by_id[record.id] = record
            if record.committed_entity_id:
                state.remember(record, record.committed_entity_id)

        try:
            with self.db.transaction():
                self._apply_production_merges(package, state)
                self._commit_records(package, records, state, context)
        except CommitIntegrityException as e:
            self._fail(package, str(e), context)
            raise

        report = self.build_report(package)
        report.duration_seconds = round(time.monotonic() - started, 3)
        report.duplicate_attachments_found = state.duplicate_attachments
        report.deduplication_bytes_saved = state.bytes_saved
        report.merges_performed = state.merges_performed

        committed = report.total_records_committed
        if committed == 0:
            package.status = ImportStatus.FAILED
            package.error_message = "No records were committed"
        elif committed == len(records):
            package.status = ImportStatus.COMPLETED
        else:
            package.status = ImportStatus.PARTIALLY_COMPLETED

        package.committed_count = committed
        package.failed_count = report.total_records_failed
        package.commit_skipped_count = report.total_records_skipped
        package.duplicate_attachments_found = state.duplicate_attachments
        package.deduplication_bytes_saved = state.bytes_saved
        package.merges_performed = state.merges_performed
        package.committed_at = utc_now()
        package.committed_by = context.user_id

        if committed:
            self._archive(package)

        report.status = package.status.value
        report.committed_at = package.committed_at
        report.committed_by = package.committed_by
        report.is_archived = package.is_archived
        report.archive_path = package.archive_path

        self.package_repo.update(package)

        if cleanup_staging and report.is_fully_successful:
            self.purge_staging(package)

        self.audit.log_action(
            "package_committed",
            f"Committed package {package.package_number}: {package.status.value}",
            AUDIT_ENTITY_TYPE, package.id,
            {"status": ImportStatus.READY_TO_COMMIT.value},
            {
                "status": package.status.value,
                "committed": committed,
                "failed": report.total_records_failed,
                "skipped": report.total_records_skipped,
            },
            context,
        )
        for line in report.summary_lines():
            logger.info(line)
        return report

    def _commit_records(self, package: ImportPackage, records: List[StagingRecord],
                        state: _CommitState, context: RequestContext) -> None:
        approved = [r for r in records if r.is_approved_for_commit and r.can_be_approved]
        by_type: Dict[EntityType, List[StagingRecord]] = {t: [] for t in COMMIT_ORDER}
        for record in approved:
            by_type[record.entity_type].append(record)

        savepoint_number = 0
        for entity_type in COMMIT_ORDER:
            for record in by_type[entity_type]:
                if record.committed_entity_id:
                    continue
                savepoint_number += 1
                try:
                    with self.db.savepoint(f"commit_record_{savepoint_number}"):
                        production_id = self._commit_record(package, record, state, context)
                        self.staging_repo.set_committed(record.id, production_id)
                except CommitIntegrityException:
                    raise
                except (ValueError, TypeError, self.db.driver_error) as e:
                    logger.warning(
                        f"Failed to commit {record.entity_type.value} {record.original_entity_id}: {e}"
                    )
                    record.commit_error = str(e)
                    self.staging_repo.set_commit_error(record.id, str(e))
                    continue

                record.committed_entity_id = production_id
                record.commit_error = None
                state.remember(record, production_id)

    def _commit_record(self, package: ImportPackage, record: StagingRecord,
                       state: _CommitState, context: RequestContext) -> str:
        payload = record.payload
        provenance = {
            "import_package_id": package.id,
            "source_staging_id": record.id,
            "created_by": context.user_id,
        }

        if record.entity_type == EntityType.PERSON:
            person = self.person_repo.create(Person.from_payload(payload, **provenance))
            return person.person_id

        if record.entity_type == EntityType.PROPERTY_UNIT:
            unit = self.unit_repo.create(PropertyUnit.from_payload(payload, **provenance))
            return unit.unit_uuid

        if record.entity_type == EntityType.RELATION:
            relation = PersonUnitRelation.from_payload(
                payload,
                person_id=self._resolve(record, "person_id", EntityType.PERSON, state),
                unit_id=self._resolve(record, "property_unit_id", EntityType.PROPERTY_UNIT, state),
                **provenance
            )
            return self.relation_repo.create(relation).relation_id

        if record.entity_type == EntityType.CLAIM:
            claim = Claim.from_payload(
                payload,
                unit_id=self._resolve(record, "property_unit_id", EntityType.PROPERTY_UNIT, state),
                claimant_person_id=self._resolve(record, "claimant_person_id", EntityType.PERSON,
                                                 state, required=False),
                **provenance
            )
            return self.claim_repo.create(claim).claim_uuid

        evidence = Evidence.from_payload(
            payload,
            person_id=self._resolve(record, "person_id", EntityType.PERSON, state, required=False),
            claim_id=self._resolve(record, "claim_id", EntityType.CLAIM, state, required=False),
            **provenance
        )
        if evidence.attachment_hash:
            evidence.file_size_bytes = self._store_attachment(package, evidence.attachment_hash,
                                                              payload, state)
        return self.evidence_repo.create(evidence).evidence_id

    # ==================== References ====================

    def _resolve(self, record: StagingRecord, field_name: str, target: EntityType,
                 state: _CommitState, required: bool = True) -> Optional[str]:
        """
        Production id for a reference held in ``record.payload[field_name]``.

        Looks in this package's committed records, then follows the
        merged_into link of a skipped record, then accepts an existing
        production id.
        """
        value = record.payload.get(field_name)
        if value is None or str(value).strip() == "":
            if required:
                raise CommitIntegrityException(
                    f"{record.entity_type.value} {record.original_entity_id} has no {field_name}",
                    entity_type=record.entity_type.value,
                    staging_record_id=record.id,
                    missing_reference=field_name,
                )
            return None

        key = (target, str(value))
        if key in state.by_original:
            return state.by_original[key]

        staged = state.staged.get(key)
        if staged is not None and staged.merged_into_entity_id:
            survivor = self._follow_merges(staged, target, state)
            if survivor is not None:
                return survivor

        if staged is None and self._production_exists[target](str(value)):
            return str(value)

        raise CommitIntegrityException(
            f"{record.entity_type.value} {record.original_entity_id} references "
            f"{target.value} '{value}' which was never committed",
            entity_type=record.entity_type.value,
            staging_record_id=record.id,
            missing_reference=str(value),
        )

    def _follow_merges(self, staged: StagingRecord, target: EntityType,
                       state: _CommitState) -> Optional[str]:
        """
        Production id at the end of a merged_into chain.

        A survivor can itself have been discarded by a later conflict, so
        the chain is walked until a committed record or a production id.
        """
        visited = {staged.id}
        survivor = staged.merged_into_entity_id
        while survivor and survivor not in visited:
            if survivor in state.by_staging:
                return state.by_staging[survivor]
            record = state.by_id.get(survivor)
            if record is None:
                return survivor if self._production_exists[target](survivor) else None
            visited.add(survivor)
            survivor = record.merged_into_entity_id
        if survivor:
            logger.warning(f"Merge chain of staging record {staged.id} loops back to {survivor}")
        return None

    # ==================== Merges ====================

    def _apply_production_merges(self, package: ImportPackage, state: _CommitState) -> None:
        """Apply Merge resolutions: mappings onto surviving production entities."""
        conflicts = self.conflict_repo.list_for_package(package.id, ConflictStatus.RESOLVED)
        for conflict in conflicts:
            if conflict.resolution_action != ResolutionAction.MERGE:
                continue
            state.merges_performed += 1

            survivor = conflict.side(conflict.merged_entity_id)
            if survivor.source != EntitySource.PRODUCTION or not conflict.merge_mapping:
                continue

            if conflict.entity_type == EntityType.PERSON.value:
                updated = self.person_repo.update_fields(survivor.entity_id, conflict.merge_mapping)
            else:
                updated = self.unit_repo.update_fields(survivor.entity_id, conflict.merge_mapping)
            logger.info(
                f"Applied merge {conflict.conflict_number} to production "
                f"{conflict.entity_type} {survivor.entity_id} ({updated} row)"
            )

    # ==================== Attachments ====================

    def staging_attachment_path(self, package: ImportPackage, content_hash: str) -> Path:
        return Path(self.config.STAGING_ATTACHMENTS_PATH) / package.id / content_hash.lower()

    def _store_attachment(self, package: ImportPackage, content_hash: str,
                          payload: Dict[str, Any], state: _CommitState) -> Optional[int]:
        """Copy a staged attachment to the permanent store, reusing identical content."""
        staged_path = self.staging_attachment_path(package, content_hash)
        size = to_int(payload.get("file_size_bytes"))
        if size is None and staged_path.exists():
            size = staged_path.stat().st_size

        if self.attachment_store.exists(content_hash):
            state.duplicate_attachments += 1
            state.bytes_saved += size or 0
            logger.debug(f"Attachment {content_hash} already stored, reusing")
            return size

        if not staged_path.exists():
            raise ValueError(f"Staged attachment {content_hash} is missing")

        data = staged_path.read_bytes()
        stored_hash = self.attachment_store.store(data)
        if stored_hash != content_hash.lower():
            raise ValueError(f"Attachment content does not match hash {content_hash}")
        return len(data)

    # ==================== Completion ====================

    def _fail(self, package: ImportPackage, message: str, context: RequestContext) -> None:
        logger.error(f"Commit of package {package.package_number} failed: {message}")
        package.status = ImportStatus.FAILED
        package.error_message = message
        package.add_processing_note(f"[Commit failed]: {message}")
        self.package_repo.update(package)
        self.audit.log_action(
            "package_commit_failed", f"Commit failed: {message}",
            AUDIT_ENTITY_TYPE, package.id,
            {"status": ImportStatus.COMMITTING.value},
            {"status": ImportStatus.FAILED.value},
            context,
        )

    def _archive(self, package: ImportPackage) -> None:
        """Move the package file to ARCHIVE_BASE_PATH/YYYY/MM and make it read-only."""
        if not package.file_path or not os.path.exists(package.file_path):
            logger.warning(f"Package file for {package.package_number} not found, skipping archive")
            return

        now = utc_now()
        target_dir = Path(self.config.ARCHIVE_BASE_PATH) / f"{now.year:04d}" / f"{now.month:02d}"
        target = target_dir / f"{package.package_id or package.id}.uhc"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(package.file_path, str(target))
            os.chmod(target, stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
        except OSError as e:
            logger.warning(f"Could not archive package {package.package_number}: {e}")
            package.add_processing_note(f"[Archive failed]: {e}")
            return

        package.file_path = str(target)
        package.archive_path = str(target)
        package.is_archived = True
        logger.info(f"Archived package {package.package_number} to {target}")

    def purge_staging(self, package: ImportPackage) -> int:
        """Delete staging rows and staged attachment files of a package."""
        deleted = self.staging_repo.delete_for_package(package.id)
        attachments_dir = Path(self.config.STAGING_ATTACHMENTS_PATH) / package.id
        if attachments_dir.exists():
            try:
                shutil.rmtree(attachments_dir)
            except OSError as e:
                logger.warning(f"Could not remove staged attachments {attachments_dir}: {e}")
        logger.info(f"Purged {deleted} staging records of package {package.package_number}")
        return deleted

    # ==================== Report ====================

    def build_report(self, package: ImportPackage) -> CommitReport:
        """
        Derive the commit report from staging records, or from package
        counters once staging rows have been purged.
        """
        report = CommitReport(
            import_package_id=package.id,
            package_number=package.package_number,
            status=package.status.value,
            committed_by=package.committed_by,
            committed_at=package.committed_at,
            duplicate_attachments_found=package.duplicate_attachments_found,
            deduplication_bytes_saved=package.deduplication_bytes_saved,
            merges_performed=package.merges_performed,
            is_archived=package.is_archived,
            archive_path=package.archive_path,
        )

        records = self.staging_repo.get_for_package(package.id)
        if not records:
            if package.committed_count or package.failed_count:
                report.totals_override = {
                    "approved": package.committed_count + package.failed_count,
                    "committed": package.committed_count,
                    "failed": package.failed_count,
                    "skipped": package.commit_skipped_count,
                }
            return report

        for record in records:
            summary = report.summary_for(record.entity_type.value)
            if record.is_approved_for_commit or record.committed_entity_id:
                summary.approved += 1
            if record.committed_entity_id:
                summary.committed += 1
                summary.id_mappings[record.id] = record.committed_entity_id
            elif record.commit_error:
                summary.failed += 1
                report.errors.append(CommitError(
                    entity_type=record.entity_type.value,
                    staging_record_id=record.id,
                    original_entity_id=record.original_entity_id,
                    error_message=record.commit_error,
                ))
            else:
                summary.skipped += 1

        return report
