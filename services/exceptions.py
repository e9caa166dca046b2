# -*- coding: utf-8 -*-
"""Custom exceptions for the import pipeline."""

from typing import Iterable, Optional


class PipelineException(Exception):
    """Base exception for import pipeline errors."""

    def __init__(self, message: str, context: str = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            return f"[{self.context}] {self.message}"
        return self.message


class ValidationException(PipelineException):
    """Exception raised for rejected input (bad upload, bad arguments)."""

    def __init__(self, message: str, field: str = None,
                 errors: list = None, context: str = None):
        super().__init__(message, context)
        self.field = field
        self.errors = errors or []


class StateConflictException(PipelineException):
    """Operation invoked while a package or conflict is in the wrong state."""

    def __init__(self, message: str, current_status: str = None,
                 allowed_statuses: Optional[Iterable[str]] = None, context: str = None):
        super().__init__(message, context)
        self.current_status = current_status
        self.allowed_statuses = list(allowed_statuses or [])


class NotFoundException(PipelineException):
    """Unknown package, conflict or staging record."""

    def __init__(self, entity_type: str, entity_id: str, context: str = None):
        super().__init__(f"{entity_type} with ID '{entity_id}' was not found", context)
        self.entity_type = entity_type
        self.entity_id = entity_id


class ManifestException(PipelineException):
    """Package container or manifest cannot be read."""

    def __init__(self, message: str, file_path: str = None,
                 original_error: Exception = None, context: str = None):
        super().__init__(message, context)
        self.file_path = file_path
        self.original_error = original_error


class CommitIntegrityException(PipelineException):
    """Referential invariant violated during commit; the transaction rolls back."""

    def __init__(self, message: str, entity_type: str = None,
                 staging_record_id: str = None, missing_reference: str = None,
                 context: str = None):
        super().__init__(message, context)
        self.entity_type = entity_type
        self.staging_record_id = staging_record_id
        self.missing_reference = missing_reference


class OperationCancelledException(PipelineException):
    """Staging was cancelled by the caller's cancellation check."""

    def __init__(self, message: str, records_staged: int = 0, context: str = None):
        super().__init__(message, context)
        self.records_staged = records_staged


class NetworkException(PipelineException):
    """Exception raised for network/connection errors."""

    def __init__(self, message: str, original_error: Exception = None,
                 context: str = None):
        super().__init__(message, context)
        self.original_error = original_error
