# -*- coding: utf-8 -*-
"""
Audit sink for pipeline state transitions.
"""

import json
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models.context import RequestContext
from utils.datetime_utils import now_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)


class AuditSink(ABC):
    """Receives one entry per pipeline state transition."""

    @abstractmethod
    def log_action(self, action_type: str, description: str, entity_type: str,
                   entity_id: str, old_values: Optional[Dict[str, Any]],
                   new_values: Optional[Dict[str, Any]], context: RequestContext) -> None:
        """Record an action."""


class DatabaseAuditSink(AuditSink):
    """Writes audit entries to the audit_log table."""

    def __init__(self, db):
        self.db = db

    def log_action(self, action_type: str, description: str, entity_type: str,
                   entity_id: str, old_values: Optional[Dict[str, Any]],
                   new_values: Optional[Dict[str, Any]], context: RequestContext) -> None:
        self.db.execute("""
            INSERT INTO audit_log (
                id, action_type, description, entity_type, entity_id,
                old_values, new_values, user_id, user_name, correlation_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(uuid.uuid4()),
            action_type,
            description,
            entity_type,
            entity_id,
            json.dumps(old_values, ensure_ascii=False, default=str) if old_values is not None else None,
            json.dumps(new_values, ensure_ascii=False, default=str) if new_values is not None else None,
            context.user_id,
            context.user_name,
            context.correlation_id,
            now_isoformat(),
        ))
        logger.debug(f"Audit: {action_type} {entity_type}:{entity_id} by {context.user_id}")

    def get_trail(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """Audit entries for one entity, oldest first."""
        rows = self.db.fetch_all("""
            SELECT * FROM audit_log
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY created_at ASC
        """, (entity_type, entity_id))
        return [
            {
                "action_type": row["action_type"],
                "description": row["description"],
                "old_values": json.loads(row["old_values"]) if row["old_values"] else None,
                "new_values": json.loads(row["new_values"]) if row["new_values"] else None,
                "user_id": row["user_id"],
                "correlation_id": row["correlation_id"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]
