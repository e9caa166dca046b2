# -*- coding: utf-8 -*-
"""
Evidence entity model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from utils.datetime_utils import utc_now
from utils.helpers import to_int


@dataclass
class Evidence:
    """
    Evidence supporting a person, relation or claim.

    The attachment itself lives in the content-addressable store; this row
    only references it by hash.
    """

    evidence_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    person_id: Optional[str] = None
    claim_id: Optional[str] = None

    evidence_type: Optional[int] = None
    description: str = ""

    # Attachment reference
    attachment_hash: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size_bytes: Optional[int] = None

    import_package_id: Optional[str] = None
    source_staging_id: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)
    created_by: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], person_id: Optional[str],
                     claim_id: Optional[str], **kwargs) -> "Evidence":
        return cls(
            person_id=person_id,
            claim_id=claim_id,
            evidence_type=to_int(payload.get("evidence_type")),
            description=payload.get("description") or "",
            attachment_hash=(payload.get("attachment_hash") or "").lower() or None,
            file_name=payload.get("file_name"),
            mime_type=payload.get("mime_type"),
            **kwargs
        )
