# -*- coding: utf-8 -*-
"""
Claim entity model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from utils.datetime_utils import utc_now
from utils.helpers import to_int


@dataclass
class Claim:
    """
    Tenure rights claim against a property unit.
    """

    claim_uuid: str = field(default_factory=lambda: str(uuid.uuid4()))

    unit_id: str = ""  # Property unit being claimed
    claimant_person_id: Optional[str] = None

    claim_source: Optional[int] = None  # 1=FieldCollection, 2=OfficeSubmission, 3=SystemImport
    claim_type: str = "ownership"  # ownership, occupancy, tenancy
    case_status: str = "submitted"
    description: str = ""

    import_package_id: Optional[str] = None
    source_staging_id: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)
    created_by: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], unit_id: str,
                     claimant_person_id: Optional[str], **kwargs) -> "Claim":
        return cls(
            unit_id=unit_id,
            claimant_person_id=claimant_person_id,
            claim_source=to_int(payload.get("claim_source")),
            claim_type=payload.get("claim_type") or "ownership",
            description=payload.get("description") or "",
            **kwargs
        )
