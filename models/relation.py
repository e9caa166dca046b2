# -*- coding: utf-8 -*-
"""
Person-Unit Relation entity model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from utils.datetime_utils import utc_now
from utils.helpers import to_int


@dataclass
class PersonUnitRelation:
    """
    Links a Person to a PropertyUnit.
    Represents ownership, tenancy, inheritance, and other relationships.
    """

    relation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Foreign keys (production ids)
    person_id: str = ""
    unit_id: str = ""

    relation_type: Optional[int] = None
    ownership_share: Optional[float] = None  # Percent
    start_date: Optional[str] = None

    import_package_id: Optional[str] = None
    source_staging_id: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)
    created_by: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], person_id: str, unit_id: str,
                     **kwargs) -> "PersonUnitRelation":
        share = payload.get("ownership_share")
        return cls(
            person_id=person_id,
            unit_id=unit_id,
            relation_type=to_int(payload.get("relation_type")),
            ownership_share=float(share) if share not in (None, "") else None,
            start_date=payload.get("start_date"),
            **kwargs
        )
