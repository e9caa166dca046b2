# -*- coding: utf-8 -*-
"""
Property Unit entity model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from utils.datetime_utils import utc_now
from utils.helpers import normalize_building_code, to_int


@dataclass
class PropertyUnit:
    """
    Property Unit entity representing a unit within a building.

    The composite key is the 17-digit building code plus the unit identifier.
    """

    unit_uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    building_code: str = ""  # 17 digits, separators stripped
    unit_identifier: str = ""

    unit_type: Optional[int] = None
    unit_status: Optional[int] = None
    floor_number: Optional[int] = None
    area_sqm: Optional[float] = None
    description: str = ""

    import_package_id: Optional[str] = None
    source_staging_id: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    created_by: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], **kwargs) -> "PropertyUnit":
        area = payload.get("area_sqm")
        return cls(
            building_code=normalize_building_code(payload.get("building_code")),
            unit_identifier=str(payload.get("unit_identifier") or "").strip(),
            unit_type=to_int(payload.get("unit_type")),
            unit_status=to_int(payload.get("unit_status")),
            floor_number=to_int(payload.get("floor_number")),
            area_sqm=float(area) if area not in (None, "") else None,
            description=payload.get("description") or "",
            **kwargs
        )

    @property
    def composite_key(self) -> str:
        return f"{self.building_code}/{self.unit_identifier}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_uuid": self.unit_uuid,
            "building_code": self.building_code,
            "unit_identifier": self.unit_identifier,
            "unit_type": self.unit_type,
            "unit_status": self.unit_status,
            "floor_number": self.floor_number,
            "area_sqm": self.area_sqm,
            "description": self.description,
        }
