# -*- coding: utf-8 -*-
"""
Person entity model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from utils.datetime_utils import utc_now
from utils.helpers import normalize_gender, normalize_phone, to_int


@dataclass
class Person:
    """
    Production person record.
    Supports Arabic names and Syrian national ID format.
    """

    # Primary identifier
    person_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Personal details
    first_name: str = ""
    father_name: str = ""
    mother_name: str = ""
    family_name: str = ""

    # Demographics
    gender: Optional[str] = None  # M, F
    year_of_birth: Optional[int] = None

    # Identification
    national_id: Optional[str] = None  # Syrian National ID (11 digits)

    # Contact
    phone_number: Optional[str] = None
    mobile_number: Optional[str] = None

    # Import provenance
    import_package_id: Optional[str] = None
    source_staging_id: Optional[str] = None

    # Metadata
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    created_by: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], **kwargs) -> "Person":
        """Build a person from a staged package payload."""
        return cls(
            first_name=payload.get("first_name") or "",
            father_name=payload.get("father_name") or "",
            mother_name=payload.get("mother_name") or "",
            family_name=payload.get("family_name") or "",
            gender=normalize_gender(payload.get("gender")),
            year_of_birth=to_int(payload.get("year_of_birth")),
            national_id=payload.get("national_id") or None,
            phone_number=payload.get("phone_number") or None,
            mobile_number=payload.get("mobile_number") or None,
            **kwargs
        )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.father_name, self.family_name]
        return " ".join(p for p in parts if p)

    @property
    def primary_phone(self) -> str:
        return normalize_phone(self.mobile_number or self.phone_number)

    @property
    def display_name(self) -> str:
        return f"{self.full_name} (NID: {self.national_id or '-'})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "person_id": self.person_id,
            "first_name": self.first_name,
            "father_name": self.father_name,
            "mother_name": self.mother_name,
            "family_name": self.family_name,
            "gender": self.gender,
            "year_of_birth": self.year_of_birth,
            "national_id": self.national_id,
            "phone_number": self.phone_number,
            "mobile_number": self.mobile_number,
        }
