# -*- coding: utf-8 -*-
"""
Request context passed explicitly into every pipeline operation.
"""

from dataclasses import dataclass, field
from typing import Optional
import uuid


@dataclass(frozen=True)
class RequestContext:
    """Who is performing an operation; recorded on every audit entry."""
    user_id: str
    user_name: Optional[str] = None
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def system(cls) -> "RequestContext":
        return cls(user_id="system", user_name="System")
