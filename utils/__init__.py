# -*- coding: utf-8 -*-
"""
TRRCMS Utility Module
"""

from .logger import get_logger, setup_logger
from .datetime_utils import utc_now, to_isoformat, from_isoformat, now_isoformat
from .helpers import normalize_phone, normalize_gender, normalize_building_code, normalize_arabic

__all__ = [
    "get_logger",
    "setup_logger",
    "utc_now",
    "to_isoformat",
    "from_isoformat",
    "now_isoformat",
    "normalize_phone",
    "normalize_gender",
    "normalize_building_code",
    "normalize_arabic",
]
