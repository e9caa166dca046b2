# -*- coding: utf-8 -*-
"""
Utility helper functions.
"""

import re
from typing import Any, Optional

_NON_DIGITS = re.compile(r"\D")

MALE_VALUES = {"M", "MALE", "ذكر"}
FEMALE_VALUES = {"F", "FEMALE", "أنثى", "انثى"}


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename by removing invalid characters.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    invalid_chars = '<>:"/\\|?*'
    for char in invalid_chars:
        filename = filename.replace(char, "_")
    return filename


def normalize_building_code(building_code: Optional[str]) -> str:
    """
    Strip separators from a building code.

    "01-01-01-001-001-00001" and "01010100100100001" both normalize to the
    17-digit form.
    """
    if not building_code:
        return ""
    return _NON_DIGITS.sub("", str(building_code))


def normalize_unit_identifier(unit_identifier: Optional[str]) -> str:
    """Case-fold a unit identifier and strip whitespace and leading zeros."""
    if unit_identifier is None:
        return ""
    text = "".join(str(unit_identifier).split()).upper()
    stripped = text.lstrip("0")
    return stripped or ("0" if text else "")


def normalize_phone(phone: Optional[str]) -> str:
    """
    Normalize a Syrian phone number for comparison.

    Keeps digits only, then drops the 963 country code and the trunk 0
    when the remaining number is longer than 9 digits.
    """
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", str(phone))
    if digits.startswith("00"):
        digits = digits[2:]
    if len(digits) > 9 and digits.startswith("963"):
        digits = digits[3:]
    if len(digits) > 9 and digits.startswith("0"):
        digits = digits[1:]
    return digits


def normalize_gender(value: Any) -> Optional[str]:
    """Map gender spellings (English or Arabic) to "M" / "F"."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if text in MALE_VALUES:
        return "M"
    if text in FEMALE_VALUES:
        return "F"
    return None


def to_int(value: Any) -> Optional[int]:
    """Best-effort integer conversion for values read from packages."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# Arabic letter variants folded before comparison
ARABIC_NORMALIZATIONS = {
    'أ': 'ا', 'إ': 'ا', 'آ': 'ا',  # Alef variants
    'ة': 'ه',  # Taa marbuta
    'ى': 'ي',  # Alef maksura
    'ؤ': 'و',  # Waw with hamza
    'ئ': 'ي',  # Yaa with hamza
}

_ARABIC_DIACRITICS = re.compile(r'[\u064B-\u065F\u0670\u0640]')


def normalize_arabic(text: Optional[str]) -> str:
    """
    Normalize Arabic text for comparison.

    Removes diacritics (harakat) and tatweel, folds letter variants and
    collapses whitespace. Latin text is lower-cased.
    """
    if not text:
        return ""

    text = _ARABIC_DIACRITICS.sub('', str(text))

    for orig, repl in ARABIC_NORMALIZATIONS.items():
        text = text.replace(orig, repl)

    return ' '.join(text.split()).lower()
