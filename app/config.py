# -*- coding: utf-8 -*-


from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Tuple
import json
import os

from dotenv import load_dotenv

# ============================================================================
# Load .env file for local environment configuration
# ============================================================================
load_dotenv()  # Load from .env file in project root


def _env_tuple(name: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


# ============================================================================
# Read settings from environment variables (from .env or system)
# ============================================================================
# Database
_DB_TYPE = os.getenv("TRRCMS_DB_TYPE", "sqlite").lower()
_SQLITE_PATH = os.getenv("TRRCMS_SQLITE_PATH", None)

# Vocabulary API (remote reference-code validator)
_VOCABULARY_API_URL = os.getenv("VOCABULARY_API_URL", "http://localhost:8080/api/v1")
_API_TIMEOUT = int(os.getenv("API_TIMEOUT", "30"))

# Upload / storage
_MAX_UPLOAD_SIZE_MB = int(os.getenv("IMPORT_MAX_UPLOAD_SIZE_MB", "500"))
_STAGING_RETENTION_DAYS = int(os.getenv("IMPORT_STAGING_RETENTION_DAYS", "90"))

# Duplicate matching
_PERSON_HIGH_CONFIDENCE = float(os.getenv("IMPORT_PERSON_HIGH_CONFIDENCE", "0.90"))
_PERSON_MEDIUM_CONFIDENCE = float(os.getenv("IMPORT_PERSON_MEDIUM_CONFIDENCE", "0.70"))
_PERSON_MATCH_FLOOR = float(os.getenv("IMPORT_PERSON_MATCH_FLOOR", "0.50"))
_PROPERTY_FUZZY_MIN_SIMILARITY = float(os.getenv("IMPORT_PROPERTY_FUZZY_MIN_SIMILARITY", "0.60"))
_MATCHING_MAX_WORKERS = int(os.getenv("IMPORT_MATCHING_MAX_WORKERS", "4"))

# Auto-resolution (empty allow-list disables it)
_AUTO_RESOLVE_MIN_SCORE = float(os.getenv("IMPORT_AUTO_RESOLVE_MIN_SCORE", "1.0"))
_AUTO_RESOLVE_CONFLICT_TYPES = _env_tuple("IMPORT_AUTO_RESOLVE_CONFLICT_TYPES", "")
_AUTO_RESOLVE_ACTION = os.getenv("IMPORT_AUTO_RESOLVE_ACTION", "KeepFirst")

# Conflict SLA
_DEFAULT_CONFLICT_TARGET_HOURS = int(os.getenv("IMPORT_CONFLICT_TARGET_HOURS", "72"))

# "skip" | "block"
_INVALID_RECORD_POLICY = os.getenv("IMPORT_INVALID_RECORD_POLICY", "skip").lower()

_SERVER_VOCABULARY_VERSIONS = json.loads(os.getenv(
    "IMPORT_SERVER_VOCABULARY_VERSIONS",
    json.dumps({
        "gender": "1.0.0",
        "property_unit_type": "1.0.0",
        "property_unit_status": "1.0.0",
        "relation_type": "1.0.0",
        "claim_source": "1.0.0",
        "evidence_type": "1.0.0",
    })
))


@dataclass
class Config:
    """Application configuration."""

    # Application Info
    APP_NAME: str = "TRRCMS Import Pipeline"
    VERSION: str = "1.0.0"
    ORGANIZATION: str = "UN-Habitat"

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    DATA_DIR: Path = PROJECT_ROOT / "data"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"

    # Database Configuration
    # SQLite (development/fallback)
    DB_NAME: str = "trrcms.db"
    DB_PATH: Path = Path(_SQLITE_PATH) if _SQLITE_PATH else DATA_DIR / DB_NAME

    # PostgreSQL (production)
    # Set TRRCMS_DB_TYPE=postgresql to use PostgreSQL
    DB_TYPE: str = _DB_TYPE  # "sqlite" or "postgresql"

    # Logging
    LOG_FILE: str = "import_pipeline.log"
    LOG_PATH: Path = LOGS_DIR / LOG_FILE
    LOG_MAX_BYTES: int = 5 * 1024 * 1024  # 5MB
    LOG_BACKUP_COUNT: int = 3

    # Vocabulary service
    VOCABULARY_API_URL: str = _VOCABULARY_API_URL
    API_TIMEOUT: int = _API_TIMEOUT

    # Package upload and storage
    MAX_UPLOAD_SIZE_MB: int = _MAX_UPLOAD_SIZE_MB
    ALLOWED_EXTENSIONS: Tuple[str, ...] = (".uhc",)
    PACKAGE_STORAGE_PATH: Path = DATA_DIR / "packages"
    STAGING_ATTACHMENTS_PATH: Path = DATA_DIR / "staging_attachments"
    ATTACHMENT_STORE_PATH: Path = DATA_DIR / "attachments"
    ARCHIVE_BASE_PATH: Path = DATA_DIR / "archives"
    STAGING_RETENTION_DAYS: int = _STAGING_RETENTION_DAYS
    SUPPORTED_SCHEMA_VERSIONS: Tuple[str, ...] = ("1.0.0", "2.0.0")
    SERVER_VOCABULARY_VERSIONS: Dict[str, str] = None

    # Duplicate matching
    PERSON_HIGH_CONFIDENCE: float = _PERSON_HIGH_CONFIDENCE
    PERSON_MEDIUM_CONFIDENCE: float = _PERSON_MEDIUM_CONFIDENCE
    PERSON_MATCH_FLOOR: float = _PERSON_MATCH_FLOOR
    PROPERTY_FUZZY_MIN_SIMILARITY: float = _PROPERTY_FUZZY_MIN_SIMILARITY
    MATCHING_MAX_WORKERS: int = _MATCHING_MAX_WORKERS

    # Auto-resolution
    AUTO_RESOLVE_MIN_SCORE: float = _AUTO_RESOLVE_MIN_SCORE
    AUTO_RESOLVE_CONFLICT_TYPES: Tuple[str, ...] = _AUTO_RESOLVE_CONFLICT_TYPES
    AUTO_RESOLVE_ACTION: str = _AUTO_RESOLVE_ACTION

    # Conflict review
    DEFAULT_CONFLICT_TARGET_HOURS: int = _DEFAULT_CONFLICT_TARGET_HOURS

    # Commit
    INVALID_RECORD_POLICY: str = _INVALID_RECORD_POLICY

    # Pagination
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 500

    # Date/Time Formats
    DATE_FORMAT: str = "%Y-%m-%d"
    DATETIME_FORMAT: str = "%Y-%m-%d %H:%M:%S"


# Mutable default kept off the dataclass field list
Config.SERVER_VOCABULARY_VERSIONS = dict(_SERVER_VOCABULARY_VERSIONS)


# Controlled vocabularies used when no remote vocabulary service is configured
class Vocabularies:
    # Value (code), Name (English), Name (Arabic)
    GENDERS = [
        ("M", "Male", "ذكر"),
        ("F", "Female", "أنثى"),
    ]

    # API: 1=Apartment, 2=Shop, 3=Office, 4=Warehouse, 5=Other
    UNIT_TYPES = [
        (1, "Apartment", "شقة سكنية"),
        (2, "Shop", "محل تجاري"),
        (3, "Office", "مكتب"),
        (4, "Warehouse", "مستودع"),
        (5, "Other", "أخرى"),
    ]

    # API: 1=Occupied, 2=Vacant, 3=Damaged, 4=UnderRenovation, 5=Uninhabitable, 6=Locked, 99=Unknown
    UNIT_STATUS = [
        (1, "Occupied", "مشغول"),
        (2, "Vacant", "شاغر"),
        (3, "Damaged", "متضرر"),
        (4, "UnderRenovation", "قيد الترميم"),
        (5, "Uninhabitable", "غير صالح للسكن"),
        (6, "Locked", "مغلق"),
        (99, "Unknown", "غير معروف"),
    ]

    RELATION_TYPES = [
        (1, "Owner", "مالك"),
        (2, "Occupant", "شاغل"),
        (3, "Tenant", "مستأجر"),
        (4, "Guest", "ضيف"),
        (5, "Heir", "وارث"),
        (99, "Other", "أخرى"),
    ]

    CLAIM_SOURCES = [
        (1, "FieldCollection", "مسح ميداني"),
        (2, "OfficeSubmission", "تقديم مكتبي"),
        (3, "SystemImport", "استيراد"),
    ]

    EVIDENCE_TYPES = [
        (1, "IdentificationDocument", "وثيقة هوية"),
        (2, "OwnershipDeed", "سند ملكية"),
        (3, "RentalContract", "عقد إيجار"),
        (4, "UtilityBill", "فاتورة خدمات"),
        (5, "Photo", "صورة"),
        (99, "Other", "أخرى"),
    ]

    @classmethod
    def as_code_tables(cls) -> Dict[str, set]:
        """Code tables keyed by vocabulary domain."""
        return {
            "gender": {code for code, _, _ in cls.GENDERS},
            "property_unit_type": {code for code, _, _ in cls.UNIT_TYPES},
            "property_unit_status": {code for code, _, _ in cls.UNIT_STATUS},
            "relation_type": {code for code, _, _ in cls.RELATION_TYPES},
            "claim_source": {code for code, _, _ in cls.CLAIM_SOURCES},
            "evidence_type": {code for code, _, _ in cls.EVIDENCE_TYPES},
        }
