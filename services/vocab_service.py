# -*- coding: utf-8 -*-
"""
Vocabulary Service - reference-code validation for staged records.

Two implementations of the same validator interface:
- StaticVocabularyValidator answers from in-memory code tables (defaults to
  the Vocabularies class).
- VocabularyService fetches the code tables from the backend API
  (GET {VOCABULARY_API_URL}/vocabularies) once and answers from its cache.

Also checks package vocabulary versions against the server's versions.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import requests

from services.exceptions import NetworkException
from utils.logger import get_logger

logger = get_logger(__name__)


def _normalize_name(name: str) -> str:
    """Normalize vocabulary name for case/underscore-insensitive lookup."""
    return name.lower().replace("_", "")


def _normalize_code(code: Any) -> str:
    return str(code).strip().upper()


class ReferenceCodeValidator(ABC):
    """Answers whether a code belongs to a vocabulary domain."""

    @abstractmethod
    def is_valid_code(self, domain: str, code: Any) -> bool:
        """Return True if ``code`` is a current value of ``domain``."""


class StaticVocabularyValidator(ReferenceCodeValidator):
    """Validator backed by fixed code tables."""

    def __init__(self, code_tables: Optional[Dict[str, Iterable[Any]]] = None):
        if code_tables is None:
            from app.config import Vocabularies
            code_tables = Vocabularies.as_code_tables()
        self._tables: Dict[str, Set[str]] = {
            _normalize_name(domain): {_normalize_code(c) for c in codes}
            for domain, codes in code_tables.items()
        }

    def is_valid_code(self, domain: str, code: Any) -> bool:
        if code is None or code == "":
            return False
        return _normalize_code(code) in self._tables.get(_normalize_name(domain), set())


class VocabularyService(ReferenceCodeValidator):
    """
    Validator backed by the remote vocabulary API.

    The API returns a list of vocabularies:
        [{"vocabularyName": "gender", "version": "1.0.0",
          "values": [{"code": "M", ...}, ...]}, ...]
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        from app.config import Config
        self.base_url = (base_url or Config.VOCABULARY_API_URL).rstrip("/")
        self.timeout = timeout or Config.API_TIMEOUT
        self._lock = threading.Lock()
        self._codes: Dict[str, Set[str]] = {}
        self._versions: Dict[str, str] = {}
        self._initialized = False

    def load(self) -> None:
        """Fetch vocabularies from the API and rebuild the cache."""
        url = f"{self.base_url}/vocabularies"
        logger.info(f"Fetching vocabularies from: {url}")
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Vocabulary API unreachable: {e}")
            raise NetworkException(f"Could not fetch vocabularies from {url}", original_error=e)
        except ValueError as e:
            raise NetworkException(f"Invalid vocabulary response from {url}", original_error=e)

        self._build_cache(data)
        logger.info(f"Loaded {len(data)} vocabularies from API")

    def _build_cache(self, api_data: List[Dict[str, Any]]) -> None:
        codes: Dict[str, Set[str]] = {}
        versions: Dict[str, str] = {}
        for vocab in api_data:
            key = _normalize_name(vocab.get("vocabularyName", ""))
            codes[key] = {_normalize_code(v.get("code")) for v in vocab.get("values", [])
                          if v.get("code") is not None}
            if vocab.get("version"):
                versions[vocab["vocabularyName"]] = vocab["version"]
        with self._lock:
            self._codes = codes
            self._versions = versions
            self._initialized = True

    def _ensure_loaded(self) -> None:
        if not self._initialized:
            self.load()

    def is_valid_code(self, domain: str, code: Any) -> bool:
        self._ensure_loaded()
        if code is None or code == "":
            return False
        return _normalize_code(code) in self._codes.get(_normalize_name(domain), set())

    def get_versions(self) -> Dict[str, str]:
        """Server vocabulary versions as reported by the API."""
        self._ensure_loaded()
        return dict(self._versions)


def _parse_semver(version: str) -> Tuple[int, int, int]:
    parts = str(version).strip().split(".")
    if not parts or len(parts) > 3:
        raise ValueError(f"Invalid version: {version}")
    numbers = [int(p) for p in parts] + [0] * (3 - len(parts))
    return numbers[0], numbers[1], numbers[2]


def check_vocabulary_compatibility(
    package_versions: Dict[str, str],
    server_versions: Dict[str, str]
) -> Tuple[bool, List[str], List[str]]:
    """
    Compare package vocabulary versions with the server's.

    Returns:
        (is_compatible, issues, warnings). A MAJOR difference or an
        unparsable version is an issue; MINOR/PATCH differences and
        domains unknown to the server are warnings.
    """
    issues: List[str] = []
    warnings: List[str] = []

    for vocab_name, package_version in (package_versions or {}).items():
        server_version = server_versions.get(vocab_name)
        if not server_version:
            warnings.append(f"{vocab_name}: unknown vocabulary on server (package v{package_version})")
            continue

        try:
            pkg_major, pkg_minor, pkg_patch = _parse_semver(package_version)
            srv_major, srv_minor, srv_patch = _parse_semver(server_version)
        except ValueError:
            issues.append(f"{vocab_name}: unparsable version '{package_version}'")
            continue

        if pkg_major != srv_major:
            issues.append(
                f"{vocab_name}: package v{package_version} incompatible with server v{server_version}"
            )
        elif (pkg_minor, pkg_patch) != (srv_minor, srv_patch):
            warnings.append(
                f"{vocab_name}: package v{package_version} differs from server v{server_version}"
            )

    return not issues, issues, warnings
