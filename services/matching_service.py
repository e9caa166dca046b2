# -*- coding: utf-8 -*-
"""
Entity Matching Service
=======================
Duplicate detection for staged persons and property units.

Features:
- Multi-attribute identity scoring for persons (national ID, phone,
  Arabic name similarity, year of birth, gender)
- Composite-key and fuzzy unit-identifier matching for property units
- Candidates from production (blocking queries) and from inside the batch
- Parallel scoring on a bounded worker pool
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.conflict import (
    ConfidenceLevel, ConflictType, EntityReference, EntitySource, confidence_for_score,
)
from models.person import Person
from models.staging_record import StagingRecord, EntityType
from models.unit import PropertyUnit
from utils.helpers import (
    normalize_arabic, normalize_building_code, normalize_gender, normalize_phone,
    normalize_unit_identifier, to_int,
)
from utils.logger import get_logger

logger = get_logger(__name__)

EXACT_MATCH_SCORE = 1.0

# Additive person score weights
PHONE_WEIGHT = 0.30
NAME_WEIGHT = 0.40
YEAR_OF_BIRTH_WEIGHT = 0.15
GENDER_WEIGHT = 0.15

# Name part weights inside the name similarity
FIRST_NAME_WEIGHT = 0.30
FATHER_NAME_WEIGHT = 0.30
FAMILY_NAME_WEIGHT = 0.40

# Fuzzy unit-identifier score range: 0.70 + 0.19 * similarity
PROPERTY_FUZZY_BASE = 0.70
PROPERTY_FUZZY_SPAN = 0.19

PRODUCTION_CANDIDATE_LIMIT = 50

PERSON_COMPARISON_FIELDS = (
    "first_name", "father_name", "family_name", "national_id",
    "phone_number", "mobile_number", "year_of_birth", "gender",
)
UNIT_COMPARISON_FIELDS = (
    "building_code", "unit_identifier", "unit_type", "unit_status", "floor_number",
)


class MatchField(Enum):
    """Fields used for matching."""
    # Person fields
    NATIONAL_ID = "national_id"
    PHONE = "phone"
    NAME = "name"
    YEAR_OF_BIRTH = "year_of_birth"
    GENDER = "gender"

    # Property fields
    COMPOSITE_KEY = "composite_key"
    BUILDING_CODE = "building_code"
    UNIT_IDENTIFIER = "unit_identifier"


@dataclass
class DuplicateCandidate:
    """A scored pair of entities that may be the same real-world entity."""
    conflict_type: ConflictType
    entity_type: str
    first: EntityReference
    second: EntityReference
    score: float
    confidence: ConfidenceLevel
    matching_criteria: List[Dict[str, Any]] = field(default_factory=list)
    data_comparison: Dict[str, Any] = field(default_factory=dict)

    @property
    def pair_key(self) -> frozenset:
        return frozenset((self.first.entity_id, self.second.entity_id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conflict_type': self.conflict_type.value,
            'entity_type': self.entity_type,
            'first': self.first.to_dict(),
            'second': self.second.to_dict(),
            'score': self.score,
            'confidence': self.confidence.value,
            'matching_criteria': self.matching_criteria,
        }


@dataclass
class MatchingResult:
    """Candidates produced by one detection run."""
    person_candidates: List[DuplicateCandidate] = field(default_factory=list)
    property_candidates: List[DuplicateCandidate] = field(default_factory=list)

    @property
    def all_candidates(self) -> List[DuplicateCandidate]:
        return self.person_candidates + self.property_candidates


def _criterion(match_field: MatchField, score: float, details: Optional[str] = None) -> Dict[str, Any]:
    return {'field': match_field.value, 'score': round(score, 4), 'details': details}


def _comparison(first: Dict[str, Any], second: Dict[str, Any],
                fields: Iterable[str]) -> Dict[str, Any]:
    return {
        'first': {f: first.get(f) for f in fields},
        'second': {f: second.get(f) for f in fields},
    }


def _keep_best(candidates: Iterable[DuplicateCandidate]) -> List[DuplicateCandidate]:
    """One candidate per unordered pair, keeping the highest score."""
    best: Dict[frozenset, DuplicateCandidate] = {}
    for candidate in candidates:
        current = best.get(candidate.pair_key)
        if current is None or candidate.score > current.score:
            best[candidate.pair_key] = candidate
    return list(best.values())


class ArabicNameMatcher:
    """
    Arabic name similarity matching.
    Handles:
    - Diacritics and tatweel removal
    - Letter variants (أ/إ/آ, ة, ى, ؤ, ئ)
    - Edit distance
    """

    @classmethod
    def normalize_arabic(cls, text: str) -> str:
        """Normalize Arabic text for comparison."""
        return normalize_arabic(text)

    @classmethod
    def calculate_similarity(cls, name1: str, name2: str) -> float:
        """
        Similarity of two single names in [0, 1].

        Empty on either side scores 0; equal after normalization scores 1;
        otherwise 1 - levenshtein / max_length.
        """
        norm1 = cls.normalize_arabic(name1)
        norm2 = cls.normalize_arabic(name2)

        if not norm1 or not norm2:
            return 0.0
        if norm1 == norm2:
            return 1.0
        return cls._edit_distance_similarity(norm1, norm2)

    @classmethod
    def full_name_similarity(cls, first: Dict[str, Any], second: Dict[str, Any]) -> float:
        """Weighted similarity of first, father and family names."""
        return (
            cls.calculate_similarity(first.get('first_name'), second.get('first_name'))
            * FIRST_NAME_WEIGHT
            + cls.calculate_similarity(first.get('father_name'), second.get('father_name'))
            * FATHER_NAME_WEIGHT
            + cls.calculate_similarity(first.get('family_name'), second.get('family_name'))
            * FAMILY_NAME_WEIGHT
        )

    @classmethod
    def _edit_distance_similarity(cls, s1: str, s2: str) -> float:
        """Calculate normalized edit distance similarity."""
        if not s1 or not s2:
            return 0.0

        len1, len2 = len(s1), len(s2)
        max_len = max(len1, len2)

        # Two rows of the distance matrix
        previous = list(range(len2 + 1))
        for i in range(1, len1 + 1):
            current = [i] + [0] * len2
            for j in range(1, len2 + 1):
                cost = 0 if s1[i-1] == s2[j-1] else 1
                current[j] = min(
                    previous[j] + 1,         # Deletion
                    current[j-1] + 1,        # Insertion
                    previous[j-1] + cost     # Substitution
                )
            previous = current

        distance = previous[len2]
        return 1.0 - (distance / max_len)


@dataclass
class _PersonSide:
    """A person on one side of a comparison, with normalized match keys."""
    reference: EntityReference
    data: Dict[str, Any]
    row_number: int = 0

    @property
    def national_id(self) -> str:
        return str(self.data.get('national_id') or '').strip().upper()

    @property
    def phone(self) -> str:
        return normalize_phone(self.data.get('mobile_number') or self.data.get('phone_number'))

    @property
    def family_key(self) -> str:
        return normalize_arabic(self.data.get('family_name'))


class PersonMatcher:
    """
    Person matching.

    Scoring:
    - Same national ID: 1.0 (short-circuits everything else)
    - Otherwise additive, capped at 1.0:
      phone 0.30, name similarity * 0.40, year of birth up to 0.15,
      gender 0.15
    """

    def __init__(self, person_repo, high_threshold: float = 0.9,
                 medium_threshold: float = 0.7, match_floor: float = 0.5,
                 max_workers: int = 4):
        self.person_repo = person_repo
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.match_floor = match_floor
        self.max_workers = max(1, max_workers)
        self.name_matcher = ArabicNameMatcher()

    # ==================== Scoring ====================

    def score(self, first: Dict[str, Any], second: Dict[str, Any]) -> Tuple[float, List[Dict[str, Any]]]:
        """Score two person payloads. Returns (score, matching criteria)."""
        nid1 = str(first.get('national_id') or '').strip().upper()
        nid2 = str(second.get('national_id') or '').strip().upper()
        if nid1 and nid1 == nid2:
            return EXACT_MATCH_SCORE, [
                _criterion(MatchField.NATIONAL_ID, EXACT_MATCH_SCORE, f"National ID {nid1}")
            ]

        criteria: List[Dict[str, Any]] = []
        score = 0.0

        phone1 = normalize_phone(first.get('mobile_number') or first.get('phone_number'))
        phone2 = normalize_phone(second.get('mobile_number') or second.get('phone_number'))
        if phone1 and phone1 == phone2:
            score += PHONE_WEIGHT
            criteria.append(_criterion(MatchField.PHONE, PHONE_WEIGHT))

        name_sim = self.name_matcher.full_name_similarity(first, second)
        if name_sim > 0:
            score += name_sim * NAME_WEIGHT
            criteria.append(_criterion(MatchField.NAME, name_sim * NAME_WEIGHT,
                                       f"Name similarity {name_sim:.2f}"))

        year_score = self._year_of_birth_score(first.get('year_of_birth'), second.get('year_of_birth'))
        if year_score > 0:
            score += year_score
            criteria.append(_criterion(MatchField.YEAR_OF_BIRTH, year_score))

        gender1 = normalize_gender(first.get('gender'))
        if gender1 and gender1 == normalize_gender(second.get('gender')):
            score += GENDER_WEIGHT
            criteria.append(_criterion(MatchField.GENDER, GENDER_WEIGHT))

        return round(min(score, 1.0), 4), criteria

    @staticmethod
    def _year_of_birth_score(year1: Any, year2: Any) -> float:
        y1, y2 = to_int(year1), to_int(year2)
        if y1 is None or y2 is None:
            return 0.0
        diff = abs(y1 - y2)
        if diff == 0:
            return YEAR_OF_BIRTH_WEIGHT
        if diff == 1:
            return YEAR_OF_BIRTH_WEIGHT / 2
        if diff == 2:
            return YEAR_OF_BIRTH_WEIGHT / 4
        return 0.0

    # ==================== Detection ====================

    def find_duplicates(self, records: List[StagingRecord]) -> List[DuplicateCandidate]:
        """Candidates against production and within the batch."""
        sides = [
            _PersonSide(
                reference=EntityReference(r.id, r.display_name(), EntitySource.STAGING),
                data=r.payload,
                row_number=r.row_number,
            )
            for r in records
        ]
        if not sides:
            return []

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            production = [c for batch in pool.map(self._match_production, sides) for c in batch]
            pairs = self._batch_pairs(sides)
            within = [c for c in pool.map(lambda p: self._build(*p, within_batch=True), pairs) if c]

        candidates = _keep_best(production + within)
        logger.info(
            f"Person matching: {len(sides)} scanned, {len(candidates)} candidates "
            f"({len(production)} production, {len(within)} within batch)"
        )
        return candidates

    def _match_production(self, side: _PersonSide) -> List[DuplicateCandidate]:
        existing = self.person_repo.find_candidates(
            national_id=side.national_id or None,
            phone=side.phone or None,
            family_name=side.data.get('family_name'),
            limit=PRODUCTION_CANDIDATE_LIMIT,
        )
        results = []
        for person in existing:
            other = _PersonSide(
                reference=EntityReference(person.person_id, person.display_name, EntitySource.PRODUCTION),
                data=person.to_dict(),
            )
            candidate = self._build(other, side, within_batch=False)
            if candidate:
                results.append(candidate)
        return results

    def _batch_pairs(self, sides: List[_PersonSide]) -> List[Tuple[_PersonSide, _PersonSide]]:
        """Blocked pairs inside the batch, earlier row first."""
        buckets: Dict[str, List[int]] = {}
        for index, side in enumerate(sides):
            for key in (f"nid:{side.national_id}" if side.national_id else None,
                        f"phone:{side.phone}" if side.phone else None,
                        f"family:{side.family_key}" if side.family_key else None):
                if key:
                    buckets.setdefault(key, []).append(index)

        seen = set()
        pairs = []
        for indices in buckets.values():
            for i, j in combinations(sorted(set(indices)), 2):
                if (i, j) in seen:
                    continue
                seen.add((i, j))
                a, b = sides[i], sides[j]
                if (b.row_number, j) < (a.row_number, i):
                    a, b = b, a
                pairs.append((a, b))
        return pairs

    def _build(self, first: _PersonSide, second: _PersonSide,
               within_batch: bool) -> Optional[DuplicateCandidate]:
        score, criteria = self.score(first.data, second.data)
        if score < self.match_floor:
            return None
        return DuplicateCandidate(
            conflict_type=(ConflictType.PERSON_DUPLICATE_WITHIN_BATCH if within_batch
                           else ConflictType.PERSON_DUPLICATE),
            entity_type=EntityType.PERSON.value,
            first=first.reference,
            second=second.reference,
            score=score,
            confidence=confidence_for_score(score, self.high_threshold, self.medium_threshold),
            matching_criteria=criteria,
            data_comparison=_comparison(first.data, second.data, PERSON_COMPARISON_FIELDS),
        )


class PropertyMatcher:
    """
    Property unit matching.

    - Same building code and unit identifier (normalized): 1.0, High
    - Same building, unit identifiers similar enough: 0.70 + 0.19 * similarity,
      Medium
    """

    def __init__(self, unit_repo, min_similarity: float = 0.6, max_workers: int = 4):
        self.unit_repo = unit_repo
        self.min_similarity = min_similarity
        self.max_workers = max(1, max_workers)

    def score(self, first: Dict[str, Any], second: Dict[str, Any]) -> Optional[Tuple[float, ConfidenceLevel, List[Dict[str, Any]]]]:
        """Score two unit payloads; None when they cannot be the same unit."""
        code1 = normalize_building_code(first.get('building_code'))
        code2 = normalize_building_code(second.get('building_code'))
        if not code1 or code1 != code2:
            return None

        unit1 = normalize_unit_identifier(first.get('unit_identifier'))
        unit2 = normalize_unit_identifier(second.get('unit_identifier'))
        if not unit1 or not unit2:
            return None

        if unit1 == unit2:
            return EXACT_MATCH_SCORE, ConfidenceLevel.HIGH, [
                _criterion(MatchField.COMPOSITE_KEY, EXACT_MATCH_SCORE, f"{code1}/{unit1}")
            ]

        similarity = ArabicNameMatcher._edit_distance_similarity(unit1, unit2)
        if similarity < self.min_similarity:
            return None

        score = round(PROPERTY_FUZZY_BASE + PROPERTY_FUZZY_SPAN * similarity, 4)
        return score, ConfidenceLevel.MEDIUM, [
            _criterion(MatchField.BUILDING_CODE, PROPERTY_FUZZY_BASE, code1),
            _criterion(MatchField.UNIT_IDENTIFIER, PROPERTY_FUZZY_SPAN * similarity,
                       f"'{unit1}' ~ '{unit2}' ({similarity:.2f})"),
        ]

    def find_duplicates(self, records: List[StagingRecord]) -> List[DuplicateCandidate]:
        if not records:
            return []

        by_building: Dict[str, List[StagingRecord]] = {}
        for record in records:
            code = normalize_building_code(record.payload.get('building_code'))
            if code:
                by_building.setdefault(code, []).append(record)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            production = [
                c for batch in pool.map(self._match_building, by_building.items()) for c in batch
            ]

        within: List[DuplicateCandidate] = []
        for group in by_building.values():
            ordered = sorted(group, key=lambda r: r.row_number)
            for a, b in combinations(ordered, 2):
                candidate = self._build(
                    EntityReference(a.id, a.display_name(), EntitySource.STAGING), a.payload,
                    EntityReference(b.id, b.display_name(), EntitySource.STAGING), b.payload,
                    within_batch=True,
                )
                if candidate:
                    within.append(candidate)

        candidates = _keep_best(production + within)
        logger.info(
            f"Property matching: {len(records)} scanned, {len(candidates)} candidates "
            f"({len(production)} production, {len(within)} within batch)"
        )
        return candidates

    def _match_building(self, item: Tuple[str, List[StagingRecord]]) -> List[DuplicateCandidate]:
        building_code, staged = item
        existing: List[PropertyUnit] = self.unit_repo.get_by_building(building_code)
        results = []
        for unit in existing:
            unit_data = unit.to_dict()
            unit_ref = EntityReference(unit.unit_uuid, unit.composite_key, EntitySource.PRODUCTION)
            for record in staged:
                candidate = self._build(
                    unit_ref, unit_data,
                    EntityReference(record.id, record.display_name(), EntitySource.STAGING),
                    record.payload,
                    within_batch=False,
                )
                if candidate:
                    results.append(candidate)
        return results

    def _build(self, first_ref: EntityReference, first: Dict[str, Any],
               second_ref: EntityReference, second: Dict[str, Any],
               within_batch: bool) -> Optional[DuplicateCandidate]:
        scored = self.score(first, second)
        if scored is None:
            return None
        score, confidence, criteria = scored
        return DuplicateCandidate(
            conflict_type=(ConflictType.PROPERTY_DUPLICATE_WITHIN_BATCH if within_batch
                           else ConflictType.PROPERTY_DUPLICATE),
            entity_type=EntityType.PROPERTY_UNIT.value,
            first=first_ref,
            second=second_ref,
            score=score,
            confidence=confidence,
            matching_criteria=criteria,
            data_comparison=_comparison(first, second, UNIT_COMPARISON_FIELDS),
        )


class DuplicateMatcher:
    """
    Runs the person and property passes of one detection run in parallel.
    """

    def __init__(self, person_repo, unit_repo, config=None):
        if config is None:
            from app.config import Config
            config = Config
        self.person_matcher = PersonMatcher(
            person_repo,
            high_threshold=config.PERSON_HIGH_CONFIDENCE,
            medium_threshold=config.PERSON_MEDIUM_CONFIDENCE,
            match_floor=config.PERSON_MATCH_FLOOR,
            max_workers=config.MATCHING_MAX_WORKERS,
        )
        self.property_matcher = PropertyMatcher(
            unit_repo,
            min_similarity=config.PROPERTY_FUZZY_MIN_SIMILARITY,
            max_workers=config.MATCHING_MAX_WORKERS,
        )

    def find_duplicates(self, person_records: List[StagingRecord],
                        unit_records: List[StagingRecord]) -> MatchingResult:
        with ThreadPoolExecutor(max_workers=2) as pool:
            persons = pool.submit(self.person_matcher.find_duplicates, person_records)
            units = pool.submit(self.property_matcher.find_duplicates, unit_records)
            return MatchingResult(
                person_candidates=persons.result(),
                property_candidates=units.result(),
            )
