# -*- coding: utf-8 -*-
"""
Tests for reference-code validation and vocabulary compatibility.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from services.exceptions import NetworkException
from services.vocab_service import (
    StaticVocabularyValidator, VocabularyService, check_vocabulary_compatibility,
)

API_RESPONSE = [
    {"vocabularyName": "gender", "version": "1.0.0",
     "values": [{"code": "M"}, {"code": "F"}]},
    {"vocabularyName": "relation_type", "version": "1.1.0",
     "values": [{"code": 1}, {"code": 2}]},
]


class TestStaticValidator:
    """Test the built-in code tables."""

    def test_known_codes(self):
        validator = StaticVocabularyValidator()
        assert validator.is_valid_code("gender", "M")
        assert validator.is_valid_code("property_unit_type", 1)
        assert validator.is_valid_code("property_unit_type", "1")

    def test_unknown_codes(self):
        validator = StaticVocabularyValidator()
        assert not validator.is_valid_code("property_unit_type", 42)
        assert not validator.is_valid_code("gender", "")
        assert not validator.is_valid_code("no_such_domain", "M")


class TestVocabularyService:
    """Test the API-backed validator."""

    @patch("services.vocab_service.requests.get")
    def test_loads_once_and_validates(self, mock_get):
        response = MagicMock()
        response.json.return_value = API_RESPONSE
        mock_get.return_value = response

        service = VocabularyService(base_url="http://vocab.local/api/v1", timeout=5)

        assert service.is_valid_code("gender", "F")
        assert service.is_valid_code("relation_type", "2")
        assert not service.is_valid_code("relation_type", 9)
        assert service.get_versions() == {"gender": "1.0.0", "relation_type": "1.1.0"}
        mock_get.assert_called_once_with("http://vocab.local/api/v1/vocabularies", timeout=5)

    @patch("services.vocab_service.requests.get")
    def test_unreachable_api(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")

        service = VocabularyService(base_url="http://vocab.local/api/v1")
        with pytest.raises(NetworkException):
            service.is_valid_code("gender", "M")


class TestCompatibility:
    """Test package vs server vocabulary versions."""

    def test_identical_versions(self):
        ok, issues, warnings = check_vocabulary_compatibility({"gender": "1.0.0"}, {"gender": "1.0.0"})
        assert ok and issues == [] and warnings == []

    def test_major_difference_is_incompatible(self):
        ok, issues, _ = check_vocabulary_compatibility({"gender": "2.0.0"}, {"gender": "1.4.2"})
        assert not ok
        assert len(issues) == 1

    def test_minor_difference_warns(self):
        ok, issues, warnings = check_vocabulary_compatibility({"gender": "1.3"}, {"gender": "1.0.0"})
        assert ok
        assert issues == []
        assert len(warnings) == 1

    def test_unknown_vocabulary_warns(self):
        ok, _, warnings = check_vocabulary_compatibility({"legacy_codes": "1.0.0"}, {"gender": "1.0.0"})
        assert ok
        assert "legacy_codes" in warnings[0]

    def test_unparsable_version(self):
        ok, issues, _ = check_vocabulary_compatibility({"gender": "one"}, {"gender": "1.0.0"})
        assert not ok
        assert "unparsable" in issues[0]
