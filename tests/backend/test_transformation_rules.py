"""Unit tests for casing transforms, similarity and rename detection."""

import pytest

from api_healer.core.models import RenamePattern
from api_healer.services.transformation_rules import (
    FieldRenameDetector,
    camel_to_kebab,
    camel_to_snake,
    kebab_to_camel,
    jaro_winkler_similarity,
    levenshtein_distance,
    pascal_to_camel,
    similarity_ratio,
    snake_to_camel,
    snake_to_pascal
)


class TestCasingTransforms:
    """Test the casing helpers."""

    @pytest.mark.parametrize("snake,camel", [
        ("user_id", "userId"),
        ("created_at_time", "createdAtTime"),
        ("id", "id"),
    ])
    def test_snake_camel_round_trip(self, snake, camel):
        """snake_case and camelCase convert into each other."""
        assert snake_to_camel(snake) == camel
        assert camel_to_snake(camel) == snake

    def test_kebab_and_pascal(self):
        assert kebab_to_camel("user-id") == "userId"
        assert camel_to_kebab("userId") == "user-id"
        assert pascal_to_camel("UserId") == "userId"
        assert snake_to_pascal("user_id") == "UserId"


class TestSimilarity:
    """Test edit distance helpers."""

    def test_levenshtein_distance(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_similarity_ratio(self):
        """Ratios are case-insensitive and empty strings are identical."""
        assert similarity_ratio("", "") == 1.0
        assert similarity_ratio("Email", "email") == 1.0
        assert similarity_ratio("adress", "address") == pytest.approx(6 / 7)

    def test_jaro_winkler_similarity(self):
        """A shared prefix lifts the plain Jaro score."""
        assert jaro_winkler_similarity("MARTHA", "MARHTA") == pytest.approx(0.9611, abs=1e-4)
        assert jaro_winkler_similarity("DWAYNE", "DUANE") == pytest.approx(0.84, abs=1e-4)
        assert jaro_winkler_similarity("abc", "xyz") == 0.0
        assert jaro_winkler_similarity("", "abc") == 0.0
        assert jaro_winkler_similarity("same", "same") == 1.0


class TestFieldRenameDetector:
    """Test rename pattern detection."""

    def setup_method(self):
        self.detector = FieldRenameDetector(similarity_threshold=0.8)

    def test_snake_to_camel_rename(self):
        """user_id -> userId is a casing rename with high confidence."""
        pattern = self.detector.detect_pattern("user_id", "userId")

        assert pattern == RenamePattern.SNAKE_TO_CAMEL
        assert self.detector.confidence_for(pattern) == 0.95

    def test_casing_patterns_in_order(self):
        assert self.detector.detect_pattern("userName", "user_name") == RenamePattern.CAMEL_TO_SNAKE
        assert self.detector.detect_pattern("user-id", "userId") == RenamePattern.KEBAB_TO_CAMEL
        assert self.detector.detect_pattern("UserId", "userId") == RenamePattern.PASCAL_TO_CAMEL

    def test_similarity_match(self):
        """Near-identical names fall back to a lower confidence similarity match."""
        pattern = self.detector.detect_pattern("adress", "address")

        assert pattern == RenamePattern.SIMILARITY_MATCH
        assert self.detector.confidence_for(pattern) == 0.7

    def test_abbreviation_and_expansion(self):
        assert self.detector.detect_pattern("desc", "description") == RenamePattern.ABBREVIATION
        assert self.detector.detect_pattern("description", "desc") == RenamePattern.EXPANSION

    def test_unrelated_names(self):
        """Unrelated or identical names produce no pattern."""
        assert self.detector.detect_pattern("price", "owner") is None
        assert self.detector.detect_pattern("email", "email") is None
        assert self.detector.detect_pattern("", "email") is None

    def test_abbreviation_ignores_common_prefixes(self):
        """Accessor prefixes are stripped before comparing."""
        assert self.detector.is_abbreviation("getQty", "quantity") is True
        assert self.detector.is_abbreviation("quantity", "qty") is False
