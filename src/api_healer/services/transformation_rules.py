"""
Transformation rule catalogue for rule-based healing.

Casing transforms, string similarity measures and rename detection used to
turn specification changes into deterministic source rewrites.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

from ..core.models.rule_models import RenamePattern


def snake_to_camel(value: str) -> str:
    """user_id -> userId"""
    return re.sub(r"_([a-z])", lambda m: m.group(1).upper(), value)


def camel_to_snake(value: str) -> str:
    """userId -> user_id"""
    return re.sub(r"[A-Z]", lambda m: f"_{m.group(0).lower()}", value)


def kebab_to_camel(value: str) -> str:
    """user-id -> userId"""
    return re.sub(r"-([a-z])", lambda m: m.group(1).upper(), value)


def camel_to_kebab(value: str) -> str:
    """userId -> user-id"""
    return re.sub(r"[A-Z]", lambda m: f"-{m.group(0).lower()}", value)


def pascal_to_camel(value: str) -> str:
    """UserId -> userId"""
    return value[:1].lower() + value[1:]


def camel_to_pascal(value: str) -> str:
    """userId -> UserId"""
    return value[:1].upper() + value[1:]


def snake_to_pascal(value: str) -> str:
    """user_id -> UserId"""
    return camel_to_pascal(snake_to_camel(value))


# Tried in order; the first transform that maps old onto new names the pattern
COMMON_RENAME_PATTERNS: List[Tuple[RenamePattern, Callable[[str], str]]] = [
    (RenamePattern.SNAKE_TO_CAMEL, snake_to_camel),
    (RenamePattern.CAMEL_TO_SNAKE, camel_to_snake),
    (RenamePattern.KEBAB_TO_CAMEL, kebab_to_camel),
    (RenamePattern.CAMEL_TO_KEBAB, camel_to_kebab),
    (RenamePattern.PASCAL_TO_CAMEL, pascal_to_camel),
    (RenamePattern.CAMEL_TO_PASCAL, camel_to_pascal),
    (RenamePattern.SNAKE_TO_PASCAL, snake_to_pascal),
]

# Known status transitions, keyed "old-new"
COMMON_STATUS_CODE_CHANGES: Dict[str, Dict[str, object]] = {
    "200-201": {"reason": "created_instead_of_ok", "breaking": False},
    "200-204": {"reason": "no_content_instead_of_ok", "breaking": False},
    "200-404": {"reason": "not_found", "breaking": True},
    "200-401": {"reason": "unauthorized", "breaking": True},
    "200-403": {"reason": "forbidden", "breaking": True},
    "201-200": {"reason": "ok_instead_of_created", "breaking": False},
    "201-204": {"reason": "no_content_instead_of_created", "breaking": False},
    "204-200": {"reason": "ok_instead_of_no_content", "breaking": False},
    "404-200": {"reason": "endpoint_restored", "breaking": False},
}

RENAME_CONFIDENCE = 0.95
SIMILARITY_RENAME_CONFIDENCE = 0.7

ABBREVIATION_PREFIXES = ("get", "set", "is", "has", "the")


def levenshtein_distance(first: str, second: str) -> int:
    """Edit distance with unit costs for insertion, deletion and substitution."""
    if len(first) < len(second):
        first, second = second, first
    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i]
        for j, char_b in enumerate(second, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b)
            ))
        previous = current
    return previous[-1]


def similarity_ratio(first: str, second: str) -> float:
    """Case-insensitive edit-distance ratio in [0, 1]."""
    longer = max(len(first), len(second))
    if longer == 0:
        return 1.0
    distance = levenshtein_distance(first.lower(), second.lower())
    return (longer - distance) / longer


def jaro_winkler_similarity(first: str, second: str, prefix_scale: float = 0.1) -> float:
    """Jaro-Winkler similarity in [0, 1], rewarding a shared prefix of up to four characters."""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0

    window = max(max(len(first), len(second)) // 2 - 1, 0)
    first_matches = [False] * len(first)
    second_matches = [False] * len(second)

    matches = 0
    for i, char in enumerate(first):
        start = max(0, i - window)
        end = min(i + window + 1, len(second))
        for j in range(start, end):
            if second_matches[j] or second[j] != char:
                continue
            first_matches[i] = second_matches[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(first):
        if not first_matches[i]:
            continue
        while not second_matches[k]:
            k += 1
        if char != second[k]:
            transpositions += 1
        k += 1

    jaro = (matches / len(first) + matches / len(second) + (matches - transpositions / 2) / matches) / 3

    prefix = 0
    for char_a, char_b in zip(first[:4], second[:4]):
        if char_a != char_b:
            break
        prefix += 1

    return jaro + prefix * prefix_scale * (1 - jaro)


class FieldRenameDetector:
    """Detects how one field name was renamed into another."""

    def __init__(self, similarity_threshold: float = 0.8):
        self.similarity_threshold = similarity_threshold

    def detect_pattern(self, old_field: str, new_field: str) -> Optional[RenamePattern]:
        """
        Detect the rename pattern between two field names.

        Casing transforms are tried first, then edit-distance similarity,
        then abbreviation and expansion heuristics.

        Returns:
            The detected RenamePattern, or None if the names look unrelated
        """
        if not old_field or not new_field or old_field == new_field:
            return None

        for pattern, transform in COMMON_RENAME_PATTERNS:
            if transform(old_field) == new_field:
                return pattern

        if similarity_ratio(old_field, new_field) >= self.similarity_threshold:
            return RenamePattern.SIMILARITY_MATCH

        if self.is_abbreviation(old_field, new_field):
            return RenamePattern.ABBREVIATION
        if self.is_abbreviation(new_field, old_field):
            return RenamePattern.EXPANSION

        return None

    @staticmethod
    def confidence_for(pattern: RenamePattern) -> float:
        if pattern == RenamePattern.SIMILARITY_MATCH:
            return SIMILARITY_RENAME_CONFIDENCE
        return RENAME_CONFIDENCE

    def is_abbreviation(self, shorter: str, longer: str) -> bool:
        """True if ``shorter`` reads as an abbreviation of ``longer``."""
        if len(shorter) >= len(longer):
            return False

        clean_shorter = self._strip_prefix(shorter.lower())
        clean_longer = self._strip_prefix(longer.lower())
        if not clean_shorter:
            return False

        if clean_shorter in clean_longer:
            return True

        # Every character of the short form appears in order in the long form
        position = 0
        for char in clean_longer:
            if position < len(clean_shorter) and char == clean_shorter[position]:
                position += 1
        return position == len(clean_shorter)

    @staticmethod
    def _strip_prefix(value: str) -> str:
        for prefix in ABBREVIATION_PREFIXES:
            if value.startswith(prefix):
                return value[len(prefix):]
        return value

