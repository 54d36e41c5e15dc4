"""Utility functions for working with self-healing data models."""

import difflib
import hashlib
import uuid
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .models.healing_models import (
    ExecutedTest,
    FailedTestCase,
    FailureKind,
    HealingAttempt,
    HealingStrategyType
)


def hash_text(text: str, length: Optional[int] = None) -> str:
    """Return the sha256 hex digest of ``text``, optionally truncated.

    Args:
        text: Text to hash
        length: Number of hex characters to keep, or None for the full digest

    Returns:
        str: Hex digest
    """
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return digest[:length] if length else digest


def create_failed_test_case(
    executed: ExecutedTest,
    source_code: str,
    previous_attempts: int = 0
) -> FailedTestCase:
    """Create a FailedTestCase from an executed test and its source.

    Args:
        executed: Runner result for the test
        source_code: Current source text of the test file
        previous_attempts: Attempts already recorded for the test id

    Returns:
        FailedTestCase: Test case owned by the orchestrator for one pass
    """
    return FailedTestCase(
        test_id=executed.test_id,
        name=executed.name,
        source_path=executed.source_path,
        source_code=source_code,
        outcome=executed.outcome,
        previous_attempts=previous_attempts,
        endpoint=executed.endpoint,
        method=executed.method
    )


def create_healing_attempt(
    test_case: FailedTestCase,
    strategy: HealingStrategyType,
    failure_kind: FailureKind
) -> HealingAttempt:
    """Create a new, not yet completed healing attempt for a test."""
    return HealingAttempt(
        attempt_id=str(uuid.uuid4()),
        test_id=test_case.test_id,
        test_name=test_case.name,
        strategy=strategy,
        failure_kind=failure_kind,
        started_at=datetime.now()
    )


def is_healable_failure(
    failure_kind: FailureKind,
    confidence: float,
    healable_kinds: Sequence[FailureKind],
    min_confidence: float
) -> bool:
    """Determine if a failure is worth healing.

    A failure is healable only when its kind is in the configured allow-list
    and the classifier confidence reaches the configured threshold.

    Args:
        failure_kind: Classified failure kind
        confidence: Classifier confidence (0.0-1.0)
        healable_kinds: Allow-list of healable failure kinds
        min_confidence: Minimum confidence threshold

    Returns:
        bool: True if the failure can potentially be healed
    """
    return failure_kind in healable_kinds and confidence >= min_confidence


def compute_source_diff(original: str, healed: str, path: str = "test") -> str:
    """Unified diff between the original and healed source."""
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        healed.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}"
    )
    return "".join(diff)


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)
