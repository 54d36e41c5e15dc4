"""
Failure Classifier for the API Test Self-Healing System.

Turns raw failure messages from API test runs into typed FailureAnalysis
values. Classification is a pure function of its inputs: an ordered pattern
table is evaluated against the ANSI-stripped message, the highest-priority
match wins, and a keyword categorizer covers messages no pattern matches.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from ..core.exceptions import MissingFailureInfoError
from ..core.healing_utils import is_healable_failure
from ..core.models.healing_models import (
    DEFAULT_HEALABLE_KINDS,
    ExecutionStatus,
    FailedTestCase,
    FailureAnalysis,
    FailureKind,
    HealingConfiguration
)
from ..core.models.spec_models import ChangeType, SpecChange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailurePattern:
    """One row of the classification table."""
    kind: FailureKind
    regex: Pattern
    priority: int
    extractor: Callable[[re.Match], Dict[str, Any]]


def _status_pair(match: re.Match) -> Dict[str, Any]:
    expected, actual = match.group(1), match.group(2)
    return {
        "expected_status": int(expected),
        "actual_status": int(actual),
        "expected_value": expected,
        "actual_value": actual
    }


def _field(group: int = 1) -> Callable[[re.Match], Dict[str, Any]]:
    def extract(match: re.Match) -> Dict[str, Any]:
        value = match.group(group)
        return {"field_name": value.strip()} if value else {}
    return extract


def _expected_actual(match: re.Match) -> Dict[str, Any]:
    return {
        "expected_value": (match.group(1) or "").strip(),
        "actual_value": (match.group(2) or "").strip()
    }


def _nothing(_match: re.Match) -> Dict[str, Any]:
    return {}


class FailureClassifier:
    """Classifies API test failures into a closed set of failure kinds."""

    ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")

    # Ordered table: higher priority wins, earlier entry wins on equal priority
    FAILURE_PATTERNS: List[FailurePattern] = [
        # API contract failures
        FailurePattern(
            FailureKind.STATUS_CODE_CHANGED,
            re.compile(
                r"expected\s+(?:http\s+)?status(?:\s+code)?\s*:?\s*(\d{3})\s*,?\s*(?:but\s+)?"
                r"(?:received|got|was|actual)\s*:?\s*(\d{3})",
                re.IGNORECASE),
            12, _status_pair),
        FailurePattern(
            FailureKind.STATUS_CODE_CHANGED,
            re.compile(r"status.*?Expected:?\s*([1-5]\d{2})\b.*?Received:?\s*([1-5]\d{2})\b",
                       re.IGNORECASE | re.DOTALL),
            12, _status_pair),
        FailurePattern(
            FailureKind.FIELD_MISSING,
            re.compile(
                r"(?:field|property|key)\s+['\"`]?([\w.\-]+)['\"`]?\s+(?:is\s+)?"
                r"(?:missing|not\s+found|undefined|does\s+not\s+exist)",
                re.IGNORECASE),
            11, _field()),
        FailurePattern(
            FailureKind.FIELD_MISSING,
            re.compile(r"missing\s+(?:required\s+)?(?:field|property|key)\s*:?\s*['\"`]?([\w.\-]+)",
                       re.IGNORECASE),
            11, _field()),
        FailurePattern(
            FailureKind.FIELD_MISSING,
            re.compile(r"toHaveProperty.*?Expected path:\s*['\"]([^'\"]+)['\"]", re.DOTALL),
            11, _field()),
        FailurePattern(
            FailureKind.TYPE_MISMATCH,
            re.compile(
                r"type\s+mismatch(?:\s+(?:for|on|in)\s+(?:field|property)\s+['\"`]?([\w.\-]+)['\"`]?)?",
                re.IGNORECASE),
            11, _field()),
        FailurePattern(
            FailureKind.TYPE_MISMATCH,
            re.compile(
                r"expected\s+(?:type\s+)?['\"]?(string|number|integer|boolean|object|array)['\"]?\s*,?\s*"
                r"(?:but\s+)?(?:received|got|was|found)\s+(?:type\s+)?['\"]?"
                r"(string|number|integer|boolean|object|array|null|undefined)['\"]?",
                re.IGNORECASE),
            11, _expected_actual),
        FailurePattern(
            FailureKind.SCHEMA_VALIDATION,
            re.compile(r"must\s+have\s+required\s+property\s+['\"]([^'\"]+)['\"]", re.IGNORECASE),
            11, _field()),
        FailurePattern(
            FailureKind.SCHEMA_VALIDATION,
            re.compile(r"schema\s+validation\s+failed|does\s+not\s+match\s+(?:the\s+)?(?:expected\s+)?schema",
                       re.IGNORECASE),
            11, _nothing),
        FailurePattern(
            FailureKind.ENDPOINT_NOT_FOUND,
            re.compile(r"(?:endpoint|route|path)\s+['\"`]?(/[^\s'\"`]*)?['\"`]?\s*(?:was\s+)?not\s+found",
                       re.IGNORECASE),
            11, lambda m: {"url": m.group(1)} if m.group(1) else {}),
        FailurePattern(
            FailureKind.ENDPOINT_NOT_FOUND,
            re.compile(r"Cannot\s+(GET|POST|PUT|PATCH|DELETE)\s+(/\S*)"),
            11, lambda m: {"http_method": m.group(1), "url": m.group(2), "http_status": 404}),
        FailurePattern(
            FailureKind.ENDPOINT_NOT_FOUND,
            re.compile(r"\b404\s+Not\s+Found\b", re.IGNORECASE),
            10, lambda m: {"http_status": 404}),

        # Assertion failures
        FailurePattern(
            FailureKind.ASSERTION,
            re.compile(
                r"expect.*?(?:toBe|toEqual|toContain|toHaveText|toBeVisible|toHaveAttribute)\((.*?)\)"
                r".*?(?:Received|but got|actual):\s*(.+)",
                re.IGNORECASE | re.DOTALL),
            10, _expected_actual),
        FailurePattern(
            FailureKind.ASSERTION,
            re.compile(r"Expected.*?'(.+?)'.*?Received.*?'(.+?)'", re.IGNORECASE | re.DOTALL),
            9, _expected_actual),
        FailurePattern(
            FailureKind.ASSERTION,
            re.compile(r"Assertion failed.*?expected.*?'(.+?)'.*?to.*?'(.+?)'", re.IGNORECASE | re.DOTALL),
            8, _expected_actual),

        # Network errors
        FailurePattern(
            FailureKind.NETWORK_ERROR,
            re.compile(r"(?:HTTP|Network).*?(\d{3})\s+(.+?)(?:\n|$)", re.IGNORECASE),
            10, lambda m: {"http_status": int(m.group(1)), "clean_message": m.group(2).strip()}),
        FailurePattern(
            FailureKind.NETWORK_ERROR,
            re.compile(r"(?:Request failed|Network error).*?(?:at|for)\s+(.+?)(?:\n|$)", re.IGNORECASE),
            9, lambda m: {"url": m.group(1).strip()}),
        FailurePattern(
            FailureKind.NETWORK_ERROR,
            re.compile(r"ECONNREFUSED|Connection refused", re.IGNORECASE),
            8, lambda m: {"clean_message": "Connection refused"}),

        # Timeouts
        FailurePattern(
            FailureKind.TIMEOUT,
            re.compile(r"Timeout.*?(\d+)ms.*?(?:waiting for|exceeded)", re.IGNORECASE),
            10, lambda m: {"timeout_ms": int(m.group(1))}),
        FailurePattern(
            FailureKind.TIMEOUT,
            re.compile(r"Timeout of (\d+)ms exceeded", re.IGNORECASE),
            9, lambda m: {"timeout_ms": int(m.group(1))}),

        # Authentication
        FailurePattern(
            FailureKind.AUTH,
            re.compile(r"401|Unauthorized|Authentication failed", re.IGNORECASE),
            10, lambda m: {"http_status": 401}),
        FailurePattern(
            FailureKind.AUTH,
            re.compile(r"403|Forbidden|Access denied", re.IGNORECASE),
            9, lambda m: {"http_status": 403}),

        # Selectors
        FailurePattern(
            FailureKind.SELECTOR,
            re.compile(
                r"(?:Selector|locator)\s+['\"](.+?)['\"].*?(?:not found|could not be found|did not match any elements)",
                re.IGNORECASE),
            10, lambda m: {"selector": m.group(1).strip()}),
        FailurePattern(
            FailureKind.SELECTOR,
            re.compile(r"Element.*?['\"](.+?)['\"].*?(?:hidden|not visible|detached)", re.IGNORECASE),
            9, lambda m: {"selector": m.group(1).strip()}),

        # Navigation
        FailurePattern(
            FailureKind.NAVIGATION,
            re.compile(r"Navigation.*?(?:failed|timeout).*?(?:to|at)\s+(.+?)(?:\n|$)", re.IGNORECASE),
            10, lambda m: {"url": m.group(1).strip()}),

        # Validation
        FailurePattern(
            FailureKind.VALIDATION,
            re.compile(
                r"Validation.*?failed.*?(?:field|property)\s+['\"](.+?)['\"].*?expected\s+(.+?)(?:\n|$)",
                re.IGNORECASE),
            10, lambda m: {"field_name": m.group(1).strip(), "expected_value": m.group(2).strip()}),
    ]

    # Per-kind base confidence; a policy constant, not computed from the message
    KIND_CONFIDENCE: Dict[FailureKind, float] = {
        FailureKind.FIELD_MISSING: 0.9,
        FailureKind.TYPE_MISMATCH: 0.9,
        FailureKind.STATUS_CODE_CHANGED: 0.8,
        FailureKind.SCHEMA_VALIDATION: 0.8,
        FailureKind.ENDPOINT_NOT_FOUND: 0.7,
        FailureKind.AUTH: 0.9,
        FailureKind.ASSERTION: 0.85,
        FailureKind.SELECTOR: 0.7,
        FailureKind.NAVIGATION: 0.75,
        FailureKind.VALIDATION: 0.8,
        FailureKind.TIMEOUT: 0.3,
        FailureKind.NETWORK_ERROR: 0.3,
        FailureKind.UNKNOWN: 0.3,
    }

    # Keyword fallback, evaluated in order; every keyword group must hit
    KEYWORD_RULES: List[Tuple[FailureKind, Tuple[Tuple[str, ...], ...]]] = [
        (FailureKind.FIELD_MISSING, (("field",), ("missing",))),
        (FailureKind.TYPE_MISMATCH, (("type",), ("mismatch",))),
        (FailureKind.SCHEMA_VALIDATION, (("schema",),)),
        (FailureKind.STATUS_CODE_CHANGED, (("status",),)),
        (FailureKind.TIMEOUT, (("timeout", "exceeded"),)),
        (FailureKind.AUTH, (("401", "403", "unauthorized", "forbidden"),)),
        (FailureKind.NETWORK_ERROR, (("network", "econnrefused", "socket"),)),
        (FailureKind.ENDPOINT_NOT_FOUND, (("endpoint", "not found"),)),
        (FailureKind.ASSERTION, (("expect", "assertion", "should"),)),
        (FailureKind.SELECTOR, (("selector", "locator", "element"),)),
        (FailureKind.NAVIGATION, (("navigation", "navigate"),)),
        (FailureKind.VALIDATION, (("validation", "invalid"),)),
    ]

    ROOT_CAUSES: Dict[FailureKind, str] = {
        FailureKind.FIELD_MISSING: "API response is missing expected field",
        FailureKind.TYPE_MISMATCH: "Field type in API response does not match expected type",
        FailureKind.STATUS_CODE_CHANGED: "API endpoint returned unexpected status code",
        FailureKind.ENDPOINT_NOT_FOUND: "API endpoint not found or has been removed",
        FailureKind.SCHEMA_VALIDATION: "Response does not match expected schema",
        FailureKind.AUTH: "Request was rejected by authentication or authorization",
        FailureKind.TIMEOUT: "Request timed out",
        FailureKind.NETWORK_ERROR: "Network connection failed",
        FailureKind.ASSERTION: "Assertion on response content failed",
        FailureKind.SELECTOR: "Selector did not resolve to an element",
        FailureKind.NAVIGATION: "Navigation to target failed",
        FailureKind.VALIDATION: "Input validation failed",
    }

    STATUS_CODE_PATTERN = re.compile(r"\b([1-5]\d{2})\b")
    FIELD_NAME_PATTERNS = [
        re.compile(r"(?:field|property|key)\s+['\"`]([\w.\-]+)['\"`]", re.IGNORECASE),
        re.compile(r"(?:field|property|key)\s+([A-Za-z_][\w.\-]*)", re.IGNORECASE),
        re.compile(r"Expected path:\s*['\"]([^'\"]+)['\"]"),
    ]
    SELECTOR_PATTERN = re.compile(r"(?:locator|selector)\s*\(\s*['\"](.+?)['\"]\s*\)", re.IGNORECASE)
    URL_PATTERN = re.compile(r"https?://[^\s'\"`]+", re.IGNORECASE)
    HTTP_METHOD_PATTERN = re.compile(r"\b(GET|POST|PUT|PATCH|DELETE|OPTIONS|HEAD)\b")

    def __init__(
        self,
        healable_kinds: Optional[Sequence[FailureKind]] = None,
        min_confidence: float = 0.6
    ):
        """
        Initialize the classifier.

        Args:
            healable_kinds: Failure kinds that may be healed automatically
            min_confidence: Minimum confidence for a failure to be healable
        """
        self.healable_kinds = list(healable_kinds) if healable_kinds is not None else list(DEFAULT_HEALABLE_KINDS)
        self.min_confidence = min_confidence
        self._sorted_patterns = sorted(self.FAILURE_PATTERNS, key=lambda p: -p.priority)

    @classmethod
    def from_config(cls, config: HealingConfiguration) -> "FailureClassifier":
        return cls(healable_kinds=config.healable_failure_kinds, min_confidence=config.min_confidence)

    def normalize_message(self, message: Optional[str]) -> str:
        """Strip ANSI color codes and surrounding whitespace."""
        return self.ANSI_ESCAPE.sub("", message or "").strip()

    def classify(
        self,
        message: Optional[str],
        source_code: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        related_changes: Iterable[SpecChange] = ()
    ) -> FailureAnalysis:
        """
        Classify a raw failure message.

        Args:
            message: Raw failure message, possibly with ANSI color codes
            source_code: Optional source of the failing test
            status: Optional execution status reported by the runner
            related_changes: Spec changes already known to affect the test

        Returns:
            FailureAnalysis: Immutable classification result
        """
        clean_message = self.normalize_message(message)
        kind, details = self.match_patterns(clean_message)

        if kind is None:
            kind = self.categorize_failure(clean_message)
            if kind == FailureKind.UNKNOWN and status == ExecutionStatus.TIMEOUT:
                kind = FailureKind.TIMEOUT

        details = self._enrich_details(kind, clean_message, details, source_code)
        related = tuple(related_changes)
        confidence = self.KIND_CONFIDENCE[kind]

        return FailureAnalysis(
            failure_kind=kind,
            root_cause=self._root_cause(kind, details, clean_message),
            confidence=confidence,
            healable=self.is_healable(kind, confidence),
            related_changes=related,
            suggested_fix=self.suggest_fix(kind, details, related),
            details=details
        )

    def analyze(
        self,
        test_case: FailedTestCase,
        related_changes: Iterable[SpecChange] = ()
    ) -> FailureAnalysis:
        """
        Classify the failure of a test case.

        Raises:
            MissingFailureInfoError: If the test outcome carries no error message
        """
        outcome = test_case.outcome
        if outcome is None or not (outcome.error_message or "").strip():
            raise MissingFailureInfoError(
                f"Cannot analyze test '{test_case.name}' without error information",
                {"test_id": test_case.test_id})

        message = outcome.error_message
        if outcome.stack_trace and outcome.stack_trace not in message:
            message = f"{message}\n{outcome.stack_trace}"

        analysis = self.classify(
            message,
            source_code=test_case.source_code,
            status=outcome.status,
            related_changes=related_changes
        )
        logger.info(
            f"🔍 Classified '{test_case.name}' as {analysis.failure_kind.value} "
            f"(confidence {analysis.confidence:.2f}, healable={analysis.healable})")
        return analysis

    def classify_batch(self, test_cases: Iterable[FailedTestCase]) -> List[FailureAnalysis]:
        """Classify many test cases, skipping those without failure information."""
        analyses = []
        for test_case in test_cases:
            try:
                analyses.append(self.analyze(test_case))
            except MissingFailureInfoError as e:
                logger.warning(f"⚠️  Skipping classification: {e.message}")
        return analyses

    def get_failure_statistics(self, analyses: Iterable[FailureAnalysis]) -> Dict[str, Any]:
        """
        Aggregate statistics over analyses.

        Returns:
            Dictionary with totals per kind, healable count and the top-10 kinds
        """
        analyses = list(analyses)
        counts = Counter(a.failure_kind.value for a in analyses)
        return {
            "total_failures": len(analyses),
            "by_failure_kind": dict(counts),
            "healable": sum(1 for a in analyses if a.healable),
            "average_confidence": (
                sum(a.confidence for a in analyses) / len(analyses) if analyses else 0.0),
            "top_failure_kinds": counts.most_common(10)
        }

    def is_healable(self, kind: FailureKind, confidence: float) -> bool:
        return is_healable_failure(kind, confidence, self.healable_kinds, self.min_confidence)

    def match_patterns(self, clean_message: str) -> Tuple[Optional[FailureKind], Dict[str, Any]]:
        """Evaluate the pattern table; returns (None, {}) if nothing matches."""
        for pattern in self._sorted_patterns:
            match = pattern.regex.search(clean_message)
            if match:
                return pattern.kind, pattern.extractor(match)
        return None, {}

    def categorize_failure(self, clean_message: str) -> FailureKind:
        """Keyword-based fallback categorization."""
        lower = clean_message.lower()
        for kind, groups in self.KEYWORD_RULES:
            if all(any(word in lower for word in group) for group in groups):
                return kind
        return FailureKind.UNKNOWN

    def extract_status_codes(self, message: str) -> Tuple[Optional[int], Optional[int]]:
        """
        Extract (expected, actual) HTTP status codes.

        Uses the status patterns of the table first; otherwise the first two
        three-digit status-like numbers in the message.
        """
        for pattern in self._sorted_patterns:
            if pattern.kind != FailureKind.STATUS_CODE_CHANGED:
                continue
            match = pattern.regex.search(message)
            if match:
                return int(match.group(1)), int(match.group(2))

        codes = [int(c) for c in self.STATUS_CODE_PATTERN.findall(message)]
        if len(codes) >= 2:
            return codes[0], codes[1]
        if codes:
            return None, codes[0]
        return None, None

    def extract_field_name(self, message: str) -> Optional[str]:
        for pattern in self.FIELD_NAME_PATTERNS:
            match = pattern.search(message)
            if match:
                return match.group(1)
        return None

    def extract_selector(self, message: str) -> Optional[str]:
        match = self.SELECTOR_PATTERN.search(message)
        return match.group(1) if match else None

    def extract_url(self, message: str) -> Optional[str]:
        match = self.URL_PATTERN.search(message)
        return match.group(0) if match else None

    def extract_http_method(self, message: str) -> Optional[str]:
        match = self.HTTP_METHOD_PATTERN.search(message)
        return match.group(1) if match else None

    def detect_assertion_type(self, message: str) -> str:
        """Kind of assertion that failed: equality, visibility, text, attribute, count or value."""
        if "toBeVisible" in message or "visible" in message:
            return "visibility"
        if "toHaveText" in message or "text" in message:
            return "text"
        if "toHaveAttribute" in message or "attribute" in message:
            return "attribute"
        if "toHaveCount" in message or "count" in message:
            return "count"
        if "toHaveValue" in message or "value" in message:
            return "value"
        return "equality"

    def suggest_fix(
        self,
        kind: FailureKind,
        details: Optional[Dict[str, Any]] = None,
        related_changes: Iterable[SpecChange] = ()
    ) -> Optional[str]:
        """
        Propose a remediation hint for a failure kind.

        When a related spec change explains the failure (a renamed field, a new
        status code or a moved endpoint) the hint names it explicitly.
        """
        details = details or {}
        changes = list(related_changes)
        field_name = details.get("field_name")

        if kind == FailureKind.FIELD_MISSING:
            if field_name:
                replacement = self._find_replacement_field(field_name, changes)
                if replacement:
                    return f"Field '{field_name}' was replaced by '{replacement}'; update the test to use '{replacement}'"
                return f"Update test to handle missing field '{field_name}' or use the new field name from spec"
            return "Update test to handle missing field or use new field name from spec"

        if kind == FailureKind.TYPE_MISMATCH:
            for change in changes:
                if change.change_type == ChangeType.TYPE_CHANGED and (
                        not field_name or change.field_name == field_name):
                    return (f"Type of '{change.field_name or change.path}' changed from "
                            f"'{change.old_value}' to '{change.new_value}'; update type assertions")
            return "Update type assertions to match new field type in spec"

        if kind == FailureKind.STATUS_CODE_CHANGED:
            for change in changes:
                if change.change_type == ChangeType.STATUS_CODE_CHANGED:
                    return f"Update expected status code from {change.old_value} to {change.new_value}"
            actual = details.get("actual_status")
            if actual:
                return f"Update expected status code to match API specification (server returned {actual})"
            return "Update expected status code to match API specification"

        if kind == FailureKind.ENDPOINT_NOT_FOUND:
            removed = self._endpoint_keys(changes, ChangeType.FIELD_REMOVED)
            added = self._endpoint_keys(changes, ChangeType.FIELD_ADDED)
            if removed and added:
                return f"Endpoint {removed[0]} moved; update the request path to {added[0]}"
            return "Update endpoint path to match new API specification"

        if kind == FailureKind.SCHEMA_VALIDATION:
            return "Update schema validation to match new API response structure"

        if kind == FailureKind.AUTH:
            if details.get("http_status") == 403:
                return "Check that the test credentials carry the permissions the endpoint now requires"
            return "Check authentication headers and ensure proper authorization"

        if kind == FailureKind.ASSERTION:
            actual = details.get("actual_value")
            if actual:
                return f"Review expected vs actual values; the server returned {actual}"
            return "Review expected vs actual values and update assertion or fix implementation"

        if kind == FailureKind.SELECTOR:
            return "Verify the selector is correct and the element exists"

        if kind == FailureKind.NAVIGATION:
            return "Review navigation target and ensure it is accessible"

        if kind == FailureKind.VALIDATION:
            if field_name:
                return f"Review validation rules for field '{field_name}'"
            return "Review validation rules for the request payload"

        return None

    def _enrich_details(
        self,
        kind: FailureKind,
        clean_message: str,
        details: Dict[str, Any],
        source_code: Optional[str]
    ) -> Dict[str, Any]:
        """Run the sub-detectors that apply to the confirmed kind."""
        enriched = dict(details)
        enriched["clean_message"] = enriched.get("clean_message") or clean_message

        if kind == FailureKind.STATUS_CODE_CHANGED and "actual_status" not in enriched:
            expected, actual = self.extract_status_codes(clean_message)
            if expected is not None:
                enriched["expected_status"] = expected
                enriched["expected_value"] = str(expected)
            if actual is not None:
                enriched["actual_status"] = actual
                enriched["actual_value"] = str(actual)

        if kind in (FailureKind.FIELD_MISSING, FailureKind.TYPE_MISMATCH,
                    FailureKind.SCHEMA_VALIDATION, FailureKind.VALIDATION, FailureKind.ASSERTION):
            if not enriched.get("field_name"):
                field_name = self.extract_field_name(clean_message)
                if field_name:
                    enriched["field_name"] = field_name

        if kind == FailureKind.ASSERTION:
            enriched["assertion_type"] = self.detect_assertion_type(clean_message)

        if kind in (FailureKind.SELECTOR, FailureKind.ASSERTION, FailureKind.TIMEOUT):
            selector = self.extract_selector(clean_message)
            if selector and not enriched.get("selector"):
                enriched["selector"] = selector

        url = self.extract_url(clean_message)
        if url and not enriched.get("url"):
            enriched["url"] = url

        method = self.extract_http_method(clean_message)
        if method is None and source_code:
            source_match = re.search(r"request\.(get|post|put|patch|delete)\(", source_code)
            if source_match:
                method = source_match.group(1).upper()
        if method and not enriched.get("http_method"):
            enriched["http_method"] = method

        return enriched

    def _root_cause(self, kind: FailureKind, details: Dict[str, Any], clean_message: str) -> str:
        if kind == FailureKind.STATUS_CODE_CHANGED and details.get("expected_status") and details.get("actual_status"):
            return (f"API endpoint returned status {details['actual_status']} "
                    f"instead of expected {details['expected_status']}")
        if kind == FailureKind.FIELD_MISSING and details.get("field_name"):
            return f"API response is missing expected field '{details['field_name']}'"
        if kind == FailureKind.TIMEOUT and details.get("timeout_ms"):
            return f"Request timed out after {details['timeout_ms']}ms"
        if kind == FailureKind.UNKNOWN:
            return clean_message or "Unknown failure cause"
        return self.ROOT_CAUSES[kind]

    @staticmethod
    def _endpoint_keys(changes: List[SpecChange], change_type: ChangeType) -> List[str]:
        """Endpoint keys ("METHOD /path") of whole-endpoint additions or removals."""
        return [
            c.affected_endpoints[0] for c in changes
            if c.change_type == change_type and c.path.startswith("paths.")
            and c.path.count(".") >= 2 and c.affected_endpoints
        ]

    @staticmethod
    def _find_replacement_field(field_name: str, changes: List[SpecChange]) -> Optional[str]:
        removed = [c for c in changes if c.change_type == ChangeType.FIELD_REMOVED and c.field_name == field_name]
        for removed_change in removed:
            for change in changes:
                if (change.change_type == ChangeType.FIELD_ADDED and change.field_name
                        and change.parent_path == removed_change.parent_path):
                    return change.field_name
        for change in changes:
            if change.change_type == ChangeType.FIELD_RENAMED and change.old_value == field_name:
                return change.new_value
        return None
