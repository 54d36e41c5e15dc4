"""
Rule-Based Healer for deterministic test repair.

Derives transformation rules from the specification changes that touch a
failing test's endpoint and rewrites the test source text accordingly.
No model calls are made; every rewrite is a regular expression over the
source, checked by a structural validation gate before it is accepted.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.models import (
    ChangeType,
    EndpointChange,
    FailedTestCase,
    FieldAdditionRule,
    FieldRemovalRule,
    FieldRenameRule,
    HealingResult,
    PathChangeRule,
    RuleType,
    SpecChange,
    SpecDiff,
    StatusCodeChangeRule,
    TransformationRule
)
from ..core.healing_utils import mean
from .transformation_rules import (
    COMMON_STATUS_CODE_CHANGES,
    FieldRenameDetector,
    jaro_winkler_similarity,
    similarity_ratio
)

logger = logging.getLogger(__name__)


ADDITION_CONFIDENCE = 0.85
REMOVAL_CONFIDENCE = 0.9
PATH_CHANGE_CONFIDENCE = 0.95
KNOWN_STATUS_CONFIDENCE = 0.95
UNKNOWN_STATUS_CONFIDENCE = 0.7

REQUEST_CALL_PATTERN = re.compile(
    r"request\.(get|post|put|patch|delete|head)\(\s*['\"`]([^'\"`]+)['\"`]",
    re.IGNORECASE
)

# Object literals that carry request payloads, keyed by change location
PAYLOAD_KEYS = {
    "parameter": ("params",),
    "request": ("data", "body", "json", "form"),
    "schema": ("data", "body", "json", "form"),
}

# Literal values the removal step knows how to delete safely
LITERAL_VALUE = (
    r"(?:'[^'\n]*'|\"[^\"\n]*\"|`[^`]*`|-?\d+(?:\.\d+)?|true|false|null|undefined"
    r"|[\w$.]+(?:\([^()\n]*\))?)"
)

VERSION_SEGMENT = re.compile(r"/v\d+/")


class RuleBasedHealer:
    """
    Deterministic healer that maps specification changes to source rewrites.

    Rules are detected from the changes relevant to the test's endpoint,
    applied in order, and only counted when they actually changed the text.
    """

    def __init__(self, similarity_threshold: float = 0.8):
        self.similarity_threshold = similarity_threshold
        self.rename_detector = FieldRenameDetector(similarity_threshold)
        self._appliers: Dict[RuleType, Callable[[str, Any], str]] = {
            RuleType.FIELD_RENAME: self.apply_field_rename,
            RuleType.FIELD_ADDITION: self.apply_field_addition,
            RuleType.FIELD_REMOVAL: self.apply_field_removal,
            RuleType.PATH_CHANGE: self.apply_path_change,
            RuleType.STATUS_CODE_CHANGE: self.apply_status_code_change,
        }

    def heal_test(self, test_case: FailedTestCase, spec_diff: Optional[SpecDiff]) -> HealingResult:
        """
        Attempt to heal a failing test using transformation rules.

        Args:
            test_case: Failing test with its current source text
            spec_diff: Structured diff between the old and new specification

        Returns:
            HealingResult with the healed source when at least one rule applied
            and the result passed validation
        """
        result = HealingResult()
        endpoint, method = self.resolve_endpoint(test_case)

        relevant = self.find_relevant_changes(spec_diff, endpoint, method) if spec_diff else []
        if not relevant:
            result.warnings.append("No relevant spec changes found for this test")
            return result

        rules = self.detect_rules(relevant, spec_diff, endpoint, method)
        if not rules:
            result.warnings.append("No applicable transformation rules detected")
            return result

        healed_code = test_case.source_code
        for rule in rules:
            updated = self.apply_rule(healed_code, rule)
            if updated != healed_code:
                result.rules_applied.append(rule)
                healed_code = updated
                logger.debug(f"Applied {rule.rule_type.value} rule: {rule.description}")

        if not result.rules_applied:
            result.warnings.append("No applicable transformation rules detected")
            return result

        issues = self.validation_issues(test_case.source_code, healed_code)
        if issues:
            logger.warning(f"⚠️  Rule-based healing of '{test_case.name}' failed validation: {', '.join(issues)}")
            result.errors.append("Healed code failed validation")
            result.errors.extend(issues)
            return result

        result.success = True
        result.healed_code = healed_code
        result.confidence = mean(rule.confidence for rule in result.rules_applied)
        result.warnings.append(f"Applied {len(result.rules_applied)} transformation rule(s)")
        logger.info(f"🔧 Healed '{test_case.name}' with {len(result.rules_applied)} rule(s), "
                    f"confidence {result.confidence:.2f}")
        return result

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def resolve_endpoint(self, test_case: FailedTestCase) -> Tuple[Optional[str], Optional[str]]:
        """Endpoint path and upper-case method of the test, inferred from source when absent."""
        endpoint = test_case.endpoint
        method = test_case.method.upper() if test_case.method else None
        if endpoint and method:
            return self._normalize_request_path(endpoint), method

        match = REQUEST_CALL_PATTERN.search(test_case.source_code or "")
        if match:
            method = method or match.group(1).upper()
            endpoint = endpoint or match.group(2)
        return (self._normalize_request_path(endpoint) if endpoint else None), method

    def find_relevant_changes(
        self,
        spec_diff: SpecDiff,
        endpoint: Optional[str],
        method: Optional[str]
    ) -> List[SpecChange]:
        """
        Select the changes that can affect a request to ``endpoint``.

        Inline operation changes are matched by their ``paths.<path>.<method>``
        locator; component and auth changes by their affected endpoints.
        """
        if not endpoint:
            return []

        relevant: List[SpecChange] = []
        for change in spec_diff.all_changes:
            spec_path, change_method = self._operation_of(change.path)
            if spec_path is not None:
                if self._method_matches(change_method, method) and self.endpoint_matches(endpoint, spec_path):
                    relevant.append(change)
                continue

            for affected in change.affected_endpoints:
                affected_method, _, affected_path = affected.partition(" ")
                if self._method_matches(affected_method.lower(), method) and \
                        self.endpoint_matches(endpoint, affected_path):
                    relevant.append(change)
                    break

        return relevant

    def endpoint_matches(self, test_endpoint: str, spec_path: str) -> bool:
        """True if a concrete request path matches a templated specification path."""
        test_endpoint = self._normalize_request_path(test_endpoint)
        if test_endpoint == spec_path:
            return True
        pattern = self._template_regex(spec_path, r"[^/]+")
        return re.fullmatch(pattern, test_endpoint) is not None

    # ------------------------------------------------------------------
    # Rule detection
    # ------------------------------------------------------------------

    def detect_rules(
        self,
        changes: Sequence[SpecChange],
        spec_diff: Optional[SpecDiff] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None
    ) -> List[TransformationRule]:
        """Derive transformation rules from relevant changes, in change order."""
        rules: List[TransformationRule] = []
        renames = self._pair_renames(changes)
        renamed_to = {id(added) for _, added in renames.values()}
        # A rename target already carries the old value; never add it again
        renamed_fields = {added.field_name for _, added in renames.values()}
        added_fields = set()

        for change in changes:
            if id(change) in renamed_to:
                continue

            if id(change) in renames:
                removed, added = renames[id(change)]
                rules.append(self.detect_field_rename(removed, added))
                continue

            if change.change_type == ChangeType.STATUS_CODE_CHANGED:
                rule = self.detect_status_code_change(change, endpoint, method)
                if rule:
                    rules.append(rule)
                continue

            if self._is_endpoint_change(change):
                continue

            if change.change_type == ChangeType.FIELD_ADDED and change.field_name:
                if change.required and change.location != "response" and change.field_name not in added_fields \
                        and change.field_name not in renamed_fields:
                    added_fields.add(change.field_name)
                    rules.append(self.detect_field_addition(change, change.new_value))
                continue

            if change.change_type == ChangeType.REQUIRED_CHANGED and change.field_name:
                if change.location != "response" and change.field_name not in added_fields \
                        and change.field_name not in renamed_fields:
                    added_fields.add(change.field_name)
                    schema = self._lookup_property_schema(change, changes, spec_diff)
                    rules.append(self.detect_field_addition(change, schema))
                continue

            if change.change_type == ChangeType.FIELD_REMOVED and change.field_name:
                rules.append(self.detect_field_removal(change))

        if spec_diff is not None and endpoint and method:
            path_rule = self.detect_path_change(spec_diff, endpoint, method)
            if path_rule:
                rules.append(path_rule)

        return rules

    def detect_field_rename(self, removed: SpecChange, added: SpecChange) -> FieldRenameRule:
        pattern = self.rename_detector.detect_pattern(removed.field_name, added.field_name)
        return FieldRenameRule(
            confidence=self.rename_detector.confidence_for(pattern),
            description=f"Rename field '{removed.field_name}' to '{added.field_name}' ({pattern.value})",
            old_field=removed.field_name,
            new_field=added.field_name,
            pattern=pattern,
            location=added.location
        )

    def detect_field_addition(self, change: SpecChange, schema: Any) -> FieldAdditionRule:
        schema = schema if isinstance(schema, dict) else {}
        field_type = "object" if "$ref" in schema else schema.get("type", "string")
        return FieldAdditionRule(
            confidence=ADDITION_CONFIDENCE,
            description=f"Add required field '{change.field_name}'",
            field_name=change.field_name,
            field_type=field_type,
            required=True,
            default_value=self.generate_default_value(field_type, schema),
            location=change.location,
            schema=schema
        )

    def detect_field_removal(self, change: SpecChange) -> FieldRemovalRule:
        return FieldRemovalRule(
            confidence=REMOVAL_CONFIDENCE,
            description=f"Remove field '{change.field_name}'",
            field_name=change.field_name,
            breaking=change.required,
            location=change.location
        )

    def detect_status_code_change(
        self,
        change: SpecChange,
        endpoint: Optional[str] = None,
        method: Optional[str] = None
    ) -> Optional[StatusCodeChangeRule]:
        if not isinstance(change.old_value, int) or not isinstance(change.new_value, int):
            return None

        known = COMMON_STATUS_CODE_CHANGES.get(f"{change.old_value}-{change.new_value}")
        return StatusCodeChangeRule(
            confidence=KNOWN_STATUS_CONFIDENCE if known else UNKNOWN_STATUS_CONFIDENCE,
            description=f"Update expected status {change.old_value} -> {change.new_value}",
            old_status=change.old_value,
            new_status=change.new_value,
            method=method,
            endpoint=endpoint,
            reason=known["reason"] if known else None
        )

    def detect_path_change(self, spec_diff: SpecDiff, endpoint: str, method: str) -> Optional[PathChangeRule]:
        """
        Pair a removed operation matching the test with an added operation
        under the same method whose path looks like its successor.
        """
        removed = [
            ep for ep in spec_diff.endpoints.removed
            if ep.method.upper() == method and self.endpoint_matches(endpoint, ep.path)
        ]
        if not removed:
            return None

        old_path = removed[0].path
        candidates = [ep for ep in spec_diff.endpoints.added if ep.method.upper() == method]
        new_path = self._best_successor(old_path, candidates)
        if new_path is None:
            return None

        return PathChangeRule(
            confidence=PATH_CHANGE_CONFIDENCE,
            description=f"Update endpoint {method} {old_path} -> {new_path}",
            old_path=old_path,
            new_path=new_path,
            method=method,
            change_kind=self._classify_path_change(old_path, new_path)
        )

    # ------------------------------------------------------------------
    # Rule application
    # ------------------------------------------------------------------

    def apply_rule(self, code: str, rule: TransformationRule) -> str:
        applier = self._appliers.get(rule.rule_type)
        if applier is None or not rule.applicable:
            return code
        return applier(code, rule)

    def apply_field_rename(self, code: str, rule: FieldRenameRule) -> str:
        old = re.escape(rule.old_field)
        new = rule.new_field
        code = re.sub(rf"\.{old}\b", f".{new}", code)
        code = re.sub(rf"\['{old}'\]", f"['{new}']", code)
        code = re.sub(rf"\[\"{old}\"\]", f'["{new}"]', code)
        code = re.sub(rf"(['\"]){old}\1(\s*:)", lambda m: f"{m.group(1)}{new}{m.group(1)}{m.group(2)}", code)
        code = re.sub(rf"(?<![\w$.'\"]){old}(\s*:)", lambda m: f"{new}{m.group(1)}", code)
        # toHaveProperty('old') style assertions
        code = re.sub(rf"(toHaveProperty\(\s*['\"]){old}(['\"])", lambda m: f"{m.group(1)}{new}{m.group(2)}", code)
        if rule.location == "parameter":
            code = re.sub(rf"([?&]){old}=", lambda m: f"{m.group(1)}{new}=", code)
        return code

    def apply_field_addition(self, code: str, rule: FieldAdditionRule) -> str:
        keys = PAYLOAD_KEYS.get(rule.location or "schema", PAYLOAD_KEYS["schema"])
        opener = re.compile(rf"\b(?:{'|'.join(keys)})\s*:\s*\{{")
        field_line = f"{rule.field_name}: {self.format_value(rule.default_value)}"

        edits: List[Tuple[int, int, str]] = []
        for match in opener.finditer(code):
            start = match.end()
            end = self._matching_brace(code, start)
            if end is None:
                continue
            content = code[start:end]
            if re.search(rf"(?<![\w$])['\"]?{re.escape(rule.field_name)}['\"]?\s*:", content):
                continue
            edits.append((start, end, self._insert_field(content, field_line)))

        for start, end, replacement in reversed(edits):
            code = code[:start] + replacement + code[end:]
        return code

    def apply_field_removal(self, code: str, rule: FieldRemovalRule) -> str:
        name = re.escape(rule.field_name)
        key = rf"(?<![\w$.])(['\"]?){name}\1\s*:\s*{LITERAL_VALUE}"

        if rule.location in (None, "request", "parameter", "schema"):
            # Whole-line properties first, then inline ones with their comma
            code = re.sub(rf"^[ \t]*{key}[ \t]*,?[ \t]*\n", "", code, flags=re.MULTILINE)
            code = re.sub(rf"{key}\s*,\s*", "", code)
            code = re.sub(rf",\s*{key}(?=\s*\}})", "", code)

        if rule.location in (None, "response", "schema"):
            reference = rf"(?:\.{name}\b|\[['\"]{name}['\"]\]|toHaveProperty\(\s*['\"]{name}['\"])"
            code = re.sub(
                rf"^[ \t]*(?:await\s+)?expect\([^\n]*{reference}[^\n]*\n",
                "", code, flags=re.MULTILINE)
        return code

    def apply_path_change(self, code: str, rule: PathChangeRule) -> str:
        old_names = re.findall(r"\{([^}]+)\}", rule.old_path)
        pattern = re.compile(
            r"(?P<prefix>['\"`](?:https?://[^/'\"`\s]+|\$\{[^}]+\})?)"
            + self._template_regex(rule.old_path, r"([^/'\"`?#\s]+)")
            + r"(?=['\"`?#])"
        )

        def substitute(match: re.Match) -> str:
            values = dict(zip(old_names, match.groups()[1:]))
            positional = list(match.groups()[1:])

            def fill(placeholder: re.Match) -> str:
                name = placeholder.group(1)
                if name in values:
                    return values[name]
                index = len(re.findall(r"\{[^}]+\}", rule.new_path[:placeholder.start()]))
                return positional[index] if index < len(positional) else placeholder.group(0)

            return match.group("prefix") + re.sub(r"\{([^}]+)\}", fill, rule.new_path)

        return pattern.sub(substitute, code)

    def apply_status_code_change(self, code: str, rule: StatusCodeChangeRule) -> str:
        old, new = str(rule.old_status), str(rule.new_status)
        status = r"\bstatus(?:Code)?(?:\(\))?"
        code = re.sub(
            rf"(expect\(\s*[\w$.\[\]'\"]*?{status}\s*\)\s*\.\s*(?:toBe|toEqual|toStrictEqual)\(\s*){old}(?=\s*\))",
            lambda m: f"{m.group(1)}{new}", code)
        code = re.sub(
            rf"({status}\s*(?:===|==|!==|!=)\s*){old}\b",
            lambda m: f"{m.group(1)}{new}", code)
        code = re.sub(
            rf"\b{old}(\s*(?:===|==|!==|!=)\s*[\w$.]*{status})",
            lambda m: f"{new}{m.group(1)}", code)
        return code

    # ------------------------------------------------------------------
    # Validation and defaults
    # ------------------------------------------------------------------

    def validate_healing(self, original: str, healed: str) -> bool:
        return not self.validation_issues(original, healed)

    def validation_issues(self, original: str, healed: str) -> List[str]:
        """Structural checks every healed source must pass."""
        issues = []
        if healed == original:
            issues.append("Healed code is identical to the original")
        for opening, closing in (("{", "}"), ("(", ")"), ("[", "]")):
            if healed.count(opening) != healed.count(closing):
                issues.append(f"Unbalanced '{opening}{closing}'")
        if not re.search(r"\b(?:test|it)(?:\.(?:only|skip))?\s*\(", healed):
            issues.append("Missing test declaration")
        if "expect(" not in healed:
            issues.append("Missing assertions")
        return issues

    def generate_default_value(self, field_type: str, schema: Optional[Dict[str, Any]] = None) -> Any:
        """Placeholder value for a newly required field."""
        schema = schema or {}
        enum = schema.get("enum")
        if enum:
            return enum[0]

        if field_type == "string":
            value_format = schema.get("format")
            if value_format == "email":
                return "test@example.com"
            if value_format in ("uri", "url"):
                return "https://example.com"
            if value_format == "date-time":
                return datetime.now(timezone.utc).isoformat()
            if value_format == "date":
                return datetime.now(timezone.utc).date().isoformat()
            return "test-value"

        if field_type in ("integer", "number"):
            minimum = schema.get("minimum")
            maximum = schema.get("maximum")
            if minimum is not None and maximum is not None:
                midpoint = (minimum + maximum) / 2
                return int(midpoint) if field_type == "integer" else midpoint
            if minimum is not None:
                return minimum
            if maximum is not None:
                return maximum // 2
            return 42

        if field_type == "boolean":
            return True
        if field_type == "array":
            return []
        if field_type == "object":
            return {}
        return "test-value"

    @staticmethod
    def format_value(value: Any) -> str:
        """Render a Python value as a JavaScript literal."""
        if isinstance(value, bool):
            return "true" if value else "false"
        if value is None:
            return "null"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, list):
            return "[]"
        if isinstance(value, dict):
            return "{}"
        escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
        return f"'{escaped}'"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pair_renames(self, changes: Sequence[SpecChange]) -> Dict[int, Tuple[SpecChange, SpecChange]]:
        """Pair removed and added fields under the same parent into renames, keyed by the removal."""
        removed = [c for c in changes if c.change_type == ChangeType.FIELD_REMOVED and c.field_name]
        added = [c for c in changes if c.change_type == ChangeType.FIELD_ADDED and c.field_name]
        used = set()
        pairs: Dict[int, Tuple[SpecChange, SpecChange]] = {}

        for old in removed:
            best = None
            best_rank = None
            for index, new in enumerate(added):
                if index in used or new.parent_path != old.parent_path:
                    continue
                pattern = self.rename_detector.detect_pattern(old.field_name, new.field_name)
                if pattern is None:
                    continue
                # Equal confidence prefers the closer name
                rank = (-self.rename_detector.confidence_for(pattern),
                        -jaro_winkler_similarity(old.field_name.lower(), new.field_name.lower()))
                if best_rank is None or rank < best_rank:
                    best, best_rank = index, rank
            if best is not None:
                used.add(best)
                pairs[id(old)] = (old, added[best])

        return pairs

    def _best_successor(self, old_path: str, candidates: Sequence[EndpointChange]) -> Optional[str]:
        normalized_old = self._normalize_template(old_path)
        best_path = None
        best_score = 0.0

        for candidate in candidates:
            normalized_new = self._normalize_template(candidate.path)
            if normalized_new.endswith(normalized_old):
                score = 2.0
            elif VERSION_SEGMENT.search(candidate.path) and not VERSION_SEGMENT.search(old_path) and \
                    VERSION_SEGMENT.sub("/", normalized_new) == normalized_old:
                score = 1.5
            else:
                score = similarity_ratio(normalized_old, normalized_new)
                if score < self.similarity_threshold:
                    continue
            if score > best_score:
                best_path, best_score = candidate.path, score

        return best_path

    @staticmethod
    def _classify_path_change(old_path: str, new_path: str) -> str:
        if VERSION_SEGMENT.search(new_path) and not VERSION_SEGMENT.search(old_path):
            return "versioned"
        if len([s for s in old_path.split("/") if s]) != len([s for s in new_path.split("/") if s]):
            return "restructured"
        return "renamed"

    @staticmethod
    def _lookup_property_schema(
        change: SpecChange,
        changes: Sequence[SpecChange],
        spec_diff: Optional[SpecDiff]
    ) -> Dict[str, Any]:
        """Schema of a field that became required, from a sibling addition or the component table."""
        parent = change.path[:-len(".required")] if change.path.endswith(".required") else change.parent_path
        for other in changes:
            if other.change_type == ChangeType.FIELD_ADDED and other.field_name == change.field_name \
                    and other.parent_path == parent and isinstance(other.new_value, dict):
                return other.new_value

        if spec_diff is None or not change.path.startswith("components.schemas."):
            return {}
        name = change.path.split(".")[2]
        for component in spec_diff.schemas.modified:
            if component.name == name:
                properties = (component.new_definition or {}).get("properties") or {}
                return properties.get(change.field_name) or {}
        return {}

    @staticmethod
    def _operation_of(locator: str) -> Tuple[Optional[str], Optional[str]]:
        """Split ``paths.<path>.<method>...`` into (path, method)."""
        if not locator.startswith("paths."):
            return None, None
        match = re.match(r"paths\.(/[^.]*(?:\.[^.]+)*?)\.(get|post|put|patch|delete|head|options|trace)(?:\.|$)",
                         locator)
        if not match:
            return None, None
        return match.group(1), match.group(2)

    @staticmethod
    def _is_endpoint_change(change: SpecChange) -> bool:
        return change.field_name is None and change.location is None and \
            change.change_type in (ChangeType.FIELD_ADDED, ChangeType.FIELD_REMOVED)

    @staticmethod
    def _method_matches(change_method: Optional[str], test_method: Optional[str]) -> bool:
        if not change_method or not test_method:
            return True
        return change_method.upper() == test_method.upper()

    @staticmethod
    def _template_regex(template: str, placeholder: str) -> str:
        parts = re.split(r"\{[^}]+\}", template)
        return placeholder.join(re.escape(part) for part in parts)

    @staticmethod
    def _normalize_template(path: str) -> str:
        return re.sub(r"\{[^}]+\}", "{}", path)

    @staticmethod
    def _normalize_request_path(endpoint: str) -> str:
        endpoint = re.sub(r"^\$\{[^}]+\}", "", endpoint)
        endpoint = re.sub(r"^https?://[^/]+", "", endpoint)
        endpoint = re.split(r"[?#]", endpoint, maxsplit=1)[0]
        return endpoint or "/"

    @staticmethod
    def _matching_brace(code: str, start: int) -> Optional[int]:
        """Index of the brace closing the object opened just before ``start``."""
        depth = 1
        quote = None
        index = start
        while index < len(code):
            char = code[index]
            if quote:
                if char == "\\":
                    index += 2
                    continue
                if char == quote:
                    quote = None
            elif char in "'\"`":
                quote = char
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return index
            index += 1
        return None

    @staticmethod
    def _insert_field(content: str, field_line: str) -> str:
        stripped = content.rstrip()
        trailing = content[len(stripped):]
        if not stripped.strip():
            return f" {field_line} "

        separator = "" if stripped.endswith(",") else ","
        if "\n" not in stripped:
            return f"{stripped}{separator} {field_line}{trailing}"

        last_line = [line for line in stripped.splitlines() if line.strip()][-1]
        indent = last_line[:len(last_line) - len(last_line.lstrip())]
        return f"{stripped}{separator}\n{indent}{field_line}{trailing}"
