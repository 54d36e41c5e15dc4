"""Transformation rule models used by the rule-based healer."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class RuleType(Enum):
    """Textually representable rule variants."""
    FIELD_RENAME = "field_rename"
    FIELD_ADDITION = "field_addition"
    FIELD_REMOVAL = "field_removal"
    PATH_CHANGE = "path_change"
    STATUS_CODE_CHANGE = "status_code_change"


class RenamePattern(Enum):
    """Rename patterns, tried in declaration order by the rename detector."""
    SNAKE_TO_CAMEL = "snake_to_camel"
    CAMEL_TO_SNAKE = "camel_to_snake"
    KEBAB_TO_CAMEL = "kebab_to_camel"
    CAMEL_TO_KEBAB = "camel_to_kebab"
    PASCAL_TO_CAMEL = "pascal_to_camel"
    CAMEL_TO_PASCAL = "camel_to_pascal"
    SNAKE_TO_PASCAL = "snake_to_pascal"
    SIMILARITY_MATCH = "similarity_match"
    ABBREVIATION = "abbreviation"
    EXPANSION = "expansion"


@dataclass
class TransformationRule:
    """Base for all rule variants; rules are derived, never persisted."""
    confidence: float
    description: str
    applicable: bool = True

    @property
    def rule_type(self) -> RuleType:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.rule_type.value,
            "confidence": self.confidence,
            "description": self.description,
            "applicable": self.applicable
        }


@dataclass
class FieldRenameRule(TransformationRule):
    old_field: str = ""
    new_field: str = ""
    pattern: RenamePattern = RenamePattern.SIMILARITY_MATCH
    location: Optional[str] = None

    @property
    def rule_type(self) -> RuleType:
        return RuleType.FIELD_RENAME


@dataclass
class FieldAdditionRule(TransformationRule):
    field_name: str = ""
    field_type: str = "string"
    required: bool = False
    default_value: Any = None
    location: Optional[str] = None
    schema: Dict[str, Any] = field(default_factory=dict)

    @property
    def rule_type(self) -> RuleType:
        return RuleType.FIELD_ADDITION


@dataclass
class FieldRemovalRule(TransformationRule):
    field_name: str = ""
    breaking: bool = False
    location: Optional[str] = None

    @property
    def rule_type(self) -> RuleType:
        return RuleType.FIELD_REMOVAL


@dataclass
class PathChangeRule(TransformationRule):
    old_path: str = ""
    new_path: str = ""
    method: str = "GET"
    change_kind: str = "renamed"  # versioned, renamed, restructured

    @property
    def rule_type(self) -> RuleType:
        return RuleType.PATH_CHANGE


@dataclass
class StatusCodeChangeRule(TransformationRule):
    old_status: int = 0
    new_status: int = 0
    method: Optional[str] = None
    endpoint: Optional[str] = None
    reason: Optional[str] = None

    @property
    def rule_type(self) -> RuleType:
        return RuleType.STATUS_CODE_CHANGE


@dataclass
class HealingResult:
    """Outcome of a rule-based healing pass over one test source."""
    success: bool = False
    healed_code: Optional[str] = None
    rules_applied: List[TransformationRule] = field(default_factory=list)
    confidence: float = 0.0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
