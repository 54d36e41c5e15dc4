"""Core data models for the API test self-healing system."""

from .healing_models import (
    FailureKind,
    DEFAULT_HEALABLE_KINDS,
    ExecutionStatus,
    ExecutionOutcome,
    ExecutedTest,
    FailedTestCase,
    FailureAnalysis,
    HealingStrategyType,
    HealingAttempt,
    HealingOutcomeStatus,
    HealingOutcome,
    HealingStatistics,
    HealingReport,
    CachedItem,
    HealingConfiguration,
    RegenerationContext,
    RegenerationResult
)
from .spec_models import (
    ChangeType,
    ChangeSeverity,
    SpecChange,
    EndpointChange,
    ParameterChange,
    ComponentChange,
    EndpointChanges,
    ParameterChanges,
    ComponentChanges,
    DiffSummary,
    SpecDiff,
    DiffReport,
    SpecLoadResult,
    ComparisonOptions
)
from .rule_models import (
    RuleType,
    RenamePattern,
    TransformationRule,
    FieldRenameRule,
    FieldAdditionRule,
    FieldRemovalRule,
    PathChangeRule,
    StatusCodeChangeRule,
    HealingResult
)

# Note: Service classes are imported separately from their respective modules

__all__ = [
    "FailureKind",
    "DEFAULT_HEALABLE_KINDS",
    "ExecutionStatus",
    "ExecutionOutcome",
    "ExecutedTest",
    "FailedTestCase",
    "FailureAnalysis",
    "HealingStrategyType",
    "HealingAttempt",
    "HealingOutcomeStatus",
    "HealingOutcome",
    "HealingStatistics",
    "HealingReport",
    "CachedItem",
    "HealingConfiguration",
    "RegenerationContext",
    "RegenerationResult",
    "ChangeType",
    "ChangeSeverity",
    "SpecChange",
    "EndpointChange",
    "ParameterChange",
    "ComponentChange",
    "EndpointChanges",
    "ParameterChanges",
    "ComponentChanges",
    "DiffSummary",
    "SpecDiff",
    "DiffReport",
    "SpecLoadResult",
    "ComparisonOptions",
    "RuleType",
    "RenamePattern",
    "TransformationRule",
    "FieldRenameRule",
    "FieldAdditionRule",
    "FieldRemovalRule",
    "PathChangeRule",
    "StatusCodeChangeRule",
    "HealingResult"
]
