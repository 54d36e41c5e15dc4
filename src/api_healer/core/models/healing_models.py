"""Data models for the API test self-healing system."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum

from .spec_models import SpecChange


class FailureKind(Enum):
    """Closed set of failure categories produced by classification."""
    FIELD_MISSING = "field_missing"
    TYPE_MISMATCH = "type_mismatch"
    STATUS_CODE_CHANGED = "status_code_changed"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    SCHEMA_VALIDATION = "schema_validation"
    AUTH = "auth"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    ASSERTION = "assertion"
    SELECTOR = "selector"
    NAVIGATION = "navigation"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


DEFAULT_HEALABLE_KINDS = [
    FailureKind.FIELD_MISSING,
    FailureKind.TYPE_MISMATCH,
    FailureKind.STATUS_CODE_CHANGED,
    FailureKind.ENDPOINT_NOT_FOUND,
    FailureKind.SCHEMA_VALIDATION
]


class ExecutionStatus(Enum):
    """Outcome status reported by a test runner."""
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class HealingStrategyType(Enum):
    """Strategy that produced a healing attempt."""
    RULE_BASED = "rule_based"
    AI = "ai"
    HYBRID = "hybrid"
    FALLBACK = "fallback"


class HealingOutcomeStatus(Enum):
    """Per-test result of a healing pass."""
    HEALED = "healed"
    FAILED = "failed"
    NON_HEALABLE = "non_healable"
    BUDGET_EXCEEDED = "budget_exceeded"
    ERROR = "error"


@dataclass
class ExecutionOutcome:
    """Result of running a single test."""
    status: ExecutionStatus
    duration: float = 0.0  # seconds
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    stack_trace: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == ExecutionStatus.PASSED

    @property
    def is_failure(self) -> bool:
        return self.status in (ExecutionStatus.FAILED, ExecutionStatus.ERROR, ExecutionStatus.TIMEOUT)


@dataclass
class ExecutedTest:
    """One entry of the result list handed to the orchestrator."""
    test_id: str
    name: str
    source_path: str
    outcome: ExecutionOutcome
    endpoint: Optional[str] = None
    method: Optional[str] = None


@dataclass
class FailedTestCase:
    """A failing test owned by the orchestrator for one healing pass."""
    test_id: str
    name: str
    source_path: str
    source_code: str
    outcome: ExecutionOutcome
    previous_attempts: int = 0
    endpoint: Optional[str] = None
    method: Optional[str] = None


@dataclass(frozen=True)
class FailureAnalysis:
    """Typed description of why a test failed. Never mutated after creation."""
    failure_kind: FailureKind
    root_cause: str
    confidence: float
    healable: bool
    related_changes: Tuple[SpecChange, ...] = ()
    suggested_fix: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    analyzed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failure_kind": self.failure_kind.value,
            "root_cause": self.root_cause,
            "confidence": self.confidence,
            "healable": self.healable,
            "related_changes": [c.to_dict() for c in self.related_changes],
            "suggested_fix": self.suggested_fix,
            "details": dict(self.details),
            "analyzed_at": self.analyzed_at.isoformat()
        }


@dataclass
class HealingAttempt:
    """Record of one healing try for a test, kept in the orchestrator ledger."""
    attempt_id: str
    test_id: str
    test_name: str
    strategy: HealingStrategyType
    failure_kind: FailureKind
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    confidence: float = 0.0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    cached: bool = False
    retest_passed: Optional[bool] = None
    source_diff: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def duration(self) -> Optional[float]:
        """Attempt duration in seconds."""
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "test_id": self.test_id,
            "test_name": self.test_name,
            "strategy": self.strategy.value,
            "failure_kind": self.failure_kind.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "success": self.success,
            "confidence": self.confidence,
            "tokens_used": self.tokens_used,
            "estimated_cost": self.estimated_cost,
            "cached": self.cached,
            "retest_passed": self.retest_passed,
            "source_diff": self.source_diff,
            "error_message": self.error_message
        }


@dataclass
class HealingOutcome:
    """Per-test result produced by one orchestrator pass."""
    test_id: str
    test_name: str
    attempted: bool
    success: bool
    status: HealingOutcomeStatus
    reason: Optional[str] = None
    analysis: Optional[FailureAnalysis] = None
    attempt: Optional[HealingAttempt] = None
    healed_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "test_name": self.test_name,
            "attempted": self.attempted,
            "success": self.success,
            "status": self.status.value,
            "reason": self.reason,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "attempt": self.attempt.to_dict() if self.attempt else None
        }


@dataclass
class HealingStatistics:
    """Derived statistics over the attempts of one pass."""
    success_rate: float = 0.0
    average_healing_time: float = 0.0
    by_failure_kind: Dict[str, Dict[str, int]] = field(default_factory=dict)
    success_rate_by_kind: Dict[str, float] = field(default_factory=dict)
    top_failure_kinds: List[Tuple[str, int]] = field(default_factory=list)
    total_tokens_used: int = 0
    total_estimated_cost: float = 0.0
    average_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "average_healing_time": self.average_healing_time,
            "by_failure_kind": self.by_failure_kind,
            "success_rate_by_kind": self.success_rate_by_kind,
            "top_failure_kinds": [{"kind": k, "count": c} for k, c in self.top_failure_kinds],
            "total_tokens_used": self.total_tokens_used,
            "total_estimated_cost": self.total_estimated_cost,
            "average_confidence": self.average_confidence
        }


@dataclass
class HealingReport:
    """Top-level, read-only output of one orchestrator invocation."""
    total_tests: int = 0
    failed_tests: int = 0
    healing_attempts: int = 0
    successfully_healed: int = 0
    failed_healing: int = 0
    non_healable: int = 0
    budget_exceeded: int = 0
    skipped_for_time: int = 0
    total_time: float = 0.0  # seconds
    outcomes: List[HealingOutcome] = field(default_factory=list)
    attempts: List[HealingAttempt] = field(default_factory=list)
    statistics: HealingStatistics = field(default_factory=HealingStatistics)
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def healable(self) -> int:
        """Tests that passed the healability gate and were attempted."""
        return self.healing_attempts

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "total_tests": self.total_tests,
            "failed_tests": self.failed_tests,
            "healing_attempts": self.healing_attempts,
            "successfully_healed": self.successfully_healed,
            "failed_healing": self.failed_healing,
            "non_healable": self.non_healable,
            "budget_exceeded": self.budget_exceeded,
            "skipped_for_time": self.skipped_for_time,
            "total_time": self.total_time,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "attempts": [a.to_dict() for a in self.attempts],
            "statistics": self.statistics.to_dict(),
            "generated_at": self.generated_at.isoformat()
        }


@dataclass
class CachedItem:
    """Entry stored in the response cache. Timestamps are epoch seconds."""
    key: str
    value: Any
    created_at: float
    last_accessed_at: float
    access_count: int
    ttl: float
    expires_at: float
    size: int

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "created_at": datetime.fromtimestamp(self.created_at).isoformat(),
            "last_accessed_at": datetime.fromtimestamp(self.last_accessed_at).isoformat(),
            "access_count": self.access_count,
            "ttl": self.ttl,
            "expires_at": datetime.fromtimestamp(self.expires_at).isoformat(),
            "size": self.size
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CachedItem':
        data = data.copy()
        for key in ("created_at", "last_accessed_at", "expires_at"):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key]).timestamp()
        return cls(**data)


@dataclass
class HealingConfiguration:
    """Configuration settings for the self-healing pipeline."""
    enabled: bool = True

    # Budgets
    max_attempts_per_test: int = 2
    max_total_time: float = 300.0  # seconds

    # Healability policy
    min_confidence: float = 0.6
    healable_failure_kinds: List[FailureKind] = field(
        default_factory=lambda: list(DEFAULT_HEALABLE_KINDS))

    # Strategy settings
    auto_retry: bool = True
    backup_original: bool = True
    enable_rule_based: bool = True
    enable_ai: bool = True
    rename_similarity_threshold: float = 0.8
    few_shot_count: int = 3

    # Completion service settings
    ai_model: str = "gemini/gemini-2.5-flash"
    ai_temperature: float = 0.2
    ai_max_tokens: int = 2000
    ai_max_retries: int = 3
    ai_timeout: float = 30.0  # seconds
    ai_base_delay: float = 2.0  # seconds

    # Response cache settings
    cache_enabled: bool = True
    cache_default_ttl: float = 86400.0  # seconds
    cache_max_size: int = 1000
    cache_eviction_policy: str = "lru"
    cache_persistence_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "enabled": self.enabled,
            "max_attempts_per_test": self.max_attempts_per_test,
            "max_total_time": self.max_total_time,
            "min_confidence": self.min_confidence,
            "healable_failure_kinds": [k.value for k in self.healable_failure_kinds],
            "auto_retry": self.auto_retry,
            "backup_original": self.backup_original,
            "enable_rule_based": self.enable_rule_based,
            "enable_ai": self.enable_ai,
            "rename_similarity_threshold": self.rename_similarity_threshold,
            "few_shot_count": self.few_shot_count,
            "ai_model": self.ai_model,
            "ai_temperature": self.ai_temperature,
            "ai_max_tokens": self.ai_max_tokens,
            "ai_max_retries": self.ai_max_retries,
            "ai_timeout": self.ai_timeout,
            "ai_base_delay": self.ai_base_delay,
            "cache_enabled": self.cache_enabled,
            "cache_default_ttl": self.cache_default_ttl,
            "cache_max_size": self.cache_max_size,
            "cache_eviction_policy": self.cache_eviction_policy,
            "cache_persistence_path": self.cache_persistence_path
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingConfiguration':
        """Create configuration from dictionary."""
        data = data.copy()
        if "healable_failure_kinds" in data:
            data["healable_failure_kinds"] = [
                k if isinstance(k, FailureKind) else FailureKind(k)
                for k in data["healable_failure_kinds"]
            ]
        return cls(**data)


@dataclass
class RegenerationContext:
    """Everything the AI regenerator needs to repair one test."""
    test_case: FailedTestCase
    analysis: FailureAnalysis
    spec_changes: List[SpecChange] = field(default_factory=list)
    relevant_spec: Dict[str, Any] = field(default_factory=dict)
    include_few_shot: bool = True
    few_shot_count: int = 3


@dataclass
class RegenerationResult:
    """Outcome of one AI regeneration, including cost accounting."""
    success: bool
    test_id: str
    regenerated_code: Optional[str] = None
    model: Optional[str] = None
    tokens_used: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost: float = 0.0
    cached: bool = False
    duration: float = 0.0  # seconds
    retries: int = 0
    validation_errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    written: bool = False
    write_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "test_id": self.test_id,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "estimated_cost": self.estimated_cost,
            "cached": self.cached,
            "duration": self.duration,
            "retries": self.retries,
            "validation_errors": self.validation_errors,
            "warnings": self.warnings,
            "error_message": self.error_message,
            "written": self.written,
            "write_error": self.write_error
        }
