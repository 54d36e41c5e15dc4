"""
Pluggable healing strategies run by the orchestrator.

Each strategy takes one healing request and reports whether it produced a
validated rewrite. The orchestrator tries them in order until one succeeds.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.exceptions import FileIOError
from ..core.models import (
    FailedTestCase,
    FailureAnalysis,
    HealingStrategyType,
    RegenerationContext,
    SpecChange,
    SpecDiff
)
from .ai_regenerator import AIRegenerator
from .rule_based_healer import RuleBasedHealer
from .test_code_updater import ApiTestCodeUpdater

logger = logging.getLogger(__name__)


@dataclass
class HealingRequest:
    """Inputs shared by every strategy for one failing test."""
    test_case: FailedTestCase
    analysis: FailureAnalysis
    spec_diff: Optional[SpecDiff] = None
    related_changes: List[SpecChange] = field(default_factory=list)
    relevant_spec: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StrategyResult:
    """What a strategy produced for one request."""
    strategy: HealingStrategyType
    success: bool
    healed_code: Optional[str] = None
    confidence: float = 0.0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    cached: bool = False
    written: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class HealingStrategy(ABC):
    """Interface of a healing strategy."""

    strategy_type: HealingStrategyType

    @abstractmethod
    async def heal(self, request: HealingRequest) -> StrategyResult:
        """
        Try to heal the test described by ``request``.

        Returns:
            StrategyResult; ``success`` means the rewrite passed validation

        Raises:
            CompletionError: Propagated from completion-backed strategies
        """


class RuleBasedStrategy(HealingStrategy):
    """Deterministic rewrites derived from the specification diff."""

    strategy_type = HealingStrategyType.RULE_BASED

    def __init__(self, healer: RuleBasedHealer, file_store: Optional[ApiTestCodeUpdater] = None):
        self.healer = healer
        self.file_store = file_store

    async def heal(self, request: HealingRequest) -> StrategyResult:
        if request.spec_diff is None:
            return StrategyResult(
                strategy=self.strategy_type,
                success=False,
                errors=["No specification diff available for rule-based healing"]
            )

        healing = self.healer.heal_test(request.test_case, request.spec_diff)
        result = StrategyResult(
            strategy=self.strategy_type,
            success=healing.success,
            healed_code=healing.healed_code,
            confidence=healing.confidence,
            errors=list(healing.errors),
            warnings=list(healing.warnings)
        )

        if healing.success and self.file_store is not None:
            try:
                self.file_store.write_test_source(request.test_case.source_path, healing.healed_code)
                result.written = True
            except FileIOError as e:
                result.warnings.append(f"Healed code was not written: {e.message}")
                logger.warning(f"⚠️  Rule-based fix for '{request.test_case.name}' was not written: {e.message}")

        return result


class AIStrategy(HealingStrategy):
    """Model-assisted regeneration through the AI regenerator."""

    strategy_type = HealingStrategyType.AI

    def __init__(self, regenerator: AIRegenerator, few_shot_count: int = 3):
        self.regenerator = regenerator
        self.few_shot_count = few_shot_count

    async def heal(self, request: HealingRequest) -> StrategyResult:
        context = RegenerationContext(
            test_case=request.test_case,
            analysis=request.analysis,
            spec_changes=list(request.related_changes),
            relevant_spec=request.relevant_spec,
            include_few_shot=self.few_shot_count > 0,
            few_shot_count=self.few_shot_count
        )
        regeneration = await self.regenerator.regenerate(context)

        errors = list(regeneration.validation_errors)
        if regeneration.error_message and not errors:
            errors.append(regeneration.error_message)

        warnings = list(regeneration.warnings)
        if regeneration.write_error:
            warnings.append(f"Regenerated code was not written: {regeneration.write_error}")

        return StrategyResult(
            strategy=self.strategy_type,
            success=regeneration.success,
            healed_code=regeneration.regenerated_code if regeneration.success else None,
            confidence=request.analysis.confidence if regeneration.success else 0.0,
            tokens_used=regeneration.tokens_used,
            estimated_cost=regeneration.estimated_cost,
            cached=regeneration.cached,
            written=regeneration.written,
            errors=errors,
            warnings=warnings
        )
