"""
Services for the API test self-healing pipeline.

This module contains:
- failure_classifier.py: Failure classification and fix suggestions
- spec_differ.py: OpenAPI specification loading and diffing
- transformation_rules.py / rule_based_healer.py: Deterministic source rewrites
- response_cache.py: LRU response cache with TTL and snapshots
- prompt_assembler.py / completion_service.py / ai_regenerator.py: Model-assisted regeneration
- test_code_updater.py: Test source file store with backups
- healing_strategies.py / healing_orchestrator.py: The healing loop
"""

from .ai_regenerator import AIRegenerator
from .completion_service import (
    BackoffPolicy,
    CompletionOptions,
    CompletionResponse,
    CompletionService,
    LiteLLMCompletionService
)
from .failure_classifier import FailureClassifier
from .healing_orchestrator import HealingOrchestrator, TestRunner
from .healing_strategies import AIStrategy, HealingRequest, HealingStrategy, RuleBasedStrategy, StrategyResult
from .prompt_assembler import PromptAssembler
from .response_cache import ResponseCache
from .rule_based_healer import RuleBasedHealer
from .spec_differ import SpecDiffer, SpecLoader, compare_spec_files
from .test_code_updater import ApiTestCodeUpdater

__all__ = [
    "AIRegenerator",
    "BackoffPolicy",
    "CompletionOptions",
    "CompletionResponse",
    "CompletionService",
    "LiteLLMCompletionService",
    "FailureClassifier",
    "HealingOrchestrator",
    "TestRunner",
    "AIStrategy",
    "HealingRequest",
    "HealingStrategy",
    "RuleBasedStrategy",
    "StrategyResult",
    "PromptAssembler",
    "ResponseCache",
    "RuleBasedHealer",
    "SpecDiffer",
    "SpecLoader",
    "compare_spec_files",
    "ApiTestCodeUpdater"
]
