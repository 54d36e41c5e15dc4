"""
Healing Orchestrator Service for the API test self-healing pipeline.

This service runs the healing loop over a batch of executed tests: it detects
failures, classifies them, enforces the attempt and time budgets, tries the
configured healing strategies, optionally re-runs healed tests and aggregates
the results into a HealingReport.
"""

import asyncio
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.config import settings
from ..core.config_loader import SelfHealingConfigLoader
from ..core.exceptions import (
    BudgetExceededError,
    ConfigurationError,
    FileIOError,
    HealingError,
    NonHealableError
)
from ..core.healing_utils import (
    compute_source_diff,
    create_failed_test_case,
    create_healing_attempt,
    mean
)
from ..core.logging_config import get_healing_logger
from ..core.models import (
    ExecutedTest,
    ExecutionOutcome,
    FailedTestCase,
    HealingAttempt,
    HealingConfiguration,
    HealingOutcome,
    HealingOutcomeStatus,
    HealingReport,
    HealingStatistics,
    HealingStrategyType,
    SpecChange,
    SpecDiff
)
from .ai_regenerator import AIRegenerator
from .completion_service import CompletionService, LiteLLMCompletionService
from .failure_classifier import FailureClassifier
from .healing_strategies import (
    AIStrategy,
    HealingRequest,
    HealingStrategy,
    RuleBasedStrategy,
    StrategyResult
)
from .response_cache import ResponseCache
from .rule_based_healer import RuleBasedHealer
from .test_code_updater import ApiTestCodeUpdater


logger = logging.getLogger(__name__)

TOP_FAILURE_KINDS = 5
UNREADABLE_SOURCE = "// Source unavailable: {path}\n"


class TestRunner(ABC):
    """Executes a single test and reports its outcome."""

    __test__ = False

    @abstractmethod
    async def run_test(self, source_path: str, test_name: str) -> ExecutionOutcome:
        """Run one test by source path and name."""


class HealingOrchestrator:
    """Main orchestrator for the API test healing workflow."""

    def __init__(
        self,
        config: HealingConfiguration,
        classifier: Optional[FailureClassifier] = None,
        strategies: Optional[Sequence[HealingStrategy]] = None,
        test_runner: Optional[TestRunner] = None,
        file_store: Optional[ApiTestCodeUpdater] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize the healing orchestrator.

        Args:
            config: Healing configuration settings
            classifier: Failure classifier; built from the config when omitted
            strategies: Healing strategies tried in order. Defaults to the
                rule-based strategy alone when it is enabled
            test_runner: Runner used to re-execute healed tests
            file_store: Reads test sources and backs them up before rewrites
            clock: Monotonic clock in seconds used for the time budget

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        SelfHealingConfigLoader.validate_config(config)
        self.config = config

        self.file_store = file_store or ApiTestCodeUpdater()
        self.classifier = classifier or FailureClassifier.from_config(config)
        self.change_matcher = RuleBasedHealer(config.rename_similarity_threshold)
        if strategies is None:
            strategies = [RuleBasedStrategy(self.change_matcher, self.file_store)] if config.enable_rule_based else []
        self.strategies: List[HealingStrategy] = list(strategies)
        self.test_runner = test_runner
        self._clock = clock

        # Attempt ledger, keyed by test id, for the orchestrator's lifetime
        self.attempt_ledger: Dict[str, List[HealingAttempt]] = {}
        self.ledger_lock = asyncio.Lock()

        self.runs = 0
        self.last_report: Optional[HealingReport] = None

        logger.info(f"Healing orchestrator initialized with strategies: "
                    f"{[s.strategy_type.value for s in self.strategies]}")

    @classmethod
    def create(
        cls,
        config: HealingConfiguration,
        completion_service: Optional[CompletionService] = None,
        test_runner: Optional[TestRunner] = None,
        file_store: Optional[ApiTestCodeUpdater] = None,
        cache: Optional[ResponseCache] = None,
        **kwargs
    ) -> "HealingOrchestrator":
        """Build an orchestrator with the full rule-based then AI pipeline.

        The completion service defaults to litellm with the credentials from
        the environment settings.
        """
        SelfHealingConfigLoader.validate_config(config)
        file_store = file_store or ApiTestCodeUpdater()

        strategies: List[HealingStrategy] = []
        if config.enable_rule_based:
            strategies.append(RuleBasedStrategy(RuleBasedHealer(config.rename_similarity_threshold), file_store))

        if config.enable_ai:
            if cache is None and config.cache_enabled:
                cache = ResponseCache.from_config(config)
                if config.cache_persistence_path and os.path.exists(config.cache_persistence_path):
                    try:
                        cache.import_cache(config.cache_persistence_path)
                    except FileIOError as e:
                        logger.warning(f"⚠️  Could not load cache snapshot: {e.message}")
            completion_service = completion_service or LiteLLMCompletionService(
                api_key=settings.GEMINI_API_KEY,
                track_costs=settings.TRACK_LLM_COSTS
            )
            regenerator = AIRegenerator.from_config(config, completion_service, cache=cache, file_store=file_store)
            strategies.append(AIStrategy(regenerator, few_shot_count=config.few_shot_count))

        return cls(config, strategies=strategies, test_runner=test_runner, file_store=file_store, **kwargs)

    async def heal_failed_tests(
        self,
        executed_tests: Sequence[ExecutedTest],
        spec_diff: Optional[SpecDiff] = None,
        current_spec: Optional[Dict[str, Any]] = None
    ) -> HealingReport:
        """Heal every failing test of a run, in input order.

        Args:
            executed_tests: Runner results for the whole suite
            spec_diff: Diff between the specification the tests were written
                against and the current one
            current_spec: Current specification document, used to give the
                AI strategy the operation definition

        Returns:
            HealingReport for this pass. A report is always produced, with
            zero counts for an empty or all-passing input
        """
        session_id = str(uuid.uuid4())
        session_logger = get_healing_logger("orchestrator", session_id=session_id)
        start = self._clock()
        self.runs += 1

        report = HealingReport(total_tests=len(executed_tests))
        failed_tests = await self.detect_failed_tests(executed_tests)
        report.failed_tests = len(failed_tests)

        if not self.config.enabled:
            session_logger.info("Self-healing is disabled, skipping healing pass")
            return self._finalize_report(report, start)

        session_logger.log_operation_start("healing_pass", failed_tests=len(failed_tests))

        for index, test_case in enumerate(failed_tests):
            elapsed = self._clock() - start
            if elapsed > self.config.max_total_time:
                report.skipped_for_time = len(failed_tests) - index
                session_logger.warning(
                    f"⏱️  Time budget of {self.config.max_total_time}s exceeded after {elapsed:.1f}s, "
                    f"skipping {report.skipped_for_time} remaining test(s)")
                break

            session_logger.log_progress("healing_pass", index / len(failed_tests),
                                        f"{index + 1}/{len(failed_tests)} '{test_case.name}'")
            try:
                outcome = await self._heal_test(test_case, spec_diff, current_spec, session_logger)
            except BudgetExceededError as e:
                outcome = HealingOutcome(
                    test_id=test_case.test_id,
                    test_name=test_case.name,
                    attempted=False,
                    success=False,
                    status=HealingOutcomeStatus.BUDGET_EXCEEDED,
                    reason=e.message
                )
                session_logger.info(f"Skipping '{test_case.name}': {e.message}")
            except NonHealableError as e:
                outcome = HealingOutcome(
                    test_id=test_case.test_id,
                    test_name=test_case.name,
                    attempted=False,
                    success=False,
                    status=HealingOutcomeStatus.NON_HEALABLE,
                    reason=e.message,
                    analysis=e.analysis
                )
                session_logger.info(f"Not healing '{test_case.name}': {e.message}")
            except Exception as e:
                # Any stage failure becomes a per-test result; the batch continues
                reason = e.message if isinstance(e, HealingError) else f"{type(e).__name__}: {e}"
                outcome = HealingOutcome(
                    test_id=test_case.test_id,
                    test_name=test_case.name,
                    attempted=False,
                    success=False,
                    status=HealingOutcomeStatus.ERROR,
                    reason=reason
                )
                session_logger.error(f"❌ Healing '{test_case.name}' raised: {reason}")

            self._record_outcome(report, outcome)

        report = self._finalize_report(report, start)
        session_logger.log_operation_success(
            "healing_pass",
            report.total_time,
            healed=report.successfully_healed,
            attempts=report.healing_attempts
        )
        return report

    async def detect_failed_tests(self, executed_tests: Sequence[ExecutedTest]) -> List[FailedTestCase]:
        """Select failed, errored and timed-out tests and load their source."""
        failed: List[FailedTestCase] = []
        for executed in executed_tests:
            if not executed.outcome.is_failure:
                continue

            try:
                source_code = self.file_store.read_test_source(executed.source_path)
            except FileIOError as e:
                logger.warning(f"⚠️  Using placeholder source for '{executed.name}': {e.message}")
                source_code = UNREADABLE_SOURCE.format(path=executed.source_path)

            async with self.ledger_lock:
                previous = len(self.attempt_ledger.get(executed.test_id, []))
            failed.append(create_failed_test_case(executed, source_code, previous_attempts=previous))

        logger.info(f"Detected {len(failed)} failed test(s) out of {len(executed_tests)}")
        return failed

    async def _heal_test(
        self,
        test_case: FailedTestCase,
        spec_diff: Optional[SpecDiff],
        current_spec: Optional[Dict[str, Any]],
        session_logger
    ) -> HealingOutcome:
        """Run one test through classification, the strategies and the re-run."""
        async with self.ledger_lock:
            recorded = len(self.attempt_ledger.get(test_case.test_id, []))
        if recorded >= self.config.max_attempts_per_test:
            raise BudgetExceededError(
                f"Maximum healing attempts ({self.config.max_attempts_per_test}) reached for this test",
                scope="test",
                limit=self.config.max_attempts_per_test
            )

        related = self.find_related_changes(test_case, spec_diff)
        analysis = self.classifier.analyze(test_case, related)

        if not analysis.healable:
            raise NonHealableError(
                f"Failure kind '{analysis.failure_kind.value}' with confidence "
                f"{analysis.confidence:.2f} is not healable",
                analysis=analysis
            )

        if self.config.backup_original:
            try:
                self.file_store.backup_test_file(test_case.source_path)
            except FileIOError as e:
                session_logger.warning(f"⚠️  Could not back up '{test_case.source_path}': {e.message}")

        request = HealingRequest(
            test_case=test_case,
            analysis=analysis,
            spec_diff=spec_diff,
            related_changes=list(related),
            relevant_spec=self.find_relevant_spec(test_case, spec_diff, current_spec)
        )

        attempt = create_healing_attempt(test_case, HealingStrategyType.FALLBACK, analysis.failure_kind)
        session_logger.log_operation_start("heal_test", test_name=test_case.name,
                                           failure_kind=analysis.failure_kind.value)
        outcome = HealingOutcome(
            test_id=test_case.test_id,
            test_name=test_case.name,
            attempted=True,
            success=False,
            status=HealingOutcomeStatus.FAILED,
            analysis=analysis,
            attempt=attempt
        )

        results: List[StrategyResult] = []
        used: List[HealingStrategyType] = []
        try:
            final = await self._run_strategies(request, results, used, session_logger)
            attempt.strategy = self._strategy_label(used)
            self._account(attempt, results)

            if final is not None:
                attempt.confidence = final.confidence
                attempt.source_diff = compute_source_diff(
                    test_case.source_code, final.healed_code, test_case.source_path)
                outcome.healed_code = final.healed_code
                await self._verify(test_case, attempt)
            else:
                errors = [e for r in results for e in r.errors]
                attempt.error_message = "; ".join(errors) if errors else "No healing strategy produced a valid fix"
        except Exception as e:
            attempt.strategy = self._strategy_label(used)
            self._account(attempt, results)
            attempt.success = False
            attempt.error_message = e.message if isinstance(e, HealingError) else f"{type(e).__name__}: {e}"
            outcome.status = HealingOutcomeStatus.ERROR
        finally:
            attempt.completed_at = datetime.now()
            await self._append_attempt(attempt)

        outcome.success = attempt.success
        if attempt.success:
            outcome.status = HealingOutcomeStatus.HEALED
            outcome.reason = f"Healed with {attempt.strategy.value} strategy"
            session_logger.log_operation_success("heal_test", attempt.duration or 0.0,
                                                 test_name=test_case.name, strategy=attempt.strategy.value)
        else:
            outcome.reason = attempt.error_message
            session_logger.log_operation_failure("heal_test", attempt.duration or 0.0,
                                                 attempt.error_message, test_name=test_case.name)
        return outcome

    async def _run_strategies(
        self,
        request: HealingRequest,
        results: List[StrategyResult],
        used: List[HealingStrategyType],
        session_logger
    ) -> Optional[StrategyResult]:
        """Try the strategies in order until one validates.

        ``results`` and ``used`` are filled as strategies run, so callers can
        account for partial work when a strategy raises.

        Returns:
            The validated result, or None if no strategy healed the test
        """
        for strategy in self.strategies:
            used.append(strategy.strategy_type)
            session_logger.debug(f"Trying {strategy.strategy_type.value} strategy for '{request.test_case.name}'")
            result = await strategy.heal(request)
            results.append(result)
            if result.success:
                return result
            session_logger.info(f"{strategy.strategy_type.value} strategy did not heal "
                                f"'{request.test_case.name}': {', '.join(result.errors) or 'no fix'}")
        return None

    async def _verify(self, test_case: FailedTestCase, attempt: HealingAttempt) -> None:
        """Re-run the healed test when auto-retry is on; otherwise validation is success."""
        if not self.config.auto_retry or self.test_runner is None:
            attempt.success = True
            return

        rerun = await self.test_runner.run_test(test_case.source_path, test_case.name)
        attempt.retest_passed = rerun.passed
        attempt.success = rerun.passed
        if not rerun.passed:
            attempt.error_message = f"Healed test still fails: {rerun.error_message or rerun.status.value}"

    @staticmethod
    def _strategy_label(used: Sequence[HealingStrategyType]) -> HealingStrategyType:
        if not used:
            return HealingStrategyType.FALLBACK
        if len(used) == 1:
            return used[0]
        return HealingStrategyType.HYBRID

    @staticmethod
    def _account(attempt: HealingAttempt, results: Sequence[StrategyResult]) -> None:
        attempt.tokens_used = sum(r.tokens_used for r in results)
        attempt.estimated_cost = sum(r.estimated_cost for r in results)
        attempt.cached = any(r.cached for r in results)

    def find_related_changes(self, test_case: FailedTestCase, spec_diff: Optional[SpecDiff]) -> List[SpecChange]:
        """Changes of the diff that touch the test's endpoint."""
        if spec_diff is None:
            return []
        endpoint, method = self.change_matcher.resolve_endpoint(test_case)
        return self.change_matcher.find_relevant_changes(spec_diff, endpoint, method)

    def find_relevant_spec(
        self,
        test_case: FailedTestCase,
        spec_diff: Optional[SpecDiff],
        current_spec: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Current operation definition of the test's endpoint, keyed by path and method."""
        endpoint, method = self.change_matcher.resolve_endpoint(test_case)
        if not endpoint or not method:
            return {}

        if current_spec:
            for path, path_item in (current_spec.get("paths") or {}).items():
                if not isinstance(path_item, dict):
                    continue
                operation = path_item.get(method.lower())
                if operation is not None and self.change_matcher.endpoint_matches(endpoint, path):
                    return {path: {method.lower(): operation}}

        if spec_diff is not None:
            for change in spec_diff.endpoints.modified + spec_diff.endpoints.added:
                if change.method.lower() == method.lower() and \
                        self.change_matcher.endpoint_matches(endpoint, change.path) and change.new_operation:
                    return {change.path: {change.method.lower(): change.new_operation}}
        return {}

    async def get_healing_attempts(self, test_id: Optional[str] = None) -> List[HealingAttempt]:
        """Ledger entries for one test, or for all tests in insertion order."""
        async with self.ledger_lock:
            if test_id is not None:
                return list(self.attempt_ledger.get(test_id, []))
            return [a for attempts in self.attempt_ledger.values() for a in attempts]

    async def clear_history(self, test_id: Optional[str] = None) -> int:
        """Drop ledger entries; returns how many attempts were removed."""
        async with self.ledger_lock:
            if test_id is not None:
                removed = len(self.attempt_ledger.pop(test_id, []))
            else:
                removed = sum(len(a) for a in self.attempt_ledger.values())
                self.attempt_ledger.clear()
        logger.info(f"🧹 Cleared {removed} healing attempt(s) from history")
        return removed

    def get_config(self) -> HealingConfiguration:
        return self.config

    def update_config(self, **changes) -> HealingConfiguration:
        """Apply configuration changes after validating the result.

        Raises:
            ConfigurationError: On unknown keys or an invalid resulting configuration
        """
        current = self.config.to_dict()
        unknown = sorted(set(changes) - set(current))
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}", {"keys": unknown})

        current.update(changes)
        updated = HealingConfiguration.from_dict(current)
        SelfHealingConfigLoader.validate_config(updated)

        self.config = updated
        self.classifier.healable_kinds = list(updated.healable_failure_kinds)
        self.classifier.min_confidence = updated.min_confidence
        logger.info(f"Configuration updated: {sorted(changes)}")
        return updated

    async def get_summary(self) -> Dict[str, Any]:
        """Aggregate view over the whole ledger."""
        attempts = await self.get_healing_attempts()
        successful = [a for a in attempts if a.success]
        kinds = Counter(a.failure_kind.value for a in attempts)
        return {
            "runs": self.runs,
            "tests_attempted": len(self.attempt_ledger),
            "total_attempts": len(attempts),
            "successful_attempts": len(successful),
            "success_rate": len(successful) / len(attempts) if attempts else 0.0,
            "total_tokens_used": sum(a.tokens_used for a in attempts),
            "total_estimated_cost": sum(a.estimated_cost for a in attempts),
            "by_failure_kind": dict(kinds),
            "last_report_at": self.last_report.generated_at.isoformat() if self.last_report else None
        }

    async def health_check(self) -> Dict[str, Any]:
        """Perform a health check of the orchestrator.

        Returns:
            Dictionary with health status information
        """
        try:
            async with self.ledger_lock:
                tests_tracked = len(self.attempt_ledger)
                exhausted = sum(1 for a in self.attempt_ledger.values()
                                if len(a) >= self.config.max_attempts_per_test)

            is_healthy = self.config.enabled and bool(self.strategies)
            return {
                "status": "healthy" if is_healthy else "degraded",
                "orchestrator_enabled": self.config.enabled,
                "strategies": [s.strategy_type.value for s in self.strategies],
                "test_runner_configured": self.test_runner is not None,
                "tests_tracked": tests_tracked,
                "tests_at_attempt_limit": exhausted,
                "timestamp": datetime.now().isoformat()
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now().isoformat()
            }

    async def _append_attempt(self, attempt: HealingAttempt) -> None:
        async with self.ledger_lock:
            self.attempt_ledger.setdefault(attempt.test_id, []).append(attempt)

    @staticmethod
    def _record_outcome(report: HealingReport, outcome: HealingOutcome) -> None:
        report.outcomes.append(outcome)
        if outcome.attempt is not None:
            report.attempts.append(outcome.attempt)

        if outcome.status == HealingOutcomeStatus.HEALED:
            report.healing_attempts += 1
            report.successfully_healed += 1
        elif outcome.status == HealingOutcomeStatus.FAILED:
            report.healing_attempts += 1
            report.failed_healing += 1
        elif outcome.status == HealingOutcomeStatus.NON_HEALABLE:
            report.non_healable += 1
        elif outcome.status == HealingOutcomeStatus.BUDGET_EXCEEDED:
            report.budget_exceeded += 1
        elif outcome.attempt is not None:
            # A strategy that raised still leaves a recorded attempt
            report.healing_attempts += 1
            report.failed_healing += 1

    def _finalize_report(self, report: HealingReport, start: float) -> HealingReport:
        report.total_time = self._clock() - start
        report.statistics = self.calculate_statistics(report.attempts)
        self.last_report = report
        return report

    @staticmethod
    def calculate_statistics(attempts: Sequence[HealingAttempt]) -> HealingStatistics:
        """Derived statistics over the attempts of one pass."""
        stats = HealingStatistics()
        if not attempts:
            return stats

        by_kind: Dict[str, Dict[str, int]] = {}
        for attempt in attempts:
            counts = by_kind.setdefault(attempt.failure_kind.value, {"attempts": 0, "successes": 0})
            counts["attempts"] += 1
            if attempt.success:
                counts["successes"] += 1

        stats.success_rate = sum(1 for a in attempts if a.success) / len(attempts)
        stats.average_healing_time = mean(a.duration for a in attempts if a.duration is not None)
        stats.by_failure_kind = by_kind
        stats.success_rate_by_kind = {
            kind: counts["successes"] / counts["attempts"] for kind, counts in by_kind.items()
        }
        stats.top_failure_kinds = Counter(a.failure_kind.value for a in attempts).most_common(TOP_FAILURE_KINDS)
        stats.total_tokens_used = sum(a.tokens_used for a in attempts)
        stats.total_estimated_cost = sum(a.estimated_cost for a in attempts)
        stats.average_confidence = mean(a.confidence for a in attempts if a.success)
        return stats
