"""
AI Regenerator for model-assisted test repair.

Sends a repair prompt to the completion service with retry and backoff,
short-circuits through the response cache, validates the returned code and
writes it back to the test file.
"""

import logging
import re
import time
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..core.exceptions import FileIOError, HealingError, ValidationError
from ..core.healing_utils import hash_text
from ..core.models import HealingConfiguration, RegenerationContext, RegenerationResult
from .completion_service import BackoffPolicy, CompletionOptions, CompletionService
from .prompt_assembler import SYSTEM_PROMPT, PromptAssembler
from .response_cache import ResponseCache
from .test_code_updater import ApiTestCodeUpdater

logger = logging.getLogger(__name__)


REGENERATION_LOG_SIZE = 100

# Tried in order; the first fence that matches wins
CODE_FENCE_PATTERNS = (
    re.compile(r"```(?:typescript|ts)[ \t]*\n(.*?)```", re.DOTALL),
    re.compile(r"```(?:javascript|js)[ \t]*\n(.*?)```", re.DOTALL),
    re.compile(r"```[\w-]*[ \t]*\n(.*?)```", re.DOTALL),
)

TEST_DECLARATION = re.compile(r"\b(?:test|it)(?:\.\w+)?\s*\(")


class AIRegenerator:
    """
    Model-assisted regenerator for failing API tests.

    Validation failures are terminal for an attempt; only transport-level
    failures are retried, through the backoff policy.
    """

    def __init__(
        self,
        completion_service: CompletionService,
        cache: Optional[ResponseCache] = None,
        file_store: Optional[ApiTestCodeUpdater] = None,
        assembler: Optional[PromptAssembler] = None,
        model: str = "gemini/gemini-2.5-flash",
        temperature: float = 0.2,
        max_tokens: int = 2000,
        timeout: float = 30.0,
        backoff: Optional[BackoffPolicy] = None,
        write_back: bool = True,
        clock: Callable[[], float] = time.perf_counter
    ):
        self.completion_service = completion_service
        self.cache = cache
        self.file_store = file_store
        self.assembler = assembler or PromptAssembler()
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.backoff = backoff or BackoffPolicy()
        self.write_back = write_back
        self._clock = clock

        self.metrics: Dict[str, Any] = self._empty_metrics()
        self.kind_metrics: Dict[str, Dict[str, int]] = defaultdict(lambda: {"attempts": 0, "successes": 0})
        self.regeneration_log: Deque[Dict[str, Any]] = deque(maxlen=REGENERATION_LOG_SIZE)

    @classmethod
    def from_config(
        cls,
        config: HealingConfiguration,
        completion_service: CompletionService,
        cache: Optional[ResponseCache] = None,
        file_store: Optional[ApiTestCodeUpdater] = None,
        **kwargs
    ) -> "AIRegenerator":
        backoff = kwargs.pop("backoff", None) or BackoffPolicy(
            base_delay=config.ai_base_delay,
            max_retries=config.ai_max_retries
        )
        return cls(
            completion_service,
            cache=cache,
            file_store=file_store,
            assembler=PromptAssembler(),
            model=config.ai_model,
            temperature=config.ai_temperature,
            max_tokens=config.ai_max_tokens,
            timeout=config.ai_timeout,
            backoff=backoff,
            **kwargs
        )

    @property
    def options(self) -> CompletionOptions:
        return CompletionOptions(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            system_prompt=SYSTEM_PROMPT
        )

    async def regenerate(self, context: RegenerationContext) -> RegenerationResult:
        """
        Regenerate a failing test.

        Args:
            context: Test case, failure analysis and relevant specification changes

        Returns:
            RegenerationResult; ``success`` is False when the generated code
            fails validation

        Raises:
            CompletionError: When the completion service fails and retries are exhausted
        """
        start = self._clock()
        test_case = context.test_case
        kind = context.analysis.failure_kind.value
        result = RegenerationResult(success=False, test_id=test_case.test_id, model=self.model)

        self.metrics["requests"] += 1
        self.kind_metrics[kind]["attempts"] += 1

        prompt = self.assembler.build_repair_prompt(context)
        cache_key = self.generate_cache_key(prompt)

        try:
            text = self._lookup_cache(cache_key, result)
            if text is None:
                text = await self._complete(prompt, result)

            code = self.extract_code(text)
            result.regenerated_code = code
            errors, warnings = self.validate_code(code, test_case.name)
            result.warnings.extend(warnings)
            if errors:
                raise ValidationError("Regenerated code failed validation", errors)
        except ValidationError as e:
            result.validation_errors = e.issues
            result.error_message = f"{e.message}: {', '.join(e.issues)}"
            logger.warning(f"⚠️  {result.error_message} (test '{test_case.name}')")
            self._finish(result, start, kind)
            return result
        except HealingError as e:
            result.error_message = e.message
            self._finish(result, start, kind)
            logger.error(f"❌ Regeneration failed for '{test_case.name}': {e.message}")
            raise

        if self.cache is not None and not result.cached:
            self.cache.set(cache_key, {"text": text, "model": result.model, "tokens_used": result.tokens_used})

        result.success = True
        if self.write_back and self.file_store is not None:
            try:
                self.file_store.write_test_source(test_case.source_path, code)
                result.written = True
            except FileIOError as e:
                # The regeneration itself is still valid
                result.write_error = e.message
                logger.warning(f"⚠️  Regenerated code for '{test_case.name}' was not written: {e.message}")

        self._finish(result, start, kind)
        logger.info(f"✅ Regenerated '{test_case.name}' in {result.duration:.2f}s "
                    f"({'cached' if result.cached else f'{result.tokens_used} tokens'})")
        return result

    def generate_cache_key(self, prompt: str) -> str:
        """Content hash of the prompt and the sampling parameters."""
        parts = [prompt, self.model, str(self.temperature), str(self.max_tokens)]
        return hash_text("|".join(parts))

    @staticmethod
    def extract_code(text: str) -> str:
        """Code from the first matching fenced block, else the whole response."""
        for pattern in CODE_FENCE_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1).strip()
        return text.strip()

    @staticmethod
    def validate_code(code: str, test_name: Optional[str] = None) -> Tuple[List[str], List[str]]:
        """Structural checks on regenerated code. Returns (errors, warnings)."""
        errors = []
        warnings = []

        if not TEST_DECLARATION.search(code):
            errors.append("Missing test() declaration")
        if "expect(" not in code:
            errors.append("Missing expect() assertions")
        if not re.search(r"\bawait\b", code):
            errors.append("Missing await for async operations")
        if not re.search(r"\brequest\b", code):
            errors.append("Missing request fixture")

        if "console.log(" in code:
            warnings.append("Contains console.log statements")
        if test_name and test_name not in code:
            warnings.append("Test name differs from original")

        return errors, warnings

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of regeneration metrics, including per-kind success rates."""
        lookups = self.metrics["cache_hits"] + self.metrics["cache_misses"]
        by_kind = {}
        for kind, counts in self.kind_metrics.items():
            by_kind[kind] = {
                **counts,
                "success_rate": counts["successes"] / counts["attempts"] if counts["attempts"] else 0.0
            }
        return {
            **self.metrics,
            "cache_hit_rate": self.metrics["cache_hits"] / lookups if lookups else 0.0,
            "by_failure_kind": by_kind
        }

    def get_regeneration_log(self) -> List[Dict[str, Any]]:
        return list(self.regeneration_log)

    def reset_metrics(self) -> None:
        self.metrics = self._empty_metrics()
        self.kind_metrics.clear()
        self.regeneration_log.clear()

    def _lookup_cache(self, cache_key: str, result: RegenerationResult) -> Optional[str]:
        if self.cache is None:
            return None

        cached = self.cache.get(cache_key)
        if cached is None:
            self.metrics["cache_misses"] += 1
            return None

        self.metrics["cache_hits"] += 1
        result.cached = True
        result.model = cached.get("model", self.model)
        logger.info(f"💾 Cache hit for regeneration of '{result.test_id}'")
        return cached["text"]

    async def _complete(self, prompt: str, result: RegenerationResult) -> str:
        options = self.options

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            result.retries = attempt + 1

        response = await self.backoff.run(
            lambda: self.completion_service.complete(prompt, options),
            on_retry=on_retry
        )

        result.model = response.model
        result.tokens_used = response.tokens_used
        result.prompt_tokens = response.prompt_tokens
        result.completion_tokens = response.completion_tokens
        result.estimated_cost = response.cost

        self.metrics["prompt_tokens"] += response.prompt_tokens
        self.metrics["completion_tokens"] += response.completion_tokens
        self.metrics["total_tokens"] += response.tokens_used
        self.metrics["estimated_cost"] += response.cost
        return response.text

    def _finish(self, result: RegenerationResult, start: float, kind: str) -> None:
        result.duration = self._clock() - start
        if result.success:
            self.metrics["successes"] += 1
            self.kind_metrics[kind]["successes"] += 1
        else:
            self.metrics["failures"] += 1
        self.regeneration_log.append({
            "timestamp": datetime.now().isoformat(),
            "failure_kind": kind,
            **result.to_dict()
        })

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            "requests": 0,
            "successes": 0,
            "failures": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
            "estimated_cost": 0.0
        }
