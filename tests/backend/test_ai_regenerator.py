"""Unit tests for the AI regenerator."""

import pytest
from unittest.mock import AsyncMock, Mock

from api_healer.core.exceptions import CompletionError, FileIOError, RateLimitError, TransportError
from api_healer.core.models import HealingConfiguration, RegenerationContext
from api_healer.services.ai_regenerator import AIRegenerator
from api_healer.services.completion_service import BackoffPolicy, CompletionResponse, is_retryable
from api_healer.services.failure_classifier import FailureClassifier
from api_healer.services.response_cache import ResponseCache
from api_healer.services.test_code_updater import ApiTestCodeUpdater


REPAIRED_SOURCE = """import { test, expect } from '@playwright/test';

test('get user profile', async ({ request }) => {
  const response = await request.get('/users/42');
  expect(response.status()).toBe(200);
  const body = await response.json();
  expect(body.userId).toBe(42);
  expect(body.email).toBeDefined();
});"""


def completion_response(text=None):
    return CompletionResponse(
        text=text if text is not None else f"Here is the fix:\n```typescript\n{REPAIRED_SOURCE}\n```\n",
        tokens_used=350,
        model="gemini/gemini-2.5-flash",
        prompt_tokens=300,
        completion_tokens=50,
        cost=0.0012
    )


def no_wait_backoff(max_retries=3):
    return BackoffPolicy(base_delay=1.0, max_retries=max_retries, sleep=AsyncMock(), rng=lambda: 0.5)


@pytest.fixture
def completion_service():
    service = Mock()
    service.complete = AsyncMock(return_value=completion_response())
    return service


@pytest.fixture
def regeneration_context(failed_test_case):
    return RegenerationContext(
        test_case=failed_test_case,
        analysis=FailureClassifier().analyze(failed_test_case),
        few_shot_count=1
    )


@pytest.fixture
def file_store(tmp_path):
    return ApiTestCodeUpdater(backup_dir=str(tmp_path / "backups"))


class TestRegenerate:
    """Test the regeneration flow."""

    @pytest.mark.asyncio
    async def test_successful_regeneration_is_written(self, completion_service, regeneration_context,
                                                      file_store, sample_test_file):
        """Valid code is returned with usage and written over the test file."""
        regenerator = AIRegenerator(completion_service, file_store=file_store, backoff=no_wait_backoff())

        result = await regenerator.regenerate(regeneration_context)

        assert result.success is True
        assert result.regenerated_code == REPAIRED_SOURCE
        assert result.tokens_used == 350
        assert result.estimated_cost == 0.0012
        assert result.cached is False
        assert result.written is True
        assert "body.userId" in sample_test_file.read_text(encoding="utf-8")

        options = completion_service.complete.call_args.args[1]
        assert options.model == "gemini/gemini-2.5-flash"
        assert options.system_prompt

    @pytest.mark.asyncio
    async def test_cache_hit_skips_completion(self, completion_service, regeneration_context, fake_clock):
        """An identical request is served from the cache with no token usage."""
        cache = ResponseCache(clock=fake_clock)
        regenerator = AIRegenerator(completion_service, cache=cache, backoff=no_wait_backoff())

        first = await regenerator.regenerate(regeneration_context)
        second = await regenerator.regenerate(regeneration_context)

        assert completion_service.complete.call_count == 1
        assert first.cached is False
        assert second.cached is True
        assert second.tokens_used == 0
        assert second.regenerated_code == first.regenerated_code

        metrics = regenerator.get_metrics()
        assert metrics["cache_hits"] == 1
        assert metrics["cache_misses"] == 1
        assert metrics["cache_hit_rate"] == 0.5
        assert metrics["total_tokens"] == 350

    def test_sampling_parameters_change_cache_key(self, completion_service):
        cold = AIRegenerator(completion_service, temperature=0.2)
        warm = AIRegenerator(completion_service, temperature=0.7)

        assert cold.generate_cache_key("prompt") != warm.generate_cache_key("prompt")
        assert cold.generate_cache_key("prompt") == AIRegenerator(completion_service).generate_cache_key("prompt")

    @pytest.mark.asyncio
    async def test_invalid_code_is_rejected_and_not_cached(self, completion_service, regeneration_context,
                                                           fake_clock, file_store, sample_test_file):
        """Validation failures end the attempt without retries, caching or writes."""
        completion_service.complete.return_value = completion_response("I cannot help with that.")
        cache = ResponseCache(clock=fake_clock)
        original = sample_test_file.read_text(encoding="utf-8")
        regenerator = AIRegenerator(completion_service, cache=cache, file_store=file_store,
                                    backoff=no_wait_backoff())

        result = await regenerator.regenerate(regeneration_context)

        assert result.success is False
        assert "Missing test() declaration" in result.validation_errors
        assert "Missing expect() assertions" in result.validation_errors
        assert result.error_message.startswith("Regenerated code failed validation")
        assert completion_service.complete.call_count == 1
        assert cache.size == 0
        assert sample_test_file.read_text(encoding="utf-8") == original
        assert regenerator.get_metrics()["failures"] == 1

    @pytest.mark.asyncio
    async def test_write_failure_keeps_successful_result(self, completion_service, regeneration_context):
        file_store = Mock()
        file_store.write_test_source.side_effect = FileIOError("disk full", "users.spec.ts")
        regenerator = AIRegenerator(completion_service, file_store=file_store, backoff=no_wait_backoff())

        result = await regenerator.regenerate(regeneration_context)

        assert result.success is True
        assert result.written is False
        assert result.write_error == "disk full"

    @pytest.mark.asyncio
    async def test_metrics_by_failure_kind(self, completion_service, regeneration_context):
        regenerator = AIRegenerator(completion_service, backoff=no_wait_backoff())

        await regenerator.regenerate(regeneration_context)

        metrics = regenerator.get_metrics()
        assert metrics["requests"] == 1
        assert metrics["successes"] == 1
        assert metrics["by_failure_kind"]["field_missing"]["success_rate"] == 1.0
        assert len(regenerator.get_regeneration_log()) == 1

        regenerator.reset_metrics()
        assert regenerator.get_metrics()["requests"] == 0
        assert regenerator.get_regeneration_log() == []


class TestRetries:
    """Test retry and backoff around the completion service."""

    @pytest.mark.asyncio
    async def test_transport_and_rate_limit_errors_are_retried(self, completion_service, regeneration_context):
        """Retry delays follow the exponential schedule unless the service names one."""
        completion_service.complete.side_effect = [
            TransportError("connection reset"),
            RateLimitError(retry_after=7.0),
            completion_response(),
        ]
        backoff = no_wait_backoff()
        regenerator = AIRegenerator(completion_service, backoff=backoff)

        result = await regenerator.regenerate(regeneration_context)

        assert result.success is True
        assert result.retries == 2
        assert [call.args[0] for call in backoff._sleep.await_args_list] == [1.0, 7.0]

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, completion_service, regeneration_context):
        """max_retries=1 means at most two calls before the error propagates."""
        completion_service.complete.side_effect = TransportError("service unavailable", status_code=503)
        regenerator = AIRegenerator(completion_service, backoff=no_wait_backoff(max_retries=1))

        with pytest.raises(TransportError):
            await regenerator.regenerate(regeneration_context)

        assert completion_service.complete.call_count == 2
        assert regenerator.get_metrics()["failures"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self, completion_service, regeneration_context):
        completion_service.complete.side_effect = CompletionError("invalid api key", status_code=401)
        regenerator = AIRegenerator(completion_service, backoff=no_wait_backoff())

        with pytest.raises(CompletionError):
            await regenerator.regenerate(regeneration_context)

        assert completion_service.complete.call_count == 1

    def test_delay_schedule_with_jitter(self):
        policy = BackoffPolicy(base_delay=2.0, jitter=0.25, rng=lambda: 1.0)

        assert policy.compute_delay(0) == 2.5
        assert policy.compute_delay(2) == 10.0
        assert policy.compute_delay(3, retry_after=4.0) == 4.0

    def test_retryable_classification(self):
        assert is_retryable(RateLimitError()) is True
        assert is_retryable(TransportError("reset")) is True
        assert is_retryable(CompletionError("bad request", status_code=400)) is False
        assert is_retryable(CompletionError("upstream", status_code=502)) is True
        assert is_retryable(ValueError("nope")) is False


class TestCodeHandling:
    """Test extraction and validation of returned code."""

    def test_extract_prefers_typescript_fence(self):
        text = "```js\nconsole.log(1)\n```\n```ts\nconst a = 1;\n```"

        assert AIRegenerator.extract_code(text) == "const a = 1;"

    def test_extract_falls_back_to_plain_text(self):
        assert AIRegenerator.extract_code("  test('x', () => {});  ") == "test('x', () => {});"

    def test_validation_warnings(self):
        code = REPAIRED_SOURCE.replace("get user profile", "fetch profile") + "\nconsole.log(body);"

        errors, warnings = AIRegenerator.validate_code(code, "get user profile")

        assert errors == []
        assert warnings == ["Contains console.log statements", "Test name differs from original"]

    def test_from_config(self, completion_service):
        config = HealingConfiguration(ai_model="gpt-4o-mini", ai_temperature=0.1, ai_max_retries=5)

        regenerator = AIRegenerator.from_config(config, completion_service)

        assert regenerator.model == "gpt-4o-mini"
        assert regenerator.temperature == 0.1
        assert regenerator.backoff.max_retries == 5
