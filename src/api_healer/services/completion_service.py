"""
Completion service boundary for AI regeneration.

Defines the completion interface the regenerator depends on, its litellm
implementation, and the retry policy applied around it.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import litellm

from ..core.exceptions import CompletionError, RateLimitError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CompletionOptions:
    """Sampling options for one completion request."""
    model: str
    temperature: float = 0.2
    max_tokens: int = 2000
    timeout: float = 30.0  # seconds
    system_prompt: Optional[str] = None


@dataclass
class CompletionResponse:
    """Text and usage returned by the completion service."""
    text: str
    tokens_used: int
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0


class CompletionService(ABC):
    """Interface to a text completion backend."""

    @abstractmethod
    async def complete(self, prompt: str, options: CompletionOptions) -> CompletionResponse:
        """
        Complete a prompt.

        Raises:
            RateLimitError: The service throttled the request
            TransportError: Connection, timeout or 5xx failure
            CompletionError: Any other service failure
        """


class LiteLLMCompletionService(CompletionService):
    """Completion service backed by ``litellm.acompletion``."""

    def __init__(self, api_key: Optional[str] = None, track_costs: bool = True):
        self.api_key = api_key
        self.track_costs = track_costs

    async def complete(self, prompt: str, options: CompletionOptions) -> CompletionResponse:
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": options.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "timeout": options.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            response = await litellm.acompletion(**kwargs)
        except litellm.RateLimitError as e:
            raise RateLimitError(str(e), retry_after=self._retry_after(e)) from e
        except (litellm.Timeout, litellm.APIConnectionError,
                litellm.InternalServerError, litellm.ServiceUnavailableError) as e:
            raise TransportError(str(e), status_code=getattr(e, "status_code", None)) from e
        except Exception as e:
            status_code = getattr(e, "status_code", None)
            if isinstance(status_code, int) and status_code >= 500:
                raise TransportError(str(e), status_code=status_code) from e
            raise CompletionError(f"Completion request failed: {e}", status_code=status_code) from e

        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        total_tokens = getattr(usage, "total_tokens", 0) or prompt_tokens + completion_tokens

        return CompletionResponse(
            text=text,
            tokens_used=total_tokens,
            model=getattr(response, "model", None) or options.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=self._cost(response) if self.track_costs else 0.0
        )

    @staticmethod
    def _cost(response: Any) -> float:
        try:
            return float(litellm.completion_cost(completion_response=response) or 0.0)
        except Exception as e:
            # Unknown or local models have no pricing entry
            logger.debug(f"Cost lookup unavailable: {e}")
            return 0.0

    @staticmethod
    def _retry_after(error: Exception) -> Optional[float]:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None) or {}
        value = headers.get("retry-after") if hasattr(headers, "get") else None
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None


def is_retryable(error: Exception) -> bool:
    """Rate limits, transport failures and 5xx responses are worth retrying."""
    if isinstance(error, (RateLimitError, TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    status_code = getattr(error, "status_code", None)
    return isinstance(status_code, int) and status_code >= 500


class BackoffPolicy:
    """
    Exponential backoff with jitter around an async operation.

    The delay before retry ``n`` (0-based) is the service's retry-after hint
    when present, otherwise ``base_delay * 2**n`` scaled by a random factor
    in ``[1 - jitter, 1 + jitter]``.
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        max_retries: int = 3,
        jitter: float = 0.25,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random
    ):
        self.base_delay = base_delay
        self.max_retries = max_retries
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng

    def compute_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        if retry_after is not None:
            return retry_after
        delay = self.base_delay * (2 ** attempt)
        return delay * (1 + self.jitter * (self._rng() * 2 - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[int, Exception, float], None]] = None
    ) -> T:
        """
        Run ``operation``, retrying retryable errors up to ``max_retries`` times.

        Raises:
            The last error once retries are exhausted, or the first
            non-retryable error immediately
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e) or attempt >= self.max_retries:
                    raise
                delay = self.compute_delay(attempt, getattr(e, "retry_after", None))
                logger.warning(f"⚠️  Retryable completion error ({type(e).__name__}), "
                               f"retrying in {delay:.2f}s (attempt {attempt + 1}/{self.max_retries})")
                if on_retry:
                    on_retry(attempt, e, delay)
                await self._sleep(delay)
                attempt += 1
