"""
INDIGO Router: Vendor-Agnostic Model Access

Routes every model call through LiteLLM so the loop and the field
validator never know which vendor is backing them. Handles budget
tracking, retries on one-shot calls, streaming, and structured logging.

Two call shapes:
  - complete(): blocking single-shot call (field validator)
  - stream():   streamed chat with a terminal usage summary (main loop)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable

import litellm
from loguru import logger
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from indigo.config_loader import IndigoConfig


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RouterError(Exception):
    pass


class ModelNotConfiguredError(RouterError):
    """No model configured for the role, or the provider rejected credentials."""
    pass


class ModelTransportError(RouterError):
    """Network / provider failure while talking to the model."""
    pass


class BudgetExceededError(RouterError):
    pass


# LiteLLM maps every provider onto OpenAI-style exception classes.
_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    litellm.APIConnectionError,
    litellm.APIError,
    litellm.Timeout,
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.BadRequestError,
)


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    call_count: int = 0


@dataclass
class BudgetTracker:
    """Tracks token + dollar spend per run."""
    max_tokens: int = 200_000
    max_dollars: float = 5.0
    usage: UsageRecord = field(default_factory=UsageRecord)

    @property
    def tokens_remaining(self) -> int:
        return max(0, self.max_tokens - self.usage.total_tokens)

    @property
    def dollars_remaining(self) -> float:
        return max(0.0, self.max_dollars - self.usage.estimated_cost)

    @property
    def budget_exceeded(self) -> bool:
        return self.usage.total_tokens >= self.max_tokens or self.usage.estimated_cost >= self.max_dollars

    def record(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Record one call's usage. Returns the estimated cost of that call."""
        self.usage.prompt_tokens += prompt_tokens
        self.usage.completion_tokens += completion_tokens
        self.usage.total_tokens += prompt_tokens + completion_tokens
        self.usage.call_count += 1

        cost = 0.0
        try:
            prompt_cost, completion_cost = litellm.cost_per_token(
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )
            cost = prompt_cost + completion_cost
        except Exception as e:
            # Unknown models have no price table entry
            logger.debug(f"[ROUTER] No cost data for {model}: {e}")

        self.usage.estimated_cost += cost
        return cost

    def snapshot(self) -> UsageRecord:
        return replace(self.usage)

    def summary(self, since: UsageRecord | None = None) -> dict:
        """Totals so far, or only what was spent after the `since` snapshot."""
        usage = self.usage
        if since is not None:
            usage = UsageRecord(
                prompt_tokens=usage.prompt_tokens - since.prompt_tokens,
                completion_tokens=usage.completion_tokens - since.completion_tokens,
                total_tokens=usage.total_tokens - since.total_tokens,
                estimated_cost=usage.estimated_cost - since.estimated_cost,
                call_count=usage.call_count - since.call_count,
            )
        return {
            "total_tokens": usage.total_tokens,
            "estimated_cost": round(usage.estimated_cost, 4),
            "call_count": usage.call_count,
            "tokens_remaining": max(0, self.max_tokens - usage.total_tokens),
            "dollars_remaining": round(max(0.0, self.max_dollars - usage.estimated_cost), 4),
        }


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith(("o1", "o3", "o4", "gpt-5"))


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
) -> dict[str, Any]:
    """Build LiteLLM kwargs with per-model param filtering."""
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    if not _is_o_series_model(model):
        kwargs["temperature"] = temperature
    return kwargs


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class RouterResponse(BaseModel):
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    tokens_used: int = 0
    cost: float = 0.0
    latency_ms: int = 0


class Router:
    """
    Vendor-agnostic model router.

    Roles map to model strings in config.routing:
      - assistant    : the conversational planner driving the loop
      - field_mapper : the strict value-mapping round-trip
    """

    def __init__(self, config: IndigoConfig):
        self.config = config
        self.budget = BudgetTracker(
            max_tokens=config.limits.max_tokens_per_run,
            max_dollars=config.limits.max_dollars_per_run,
        )
        self._role_model_map = {
            "assistant": config.routing.assistant,
            "field_mapper": config.routing.field_mapper,
        }

        litellm.suppress_debug_info = True

    def resolve_model(self, role: str) -> str:
        if role not in self._role_model_map:
            raise ValueError(f"Unknown model role: {role}. Known: {list(self._role_model_map)}")
        model = self._role_model_map[role]
        if not model:
            raise ModelNotConfiguredError(f"No model configured for role '{role}'. Set routing.{role} in config.")
        return model

    def is_configured(self, role: str) -> bool:
        return bool(self._role_model_map.get(role))

    def _check_budget(self) -> None:
        if self.budget.budget_exceeded:
            raise BudgetExceededError(f"Budget exceeded: {self.budget.summary()}")

    async def complete(
        self,
        role: str,
        messages: list[dict[str, str]],
        temperature: float = 0.0,
        max_tokens: int = 2048,
    ) -> RouterResponse:
        """Blocking single-shot completion, retried on transport failures."""
        self._check_budget()
        model = self.resolve_model(role)
        kwargs = _build_kwargs(model, messages, temperature, max_tokens)

        logger.debug(f"[ROUTER] {role} -> {model} ({len(messages)} messages)")
        start = time.monotonic()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.config.limits.model_retries)),
                wait=wait_exponential(min=1, max=10),
                retry=retry_if_exception_type(_TRANSPORT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    response = await litellm.acompletion(**kwargs)
        except litellm.AuthenticationError as e:
            raise ModelNotConfiguredError(f"Credentials rejected for {model}: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise ModelTransportError(f"{role} call to {model} failed: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        cost = self.budget.record(model, prompt_tokens, completion_tokens)

        content = response.choices[0].message.content or ""
        logger.debug(f"[ROUTER] {role} complete: {prompt_tokens + completion_tokens} tokens, {elapsed_ms}ms")

        return RouterResponse(
            content=content,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tokens_used=prompt_tokens + completion_tokens,
            cost=cost,
            latency_ms=elapsed_ms,
        )

    async def stream(
        self,
        role: str,
        messages: list[dict[str, str]],
        on_chunk: Callable[[str], None] | None = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
    ) -> RouterResponse:
        """
        Streamed chat completion. Chunks are handed to on_chunk for display
        as they arrive; the returned response carries the complete text and
        the terminal usage summary. Not retried: chunks may already be shown.
        """
        self._check_budget()
        model = self.resolve_model(role)
        kwargs = _build_kwargs(model, messages, temperature, max_tokens)

        logger.debug(f"[ROUTER] {role} -> {model} streaming ({len(messages)} messages)")
        start = time.monotonic()

        parts: list[str] = []
        prompt_tokens = 0
        completion_tokens = 0
        try:
            stream = await litellm.acompletion(
                **kwargs,
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                delta = choices[0].delta.content if choices and choices[0].delta else None
                if delta:
                    parts.append(delta)
                    if on_chunk:
                        on_chunk(delta)
                usage = getattr(chunk, "usage", None)
                if usage:
                    prompt_tokens = getattr(usage, "prompt_tokens", 0) or prompt_tokens
                    completion_tokens = getattr(usage, "completion_tokens", 0) or completion_tokens
        except litellm.AuthenticationError as e:
            raise ModelNotConfiguredError(f"Credentials rejected for {model}: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise ModelTransportError(f"{role} stream from {model} failed: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        cost = self.budget.record(model, prompt_tokens, completion_tokens)

        logger.debug(
            f"[ROUTER] {role} stream closed: "
            f"{self.budget.usage.total_tokens} tokens total, "
            f"${self.budget.usage.estimated_cost:.4f}, "
            f"{elapsed_ms}ms"
        )

        return RouterResponse(
            content="".join(parts),
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tokens_used=prompt_tokens + completion_tokens,
            cost=cost,
            latency_ms=elapsed_ms,
        )
