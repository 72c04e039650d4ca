from __future__ import annotations

import random

from .profiles import ExecutionProfile
from .types import ClassifiedError, ErrorCategory, RetryDecision, RetryMetrics, RetryState


def calculate_backoff_delay(
    attempt: int,
    profile: ExecutionProfile,
    suggested_delay_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    if suggested_delay_ms is not None:
        return max(0, min(int(suggested_delay_ms), profile.max_delay_ms))

    exponent = max(0, attempt)
    try:
        delay = profile.initial_delay_ms * (profile.backoff_multiplier**exponent)
    except OverflowError:
        delay = float(profile.max_delay_ms)
    delay = min(delay, float(profile.max_delay_ms))

    if profile.jitter and profile.jitter_ms > 0:
        source = rng or random
        delay = min(delay + source.uniform(0.0, float(profile.jitter_ms)), float(profile.max_delay_ms))

    return max(0, int(delay))


def should_retry(
    classified: ClassifiedError,
    state: RetryState,
    profile: ExecutionProfile,
    *,
    rng: random.Random | None = None,
) -> RetryDecision:
    if classified.category is ErrorCategory.FATAL or not classified.retryable:
        return RetryDecision(should_retry=False, reason="Fatal error, not retryable")

    if classified.requires_requote and state.requotes >= profile.max_requotes:
        return RetryDecision(should_retry=False, reason="Max requotes exceeded")

    if state.attempts >= profile.max_retries:
        return RetryDecision(should_retry=False, reason="Max retries exceeded")

    return RetryDecision(
        should_retry=True,
        delay_ms=calculate_backoff_delay(
            state.attempts,
            profile,
            classified.suggested_delay_ms,
            rng=rng,
        ),
    )


def record_failure(state: RetryState, classified: ClassifiedError) -> None:
    state.errors.append(classified)


def record_retry(state: RetryState, *, requote: bool) -> None:
    state.attempts += 1
    if requote:
        state.requotes += 1


def build_retry_metrics(state: RetryState, *, final_status: str) -> RetryMetrics:
    return RetryMetrics(
        total_attempts=state.attempts + 1,
        total_requotes=state.requotes,
        total_time_ms=state.elapsed_ms,
        final_status=final_status,
        error_codes=tuple(error.code for error in state.errors),
    )
