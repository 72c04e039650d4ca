from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Protocol

from swap_engine.common import guarded_call, log_event

from .profiles import ExecutionProfile
from .types import FeeEstimate

DEFAULT_SWAP_COMPUTE_UNITS = 300_000

# micro-lamports per compute unit
CONGESTION_LOW = 10_000
CONGESTION_MEDIUM = 50_000
CONGESTION_HIGH = 200_000

TIER_PERCENTILES = {
    "low": 0.25,
    "medium": 0.50,
    "high": 0.75,
    "very_high": 0.90,
}


class PrioritizationFeeSource(Protocol):
    async def get_recent_prioritization_fees(self, accounts: list[str] | None = None) -> list[int]:
        ...


@dataclass(slots=True, frozen=True)
class ProfileFeeSettings:
    tier: str
    multiplier: float
    min_price: int
    max_price: int
    compute_buffer: float


PROFILE_FEE_SETTINGS = {
    "fast": ProfileFeeSettings(tier="very_high", multiplier=2.0, min_price=50_000, max_price=2_000_000, compute_buffer=1.5),
    "auto": ProfileFeeSettings(tier="medium", multiplier=1.2, min_price=10_000, max_price=500_000, compute_buffer=1.3),
    "cheap": ProfileFeeSettings(tier="low", multiplier=1.0, min_price=1_000, max_price=100_000, compute_buffer=1.1),
}


@dataclass(slots=True, frozen=True)
class FeeLevels:
    low: int
    medium: int
    high: int
    very_high: int
    congestion: str
    sample_size: int

    def for_tier(self, tier: str) -> int:
        return int(getattr(self, tier))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def percentile_value(values: list[int], percentile: float) -> int:
    if not values:
        return 0

    sorted_values = sorted(values)
    if len(sorted_values) == 1:
        return sorted_values[0]

    p = max(0.0, min(1.0, percentile))
    index = max(0, min(len(sorted_values) - 1, math.ceil(len(sorted_values) * p) - 1))
    return sorted_values[index]


def congestion_level(median_fee: int) -> str:
    if median_fee < CONGESTION_LOW:
        return "low"
    if median_fee < CONGESTION_MEDIUM:
        return "medium"
    if median_fee < CONGESTION_HIGH:
        return "high"
    return "critical"


def build_fee_levels(samples: list[int]) -> FeeLevels:
    levels = {tier: percentile_value(samples, percentile) for tier, percentile in TIER_PERCENTILES.items()}
    return FeeLevels(
        low=levels["low"],
        medium=levels["medium"],
        high=levels["high"],
        very_high=levels["very_high"],
        congestion=congestion_level(levels["medium"]),
        sample_size=len(samples),
    )


class FeeEstimator:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        source: PrioritizationFeeSource,
        cache_ttl_seconds: float = 10.0,
        fallback_micro_lamports: int = 10_000,
        base_compute_units: int = DEFAULT_SWAP_COMPUTE_UNITS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logger
        self._source = source
        self._cache_ttl_seconds = max(0.0, cache_ttl_seconds)
        self._fallback_micro_lamports = max(0, fallback_micro_lamports)
        self._base_compute_units = max(1, base_compute_units)
        self._clock = clock
        self._cached_levels: FeeLevels | None = None
        self._cached_at = 0.0

    async def get_fee_levels(self) -> FeeLevels:
        now = self._clock()
        if self._cached_levels is not None and now - self._cached_at < self._cache_ttl_seconds:
            return self._cached_levels

        samples = await self._source.get_recent_prioritization_fees()
        levels = build_fee_levels(samples)
        self._cached_levels = levels
        self._cached_at = now
        log_event(
            self._logger,
            level="debug",
            event="priority_fee_levels_refreshed",
            message="Refreshed priority fee levels",
            **levels.to_dict(),
        )
        return levels

    async def estimate_priority_fee(self, profile: ExecutionProfile) -> FeeEstimate:
        settings = PROFILE_FEE_SETTINGS.get(profile.name, PROFILE_FEE_SETTINGS["auto"])
        compute_unit_limit = int(self._base_compute_units * settings.compute_buffer)

        levels = await guarded_call(
            self.get_fee_levels,
            logger=self._logger,
            event="priority_fee_fallback",
            message="Falling back to static priority fee",
            profile=profile.name,
        )

        if levels is None or levels.sample_size == 0:
            return FeeEstimate(
                compute_unit_price=self._clamp(self._fallback_micro_lamports, settings),
                compute_unit_limit=compute_unit_limit,
                tier=settings.tier,
                congestion="unknown",
                source="fallback_static",
                sample_size=0,
            )

        recommended = int(levels.for_tier(settings.tier) * settings.multiplier)
        return FeeEstimate(
            compute_unit_price=self._clamp(recommended, settings),
            compute_unit_limit=compute_unit_limit,
            tier=settings.tier,
            congestion=levels.congestion,
            source="recent_prioritization_fees",
            sample_size=levels.sample_size,
        )

    async def recommend_profile(self) -> str:
        levels = await guarded_call(
            self.get_fee_levels,
            logger=self._logger,
            event="profile_recommendation_fallback",
            message="Fee levels unavailable; recommending auto profile",
        )
        if levels is None or levels.sample_size == 0:
            return "auto"
        if levels.congestion in {"critical", "high"}:
            return "fast"
        if levels.congestion == "low":
            return "cheap"
        return "auto"

    @staticmethod
    def _clamp(price: int, settings: ProfileFeeSettings) -> int:
        return max(settings.min_price, min(settings.max_price, int(price)))
