from __future__ import annotations

from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(slots=True, frozen=True)
class ExecutionProfile:
    name: str
    max_retries: int
    max_requotes: int
    initial_delay_ms: int
    max_delay_ms: int
    backoff_multiplier: float
    jitter: bool = True
    jitter_ms: int = 0

    @property
    def max_backoff_budget_ms(self) -> int:
        """Worst-case total wait across every retry this profile allows."""
        return self.max_delay_ms * (self.max_retries + self.max_requotes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


AUTO = ExecutionProfile(
    name="auto",
    max_retries=5,
    max_requotes=2,
    initial_delay_ms=500,
    max_delay_ms=10_000,
    backoff_multiplier=2.0,
    jitter=True,
    jitter_ms=200,
)

FAST = ExecutionProfile(
    name="fast",
    max_retries=2,
    max_requotes=1,
    initial_delay_ms=100,
    max_delay_ms=2_000,
    backoff_multiplier=1.5,
    jitter=True,
    jitter_ms=50,
)

CHEAP = ExecutionProfile(
    name="cheap",
    max_retries=3,
    max_requotes=1,
    initial_delay_ms=1_000,
    max_delay_ms=15_000,
    backoff_multiplier=2.0,
    jitter=True,
    jitter_ms=500,
)

EXECUTION_PROFILES: Mapping[str, ExecutionProfile] = MappingProxyType(
    {profile.name: profile for profile in (AUTO, FAST, CHEAP)}
)


def get_profile(name: str | None) -> ExecutionProfile:
    normalized = (name or "").strip().lower()
    try:
        return EXECUTION_PROFILES[normalized]
    except KeyError:
        raise ValueError(
            f"Unknown execution profile {name!r}; expected one of {sorted(EXECUTION_PROFILES)}"
        ) from None
