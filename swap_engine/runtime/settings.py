from __future__ import annotations

import os
from dataclasses import dataclass

from swap_engine.execution.profiles import EXECUTION_PROFILES
from swap_engine.execution.types import to_float, to_int

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def normalize_profile_name(value: str) -> str:
    name = (value or "").strip().lower()
    if name in EXECUTION_PROFILES:
        return name
    return "auto"


def parse_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(slots=True)
class AppSettings:
    log_level: str
    jupiter_api_base: str
    jupiter_api_key: str
    jupiter_timeout_seconds: float
    solana_rpc_urls: tuple[str, ...]
    rpc_timeout_seconds: float
    private_key: str
    default_execution_profile: str
    quote_max_age_seconds: float
    confirm_timeout_seconds: float
    confirm_poll_interval_seconds: float
    execution_timeout_seconds: float
    fee_cache_ttl_seconds: float
    fee_fallback_micro_lamports: int
    risk_sol_price_usd: float
    risk_blacklist: tuple[str, ...]
    risk_whitelist: tuple[str, ...]

    @classmethod
    def from_env(cls) -> "AppSettings":
        rpc_urls = parse_csv(os.getenv("SOLANA_RPC_URLS")) or parse_csv(os.getenv("SOLANA_RPC_URL"))
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO",
            jupiter_api_base=os.getenv("JUPITER_API_BASE", "https://api.jup.ag/swap/v1").strip().rstrip("/"),
            jupiter_api_key=os.getenv("JUPITER_API_KEY", "").strip(),
            jupiter_timeout_seconds=max(1.0, to_float(os.getenv("JUPITER_TIMEOUT_SECONDS"), 10.0)),
            solana_rpc_urls=rpc_urls or (DEFAULT_RPC_URL,),
            rpc_timeout_seconds=max(1.0, to_float(os.getenv("RPC_TIMEOUT_SECONDS"), 8.0)),
            private_key=os.getenv("PRIVATE_KEY", ""),
            default_execution_profile=normalize_profile_name(os.getenv("DEFAULT_EXECUTION_PROFILE", "auto")),
            quote_max_age_seconds=max(1.0, to_float(os.getenv("QUOTE_MAX_AGE_SECONDS"), 30.0)),
            confirm_timeout_seconds=max(
                5.0,
                to_float(os.getenv("CONFIRM_TIMEOUT_SECONDS"), 60.0),
            ),
            confirm_poll_interval_seconds=max(
                0.1,
                to_float(os.getenv("CONFIRM_POLL_INTERVAL_SECONDS"), 0.5),
            ),
            execution_timeout_seconds=max(0.0, to_float(os.getenv("EXECUTION_TIMEOUT_SECONDS"), 0.0)),
            fee_cache_ttl_seconds=max(0.0, to_float(os.getenv("FEE_CACHE_TTL_SECONDS"), 10.0)),
            fee_fallback_micro_lamports=max(
                0,
                to_int(os.getenv("FEE_FALLBACK_MICRO_LAMPORTS"), 10_000),
            ),
            risk_sol_price_usd=max(0.0, to_float(os.getenv("RISK_SOL_PRICE_USD"), 100.0)),
            risk_blacklist=parse_csv(os.getenv("RISK_BLACKLIST")),
            risk_whitelist=parse_csv(os.getenv("RISK_WHITELIST")),
        )
