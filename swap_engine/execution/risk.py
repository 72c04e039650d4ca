"""Traffic-light risk scoring for swap quotes.

Each factor is scored independently and the overall level is the most severe factor.
Only non-GREEN factors are reported as reasons, each with the value and threshold that
triggered it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from swap_engine.common import guarded_call, log_event

from .types import (
    Quote,
    RiskAssessment,
    RiskLevel,
    RiskReason,
    SwapIntent,
    TokenSafetyInfo,
    TokenSafetyProvider,
)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

KNOWN_TOKENS = {
    SOL_MINT: "SOL",
    USDC_MINT: "USDC",
    USDT_MINT: "USDT",
    "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E": "WBTC",
    "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs": "WETH",
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": "BONK",
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": "JUP",
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": "RAY",
    "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE": "ORCA",
}

STABLECOIN_MINTS = frozenset({USDC_MINT, USDT_MINT})

SOL_DECIMALS = 9
STABLECOIN_DECIMALS = 6


@dataclass(slots=True, frozen=True)
class RiskPolicy:
    # price impact, percent
    impact_warning_pct: float = 0.5
    impact_max_normal_pct: float = 1.0
    impact_max_protected_pct: float = 0.3
    impact_absolute_max_pct: float = 5.0
    # slippage, bps
    slippage_stablecoin_bps: int = 10
    slippage_major_bps: int = 50
    slippage_protected_max_bps: int = 100
    slippage_absolute_max_bps: int = 1_000
    # route hops
    route_amber_hops: int = 4
    route_red_hops: int = 6
    # size
    max_trade_usd: float = 100_000.0
    max_liquidity_share: float = 0.10
    sol_price_usd: float = 100.0
    # token safety
    min_token_age_days: float = 7.0
    min_holder_count: int = 100
    # quote freshness, seconds
    quote_amber_age_seconds: float = 15.0
    quote_red_age_seconds: float = 30.0
    blacklist: frozenset[str] = field(default_factory=frozenset)
    whitelist: frozenset[str] = field(default_factory=frozenset)


DEFAULT_RISK_POLICY = RiskPolicy()


@dataclass(slots=True, frozen=True)
class QuickCheckResult:
    level: RiskLevel
    reasons: tuple[RiskReason, ...]

    @property
    def passed(self) -> bool:
        return self.level is not RiskLevel.RED


def _reason(
    factor: str,
    level: RiskLevel,
    code: str,
    message: str,
    value: float | None = None,
    threshold: float | None = None,
) -> RiskReason:
    return RiskReason(
        factor=factor,
        level=level,
        code=code,
        message=message,
        value=value,
        threshold=threshold,
    )


class RiskScoringEngine:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        policy: RiskPolicy = DEFAULT_RISK_POLICY,
        token_safety: TokenSafetyProvider | None = None,
        clock: Callable[[], float] = time.time,
        token_safety_timeout_seconds: float = 3.0,
    ) -> None:
        self._logger = logger
        self._policy = policy
        self._token_safety = token_safety
        self._clock = clock
        self._token_safety_timeout_seconds = token_safety_timeout_seconds

    @property
    def policy(self) -> RiskPolicy:
        return self._policy

    async def score_swap(
        self,
        intent: SwapIntent,
        quote: Quote,
        *,
        liquidity_usd: float | None = None,
    ) -> RiskAssessment:
        token_safety: dict[str, TokenSafetyInfo | None] = {}
        if self._token_safety is not None:
            mints = [mint for mint in (intent.input_mint, intent.output_mint) if self._needs_safety_check(mint)]
            results = await asyncio.gather(*(self._fetch_token_safety(mint) for mint in mints))
            token_safety = dict(zip(mints, results))

        assessment = self.evaluate(
            intent,
            quote,
            token_safety=token_safety,
            liquidity_usd=liquidity_usd,
        )
        log_event(
            self._logger,
            level="info" if assessment.level is RiskLevel.GREEN else "warning",
            event="risk_assessed",
            message="Swap risk assessed",
            risk_level=assessment.level.value,
            reason_codes=[reason.code for reason in assessment.reasons],
            protected_mode=intent.protected_mode,
            blocked=assessment.blocked_in_protected_mode,
        )
        return assessment

    def evaluate(
        self,
        intent: SwapIntent,
        quote: Quote,
        *,
        token_safety: dict[str, TokenSafetyInfo | None] | None = None,
        liquidity_usd: float | None = None,
    ) -> RiskAssessment:
        quote_age_seconds = quote.age_seconds(self._clock())
        reasons: list[RiskReason] = []
        reasons.extend(self._score_price_impact(quote.price_impact_pct, protected=intent.protected_mode))
        reasons.extend(
            self._score_slippage(
                intent.slippage_bps,
                input_mint=intent.input_mint,
                output_mint=intent.output_mint,
                protected=intent.protected_mode,
            )
        )
        reasons.extend(self._score_route(quote.hop_count))
        reasons.extend(self._score_size(quote, liquidity_usd=liquidity_usd))
        reasons.extend(self._score_blacklist(intent.input_mint, intent.output_mint))
        for mint, info in (token_safety or {}).items():
            reasons.extend(self._score_token_safety(mint, info))
        reasons.extend(self._score_quote_age(quote_age_seconds))

        level = RiskLevel.worst(reason.level for reason in reasons)
        return RiskAssessment(
            level=level,
            reasons=tuple(reasons),
            blocked_in_protected_mode=intent.protected_mode and level is RiskLevel.RED,
            requires_acknowledgement=level is not RiskLevel.GREEN,
            quote_age_seconds=quote_age_seconds,
        )

    def quick_check(self, intent: SwapIntent) -> QuickCheckResult:
        """Screen an intent before any quote is requested."""
        reasons = [
            *self._score_blacklist(intent.input_mint, intent.output_mint),
            *(
                reason
                for reason in self._score_slippage(
                    intent.slippage_bps,
                    input_mint=intent.input_mint,
                    output_mint=intent.output_mint,
                    protected=intent.protected_mode,
                )
                if reason.level is RiskLevel.RED
            ),
        ]
        return QuickCheckResult(level=RiskLevel.worst(r.level for r in reasons), reasons=tuple(reasons))

    def estimate_value_usd(self, mint: str, amount: int) -> float | None:
        if mint == SOL_MINT:
            return amount / 10**SOL_DECIMALS * self._policy.sol_price_usd
        if mint in STABLECOIN_MINTS:
            return amount / 10**STABLECOIN_DECIMALS
        return None

    def _needs_safety_check(self, mint: str) -> bool:
        return mint not in KNOWN_TOKENS and mint not in self._policy.whitelist

    async def _fetch_token_safety(self, mint: str) -> TokenSafetyInfo | None:
        if self._token_safety is None:
            return None
        return await guarded_call(
            lambda: self._token_safety.get_token_safety(mint),
            logger=self._logger,
            event="token_safety_lookup_failed",
            message="Token safety lookup failed",
            timeout_seconds=self._token_safety_timeout_seconds,
            mint=mint,
        )

    def _score_price_impact(self, impact_pct: float, *, protected: bool) -> list[RiskReason]:
        policy = self._policy
        mode_limit = policy.impact_max_protected_pct if protected else policy.impact_max_normal_pct
        green_ceiling = min(policy.impact_warning_pct, mode_limit)
        mode = "protected" if protected else "standard"

        if impact_pct > policy.impact_absolute_max_pct:
            return [
                _reason(
                    "price_impact",
                    RiskLevel.RED,
                    "PRICE_IMPACT_CRITICAL",
                    f"Price impact of {impact_pct:.2f}% exceeds absolute maximum of "
                    f"{policy.impact_absolute_max_pct:.2f}%",
                    impact_pct,
                    policy.impact_absolute_max_pct,
                )
            ]
        if impact_pct > mode_limit:
            return [
                _reason(
                    "price_impact",
                    RiskLevel.RED,
                    "PRICE_IMPACT_HIGH",
                    f"Price impact of {impact_pct:.2f}% exceeds {mode} mode limit of {mode_limit:.2f}%",
                    impact_pct,
                    mode_limit,
                )
            ]
        if impact_pct > green_ceiling:
            return [
                _reason(
                    "price_impact",
                    RiskLevel.AMBER,
                    "PRICE_IMPACT_ELEVATED",
                    f"Price impact of {impact_pct:.2f}% is above {green_ceiling:.2f}%",
                    impact_pct,
                    green_ceiling,
                )
            ]
        return []

    def _score_slippage(
        self,
        slippage_bps: int,
        *,
        input_mint: str,
        output_mint: str,
        protected: bool,
    ) -> list[RiskReason]:
        policy = self._policy
        stable_pair = input_mint in STABLECOIN_MINTS and output_mint in STABLECOIN_MINTS
        green_ceiling = policy.slippage_stablecoin_bps if stable_pair else policy.slippage_major_bps

        if slippage_bps > policy.slippage_absolute_max_bps:
            return [
                _reason(
                    "slippage",
                    RiskLevel.RED,
                    "SLIPPAGE_EXTREME",
                    f"Slippage tolerance of {slippage_bps} bps exceeds absolute maximum of "
                    f"{policy.slippage_absolute_max_bps} bps",
                    slippage_bps,
                    policy.slippage_absolute_max_bps,
                )
            ]
        if protected and slippage_bps > policy.slippage_protected_max_bps:
            return [
                _reason(
                    "slippage",
                    RiskLevel.RED,
                    "SLIPPAGE_PROTECTED_LIMIT",
                    f"Slippage tolerance of {slippage_bps} bps exceeds protected mode limit of "
                    f"{policy.slippage_protected_max_bps} bps",
                    slippage_bps,
                    policy.slippage_protected_max_bps,
                )
            ]
        if slippage_bps > green_ceiling:
            pair_kind = "stablecoin pair" if stable_pair else "this pair"
            return [
                _reason(
                    "slippage",
                    RiskLevel.AMBER,
                    "SLIPPAGE_ELEVATED",
                    f"Slippage tolerance of {slippage_bps} bps is above {green_ceiling} bps for {pair_kind}",
                    slippage_bps,
                    green_ceiling,
                )
            ]
        return []

    def _score_route(self, hops: int) -> list[RiskReason]:
        policy = self._policy
        if hops > policy.route_red_hops:
            return [
                _reason(
                    "route",
                    RiskLevel.RED,
                    "ROUTE_TOO_COMPLEX",
                    f"Route uses {hops} hops, above the limit of {policy.route_red_hops}",
                    hops,
                    policy.route_red_hops,
                )
            ]
        if hops > policy.route_amber_hops:
            return [
                _reason(
                    "route",
                    RiskLevel.AMBER,
                    "ROUTE_COMPLEX",
                    f"Route uses {hops} hops; partial failure risk is elevated",
                    hops,
                    policy.route_amber_hops,
                )
            ]
        return []

    def _score_size(self, quote: Quote, *, liquidity_usd: float | None) -> list[RiskReason]:
        policy = self._policy
        estimates = [
            value
            for value in (
                self.estimate_value_usd(quote.input_mint, quote.in_amount),
                self.estimate_value_usd(quote.output_mint, quote.out_amount),
            )
            if value is not None
        ]
        if not estimates:
            return []

        value_usd = max(estimates)
        reasons: list[RiskReason] = []
        if value_usd > policy.max_trade_usd:
            reasons.append(
                _reason(
                    "size",
                    RiskLevel.RED,
                    "TRADE_SIZE_LIMIT",
                    f"Trade value of ${value_usd:,.2f} exceeds maximum of ${policy.max_trade_usd:,.2f}",
                    round(value_usd, 2),
                    policy.max_trade_usd,
                )
            )
        if liquidity_usd is not None and liquidity_usd > 0:
            share = value_usd / liquidity_usd
            if share > policy.max_liquidity_share:
                reasons.append(
                    _reason(
                        "size",
                        RiskLevel.RED,
                        "LIQUIDITY_SHARE_LIMIT",
                        f"Trade is {share:.1%} of available liquidity, above {policy.max_liquidity_share:.0%}",
                        round(share, 4),
                        policy.max_liquidity_share,
                    )
                )
        return reasons

    def _score_blacklist(self, *mints: str) -> list[RiskReason]:
        return [
            _reason("token_safety", RiskLevel.RED, "TOKEN_BLACKLISTED", f"Token {mint} is blacklisted")
            for mint in mints
            if mint in self._policy.blacklist
        ]

    def _score_token_safety(self, mint: str, info: TokenSafetyInfo | None) -> list[RiskReason]:
        policy = self._policy
        if info is None:
            return [
                _reason(
                    "token_safety",
                    RiskLevel.AMBER,
                    "TOKEN_UNVERIFIED",
                    f"Could not verify token safety for {mint}",
                )
            ]

        reasons: list[RiskReason] = []
        if info.has_freeze_authority:
            reasons.append(
                _reason(
                    "token_safety",
                    RiskLevel.AMBER,
                    "TOKEN_FREEZE_AUTHORITY",
                    f"Token {mint} has a freeze authority; balances can be frozen",
                )
            )
        if info.has_transfer_fee:
            reasons.append(
                _reason(
                    "token_safety",
                    RiskLevel.AMBER,
                    "TOKEN_TRANSFER_FEE",
                    f"Token {mint} charges a transfer fee; received amount may be lower than quoted",
                )
            )
        if info.age_days is not None and info.age_days < policy.min_token_age_days:
            reasons.append(
                _reason(
                    "token_safety",
                    RiskLevel.AMBER,
                    "TOKEN_NEW",
                    f"Token {mint} is {info.age_days:.1f} days old",
                    info.age_days,
                    policy.min_token_age_days,
                )
            )
        if info.holder_count is not None and info.holder_count < policy.min_holder_count:
            reasons.append(
                _reason(
                    "token_safety",
                    RiskLevel.AMBER,
                    "TOKEN_FEW_HOLDERS",
                    f"Token {mint} has only {info.holder_count} holders",
                    info.holder_count,
                    policy.min_holder_count,
                )
            )
        return reasons

    def _score_quote_age(self, age_seconds: float) -> list[RiskReason]:
        policy = self._policy
        if age_seconds > policy.quote_red_age_seconds:
            return [
                _reason(
                    "quote_freshness",
                    RiskLevel.RED,
                    "QUOTE_EXPIRED",
                    f"Quote is {age_seconds:.1f}s old; refresh required",
                    round(age_seconds, 3),
                    policy.quote_red_age_seconds,
                )
            ]
        if age_seconds > policy.quote_amber_age_seconds:
            return [
                _reason(
                    "quote_freshness",
                    RiskLevel.AMBER,
                    "QUOTE_AGING",
                    f"Quote is {age_seconds:.1f}s old",
                    round(age_seconds, 3),
                    policy.quote_amber_age_seconds,
                )
            ]
        return []
