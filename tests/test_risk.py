from __future__ import annotations

import asyncio
import logging

import pytest

from swap_engine.execution.risk import SOL_MINT, USDC_MINT, USDT_MINT, RiskPolicy, RiskScoringEngine
from swap_engine.execution.types import RiskLevel, TokenSafetyInfo

from .fakes import FakeTokenSafety, make_intent, make_quote

NOW = 1_700_000_000.0
MEME_MINT = "MemeCoin11111111111111111111111111111111111"


def _engine(policy: RiskPolicy | None = None, token_safety=None) -> RiskScoringEngine:
    return RiskScoringEngine(
        logger=logging.getLogger("swap_engine.tests"),
        policy=policy or RiskPolicy(),
        token_safety=token_safety,
        clock=lambda: NOW,
    )


def _codes(assessment):
    return [reason.code for reason in assessment.reasons]


def test_clean_quote_is_green():
    assessment = _engine().evaluate(make_intent(), make_quote(fetched_at=NOW))

    assert assessment.level is RiskLevel.GREEN
    assert assessment.reasons == ()
    assert assessment.warnings == []
    assert assessment.requires_acknowledgement is False
    assert assessment.blocked_in_protected_mode is False


@pytest.mark.parametrize(
    ("impact", "protected", "level", "code"),
    [
        (0.4, False, RiskLevel.GREEN, None),
        (0.7, False, RiskLevel.AMBER, "PRICE_IMPACT_ELEVATED"),
        (2.0, False, RiskLevel.RED, "PRICE_IMPACT_HIGH"),
        (0.4, True, RiskLevel.RED, "PRICE_IMPACT_HIGH"),
        (6.0, False, RiskLevel.RED, "PRICE_IMPACT_CRITICAL"),
    ],
)
def test_price_impact_thresholds(impact, protected, level, code):
    assessment = _engine().evaluate(
        make_intent(protected_mode=protected),
        make_quote(price_impact_pct=impact, fetched_at=NOW),
    )

    assert assessment.level is level
    assert _codes(assessment) == ([code] if code else [])


def test_reasons_carry_value_and_threshold():
    reason = _engine().evaluate(make_intent(), make_quote(price_impact_pct=2.0, fetched_at=NOW)).reasons[0]

    assert reason.factor == "price_impact"
    assert reason.value == 2.0
    assert reason.threshold == 1.0


def test_stablecoin_pair_has_tighter_slippage_band():
    intent = make_intent(input_mint=USDC_MINT, output_mint=USDT_MINT, amount_in=1_000_000, slippage_bps=20)
    quote = make_quote(input_mint=USDC_MINT, output_mint=USDT_MINT, in_amount=1_000_000, out_amount=999_000, fetched_at=NOW)

    assessment = _engine().evaluate(intent, quote)

    assert assessment.level is RiskLevel.AMBER
    assert _codes(assessment) == ["SLIPPAGE_ELEVATED"]


@pytest.mark.parametrize(
    ("slippage", "protected", "code"),
    [(1_500, False, "SLIPPAGE_EXTREME"), (150, True, "SLIPPAGE_PROTECTED_LIMIT"), (150, False, "SLIPPAGE_ELEVATED")],
)
def test_slippage_thresholds(slippage, protected, code):
    assessment = _engine().evaluate(
        make_intent(slippage_bps=slippage, protected_mode=protected),
        make_quote(fetched_at=NOW),
    )

    assert _codes(assessment) == [code]


@pytest.mark.parametrize(("hops", "code"), [(4, None), (5, "ROUTE_COMPLEX"), (7, "ROUTE_TOO_COMPLEX")])
def test_route_complexity(hops, code):
    assessment = _engine().evaluate(make_intent(), make_quote(hops=hops, fetched_at=NOW))

    assert _codes(assessment) == ([code] if code else [])


def test_trade_size_limit_uses_usd_estimate():
    intent = make_intent(amount_in=2_000 * 10**9)
    quote = make_quote(in_amount=2_000 * 10**9, out_amount=200_000 * 10**6, fetched_at=NOW)

    assessment = _engine().evaluate(intent, quote)

    assert assessment.level is RiskLevel.RED
    assert _codes(assessment) == ["TRADE_SIZE_LIMIT"]


def test_liquidity_share_limit():
    assessment = _engine().evaluate(make_intent(), make_quote(fetched_at=NOW), liquidity_usd=500.0)

    assert _codes(assessment) == ["LIQUIDITY_SHARE_LIMIT"]


def test_blacklisted_token_is_red():
    engine = _engine(RiskPolicy(blacklist=frozenset({USDC_MINT})))

    assessment = engine.evaluate(make_intent(), make_quote(fetched_at=NOW))

    assert assessment.level is RiskLevel.RED
    assert _codes(assessment) == ["TOKEN_BLACKLISTED"]


@pytest.mark.parametrize(("age", "code"), [(10.0, None), (20.0, "QUOTE_AGING"), (40.0, "QUOTE_EXPIRED")])
def test_quote_freshness(age, code):
    assessment = _engine().evaluate(make_intent(), make_quote(fetched_at=NOW - age))

    assert _codes(assessment) == ([code] if code else [])
    assert assessment.quote_age_seconds == pytest.approx(age)


def test_protected_mode_blocks_only_red():
    engine = _engine()
    amber = engine.evaluate(make_intent(protected_mode=True), make_quote(hops=5, fetched_at=NOW))
    red = engine.evaluate(make_intent(protected_mode=True), make_quote(hops=7, fetched_at=NOW))

    assert amber.level is RiskLevel.AMBER
    assert amber.blocked_in_protected_mode is False
    assert amber.requires_acknowledgement is True
    assert red.blocked_in_protected_mode is True


def test_overall_level_is_worst_factor():
    assessment = _engine().evaluate(
        make_intent(slippage_bps=150),
        make_quote(price_impact_pct=2.0, hops=5, fetched_at=NOW),
    )

    assert assessment.level is RiskLevel.RED
    assert set(_codes(assessment)) == {"PRICE_IMPACT_HIGH", "SLIPPAGE_ELEVATED", "ROUTE_COMPLEX"}
    assert len(assessment.warnings) == 3


def test_quick_check_flags_only_intent_level_red():
    engine = _engine()

    assert engine.quick_check(make_intent(slippage_bps=150)).passed is True
    blocked = engine.quick_check(make_intent(slippage_bps=150, protected_mode=True))
    assert blocked.passed is False
    assert [reason.code for reason in blocked.reasons] == ["SLIPPAGE_PROTECTED_LIMIT"]


@pytest.mark.asyncio
async def test_unknown_tokens_are_checked_for_safety():
    provider = FakeTokenSafety({MEME_MINT: TokenSafetyInfo(mint=MEME_MINT, has_freeze_authority=True, holder_count=12)})
    engine = _engine(token_safety=provider)
    intent = make_intent(output_mint=MEME_MINT)

    assessment = await engine.score_swap(intent, make_quote(output_mint=MEME_MINT, fetched_at=NOW))

    assert provider.calls == [MEME_MINT]
    assert assessment.level is RiskLevel.AMBER
    assert set(_codes(assessment)) == {"TOKEN_FREEZE_AUTHORITY", "TOKEN_FEW_HOLDERS"}


@pytest.mark.asyncio
async def test_failed_safety_lookup_marks_token_unverified():
    provider = FakeTokenSafety({MEME_MINT: RuntimeError("rpc down")})
    engine = _engine(token_safety=provider)

    assessment = await engine.score_swap(
        make_intent(output_mint=MEME_MINT),
        make_quote(output_mint=MEME_MINT, fetched_at=NOW),
    )

    assert _codes(assessment) == ["TOKEN_UNVERIFIED"]


class _SlowTokenSafety:
    async def get_token_safety(self, mint):
        await asyncio.sleep(5)
        return TokenSafetyInfo(mint=mint)


@pytest.mark.asyncio
async def test_slow_safety_lookup_is_bounded_and_marks_token_unverified():
    engine = RiskScoringEngine(
        logger=logging.getLogger("swap_engine.tests"),
        token_safety=_SlowTokenSafety(),
        clock=lambda: NOW,
        token_safety_timeout_seconds=0.01,
    )

    assessment = await engine.score_swap(
        make_intent(output_mint=MEME_MINT),
        make_quote(output_mint=MEME_MINT, fetched_at=NOW),
    )

    assert _codes(assessment) == ["TOKEN_UNVERIFIED"]


@pytest.mark.asyncio
async def test_whitelisted_and_known_tokens_skip_safety_lookup():
    provider = FakeTokenSafety()
    engine = _engine(RiskPolicy(whitelist=frozenset({MEME_MINT})), token_safety=provider)

    await engine.score_swap(make_intent(output_mint=MEME_MINT), make_quote(output_mint=MEME_MINT, fetched_at=NOW))
    await engine.score_swap(make_intent(input_mint=SOL_MINT), make_quote(fetched_at=NOW))

    assert provider.calls == []


def test_assessment_serializes_levels_as_strings():
    payload = _engine().evaluate(make_intent(), make_quote(price_impact_pct=0.7, fetched_at=NOW)).to_dict()

    assert payload["level"] == "AMBER"
    assert payload["reasons"][0]["level"] == "AMBER"
    assert payload["requires_acknowledgement"] is True
