from __future__ import annotations

import time

import pytest

from swap_engine.execution.errors import (
    AggregatorRateLimitError,
    ReceiptStateError,
    RpcMethodError,
)
from swap_engine.execution.profiles import AUTO
from swap_engine.execution.types import EventType, FeeEstimate, ReceiptStatus, RiskLevel

from .fakes import (
    FakeQuoteProvider,
    FakeSubmitter,
    USER,
    confirmed,
    failed,
    make_intent,
    make_quote,
    pending,
)

SLIPPAGE_FAILURE = 'Transaction failed on-chain: {"InstructionError":[2,{"Custom":6001}]}'


async def _event_types(harness, receipt_id):
    return [event.event_type for event in await harness.engine.get_receipt_timeline(receipt_id)]


@pytest.mark.asyncio
async def test_happy_path_confirms_and_records_full_timeline(make_harness):
    harness = make_harness(submitter=FakeSubmitter(output_amount=149_500_000))

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.SUCCESS
    assert result.risk_level is RiskLevel.GREEN
    assert result.attempts == 1
    assert result.tx_signature == "sig-1"
    assert result.out_amount == 149_500_000
    assert result.metrics is not None
    assert result.metrics.final_status == "success"
    assert result.metrics.error_codes == ()

    receipt = await harness.engine.get_receipt(result.receipt_id)
    assert receipt.status is ReceiptStatus.SUCCESS
    assert receipt.expected_out_amount == 150_000_000
    assert receipt.out_amount == 149_500_000
    assert receipt.completed_at is not None

    timeline = await harness.engine.get_receipt_timeline(result.receipt_id)
    assert [event.event_type for event in timeline] == [
        EventType.QUOTE,
        EventType.TX_BUILD,
        EventType.TX_SEND,
        EventType.TX_CONFIRM,
        EventType.SUCCESS,
    ]
    assert [event.sequence for event in timeline] == [1, 2, 3, 4, 5]
    assert timeline[2].metadata["rpc_endpoint"] == "https://rpc.test"
    assert harness.signer.signed == ["unsigned-tx-1"]
    assert harness.submitter.submitted == ["signed:unsigned-tx-1"]


@pytest.mark.asyncio
async def test_success_payload_carries_signature_and_output_amount(make_harness):
    harness = make_harness(submitter=FakeSubmitter(output_amount=149_000_000))

    payload = (await harness.engine.execute_swap(make_intent())).to_payload()

    assert payload["status"] == "success"
    assert payload["txSignature"] == "sig-1"
    assert payload["outAmount"] == "149000000"
    assert payload["riskLevel"] == "GREEN"
    assert "error" not in payload


@pytest.mark.asyncio
async def test_quoted_amount_is_used_when_actual_output_is_unknown(make_harness):
    harness = make_harness()

    result = await harness.engine.execute_swap(make_intent())

    assert result.out_amount == 150_000_000


@pytest.mark.asyncio
async def test_fatal_error_fails_without_retry(make_harness):
    quotes = FakeQuoteProvider(builds=[RuntimeError("Insufficient funds for transaction")])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.FAILED
    assert result.attempts == 1
    assert result.error == "Fatal error, not retryable: Insufficient funds for transaction"
    assert result.metrics.error_codes == ("INSUFFICIENT_FUNDS",)
    assert harness.submitter.submitted == []
    assert harness.sleep.delays == []

    types = await _event_types(harness, result.receipt_id)
    assert EventType.RETRY not in types
    assert types[-1] is EventType.FAILURE


@pytest.mark.asyncio
async def test_rate_limits_back_off_with_increasing_delays(make_harness):
    quotes = FakeQuoteProvider(quotes=[AggregatorRateLimitError("Jupiter quote rate limited") for _ in range(3)])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.SUCCESS
    assert result.attempts == 4
    assert quotes.quote_calls == 4
    assert len(harness.sleep.delays) == 3
    assert harness.sleep.delays[0] < harness.sleep.delays[1] < harness.sleep.delays[2]
    assert all(delay * 1000 <= AUTO.max_delay_ms for delay in harness.sleep.delays)
    assert result.metrics.total_attempts == 4
    assert result.metrics.error_codes == ("RATE_LIMITED",) * 3

    types = await _event_types(harness, result.receipt_id)
    assert types.count(EventType.RETRY) == 3
    assert EventType.REQUOTE not in types


@pytest.mark.asyncio
async def test_retry_after_hint_sets_the_delay(make_harness):
    quotes = FakeQuoteProvider(quotes=[AggregatorRateLimitError("slow down", retry_after_seconds=1.5)])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert harness.sleep.delays == [1.5]


@pytest.mark.asyncio
async def test_retries_stop_at_profile_limit(make_harness):
    quotes = FakeQuoteProvider(quotes=[ConnectionError("connection reset by peer") for _ in range(5)])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent(execution_profile="fast"))

    assert result.status is ReceiptStatus.FAILED
    assert result.attempts == 3
    assert result.error == "Max retries exceeded: connection reset by peer"
    assert quotes.quote_calls == 3
    assert len(harness.sleep.delays) == 2


@pytest.mark.asyncio
async def test_protected_mode_blocks_red_quote_before_sending(make_harness):
    quotes = FakeQuoteProvider(quotes=[make_quote(price_impact_pct=6.0)])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent(protected_mode=True))

    assert result.status is ReceiptStatus.FAILED
    assert result.risk_level is RiskLevel.RED
    assert "blocked by protected mode" in result.error
    assert "6.00%" in result.error
    assert quotes.build_calls == []
    assert harness.submitter.submitted == []

    timeline = await harness.engine.get_receipt_timeline(result.receipt_id)
    assert timeline[-1].event_type is EventType.FAILURE
    assert timeline[-1].metadata["error_code"] == "PROTECTED_MODE_BLOCK"


@pytest.mark.asyncio
async def test_protected_mode_screens_slippage_before_quoting(make_harness):
    harness = make_harness()

    result = await harness.engine.execute_swap(make_intent(protected_mode=True, slippage_bps=500))

    assert result.status is ReceiptStatus.FAILED
    assert "blocked by protected mode" in result.error
    assert harness.quotes.quote_calls == 0
    assert await _event_types(harness, result.receipt_id) == [EventType.QUOTE, EventType.FAILURE]


@pytest.mark.asyncio
async def test_red_risk_without_protected_mode_still_executes(make_harness):
    quotes = FakeQuoteProvider(quotes=[make_quote(price_impact_pct=6.0)])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert result.risk_level is RiskLevel.RED
    assert any("Price impact" in warning for warning in result.warnings)


@pytest.mark.asyncio
async def test_slippage_failure_requotes_and_resends(make_harness):
    submitter = FakeSubmitter(confirms=[failed(SLIPPAGE_FAILURE), confirmed()])
    harness = make_harness(submitter=submitter)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert result.attempts == 2
    assert result.tx_signature == "sig-2"
    assert result.metrics.total_requotes == 1
    assert result.metrics.error_codes == ("SLIPPAGE_EXCEEDED",)
    assert harness.quotes.quote_calls == 2
    assert len(harness.quotes.build_calls) == 2

    types = await _event_types(harness, result.receipt_id)
    assert types == [
        EventType.QUOTE,
        EventType.TX_BUILD,
        EventType.TX_SEND,
        EventType.TX_CONFIRM,
        EventType.RETRY,
        EventType.REQUOTE,
        EventType.TX_BUILD,
        EventType.TX_SEND,
        EventType.TX_CONFIRM,
        EventType.SUCCESS,
    ]


@pytest.mark.asyncio
async def test_stale_quote_is_refreshed_before_building(make_harness):
    quotes = FakeQuoteProvider(quotes=[make_quote(fetched_at=time.time() - 120)])
    harness = make_harness(quotes=quotes)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert result.risk_level is RiskLevel.GREEN
    assert quotes.quote_calls == 2
    assert len(quotes.build_calls) == 1
    assert result.metrics.error_codes == ("QUOTE_STALE",)


@pytest.mark.asyncio
async def test_blockhash_not_found_rebuilds_from_same_quote(make_harness):
    submitter = FakeSubmitter(
        submits=[
            RpcMethodError(
                method="sendTransaction",
                message="RPC error for sendTransaction: Transaction simulation failed: Blockhash not found",
                code=-32002,
            )
        ]
    )
    harness = make_harness(submitter=submitter)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert result.attempts == 2
    assert harness.quotes.quote_calls == 1
    assert len(harness.quotes.build_calls) == 2
    assert result.metrics.total_requotes == 0


@pytest.mark.asyncio
async def test_in_flight_signature_is_confirmed_again_after_requote_budget_is_spent(make_harness):
    submitter = FakeSubmitter(
        confirms=[failed(SLIPPAGE_FAILURE), pending(), confirmed()],
        statuses={"sig-2": pending()},
    )
    harness = make_harness(submitter=submitter)

    result = await harness.engine.execute_swap(make_intent(execution_profile="fast"))

    assert result.succeeded
    assert result.tx_signature == "sig-2"
    assert result.attempts == 3
    assert result.metrics.total_requotes == 1
    assert result.metrics.error_codes == ("SLIPPAGE_EXCEEDED", "CONFIRMATION_TIMEOUT")
    assert submitter.confirm_calls == ["sig-1", "sig-2", "sig-2"]
    assert len(submitter.submitted) == 2
    receipt = await harness.engine.get_receipt(result.receipt_id)
    assert receipt.status is ReceiptStatus.SUCCESS


@pytest.mark.asyncio
async def test_landed_signature_is_not_resent_after_confirmation_timeout(make_harness):
    submitter = FakeSubmitter(confirms=[pending()], statuses={"sig-1": confirmed(slot=77)})
    harness = make_harness(submitter=submitter)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert result.tx_signature == "sig-1"
    assert result.attempts == 1
    assert submitter.submitted == ["signed:unsigned-tx-1"]
    assert EventType.RETRY not in await _event_types(harness, result.receipt_id)


@pytest.mark.asyncio
async def test_in_flight_signature_is_confirmed_again_instead_of_resent(make_harness):
    submitter = FakeSubmitter(confirms=[pending(), confirmed()], statuses={"sig-1": pending()})
    harness = make_harness(submitter=submitter)

    result = await harness.engine.execute_swap(make_intent())

    assert result.succeeded
    assert result.attempts == 2
    assert submitter.submitted == ["signed:unsigned-tx-1"]
    assert submitter.confirm_calls == ["sig-1", "sig-1"]
    assert result.metrics.total_requotes == 0


@pytest.mark.asyncio
async def test_execution_timeout_fails_the_receipt(make_harness):
    quotes = FakeQuoteProvider(quote_delay_seconds=5.0)
    harness = make_harness(quotes=quotes, execution_timeout_seconds=0.05)

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.FAILED
    assert result.error.startswith("Execution timed out")
    assert "EXECUTION_TIMEOUT" in result.metrics.error_codes
    receipt = await harness.engine.get_receipt(result.receipt_id)
    assert receipt.status is ReceiptStatus.FAILED


def test_default_timeout_covers_every_attempt_and_backoff(make_harness):
    harness = make_harness()

    expected = AUTO.max_backoff_budget_ms / 1000 + (AUTO.max_retries + AUTO.max_requotes + 1) * 90.0
    assert harness.engine.execution_timeout_for(AUTO) == pytest.approx(expected)


@pytest.mark.asyncio
async def test_unsigned_flow_returns_transaction_and_keeps_receipt_pending(make_harness):
    harness = make_harness(signer=None)

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.SUCCESS
    assert result.transaction == "unsigned-tx-1"
    assert result.tx_signature is None
    assert result.last_valid_block_height == 1_001
    assert result.metrics.final_status == "awaiting_signature"
    assert harness.submitter.submitted == []

    receipt = await harness.engine.get_receipt(result.receipt_id)
    assert receipt.status is ReceiptStatus.PENDING
    assert receipt.expected_out_amount == 150_000_000

    payload = result.to_payload()
    assert payload["transaction"] == "unsigned-tx-1"
    assert "txSignature" not in payload


@pytest.mark.asyncio
async def test_caller_signed_transaction_is_sent_and_confirmed(make_harness):
    harness = make_harness(signer=None)
    unsigned = await harness.engine.execute_swap(make_intent())

    result = await harness.engine.submit_signed_transaction(
        unsigned.receipt_id,
        "wallet-signed-tx",
        last_valid_block_height=unsigned.last_valid_block_height,
    )

    assert result.succeeded
    assert result.tx_signature == "sig-1"
    assert harness.submitter.submitted == ["wallet-signed-tx"]
    with pytest.raises(ReceiptStateError):
        await harness.engine.submit_signed_transaction(unsigned.receipt_id, "wallet-signed-tx")


@pytest.mark.asyncio
async def test_caller_signed_transaction_is_not_rebuilt_after_slippage_failure(make_harness):
    submitter = FakeSubmitter(confirms=[failed(SLIPPAGE_FAILURE)])
    harness = make_harness(submitter=submitter, signer=None)
    unsigned = await harness.engine.execute_swap(make_intent())

    result = await harness.engine.submit_signed_transaction(unsigned.receipt_id, "wallet-signed-tx")

    assert result.status is ReceiptStatus.FAILED
    assert result.error.startswith("Caller-signed transaction cannot be rebuilt")
    assert harness.quotes.quote_calls == 1
    assert submitter.submitted == ["wallet-signed-tx"]


@pytest.mark.asyncio
async def test_external_status_update_is_terminal(make_harness):
    harness = make_harness(signer=None, submitter=FakeSubmitter(output_amount=148_000_000))
    unsigned = await harness.engine.execute_swap(make_intent())

    receipt = await harness.engine.update_receipt_status(unsigned.receipt_id, "success", "sig-wallet")
    assert receipt.status is ReceiptStatus.SUCCESS
    assert receipt.tx_signature == "sig-wallet"
    assert receipt.out_amount == 148_000_000

    again = await harness.engine.update_receipt_status(unsigned.receipt_id, ReceiptStatus.SUCCESS, "sig-wallet")
    assert again == receipt

    with pytest.raises(ReceiptStateError):
        await harness.engine.update_receipt_status(unsigned.receipt_id, "failed", error="late failure")

    types = await _event_types(harness, unsigned.receipt_id)
    assert types.count(EventType.SUCCESS) == 1


@pytest.mark.asyncio
async def test_receipt_comparison_after_execution(make_harness):
    harness = make_harness(submitter=FakeSubmitter(output_amount=149_500_000))
    result = await harness.engine.execute_swap(make_intent())

    comparison = await harness.engine.compare_receipt(result.receipt_id)

    assert comparison.expected_out_amount == 150_000_000
    assert comparison.actual_out_amount == 149_500_000
    assert comparison.delta_pct == pytest.approx(-0.3333)
    assert comparison.actual_slippage_bps == pytest.approx(33.33)
    assert comparison.retry_count == 0


@pytest.mark.asyncio
async def test_history_lists_user_receipts_newest_first(make_harness):
    harness = make_harness()
    first = await harness.engine.execute_swap(make_intent())
    second = await harness.engine.execute_swap(make_intent(amount_in=2_000_000_000))

    receipts = await harness.engine.list_user_receipts(USER)

    assert [receipt.receipt_id for receipt in receipts] == [second.receipt_id, first.receipt_id]
    assert await harness.engine.list_user_receipts("someone-else") == []


class _StaticFees:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.profiles = []

    async def estimate_priority_fee(self, profile):
        self.profiles.append(profile.name)
        if self.error is not None:
            raise self.error
        return FeeEstimate(
            compute_unit_price=48_000,
            compute_unit_limit=390_000,
            tier="medium",
            congestion="medium",
            source="rpc",
        )


@pytest.mark.asyncio
async def test_priority_fee_is_passed_to_the_builder(make_harness):
    fees = _StaticFees()
    harness = make_harness(fee_estimator=fees)

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.SUCCESS
    assert fees.profiles == ["auto"]
    assert harness.quotes.build_calls[0]["fee"].compute_unit_price == 48_000


@pytest.mark.asyncio
async def test_fee_estimate_failure_does_not_block_the_swap(make_harness):
    harness = make_harness(fee_estimator=_StaticFees(RuntimeError("fee service down")))

    result = await harness.engine.execute_swap(make_intent())

    assert result.status is ReceiptStatus.SUCCESS
    assert harness.quotes.build_calls[0]["fee"] is None
