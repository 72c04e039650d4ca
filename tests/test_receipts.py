from __future__ import annotations

import logging

import pytest

from swap_engine.execution.errors import ReceiptNotFoundError, ReceiptStateError
from swap_engine.execution.receipts import ReceiptRecorder, new_receipt_id
from swap_engine.execution.types import EventType, ReceiptStatus, RiskLevel

from .fakes import USER, FakeArchive, make_intent, make_quote


def test_receipt_ids_are_unique_and_prefixed():
    first, second = new_receipt_id(), new_receipt_id()

    assert first.startswith("rcpt-")
    assert first != second


@pytest.mark.asyncio
async def test_new_receipt_is_pending_with_empty_timeline(recorder):
    receipt = await recorder.create_receipt(make_intent())

    assert receipt.status is ReceiptStatus.PENDING
    assert receipt.in_amount == 1_000_000_000
    assert receipt.execution_profile == "auto"
    assert await recorder.get_receipt_timeline(receipt.receipt_id) == []


@pytest.mark.asyncio
async def test_events_are_sequenced_and_drop_empty_metadata(recorder):
    receipt = await recorder.create_receipt(make_intent())

    first = await recorder.record_event(receipt.receipt_id, EventType.QUOTE, amount=1, note=None)
    second = await recorder.record_event(receipt.receipt_id, EventType.TX_BUILD)

    assert (first.sequence, second.sequence) == (1, 2)
    assert first.metadata == {"amount": 1}
    timeline = await recorder.get_receipt_timeline(receipt.receipt_id)
    assert [event.event_type for event in timeline] == [EventType.QUOTE, EventType.TX_BUILD]


@pytest.mark.asyncio
async def test_quote_details_update_pending_receipt(recorder):
    receipt = await recorder.create_receipt(make_intent())

    updated = await recorder.update_quote_details(
        receipt.receipt_id,
        make_quote(out_amount=151_000_000, price_impact_pct=0.7),
        attempts=2,
        risk_level=RiskLevel.AMBER,
        warnings=["Price impact of 0.70% is above 0.50%"],
    )

    assert updated.expected_out_amount == 151_000_000
    assert updated.price_impact_pct == 0.7
    assert updated.attempts == 2
    assert updated.risk_level is RiskLevel.AMBER
    assert updated.warnings == ("Price impact of 0.70% is above 0.50%",)
    assert updated.receipt_id == receipt.receipt_id
    assert updated.timestamp == receipt.timestamp


@pytest.mark.asyncio
async def test_terminal_status_is_written_once(recorder):
    receipt = await recorder.create_receipt(make_intent())

    final = await recorder.update_receipt_status(receipt.receipt_id, "success", "sig-1", out_amount=149_000_000)
    repeat = await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.SUCCESS, "sig-2")

    assert final.status is ReceiptStatus.SUCCESS
    assert final.tx_signature == "sig-1"
    assert repeat == final
    timeline = await recorder.get_receipt_timeline(receipt.receipt_id)
    assert [event.event_type for event in timeline] == [EventType.SUCCESS]
    assert timeline[0].metadata["signature"] == "sig-1"


@pytest.mark.asyncio
async def test_conflicting_terminal_status_is_rejected(recorder):
    receipt = await recorder.create_receipt(make_intent())
    await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.FAILED, error="boom")

    with pytest.raises(ReceiptStateError) as raised:
        await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.SUCCESS, "sig-1")

    assert raised.value.current_status == "failed"
    assert (await recorder.get_receipt(receipt.receipt_id)).error == "boom"


@pytest.mark.asyncio
async def test_pending_is_not_a_valid_target(recorder):
    receipt = await recorder.create_receipt(make_intent())

    with pytest.raises(ValueError):
        await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.PENDING)


@pytest.mark.asyncio
async def test_unknown_receipts_raise(recorder):
    with pytest.raises(ReceiptNotFoundError):
        await recorder.update_receipt_status("rcpt-missing", ReceiptStatus.FAILED)
    with pytest.raises(ReceiptNotFoundError):
        await recorder.get_receipt_timeline("rcpt-missing")
    with pytest.raises(ReceiptNotFoundError):
        await recorder.compare("rcpt-missing")
    assert await recorder.get_receipt("rcpt-missing") is None


@pytest.mark.asyncio
async def test_finalized_receipt_ignores_quote_updates(recorder):
    receipt = await recorder.create_receipt(make_intent())
    await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.FAILED, error="boom")

    assert await recorder.update_quote_details(receipt.receipt_id, make_quote(), attempts=3) is None
    assert (await recorder.get_receipt(receipt.receipt_id)).attempts == 0


@pytest.mark.asyncio
async def test_user_history_is_newest_first_and_limited(recorder):
    created = [await recorder.create_receipt(make_intent(amount_in=amount)) for amount in (1, 2, 3)]
    await recorder.create_receipt(make_intent(user_address="AnotherUser1111111111111111111111111111111"))

    receipts = await recorder.list_user_receipts(USER, limit=2)

    assert [receipt.receipt_id for receipt in receipts] == [created[2].receipt_id, created[1].receipt_id]


@pytest.mark.asyncio
async def test_comparison_of_failed_receipt_has_no_actual_amount(recorder):
    receipt = await recorder.create_receipt(make_intent())
    await recorder.update_quote_details(receipt.receipt_id, make_quote(), attempts=3)
    await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.FAILED, error="boom", attempts=3)

    comparison = await recorder.compare(receipt.receipt_id)

    assert comparison.expected_out_amount == 150_000_000
    assert comparison.actual_out_amount is None
    assert comparison.delta_pct is None
    assert comparison.actual_slippage_bps is None
    assert comparison.retry_count == 2
    assert comparison.execution_time_ms is not None


@pytest.mark.asyncio
async def test_better_than_quoted_fill_has_zero_slippage(recorder):
    receipt = await recorder.create_receipt(make_intent())
    await recorder.update_quote_details(receipt.receipt_id, make_quote(), attempts=1)
    await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.SUCCESS, "sig-1", out_amount=151_500_000)

    comparison = await recorder.compare(receipt.receipt_id)

    assert comparison.delta_pct == pytest.approx(1.0)
    assert comparison.actual_slippage_bps == 0.0


@pytest.mark.asyncio
async def test_terminal_receipts_are_archived_with_timeline(store):
    archive = FakeArchive()
    recorder = ReceiptRecorder(logger=logging.getLogger("swap_engine.tests"), store=store, archive=archive)
    receipt = await recorder.create_receipt(make_intent())
    await recorder.record_event(receipt.receipt_id, EventType.QUOTE, amount=1)

    await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.SUCCESS, "sig-1")

    archived_receipt, events = archive.archived[0]
    assert archived_receipt.status is ReceiptStatus.SUCCESS
    assert [event.event_type for event in events] == [EventType.QUOTE, EventType.SUCCESS]


@pytest.mark.asyncio
async def test_archive_failure_does_not_undo_finalization(store):
    archive = FakeArchive(error=RuntimeError("firestore unavailable"))
    recorder = ReceiptRecorder(logger=logging.getLogger("swap_engine.tests"), store=store, archive=archive)
    receipt = await recorder.create_receipt(make_intent())

    final = await recorder.update_receipt_status(receipt.receipt_id, ReceiptStatus.FAILED, error="boom")

    assert final.status is ReceiptStatus.FAILED
    assert (await store.get_receipt(receipt.receipt_id)).status is ReceiptStatus.FAILED


@pytest.mark.asyncio
async def test_memory_store_rejects_duplicate_ids(store, recorder):
    receipt = await recorder.create_receipt(make_intent())

    with pytest.raises(ValueError):
        await store.insert_receipt(receipt)
