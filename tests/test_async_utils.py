from __future__ import annotations

import asyncio
import logging

import pytest

from swap_engine.common import error_fields, guarded_call
from swap_engine.execution.errors import AggregatorError, RpcMethodError

LOGGER_NAME = "swap_engine.tests.guarded"


def test_error_fields_carry_typed_codes():
    error = RpcMethodError(method="sendTransaction", message="node is behind", status=503, code=-32005)

    assert error_fields(error) == {
        "error": "node is behind",
        "error_type": "RpcMethodError",
        "error_code": -32005,
        "http_status": 503,
    }
    assert error_fields(ValueError()) == {"error": "ValueError", "error_type": "ValueError"}


@pytest.mark.asyncio
async def test_failure_is_logged_with_error_code_and_default_returned(caplog):
    logger = logging.getLogger(LOGGER_NAME)

    async def fails():
        raise AggregatorError("Jupiter quote failed", status=400, code="INVALID_REQUEST")

    with caplog.at_level(logging.WARNING, logger=LOGGER_NAME):
        result = await guarded_call(
            fails,
            logger=logger,
            event="quote_lookup_failed",
            message="Quote lookup failed",
            default="fallback",
            mint="mint-1",
        )

    assert result == "fallback"
    record = caplog.records[-1]
    assert record.event == "quote_lookup_failed"
    assert record.error_code == "INVALID_REQUEST"
    assert record.http_status == 400
    assert record.mint == "mint-1"


@pytest.mark.asyncio
async def test_slow_action_times_out_to_default(caplog):
    logger = logging.getLogger(LOGGER_NAME)

    async def slow():
        await asyncio.sleep(5)
        return "late"

    with caplog.at_level(logging.WARNING, logger=LOGGER_NAME):
        result = await guarded_call(
            slow,
            logger=logger,
            event="lookup_timed_out",
            message="Lookup timed out",
            timeout_seconds=0.01,
        )

    assert result is None
    assert caplog.records[-1].timeout_seconds == 0.01
    assert caplog.records[-1].error == "no result within 0.01s"


@pytest.mark.asyncio
async def test_sync_actions_and_reraise():
    logger = logging.getLogger(LOGGER_NAME)

    assert await guarded_call(lambda: 7, logger=logger, event="sync", message="sync") == 7

    def broken():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await guarded_call(broken, logger=logger, event="sync_failed", message="sync failed", reraise=True)


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed():
    logger = logging.getLogger(LOGGER_NAME)

    async def cancelled():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await guarded_call(cancelled, logger=logger, event="cancelled", message="cancelled")
