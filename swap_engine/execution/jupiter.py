from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable

import aiohttp

from swap_engine.common import log_event

from .errors import (
    AggregatorError,
    AggregatorRateLimitError,
    error_message_from_payload,
    parse_retry_after_seconds,
)
from .types import BuiltTransaction, FeeEstimate, Quote, RouteStep, SwapMode, to_float, to_int

NO_ROUTE_MARKERS = ("could_not_find_any_route", "no_routes_found", "could not find any route", "no routes found")


def quote_from_jupiter(payload: dict[str, Any], *, fetched_at: float) -> Quote:
    route_plan = payload.get("routePlan") if isinstance(payload.get("routePlan"), list) else []
    swap_mode = SwapMode.EXACT_OUT if payload.get("swapMode") == SwapMode.EXACT_OUT.value else SwapMode.EXACT_IN
    return Quote(
        input_mint=str(payload.get("inputMint") or ""),
        output_mint=str(payload.get("outputMint") or ""),
        in_amount=to_int(payload.get("inAmount"), 0),
        out_amount=to_int(payload.get("outAmount"), 0),
        other_amount_threshold=to_int(payload.get("otherAmountThreshold"), 0),
        # Jupiter reports impact as a fraction; the engine works in percent.
        price_impact_pct=to_float(payload.get("priceImpactPct"), 0.0) * 100,
        slippage_bps=to_int(payload.get("slippageBps"), 0),
        route_plan=tuple(RouteStep.from_payload(step) for step in route_plan if isinstance(step, dict)),
        fetched_at=fetched_at,
        swap_mode=swap_mode,
        raw=payload,
    )


class JupiterClient:
    """Quote and swap-build client for the Jupiter aggregator API."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        api_base_url: str = "https://api.jup.ag/swap/v1",
        api_key: str = "",
        timeout_seconds: float = 8.0,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._logger = logger
        self._api_base_url = api_base_url.rstrip("/")
        self._api_key = api_key.strip()
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._clock = clock

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def healthcheck(self) -> None:
        await self.connect()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        swap_mode: SwapMode = SwapMode.EXACT_IN,
    ) -> Quote:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": swap_mode.value,
        }
        data = await self._request("GET", "/quote", operation="quote", params=params)
        if "outAmount" not in data:
            raise AggregatorError(f"Unexpected Jupiter quote response: {data}", code="API_ERROR")

        quote = quote_from_jupiter(data, fetched_at=self._clock())
        log_event(
            self._logger,
            level="debug",
            event="jupiter_quote_received",
            message="Received Jupiter quote",
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=quote.in_amount,
            out_amount=quote.out_amount,
            price_impact_pct=quote.price_impact_pct,
            hops=quote.hop_count,
        )
        return quote

    async def build_transaction(
        self,
        *,
        quote: Quote,
        user_public_key: str,
        fee: FeeEstimate | None = None,
    ) -> BuiltTransaction:
        payload: dict[str, Any] = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if fee is not None:
            payload["computeUnitPriceMicroLamports"] = max(0, int(fee.compute_unit_price))

        data = await self._request("POST", "/swap", operation="swap", json_body=payload)

        simulation_error = data.get("simulationError")
        if simulation_error:
            raise AggregatorError(
                f"Jupiter swap simulation failed: {error_message_from_payload(simulation_error)}",
                code="SIMULATION_FAILED",
            )

        transaction = data.get("swapTransaction")
        if not isinstance(transaction, str) or not transaction:
            raise AggregatorError(f"swapTransaction is missing in Jupiter swap response: {data}", code="API_ERROR")

        last_valid_block_height = data.get("lastValidBlockHeight")
        return BuiltTransaction(
            transaction=transaction,
            last_valid_block_height=last_valid_block_height if isinstance(last_valid_block_height, int) else None,
            priority_fee_micro_lamports=fee.compute_unit_price if fee is not None else 0,
            compute_unit_limit=to_int(data.get("computeUnitLimit"), 0) or None,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Jupiter HTTP session is not initialized.")

        endpoint = f"{self._api_base_url}{path}"
        try:
            async with self._session.request(
                method,
                endpoint,
                params=params,
                json=json_body,
                headers=self._headers(),
            ) as response:
                status = response.status
                retry_after_seconds = parse_retry_after_seconds(response.headers.get("Retry-After"))
                raw_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise AggregatorError(
                f"Jupiter {operation} network error: {type(error).__name__}: {error}",
                code="NETWORK_ERROR",
            ) from error

        parsed: Any = None
        try:
            parsed = json.loads(raw_text) if raw_text else {}
        except json.JSONDecodeError:
            parsed = {"raw_text": raw_text[:240]}

        if status == 429:
            raise AggregatorRateLimitError(
                f"Jupiter {operation} rate limited: status={status}",
                retry_after_seconds=retry_after_seconds,
            )

        if status >= 400:
            message = error_message_from_payload(parsed)
            lowered = f"{message} {parsed.get('errorCode', '') if isinstance(parsed, dict) else ''}".lower()
            if any(marker in lowered for marker in NO_ROUTE_MARKERS):
                code = "ROUTE_NOT_FOUND"
            elif status >= 500:
                code = "SERVICE_ERROR"
            else:
                code = "INVALID_REQUEST"
            raise AggregatorError(
                f"Jupiter {operation} failed: status={status} error={message[:240]}",
                status=status,
                code=code,
            )

        if not isinstance(parsed, dict):
            raise AggregatorError(f"Unexpected Jupiter {operation} response: {parsed}", code="API_ERROR")

        return parsed
