from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from swap_engine.common import log_event

from .errors import RpcMethodError, error_message_from_payload, parse_retry_after_seconds
from .types import to_int

MAX_VALID_PRIORITY_FEE = 10_000_000


def _is_failover_error(error: RpcMethodError) -> bool:
    if error.status is None and error.code is None:
        return True
    if error.status is not None and (error.status == 429 or error.status >= 500):
        return True
    # -32005: node is behind / rate limited, -32603: internal error
    return error.code in {-32005, -32603}


class SolanaRpcClient:
    """JSON-RPC client with ordered endpoint failover."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_urls: list[str],
        timeout_seconds: float = 8.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        endpoints = [url.strip() for url in rpc_urls if url and url.strip()]
        if not endpoints:
            raise ValueError("At least one Solana RPC URL is required.")

        self._logger = logger
        self._rpc_urls = endpoints
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._active_index = 0
        self._request_id = 0

    @property
    def active_endpoint(self) -> str:
        return self._rpc_urls[self._active_index]

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
        await self.get_latest_blockhash()

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        last_error: RpcMethodError | None = None
        endpoint_count = len(self._rpc_urls)

        for offset in range(endpoint_count):
            index = (self._active_index + offset) % endpoint_count
            endpoint = self._rpc_urls[index]
            try:
                result = await self._call_endpoint(endpoint, method, params)
            except RpcMethodError as error:
                if not _is_failover_error(error):
                    raise
                last_error = error
            else:
                self._active_index = index
                return result

            if offset + 1 < endpoint_count:
                next_endpoint = self._rpc_urls[(index + 1) % endpoint_count]
                log_event(
                    self._logger,
                    level="warning",
                    event="rpc_failover",
                    message="RPC endpoint failed; trying next endpoint",
                    method=method,
                    failed_endpoint=endpoint,
                    next_endpoint=next_endpoint,
                    error=str(last_error),
                )

        if last_error is None:
            raise RuntimeError(f"RPC call {method} was not attempted.")
        raise last_error

    async def _call_endpoint(self, endpoint: str, method: str, params: list[Any] | None) -> Any:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("RPC HTTP session is not initialized.")

        self._request_id += 1
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            async with self._session.post(endpoint, json=payload) as response:
                status = response.status
                retry_after_seconds = parse_retry_after_seconds(response.headers.get("Retry-After"))
                raw_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise RpcMethodError(
                method=method,
                message=f"RPC network error for {method}: {type(error).__name__}: {error}",
                endpoint=endpoint,
            ) from error

        body: Any = None
        try:
            body = json.loads(raw_text) if raw_text else {}
        except json.JSONDecodeError:
            body = {"raw_text": raw_text[:240]}

        if status >= 400:
            raise RpcMethodError(
                method=method,
                status=status,
                data=body,
                endpoint=endpoint,
                retry_after_seconds=retry_after_seconds,
                message=f"RPC call failed: method={method} status={status} body={str(body)[:240]}",
            )

        if not isinstance(body, dict):
            raise RpcMethodError(
                method=method,
                data=body,
                endpoint=endpoint,
                code=-32603,
                message=f"Invalid RPC response for {method}: {body}",
            )

        error_payload = body.get("error")
        if error_payload:
            code = to_int(error_payload.get("code"), 0) if isinstance(error_payload, dict) else 0
            raise RpcMethodError(
                method=method,
                code=code or None,
                data=error_payload,
                endpoint=endpoint,
                message=f"RPC error for {method}: {error_message_from_payload(error_payload)}",
            )

        return body.get("result")

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> tuple[str, int | None]:
        result = await self.call("getLatestBlockhash", [{"commitment": commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise RuntimeError(f"Unexpected getLatestBlockhash response: {result}")

        blockhash = value.get("blockhash")
        if not isinstance(blockhash, str) or not blockhash:
            raise RuntimeError(f"Missing blockhash in RPC response: {result}")

        last_valid_block_height = value.get("lastValidBlockHeight")
        return blockhash, last_valid_block_height if isinstance(last_valid_block_height, int) else None

    async def get_block_height(self, commitment: str = "confirmed") -> int:
        result = await self.call("getBlockHeight", [{"commitment": commitment}])
        if not isinstance(result, int):
            raise RuntimeError(f"Unexpected getBlockHeight response: {result}")
        return result

    async def get_recent_prioritization_fees(self, accounts: list[str] | None = None) -> list[int]:
        result = await self.call("getRecentPrioritizationFees", [accounts or []])
        if not isinstance(result, list):
            raise RuntimeError(f"Unexpected getRecentPrioritizationFees response: {result}")

        fees: list[int] = []
        for item in result:
            if not isinstance(item, dict):
                continue
            fee = to_int(item.get("prioritizationFee"), 0)
            if 0 < fee < MAX_VALID_PRIORITY_FEE:
                fees.append(fee)
        return fees

    async def send_transaction(
        self,
        signed_transaction: str,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "confirmed",
    ) -> str:
        result = await self.call(
            "sendTransaction",
            [
                signed_transaction,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": preflight_commitment,
                    "maxRetries": 0,
                },
            ],
        )
        if not isinstance(result, str) or not result:
            raise RuntimeError(f"Unexpected sendTransaction response: {result}")
        return result

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict[str, Any] | None]:
        result = await self.call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, list):
            raise RuntimeError(f"Unexpected getSignatureStatuses response: {result}")
        return [item if isinstance(item, dict) else None for item in value]

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        result = await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        return result if isinstance(result, dict) else None

    async def get_account_info(self, address: str) -> dict[str, Any] | None:
        result = await self.call(
            "getAccountInfo",
            [address, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        return value if isinstance(value, dict) else None
