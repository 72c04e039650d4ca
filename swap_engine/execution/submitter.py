from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

from swap_engine.common import log_event

from .errors import RpcMethodError
from .risk import SOL_MINT
from .rpc import SolanaRpcClient
from .types import ConfirmationResult, ConfirmationStatus, to_int

COMMITMENT_RANK = {"processed": 1, "confirmed": 2, "finalized": 3}


def _status_to_result(signature: str, status: dict[str, Any], *, target_rank: int) -> ConfirmationResult:
    slot = status.get("slot") if isinstance(status.get("slot"), int) else None
    if status.get("err") is not None:
        return ConfirmationResult(
            status=ConfirmationStatus.FAILED,
            signature=signature,
            slot=slot,
            error=f"Transaction failed on-chain: {json.dumps(status.get('err'), default=str)}",
        )

    rank = COMMITMENT_RANK.get(str(status.get("confirmationStatus") or ""), 0)
    if rank >= target_rank:
        return ConfirmationResult(status=ConfirmationStatus.CONFIRMED, signature=signature, slot=slot)
    return ConfirmationResult(status=ConfirmationStatus.PENDING, signature=signature, slot=slot)


def output_amount_from_transaction(transaction: dict[str, Any], *, owner: str, mint: str) -> int | None:
    meta = transaction.get("meta")
    if not isinstance(meta, dict):
        return None

    if mint == SOL_MINT:
        message = (transaction.get("transaction") or {}).get("message") or {}
        account_keys = [
            key.get("pubkey") if isinstance(key, dict) else key for key in message.get("accountKeys") or []
        ]
        if owner not in account_keys:
            return None
        index = account_keys.index(owner)
        pre_balances = meta.get("preBalances") or []
        post_balances = meta.get("postBalances") or []
        if index >= len(pre_balances) or index >= len(post_balances):
            return None
        fee = to_int(meta.get("fee"), 0) if index == 0 else 0
        delta = post_balances[index] - pre_balances[index] + fee
        return delta if delta > 0 else None

    def owned_amount(balances: Any) -> int:
        total = 0
        for balance in balances or []:
            if not isinstance(balance, dict):
                continue
            if balance.get("owner") != owner or balance.get("mint") != mint:
                continue
            token_amount = balance.get("uiTokenAmount") or {}
            total += to_int(token_amount.get("amount"), 0)
        return total

    delta = owned_amount(meta.get("postTokenBalances")) - owned_amount(meta.get("preTokenBalances"))
    return delta if delta > 0 else None


class SolanaTransactionSubmitter:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc: SolanaRpcClient,
        confirm_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 0.5,
        commitment: str = "confirmed",
        skip_preflight: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if commitment not in COMMITMENT_RANK:
            raise ValueError(f"Unsupported commitment level: {commitment}")
        self._logger = logger
        self._rpc = rpc
        self._confirm_timeout_seconds = max(1.0, confirm_timeout_seconds)
        self._poll_interval_seconds = max(0.05, poll_interval_seconds)
        self._target_rank = COMMITMENT_RANK[commitment]
        self._skip_preflight = skip_preflight
        self._sleep = sleep
        self._clock = clock

    @property
    def endpoint(self) -> str:
        return self._rpc.active_endpoint

    async def submit(self, signed_transaction: str) -> str:
        return await self._rpc.send_transaction(
            signed_transaction,
            skip_preflight=self._skip_preflight,
        )

    async def get_signature_status(self, signature: str) -> ConfirmationResult | None:
        statuses = await self._rpc.get_signature_statuses([signature])
        status = statuses[0] if statuses else None
        if status is None:
            return None
        return _status_to_result(signature, status, target_rank=self._target_rank)

    async def confirm(
        self,
        signature: str,
        *,
        last_valid_block_height: int | None = None,
    ) -> ConfirmationResult:
        deadline = self._clock() + self._confirm_timeout_seconds
        polls = 0

        while True:
            polls += 1
            try:
                result = await self.get_signature_status(signature)
                if result is not None and result.status is not ConfirmationStatus.PENDING:
                    return result

                if last_valid_block_height is not None:
                    block_height = await self._rpc.get_block_height()
                    if block_height > last_valid_block_height:
                        # the transaction may have landed between the two reads
                        final = await self.get_signature_status(signature)
                        if final is not None and final.status is not ConfirmationStatus.PENDING:
                            return final
                        return ConfirmationResult(
                            status=ConfirmationStatus.FAILED,
                            signature=signature,
                            error=(
                                "Blockhash expired: block height "
                                f"{block_height} exceeded lastValidBlockHeight {last_valid_block_height}"
                            ),
                        )
            except RpcMethodError as error:
                log_event(
                    self._logger,
                    level="warning",
                    event="confirmation_poll_failed",
                    message="Signature status poll failed; will retry until timeout",
                    tx_signature=signature,
                    poll=polls,
                    error=str(error),
                )

            if self._clock() >= deadline:
                log_event(
                    self._logger,
                    level="warning",
                    event="confirmation_timeout",
                    message="Transaction confirmation timed out",
                    tx_signature=signature,
                    polls=polls,
                    timeout_seconds=self._confirm_timeout_seconds,
                )
                return ConfirmationResult(status=ConfirmationStatus.PENDING, signature=signature)

            await self._sleep(self._poll_interval_seconds)

    async def get_output_amount(self, signature: str, *, owner: str, mint: str) -> int | None:
        transaction = await self._rpc.get_transaction(signature)
        if transaction is None:
            return None
        return output_amount_from_transaction(transaction, owner=owner, mint=mint)
