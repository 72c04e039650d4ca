"""Swap execution state machine.

One ``execute_swap`` call walks Quoting, RiskCheck, Building, Sending and Confirming,
looping back through the retry policy on classified failures. Every transition is
logged and every lifecycle step is appended to the receipt timeline. Before a failure
is finalized, every signature already sent is checked so a transaction that landed is
never reported as failed or submitted twice.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from swap_engine.common import guarded_call, log_event

from .classifier import ErrorClassifier
from .errors import (
    QuoteStaleError,
    ReceiptNotFoundError,
    ReceiptStateError,
    TransactionFailedError,
    TransactionPendingConfirmationError,
)
from .profiles import ExecutionProfile, get_profile
from .receipts import ReceiptComparison, ReceiptRecorder
from .retry_policy import build_retry_metrics, record_failure, record_retry, should_retry
from .risk import RiskScoringEngine
from .signing import transaction_signature
from .types import (
    BuiltTransaction,
    ClassifiedError,
    ConfirmationResult,
    ConfirmationStatus,
    ErrorCategory,
    EventType,
    ExecutionEvent,
    ExecutionResult,
    ExecutionState,
    FeeEstimate,
    PriorityFeeSource,
    Quote,
    QuoteProvider,
    Receipt,
    ReceiptStatus,
    RetryState,
    RiskLevel,
    RiskReason,
    SwapIntent,
    TransactionSigner,
    TransactionSubmitter,
)

BLOCKED_BY_PROTECTED_MODE = "blocked by protected mode"

# send failures that need a fresh blockhash but not fresh pricing
REBUILD_ERROR_CODES = frozenset({"BLOCKHASH_NOT_FOUND"})

DEFAULT_STEP_BUDGET_SECONDS = 90.0


@dataclass(slots=True)
class _ExecutionContext:
    intent: SwapIntent
    profile: ExecutionProfile
    receipt_id: str
    retry_state: RetryState = field(default_factory=RetryState)
    state: ExecutionState = ExecutionState.QUOTING
    quote: Quote | None = None
    needs_quote: bool = True
    risk_level: RiskLevel | None = None
    warnings: list[str] = field(default_factory=list)
    fee: FeeEstimate | None = None
    built: BuiltTransaction | None = None
    signed_transaction: str | None = None
    signature: str | None = None
    sent_signatures: list[str] = field(default_factory=list)
    presigned: bool = False

    @property
    def receipt_attempts(self) -> int:
        return self.retry_state.attempts + 1


class ExecutionEngine:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        quote_provider: QuoteProvider,
        risk_engine: RiskScoringEngine,
        recorder: ReceiptRecorder,
        submitter: TransactionSubmitter | None = None,
        signer: TransactionSigner | None = None,
        fee_estimator: PriorityFeeSource | None = None,
        classifier: ErrorClassifier | None = None,
        quote_max_age_seconds: float = 30.0,
        execution_timeout_seconds: float | None = None,
        step_budget_seconds: float = DEFAULT_STEP_BUDGET_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._logger = logger
        self._quote_provider = quote_provider
        self._risk_engine = risk_engine
        self._recorder = recorder
        self._submitter = submitter
        self._signer = signer
        self._fee_estimator = fee_estimator
        self._classifier = classifier or ErrorClassifier()
        self._quote_max_age_seconds = max(1.0, quote_max_age_seconds)
        self._execution_timeout_seconds = execution_timeout_seconds
        self._step_budget_seconds = max(1.0, step_budget_seconds)
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    @property
    def recorder(self) -> ReceiptRecorder:
        return self._recorder

    def execution_timeout_for(self, profile: ExecutionProfile) -> float:
        if self._execution_timeout_seconds is not None and self._execution_timeout_seconds > 0:
            return self._execution_timeout_seconds
        attempts = profile.max_retries + profile.max_requotes + 1
        return profile.max_backoff_budget_ms / 1000 + attempts * self._step_budget_seconds

    async def execute_swap(self, intent: SwapIntent) -> ExecutionResult:
        profile = get_profile(intent.execution_profile)
        receipt = await self._recorder.create_receipt(intent)
        ctx = _ExecutionContext(intent=intent, profile=profile, receipt_id=receipt.receipt_id)

        log_event(
            self._logger,
            level="info",
            event="execution_started",
            message="Swap execution started",
            receipt_id=ctx.receipt_id,
            input_mint=intent.input_mint,
            output_mint=intent.output_mint,
            amount_in=intent.amount_in,
            slippage_bps=intent.slippage_bps,
            profile=profile.name,
            protected_mode=intent.protected_mode,
        )

        await self._recorder.record_event(
            ctx.receipt_id,
            EventType.QUOTE,
            input_mint=intent.input_mint,
            output_mint=intent.output_mint,
            amount=intent.amount_in,
            slippage_bps=intent.slippage_bps,
            swap_mode=intent.swap_mode.value,
            profile=profile.name,
        )

        quick = self._risk_engine.quick_check(intent)
        if intent.protected_mode and not quick.passed:
            ctx.risk_level = quick.level
            ctx.warnings = [reason.message for reason in quick.reasons]
            return await self._fail_blocked(ctx, quick.reasons)

        return await self._run_with_timeout(ctx)

    async def submit_signed_transaction(
        self,
        receipt_id: str,
        signed_transaction: str,
        *,
        last_valid_block_height: int | None = None,
    ) -> ExecutionResult:
        """Send and confirm a caller-signed transaction for a pending receipt."""
        if self._submitter is None:
            raise RuntimeError("No transaction submitter is configured.")

        receipt = await self._recorder.get_receipt(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(receipt_id)
        if receipt.status.is_terminal:
            raise ReceiptStateError(
                f"Receipt {receipt_id} is already {receipt.status.value}",
                receipt_id=receipt_id,
                current_status=receipt.status.value,
            )

        intent = SwapIntent(
            user_address=receipt.user_address,
            input_mint=receipt.input_mint,
            output_mint=receipt.output_mint,
            amount_in=receipt.in_amount,
            slippage_bps=receipt.slippage_bps,
            protected_mode=receipt.protected_mode,
            execution_profile=receipt.execution_profile,
        )
        ctx = _ExecutionContext(
            intent=intent,
            profile=get_profile(receipt.execution_profile),
            receipt_id=receipt_id,
            state=ExecutionState.SENDING,
            needs_quote=False,
            risk_level=receipt.risk_level,
            warnings=list(receipt.warnings),
            built=BuiltTransaction(
                transaction=signed_transaction,
                last_valid_block_height=last_valid_block_height,
                priority_fee_micro_lamports=0,
            ),
            signed_transaction=signed_transaction,
            presigned=True,
        )
        log_event(
            self._logger,
            level="info",
            event="presigned_submission_started",
            message="Submitting caller-signed transaction",
            receipt_id=receipt_id,
            last_valid_block_height=last_valid_block_height,
        )
        return await self._run_with_timeout(ctx)

    async def update_receipt_status(
        self,
        receipt_id: str,
        status: ReceiptStatus | str,
        tx_signature: str | None = None,
        error: str | None = None,
    ) -> Receipt:
        target = ReceiptStatus(status)
        out_amount = None
        if target is ReceiptStatus.SUCCESS and tx_signature and self._submitter is not None:
            receipt = await self._recorder.get_receipt(receipt_id)
            if receipt is None:
                raise ReceiptNotFoundError(receipt_id)
            out_amount = await self._lookup_output_amount(
                receipt_id,
                tx_signature,
                receipt.user_address,
                receipt.output_mint,
            )

        return await self._recorder.update_receipt_status(
            receipt_id,
            target,
            tx_signature,
            error,
            out_amount=out_amount,
            event_metadata={"source": "external_callback"},
        )

    async def get_receipt(self, receipt_id: str) -> Receipt | None:
        return await self._recorder.get_receipt(receipt_id)

    async def get_receipt_timeline(self, receipt_id: str) -> list[ExecutionEvent]:
        return await self._recorder.get_receipt_timeline(receipt_id)

    async def list_user_receipts(self, user_address: str, *, limit: int = 20) -> list[Receipt]:
        return await self._recorder.list_user_receipts(user_address, limit=limit)

    async def compare_receipt(self, receipt_id: str) -> ReceiptComparison:
        return await self._recorder.compare(receipt_id)

    async def _run_with_timeout(self, ctx: _ExecutionContext) -> ExecutionResult:
        timeout_seconds = self.execution_timeout_for(ctx.profile)
        try:
            return await asyncio.wait_for(self._drive(ctx), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            log_event(
                self._logger,
                level="warning",
                event="execution_timeout",
                message="Execution window elapsed",
                receipt_id=ctx.receipt_id,
                state=ctx.state.value,
                timeout_seconds=round(timeout_seconds, 3),
                sent_signatures=len(ctx.sent_signatures),
            )
            landed = await self._reconcile_sent_signatures(ctx)
            if landed is not None and landed.status is ConfirmationStatus.CONFIRMED:
                return await self._succeed(ctx, landed)
            timeout_error = ClassifiedError(
                category=ErrorCategory.TRANSIENT,
                code="EXECUTION_TIMEOUT",
                message=f"no terminal outcome after {timeout_seconds:.1f}s in state {ctx.state.value}",
                retryable=False,
                requires_requote=False,
            )
            record_failure(ctx.retry_state, timeout_error)
            return await self._fail(ctx, timeout_error, reason="Execution timed out")

    async def _drive(self, ctx: _ExecutionContext) -> ExecutionResult:
        while True:
            try:
                if ctx.needs_quote:
                    self._transition(ctx, ExecutionState.QUOTING)
                    await self._fetch_quote(ctx)
                    self._transition(ctx, ExecutionState.RISK_CHECK)
                    blocking_reasons = await self._check_risk(ctx)
                    if blocking_reasons is not None:
                        return await self._fail_blocked(ctx, blocking_reasons)
                    ctx.needs_quote = False

                if ctx.built is None:
                    self._transition(ctx, ExecutionState.BUILDING)
                    self._ensure_fresh_quote(ctx)
                    await self._build(ctx)

                if self._submitter is None or (self._signer is None and ctx.signed_transaction is None):
                    return await self._return_unsigned(ctx)

                if ctx.signature is None:
                    self._transition(ctx, ExecutionState.SENDING)
                    await self._send(ctx)

                self._transition(ctx, ExecutionState.CONFIRMING)
                return await self._confirm(ctx)
            except asyncio.CancelledError:
                raise
            except Exception as error:
                outcome = await self._handle_failure(ctx, error)
                if outcome is not None:
                    return outcome

    async def _handle_failure(self, ctx: _ExecutionContext, error: Exception) -> ExecutionResult | None:
        classified = self._classifier.classify(error)
        record_failure(ctx.retry_state, classified)
        log_event(
            self._logger,
            level="warning",
            event="execution_step_failed",
            message="Execution step failed",
            receipt_id=ctx.receipt_id,
            state=ctx.state.value,
            error_code=classified.code,
            category=classified.category.value,
            requires_requote=classified.requires_requote,
            attempt=ctx.receipt_attempts,
            error=classified.message,
        )

        reconciled = await self._reconcile_sent_signatures(ctx)
        if reconciled is not None and reconciled.status is ConfirmationStatus.CONFIRMED:
            return await self._succeed(ctx, reconciled)
        in_flight = reconciled.signature if reconciled is not None else None

        landed_failure = isinstance(error, TransactionFailedError)
        if ctx.presigned and in_flight is None and (classified.requires_requote or landed_failure):
            return await self._fail(
                ctx,
                classified,
                reason="Caller-signed transaction cannot be rebuilt; build and sign a new one",
            )

        # an in-flight signature is confirmed again, never requoted, so only the retry ceiling applies
        retry_error = replace(classified, requires_requote=False) if in_flight is not None else classified
        decision = should_retry(retry_error, ctx.retry_state, ctx.profile, rng=self._rng)
        if not decision.should_retry:
            return await self._fail(ctx, classified, reason=decision.reason or "Retry not permitted")

        # quoting has no smaller unit to requote from, so a failed quote is a plain retry
        requote = classified.requires_requote and in_flight is None and ctx.state is not ExecutionState.QUOTING
        record_retry(ctx.retry_state, requote=requote)
        delay_ms = decision.delay_ms or 0
        await self._recorder.record_event(
            ctx.receipt_id,
            EventType.RETRY,
            attempt=ctx.retry_state.attempts,
            error_code=classified.code,
            category=classified.category.value,
            state=ctx.state.value,
            delay_ms=delay_ms,
            requote=requote,
        )
        log_event(
            self._logger,
            level="info",
            event="execution_retry_scheduled",
            message="Retrying execution step",
            receipt_id=ctx.receipt_id,
            attempt=ctx.retry_state.attempts,
            requotes=ctx.retry_state.requotes,
            error_code=classified.code,
            delay_ms=delay_ms,
            requote=requote,
        )

        if in_flight is not None:
            # a sent transaction is still visible to the cluster; confirm it instead of resending
            ctx.signature = in_flight
        elif requote:
            ctx.needs_quote = True
            self._discard_transaction(ctx)
            await self._recorder.record_event(
                ctx.receipt_id,
                EventType.REQUOTE,
                requotes=ctx.retry_state.requotes,
                reason=classified.code,
            )
        elif not ctx.presigned and (landed_failure or classified.code in REBUILD_ERROR_CODES):
            self._discard_transaction(ctx)

        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)
        return None

    async def _fetch_quote(self, ctx: _ExecutionContext) -> None:
        intent = ctx.intent
        quote = await self._quote_provider.quote(
            input_mint=intent.input_mint,
            output_mint=intent.output_mint,
            amount=intent.amount_in,
            slippage_bps=intent.slippage_bps,
            swap_mode=intent.swap_mode,
        )
        ctx.quote = quote

    async def _check_risk(self, ctx: _ExecutionContext) -> tuple[RiskReason, ...] | None:
        if ctx.quote is None:
            raise RuntimeError("Risk check requires a quote.")

        assessment = await self._risk_engine.score_swap(ctx.intent, ctx.quote)
        ctx.risk_level = assessment.level
        ctx.warnings = assessment.warnings
        await self._recorder.update_quote_details(
            ctx.receipt_id,
            ctx.quote,
            attempts=ctx.receipt_attempts,
            risk_level=assessment.level,
            warnings=assessment.warnings,
        )
        if assessment.blocked_in_protected_mode:
            return assessment.reasons
        return None

    def _ensure_fresh_quote(self, ctx: _ExecutionContext) -> None:
        if ctx.quote is None or ctx.presigned:
            return
        age_seconds = ctx.quote.age_seconds(self._clock())
        if age_seconds > self._quote_max_age_seconds:
            raise QuoteStaleError(
                f"Quote is stale: {age_seconds:.1f}s old (max {self._quote_max_age_seconds:.1f}s)",
                age_seconds=age_seconds,
            )

    async def _build(self, ctx: _ExecutionContext) -> None:
        if ctx.quote is None:
            raise RuntimeError("Building a transaction requires a quote.")

        if self._fee_estimator is not None and ctx.fee is None:
            ctx.fee = await guarded_call(
                lambda: self._fee_estimator.estimate_priority_fee(ctx.profile),
                logger=self._logger,
                event="priority_fee_estimate_failed",
                message="Priority fee estimate failed; building with provider defaults",
                receipt_id=ctx.receipt_id,
                profile=ctx.profile.name,
            )

        built = await self._quote_provider.build_transaction(
            quote=ctx.quote,
            user_public_key=ctx.intent.user_address,
            fee=ctx.fee,
        )
        ctx.built = built
        await self._recorder.record_event(
            ctx.receipt_id,
            EventType.TX_BUILD,
            out_amount=ctx.quote.out_amount,
            price_impact_pct=ctx.quote.price_impact_pct,
            hops=ctx.quote.hop_count,
            priority_fee=built.priority_fee_micro_lamports,
            compute_unit_limit=built.compute_unit_limit,
            fee_source=ctx.fee.source if ctx.fee is not None else None,
            last_valid_block_height=built.last_valid_block_height,
        )

    async def _send(self, ctx: _ExecutionContext) -> None:
        if self._submitter is None or ctx.built is None:
            raise RuntimeError("Sending requires a submitter and a built transaction.")

        if ctx.signed_transaction is None:
            if self._signer is None:
                raise RuntimeError("No signer configured for an unsigned transaction.")
            ctx.signed_transaction = await self._signer.sign(ctx.built.transaction)

        expected_signature = transaction_signature(ctx.signed_transaction)
        if expected_signature and expected_signature not in ctx.sent_signatures:
            # tracked before the call so a send that times out can still be reconciled
            ctx.sent_signatures.append(expected_signature)

        signature = await self._submitter.submit(ctx.signed_transaction)
        if signature not in ctx.sent_signatures:
            ctx.sent_signatures.append(signature)
        ctx.signature = signature

        await self._recorder.record_event(
            ctx.receipt_id,
            EventType.TX_SEND,
            signature=signature,
            rpc_endpoint=getattr(self._submitter, "endpoint", None),
            attempt=ctx.receipt_attempts,
            priority_fee=ctx.built.priority_fee_micro_lamports or None,
            slippage_bps=ctx.intent.slippage_bps,
        )

    async def _confirm(self, ctx: _ExecutionContext) -> ExecutionResult:
        if self._submitter is None or ctx.signature is None:
            raise RuntimeError("Confirmation requires a submitter and a sent signature.")

        result = await self._submitter.confirm(
            ctx.signature,
            last_valid_block_height=ctx.built.last_valid_block_height if ctx.built else None,
        )
        await self._recorder.record_event(
            ctx.receipt_id,
            EventType.TX_CONFIRM,
            signature=ctx.signature,
            status=result.status.value,
            slot=result.slot,
            error_message=result.error,
        )

        if result.status is ConfirmationStatus.CONFIRMED:
            return await self._succeed(ctx, result)
        if result.status is ConfirmationStatus.FAILED:
            raise TransactionFailedError(
                result.error or "Transaction failed on-chain",
                signature=ctx.signature,
            )
        raise TransactionPendingConfirmationError(
            f"Transaction {ctx.signature} was not confirmed within the confirmation window",
            signature=ctx.signature,
        )

    async def _reconcile_sent_signatures(self, ctx: _ExecutionContext) -> ConfirmationResult | None:
        """Latest landed or in-flight status among sent signatures, confirmed first."""
        if self._submitter is None or not ctx.sent_signatures:
            return None

        in_flight: ConfirmationResult | None = None
        for signature in reversed(ctx.sent_signatures):
            status = await guarded_call(
                lambda sig=signature: self._submitter.get_signature_status(sig),
                logger=self._logger,
                event="signature_reconcile_failed",
                message="Could not check status of a sent signature",
                receipt_id=ctx.receipt_id,
                tx_signature=signature,
            )
            if status is None:
                continue
            if status.status is ConfirmationStatus.CONFIRMED:
                log_event(
                    self._logger,
                    level="info",
                    event="sent_signature_landed",
                    message="Previously sent transaction is confirmed",
                    receipt_id=ctx.receipt_id,
                    tx_signature=signature,
                )
                return status
            if status.status is ConfirmationStatus.PENDING and in_flight is None:
                in_flight = status
        return in_flight

    async def _return_unsigned(self, ctx: _ExecutionContext) -> ExecutionResult:
        if ctx.built is None:
            raise RuntimeError("No transaction was built.")
        log_event(
            self._logger,
            level="info",
            event="unsigned_transaction_returned",
            message="Returning unsigned transaction for caller signing",
            receipt_id=ctx.receipt_id,
            last_valid_block_height=ctx.built.last_valid_block_height,
        )
        return ExecutionResult(
            receipt_id=ctx.receipt_id,
            status=ReceiptStatus.SUCCESS,
            risk_level=ctx.risk_level,
            warnings=tuple(ctx.warnings),
            attempts=ctx.receipt_attempts,
            quote=ctx.quote,
            transaction=ctx.built.transaction,
            last_valid_block_height=ctx.built.last_valid_block_height,
            metrics=build_retry_metrics(ctx.retry_state, final_status="awaiting_signature"),
        )

    async def _succeed(self, ctx: _ExecutionContext, confirmation: ConfirmationResult) -> ExecutionResult:
        self._transition(ctx, ExecutionState.SUCCEEDED)
        signature = confirmation.signature
        out_amount = confirmation.actual_out_amount
        if out_amount is None:
            out_amount = await self._lookup_output_amount(
                ctx.receipt_id,
                signature,
                ctx.intent.user_address,
                ctx.intent.output_mint,
            )
        if out_amount is None and ctx.quote is not None:
            out_amount = ctx.quote.out_amount

        receipt = await self._finalize(
            ctx,
            ReceiptStatus.SUCCESS,
            tx_signature=signature,
            out_amount=out_amount,
            event_metadata={"out_amount": out_amount, "slot": confirmation.slot},
        )
        return self._result_from_receipt(ctx, receipt, final_status="success")

    async def _fail(self, ctx: _ExecutionContext, classified: ClassifiedError, *, reason: str) -> ExecutionResult:
        self._transition(ctx, ExecutionState.FAILED)
        receipt = await self._finalize(
            ctx,
            ReceiptStatus.FAILED,
            tx_signature=ctx.signature or (ctx.sent_signatures[-1] if ctx.sent_signatures else None),
            error=f"{reason}: {classified.message}",
            event_metadata={
                "error_code": classified.code,
                "category": classified.category.value,
                "reason": reason,
            },
        )
        return self._result_from_receipt(ctx, receipt, final_status="failed")

    async def _fail_blocked(self, ctx: _ExecutionContext, reasons: tuple[RiskReason, ...]) -> ExecutionResult:
        self._transition(ctx, ExecutionState.FAILED)
        details = "; ".join(reason.message for reason in reasons if reason.level is RiskLevel.RED)
        receipt = await self._finalize(
            ctx,
            ReceiptStatus.FAILED,
            error=f"Swap {BLOCKED_BY_PROTECTED_MODE}: {details}" if details else f"Swap {BLOCKED_BY_PROTECTED_MODE}",
            event_metadata={
                "error_code": "PROTECTED_MODE_BLOCK",
                "reason_codes": [reason.code for reason in reasons],
            },
        )
        return self._result_from_receipt(ctx, receipt, final_status="blocked")

    async def _finalize(
        self,
        ctx: _ExecutionContext,
        status: ReceiptStatus,
        *,
        tx_signature: str | None = None,
        error: str | None = None,
        out_amount: int | None = None,
        event_metadata: dict[str, Any] | None = None,
    ) -> Receipt:
        try:
            return await self._recorder.update_receipt_status(
                ctx.receipt_id,
                status,
                tx_signature,
                error,
                out_amount=out_amount,
                attempts=ctx.receipt_attempts,
                risk_level=ctx.risk_level,
                warnings=ctx.warnings,
                event_metadata=event_metadata,
            )
        except ReceiptStateError as state_error:
            # finalized concurrently through the confirmation callback
            log_event(
                self._logger,
                level="warning",
                event="receipt_finalized_elsewhere",
                message="Receipt was finalized by another caller",
                receipt_id=ctx.receipt_id,
                requested_status=status.value,
                current_status=state_error.current_status,
            )
            receipt = await self._recorder.get_receipt(ctx.receipt_id)
            if receipt is None:
                raise ReceiptNotFoundError(ctx.receipt_id) from state_error
            return receipt

    def _result_from_receipt(self, ctx: _ExecutionContext, receipt: Receipt, *, final_status: str) -> ExecutionResult:
        metrics = build_retry_metrics(ctx.retry_state, final_status=final_status)
        log_event(
            self._logger,
            level="info" if receipt.status is ReceiptStatus.SUCCESS else "warning",
            event="execution_finished",
            message="Swap execution finished",
            receipt_id=ctx.receipt_id,
            status=receipt.status.value,
            tx_signature=receipt.tx_signature,
            attempts=receipt.attempts,
            requotes=metrics.total_requotes,
            total_time_ms=metrics.total_time_ms,
            error=receipt.error,
        )
        return ExecutionResult(
            receipt_id=receipt.receipt_id,
            status=receipt.status,
            risk_level=receipt.risk_level,
            warnings=receipt.warnings,
            attempts=receipt.attempts,
            quote=ctx.quote,
            last_valid_block_height=ctx.built.last_valid_block_height if ctx.built else None,
            tx_signature=receipt.tx_signature,
            out_amount=receipt.out_amount if receipt.status is ReceiptStatus.SUCCESS else None,
            error=receipt.error,
            metrics=metrics,
        )

    async def _lookup_output_amount(
        self,
        receipt_id: str,
        signature: str,
        owner: str,
        mint: str,
    ) -> int | None:
        if self._submitter is None:
            return None
        return await guarded_call(
            lambda: self._submitter.get_output_amount(signature, owner=owner, mint=mint),
            logger=self._logger,
            event="output_amount_lookup_failed",
            message="Could not read actual output amount; using quoted amount",
            receipt_id=receipt_id,
            tx_signature=signature,
        )

    @staticmethod
    def _discard_transaction(ctx: _ExecutionContext) -> None:
        ctx.built = None
        ctx.signed_transaction = None
        ctx.signature = None

    def _transition(self, ctx: _ExecutionContext, state: ExecutionState) -> None:
        if ctx.state is state:
            return
        log_event(
            self._logger,
            level="debug",
            event="execution_transition",
            message="Execution state changed",
            receipt_id=ctx.receipt_id,
            from_state=ctx.state.value,
            to_state=state.value,
            attempt=ctx.receipt_attempts,
        )
        ctx.state = state
