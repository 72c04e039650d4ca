from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from swap_engine.common import guarded_call, log_event

from .errors import ReceiptNotFoundError, ReceiptStateError
from .types import (
    EventType,
    ExecutionEvent,
    Quote,
    Receipt,
    ReceiptStatus,
    RiskLevel,
    SwapIntent,
    now_iso,
)


class ReceiptStore(Protocol):
    async def insert_receipt(self, receipt: Receipt) -> None:
        ...

    async def get_receipt(self, receipt_id: str) -> Receipt | None:
        ...

    async def update_pending_receipt(self, receipt_id: str, fields: dict[str, Any]) -> Receipt | None:
        ...

    async def finalize_receipt(
        self,
        receipt_id: str,
        status: ReceiptStatus,
        fields: dict[str, Any],
    ) -> tuple[bool, Receipt | None]:
        ...

    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        ...

    async def list_events(self, receipt_id: str) -> list[ExecutionEvent]:
        ...

    async def list_user_receipts(self, user_address: str, *, limit: int) -> list[Receipt]:
        ...


class ReceiptArchive(Protocol):
    async def archive_receipt(self, receipt: Receipt, events: list[ExecutionEvent]) -> None:
        ...


@dataclass(slots=True, frozen=True)
class ReceiptComparison:
    receipt_id: str
    expected_out_amount: int | None
    actual_out_amount: int | None
    delta_pct: float | None
    actual_slippage_bps: float | None
    execution_time_ms: int | None
    retry_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def new_receipt_id() -> str:
    return f"rcpt-{uuid.uuid4().hex}"


def _elapsed_ms(started_at: str, completed_at: str | None) -> int | None:
    if not completed_at:
        return None
    try:
        delta = datetime.fromisoformat(completed_at) - datetime.fromisoformat(started_at)
    except ValueError:
        return None
    return max(0, int(delta.total_seconds() * 1000))


class ReceiptRecorder:
    """Receipt lifecycle and append-only execution timeline."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: ReceiptStore,
        archive: ReceiptArchive | None = None,
        id_factory: Callable[[], str] = new_receipt_id,
    ) -> None:
        self._logger = logger
        self._store = store
        self._archive = archive
        self._id_factory = id_factory

    async def create_receipt(self, intent: SwapIntent) -> Receipt:
        receipt = Receipt(
            receipt_id=self._id_factory(),
            user_address=intent.user_address,
            input_mint=intent.input_mint,
            output_mint=intent.output_mint,
            in_amount=intent.amount_in,
            out_amount=0,
            slippage_bps=intent.slippage_bps,
            protected_mode=intent.protected_mode,
            price_impact_pct=0.0,
            status=ReceiptStatus.PENDING,
            timestamp=now_iso(),
            execution_profile=intent.execution_profile,
        )
        await self._store.insert_receipt(receipt)
        log_event(
            self._logger,
            level="info",
            event="receipt_created",
            message="Receipt created",
            receipt_id=receipt.receipt_id,
            user_address=receipt.user_address,
            input_mint=receipt.input_mint,
            output_mint=receipt.output_mint,
            in_amount=receipt.in_amount,
        )
        return receipt

    async def record_event(
        self,
        receipt_id: str,
        event_type: EventType,
        **metadata: Any,
    ) -> ExecutionEvent:
        event = ExecutionEvent(
            receipt_id=receipt_id,
            event_type=event_type,
            timestamp=now_iso(),
            metadata={key: value for key, value in metadata.items() if value is not None},
        )
        return await self._store.append_event(event)

    async def update_quote_details(
        self,
        receipt_id: str,
        quote: Quote,
        *,
        attempts: int,
        risk_level: RiskLevel | None = None,
        warnings: list[str] | None = None,
    ) -> Receipt | None:
        fields: dict[str, Any] = {
            "in_amount": quote.in_amount,
            "out_amount": quote.out_amount,
            "expected_out_amount": quote.out_amount,
            "price_impact_pct": quote.price_impact_pct,
            "attempts": attempts,
        }
        if risk_level is not None:
            fields["risk_level"] = risk_level
        if warnings is not None:
            fields["warnings"] = tuple(warnings)
        return await self._store.update_pending_receipt(receipt_id, fields)

    async def update_receipt_status(
        self,
        receipt_id: str,
        status: ReceiptStatus | str,
        tx_signature: str | None = None,
        error: str | None = None,
        *,
        out_amount: int | None = None,
        attempts: int | None = None,
        risk_level: RiskLevel | None = None,
        warnings: list[str] | None = None,
        event_metadata: dict[str, Any] | None = None,
    ) -> Receipt:
        target = ReceiptStatus(status)
        if not target.is_terminal:
            raise ValueError("Receipts can only be moved to a terminal status.")

        fields: dict[str, Any] = {"completed_at": now_iso()}
        if tx_signature is not None:
            fields["tx_signature"] = tx_signature
        if error is not None:
            fields["error"] = error
        if out_amount is not None:
            fields["out_amount"] = out_amount
        if attempts is not None:
            fields["attempts"] = attempts
        if risk_level is not None:
            fields["risk_level"] = risk_level
        if warnings is not None:
            fields["warnings"] = tuple(warnings)

        applied, current = await self._store.finalize_receipt(receipt_id, target, fields)
        if current is None:
            raise ReceiptNotFoundError(receipt_id)

        if not applied:
            if current.status is target:
                log_event(
                    self._logger,
                    level="info",
                    event="receipt_status_noop",
                    message="Receipt already has the requested terminal status",
                    receipt_id=receipt_id,
                    status=target.value,
                )
                return current
            raise ReceiptStateError(
                f"Receipt {receipt_id} is already {current.status.value}; cannot mark it {target.value}",
                receipt_id=receipt_id,
                current_status=current.status.value,
            )

        terminal_event = EventType.SUCCESS if target is ReceiptStatus.SUCCESS else EventType.FAILURE
        await self.record_event(
            receipt_id,
            terminal_event,
            status=target.value,
            signature=current.tx_signature,
            error_message=current.error,
            attempts=current.attempts,
            **(event_metadata or {}),
        )
        log_event(
            self._logger,
            level="info" if target is ReceiptStatus.SUCCESS else "warning",
            event="receipt_finalized",
            message="Receipt reached a terminal status",
            receipt_id=receipt_id,
            status=target.value,
            tx_signature=current.tx_signature,
            error=current.error,
            attempts=current.attempts,
        )

        if self._archive is not None:
            events = await self._store.list_events(receipt_id)
            await guarded_call(
                lambda: self._archive.archive_receipt(current, events),
                logger=self._logger,
                event="receipt_archive_failed",
                message="Failed to archive terminal receipt",
                level="error",
                receipt_id=receipt_id,
            )
        return current

    async def get_receipt(self, receipt_id: str) -> Receipt | None:
        return await self._store.get_receipt(receipt_id)

    async def get_receipt_timeline(self, receipt_id: str) -> list[ExecutionEvent]:
        if await self._store.get_receipt(receipt_id) is None:
            raise ReceiptNotFoundError(receipt_id)
        return await self._store.list_events(receipt_id)

    async def list_user_receipts(self, user_address: str, *, limit: int = 20) -> list[Receipt]:
        return await self._store.list_user_receipts(user_address, limit=max(1, limit))

    async def compare(self, receipt_id: str) -> ReceiptComparison:
        receipt = await self._store.get_receipt(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(receipt_id)

        expected = receipt.expected_out_amount
        actual = receipt.out_amount if receipt.status is ReceiptStatus.SUCCESS else None
        delta_pct: float | None = None
        actual_slippage_bps: float | None = None
        if expected and actual is not None:
            delta_pct = round((actual - expected) / expected * 100, 4)
            actual_slippage_bps = round(max(0.0, (expected - actual) / expected * 10_000), 2)

        return ReceiptComparison(
            receipt_id=receipt_id,
            expected_out_amount=expected,
            actual_out_amount=actual,
            delta_pct=delta_pct,
            actual_slippage_bps=actual_slippage_bps,
            execution_time_ms=_elapsed_ms(receipt.timestamp, receipt.completed_at),
            retry_count=max(0, receipt.attempts - 1),
        )
