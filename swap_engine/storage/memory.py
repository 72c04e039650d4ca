from __future__ import annotations

from dataclasses import replace
from typing import Any

from swap_engine.execution.types import ExecutionEvent, Receipt, ReceiptStatus

from .helpers import apply_receipt_fields, iso_to_epoch


class InMemoryReceiptStore:
    """Process-local receipt store.

    Each operation completes without awaiting, so per-receipt updates are atomic on the
    event loop and concurrent executions only ever touch their own event lists.
    """

    def __init__(self) -> None:
        self._receipts: dict[str, Receipt] = {}
        self._events: dict[str, list[ExecutionEvent]] = {}

    async def insert_receipt(self, receipt: Receipt) -> None:
        if receipt.receipt_id in self._receipts:
            raise ValueError(f"Receipt {receipt.receipt_id} already exists")
        self._receipts[receipt.receipt_id] = receipt
        self._events[receipt.receipt_id] = []

    async def get_receipt(self, receipt_id: str) -> Receipt | None:
        return self._receipts.get(receipt_id)

    async def update_pending_receipt(self, receipt_id: str, fields: dict[str, Any]) -> Receipt | None:
        current = self._receipts.get(receipt_id)
        if current is None or current.status is not ReceiptStatus.PENDING:
            return None
        updated = apply_receipt_fields(current, fields)
        self._receipts[receipt_id] = updated
        return updated

    async def finalize_receipt(
        self,
        receipt_id: str,
        status: ReceiptStatus,
        fields: dict[str, Any],
    ) -> tuple[bool, Receipt | None]:
        current = self._receipts.get(receipt_id)
        if current is None:
            return False, None
        if current.status is not ReceiptStatus.PENDING:
            return False, current
        updated = apply_receipt_fields(current, fields, status=status)
        self._receipts[receipt_id] = updated
        return True, updated

    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        events = self._events.setdefault(event.receipt_id, [])
        stored = replace(event, sequence=len(events) + 1)
        events.append(stored)
        return stored

    async def list_events(self, receipt_id: str) -> list[ExecutionEvent]:
        return list(self._events.get(receipt_id, ()))

    async def list_user_receipts(self, user_address: str, *, limit: int) -> list[Receipt]:
        ordered = [
            (iso_to_epoch(receipt.timestamp), index, receipt)
            for index, receipt in enumerate(self._receipts.values())
            if receipt.user_address == user_address
        ]
        ordered.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [receipt for _, _, receipt in ordered[: max(1, limit)]]
