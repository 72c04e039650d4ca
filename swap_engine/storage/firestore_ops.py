from __future__ import annotations

import asyncio
import hashlib
from typing import Any

from google.cloud import firestore

from swap_engine.common import log_event
from swap_engine.execution.types import ExecutionEvent, Receipt


class FirestoreStorageOps:
    @staticmethod
    def _doc_id_from_text(value: str) -> str:
        normalized = value.strip().replace("/", "_")
        if not normalized:
            raise ValueError("Document id source must not be empty.")

        if len(normalized) <= 128:
            return normalized

        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
        return f"{normalized[:96]}-{digest}"

    @staticmethod
    def _archive_payload(receipt: Receipt, events: list[ExecutionEvent]) -> dict[str, Any]:
        payload = receipt.to_dict()
        payload["events"] = [event.to_dict() for event in events]
        payload["event_count"] = len(events)
        payload["archived_at"] = firestore.SERVER_TIMESTAMP
        return payload

    async def archive_receipt(self, receipt: Receipt, events: list[ExecutionEvent]) -> None:
        """Write a terminal receipt and its timeline to Firestore. Errors propagate to the caller."""
        if self._firestore is None:
            log_event(
                self._logger,
                level="debug",
                event="receipt_archive_skipped",
                message="Skipping receipt archive because Firestore is disabled",
                receipt_id=receipt.receipt_id,
            )
            return

        document_ref = self._firestore.collection(self.settings.firestore_receipts_collection).document(
            self._doc_id_from_text(receipt.receipt_id)
        )
        payload = self._archive_payload(receipt, events)
        await asyncio.to_thread(document_ref.set, payload, merge=True)
        log_event(
            self._logger,
            level="info",
            event="receipt_archived",
            message="Archived terminal receipt to Firestore",
            receipt_id=receipt.receipt_id,
            status=receipt.status.value,
            events=len(events),
        )
