from __future__ import annotations

from dataclasses import replace
from typing import Any

from redis.asyncio.client import Redis

from swap_engine.common import log_event
from swap_engine.execution.types import ExecutionEvent, Receipt, ReceiptStatus, now_iso

from .helpers import apply_receipt_fields, dump_json, iso_to_epoch, load_json_dict

# compare-and-set on the status field; -1 missing, 0 status changed, 1 written
_STATUS_CAS_SCRIPT = """
local current = redis.call('hget', KEYS[1], 'status')
if not current then
  return -1
end
if current ~= ARGV[1] then
  return 0
end
redis.call('hset', KEYS[1], 'status', ARGV[2], 'payload', ARGV[3], 'updated_at', ARGV[4])
return 1
"""


class RedisStorageOps:
    def _receipt_key(self, receipt_id: str) -> str:
        return f"{self.settings.receipt_prefix}:{receipt_id}"

    def _events_key(self, receipt_id: str) -> str:
        return f"{self.settings.receipt_prefix}:{receipt_id}:events"

    def _user_index_key(self, user_address: str) -> str:
        return f"{self.settings.receipt_prefix}:user:{user_address}"

    @staticmethod
    def _receipt_from_hash(payload: dict[str, str]) -> Receipt | None:
        if not payload:
            return None
        data = load_json_dict(payload.get("payload"))
        if not data.get("receipt_id"):
            return None
        # the status field is authoritative; payload is rewritten in the same script call
        data["status"] = payload.get("status", data.get("status"))
        return Receipt.from_dict(data)

    async def insert_receipt(self, receipt: Receipt) -> None:
        redis_client = self._require_redis()
        receipt_key = self._receipt_key(receipt.receipt_id)
        user_key = self._user_index_key(receipt.user_address)
        ttl_seconds = self.settings.receipt_ttl_seconds

        created = await redis_client.hsetnx(receipt_key, "status", receipt.status.value)
        if not created:
            raise ValueError(f"Receipt {receipt.receipt_id} already exists")

        pipeline = redis_client.pipeline(transaction=True)
        pipeline.hset(
            receipt_key,
            mapping={
                "receipt_id": receipt.receipt_id,
                "user_address": receipt.user_address,
                "payload": dump_json(receipt.to_dict()),
                "created_at": receipt.timestamp,
                "updated_at": now_iso(),
            },
        )
        pipeline.zadd(user_key, {receipt.receipt_id: iso_to_epoch(receipt.timestamp)})
        pipeline.zremrangebyrank(user_key, 0, -(self.settings.user_index_limit + 1))
        if ttl_seconds > 0:
            pipeline.expire(receipt_key, ttl_seconds)
            pipeline.expire(user_key, ttl_seconds)
        await pipeline.execute()

    async def get_receipt(self, receipt_id: str) -> Receipt | None:
        redis_client = self._require_redis()
        payload = await redis_client.hgetall(self._receipt_key(receipt_id))
        return self._receipt_from_hash(payload)

    async def update_pending_receipt(self, receipt_id: str, fields: dict[str, Any]) -> Receipt | None:
        current = await self.get_receipt(receipt_id)
        if current is None or current.status is not ReceiptStatus.PENDING:
            return None

        updated = apply_receipt_fields(current, fields)
        written = await self._compare_and_set_status(
            receipt_id,
            expected=ReceiptStatus.PENDING,
            receipt=updated,
        )
        return updated if written == 1 else None

    async def finalize_receipt(
        self,
        receipt_id: str,
        status: ReceiptStatus,
        fields: dict[str, Any],
    ) -> tuple[bool, Receipt | None]:
        current = await self.get_receipt(receipt_id)
        if current is None:
            return False, None
        if current.status is not ReceiptStatus.PENDING:
            return False, current

        updated = apply_receipt_fields(current, fields, status=status)
        written = await self._compare_and_set_status(
            receipt_id,
            expected=ReceiptStatus.PENDING,
            receipt=updated,
        )
        if written == 1:
            return True, updated
        if written == -1:
            return False, None

        log_event(
            self._logger,
            level="warning",
            event="receipt_finalize_race",
            message="Receipt status changed while finalizing",
            receipt_id=receipt_id,
            requested_status=status.value,
        )
        return False, await self.get_receipt(receipt_id)

    async def _compare_and_set_status(
        self,
        receipt_id: str,
        *,
        expected: ReceiptStatus,
        receipt: Receipt,
    ) -> int:
        redis_client = self._require_redis()
        result = await redis_client.eval(
            _STATUS_CAS_SCRIPT,
            1,
            self._receipt_key(receipt_id),
            expected.value,
            receipt.status.value,
            dump_json(receipt.to_dict()),
            now_iso(),
        )
        return int(result)

    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        redis_client = self._require_redis()
        events_key = self._events_key(event.receipt_id)
        length = await redis_client.rpush(events_key, dump_json(event.to_dict()))
        if self.settings.receipt_ttl_seconds > 0 and length == 1:
            await redis_client.expire(events_key, self.settings.receipt_ttl_seconds)
        return replace(event, sequence=int(length))

    async def list_events(self, receipt_id: str) -> list[ExecutionEvent]:
        redis_client = self._require_redis()
        raw_events = await redis_client.lrange(self._events_key(receipt_id), 0, -1)

        events: list[ExecutionEvent] = []
        for index, raw in enumerate(raw_events, start=1):
            data = load_json_dict(raw)
            if not data.get("receipt_id") or not data.get("event_type"):
                log_event(
                    self._logger,
                    level="warning",
                    event="receipt_event_unreadable",
                    message="Skipping unreadable receipt event",
                    receipt_id=receipt_id,
                    sequence=index,
                )
                continue
            events.append(replace(ExecutionEvent.from_dict(data), sequence=index))
        return events

    async def list_user_receipts(self, user_address: str, *, limit: int) -> list[Receipt]:
        redis_client = self._require_redis()
        receipt_ids = await redis_client.zrevrange(self._user_index_key(user_address), 0, max(1, limit) - 1)
        if not receipt_ids:
            return []

        pipeline = redis_client.pipeline(transaction=False)
        for receipt_id in receipt_ids:
            pipeline.hgetall(self._receipt_key(receipt_id))
        payloads = await pipeline.execute()

        receipts: list[Receipt] = []
        for payload in payloads:
            receipt = self._receipt_from_hash(payload)
            if receipt is not None:
                receipts.append(receipt)
        return receipts

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis
