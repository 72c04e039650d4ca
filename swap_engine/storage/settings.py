from __future__ import annotations

import os
from dataclasses import dataclass

from swap_engine.execution.types import to_bool, to_int

STORAGE_BACKENDS = ("memory", "redis")


@dataclass(slots=True)
class StorageSettings:
    backend: str
    redis_url: str
    receipt_prefix: str
    receipt_ttl_seconds: int
    user_index_limit: int
    firestore_enabled: bool
    firestore_project_id: str | None
    firestore_receipts_collection: str

    @classmethod
    def from_env(cls) -> "StorageSettings":
        backend = os.getenv("STORAGE_BACKEND", "memory").strip().lower() or "memory"
        if backend not in STORAGE_BACKENDS:
            raise ValueError(f"STORAGE_BACKEND must be one of {STORAGE_BACKENDS}, got {backend!r}")

        return cls(
            backend=backend,
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            receipt_prefix=(os.getenv("REDIS_RECEIPT_PREFIX", "receipts").strip(":") or "receipts"),
            receipt_ttl_seconds=max(0, to_int(os.getenv("RECEIPT_TTL_SECONDS"), 30 * 86_400)),
            user_index_limit=max(10, to_int(os.getenv("REDIS_USER_INDEX_LIMIT"), 500)),
            firestore_enabled=to_bool(os.getenv("FIRESTORE_ENABLED"), False),
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            firestore_receipts_collection=(
                os.getenv("FIRESTORE_RECEIPTS_COLLECTION", "swap_receipts").strip("/") or "swap_receipts"
            ),
        )
