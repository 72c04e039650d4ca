from __future__ import annotations

import asyncio
import logging
import os

from google.cloud import firestore
from redis import asyncio as redis
from redis.asyncio.client import Redis

from swap_engine.common import log_event

from .firestore_ops import FirestoreStorageOps
from .redis_ops import RedisStorageOps
from .settings import StorageSettings


class StorageGateway(FirestoreStorageOps, RedisStorageOps):
    """Redis receipt store with an optional Firestore archive of terminal receipts."""

    def __init__(self, settings: StorageSettings, logger: logging.Logger) -> None:
        self.settings = settings
        self._logger = logger
        self._redis: Redis | None = None
        self._firestore: firestore.Client | None = None

    @property
    def archive_enabled(self) -> bool:
        return self.settings.firestore_enabled

    async def connect(self) -> None:
        firebase_credentials = os.getenv("FIREBASE_CREDENTIALS")
        if firebase_credentials and not os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
            os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = firebase_credentials

        self._redis = redis.from_url(self.settings.redis_url, decode_responses=True)
        await self._redis.ping()
        log_event(
            self._logger,
            level="info",
            event="redis_connected",
            message="Connected to Redis",
            receipt_prefix=self.settings.receipt_prefix,
        )

        if not self.settings.firestore_enabled:
            return

        self._firestore = firestore.Client(project=self.settings.firestore_project_id)
        log_event(
            self._logger,
            level="info",
            event="firestore_connected",
            message="Connected to Firestore",
            collection=self.settings.firestore_receipts_collection,
        )

    async def healthcheck(self) -> None:
        redis_client = self._require_redis()
        await redis_client.ping()

        if self._firestore is not None:
            collection = self._firestore.collection(self.settings.firestore_receipts_collection)
            await asyncio.to_thread(lambda: list(collection.limit(1).stream()))

    async def close(self) -> None:
        if self._redis is not None:
            close = getattr(self._redis, "aclose", None)
            if close:
                await close()
            else:
                await self._redis.close()
            self._redis = None

        if self._firestore is not None:
            self._firestore.close()
            self._firestore = None
