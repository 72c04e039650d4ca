from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable

import pytest

from swap_engine.execution.engine import ExecutionEngine
from swap_engine.execution.receipts import ReceiptRecorder
from swap_engine.execution.risk import RiskScoringEngine
from swap_engine.storage.memory import InMemoryReceiptStore

from .fakes import FakeQuoteProvider, FakeSigner, FakeSubmitter, RecordingSleep

_DEFAULT = object()


@dataclass
class EngineHarness:
    engine: ExecutionEngine
    quotes: FakeQuoteProvider
    submitter: FakeSubmitter | None
    signer: FakeSigner | None
    store: InMemoryReceiptStore
    sleep: RecordingSleep


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("swap_engine.tests")


@pytest.fixture
def store() -> InMemoryReceiptStore:
    return InMemoryReceiptStore()


@pytest.fixture
def recorder(logger: logging.Logger, store: InMemoryReceiptStore) -> ReceiptRecorder:
    return ReceiptRecorder(logger=logger, store=store)


@pytest.fixture
def make_harness(logger: logging.Logger) -> Callable[..., EngineHarness]:
    def factory(
        *,
        quotes: FakeQuoteProvider | None = None,
        submitter: Any = _DEFAULT,
        signer: Any = _DEFAULT,
        **engine_kwargs: Any,
    ) -> EngineHarness:
        store = InMemoryReceiptStore()
        quote_provider = quotes or FakeQuoteProvider()
        fake_submitter = FakeSubmitter() if submitter is _DEFAULT else submitter
        fake_signer = FakeSigner() if signer is _DEFAULT else signer
        sleep = RecordingSleep()
        engine = ExecutionEngine(
            logger=logger,
            quote_provider=quote_provider,
            risk_engine=RiskScoringEngine(logger=logger),
            recorder=ReceiptRecorder(logger=logger, store=store),
            submitter=fake_submitter,
            signer=fake_signer,
            sleep=sleep,
            rng=random.Random(0),
            **engine_kwargs,
        )
        return EngineHarness(
            engine=engine,
            quotes=quote_provider,
            submitter=fake_submitter,
            signer=fake_signer,
            store=store,
            sleep=sleep,
        )

    return factory
