from __future__ import annotations

import logging
from dataclasses import dataclass

from swap_engine.common import guarded_call, log_event
from swap_engine.execution import (
    ExecutionEngine,
    FeeEstimator,
    JupiterClient,
    KeypairSigner,
    ReceiptRecorder,
    RiskPolicy,
    RiskScoringEngine,
    RpcTokenSafetyProvider,
    SolanaRpcClient,
    SolanaTransactionSubmitter,
)
from swap_engine.storage import InMemoryReceiptStore, StorageGateway, StorageSettings

from .settings import AppSettings


@dataclass(slots=True)
class SwapRuntime:
    engine: ExecutionEngine
    jupiter: JupiterClient
    rpc: SolanaRpcClient
    fee_estimator: FeeEstimator
    risk_engine: RiskScoringEngine
    storage: StorageGateway | None
    signer: KeypairSigner | None

    async def connect(self) -> None:
        if self.storage is not None:
            await self.storage.connect()
        await self.jupiter.connect()
        await self.rpc.connect()

    async def close(self, logger: logging.Logger) -> None:
        await guarded_call(
            self.jupiter.close,
            logger=logger,
            event="jupiter_close_failed",
            message="Failed to close Jupiter client",
        )
        await guarded_call(
            self.rpc.close,
            logger=logger,
            event="rpc_close_failed",
            message="Failed to close RPC client",
        )
        if self.storage is not None:
            await guarded_call(
                self.storage.close,
                logger=logger,
                event="storage_close_failed",
                message="Failed to close storage",
            )


def build_runtime(
    *,
    logger: logging.Logger,
    app_settings: AppSettings,
    storage_settings: StorageSettings,
    with_signer: bool = True,
) -> SwapRuntime:
    jupiter = JupiterClient(
        logger=logger,
        api_base_url=app_settings.jupiter_api_base,
        api_key=app_settings.jupiter_api_key,
        timeout_seconds=app_settings.jupiter_timeout_seconds,
    )
    rpc = SolanaRpcClient(
        logger=logger,
        rpc_urls=list(app_settings.solana_rpc_urls),
        timeout_seconds=app_settings.rpc_timeout_seconds,
    )
    submitter = SolanaTransactionSubmitter(
        logger=logger,
        rpc=rpc,
        confirm_timeout_seconds=app_settings.confirm_timeout_seconds,
        poll_interval_seconds=app_settings.confirm_poll_interval_seconds,
    )
    fee_estimator = FeeEstimator(
        logger=logger,
        source=rpc,
        cache_ttl_seconds=app_settings.fee_cache_ttl_seconds,
        fallback_micro_lamports=app_settings.fee_fallback_micro_lamports,
    )
    risk_engine = RiskScoringEngine(
        logger=logger,
        policy=RiskPolicy(
            sol_price_usd=app_settings.risk_sol_price_usd,
            blacklist=frozenset(app_settings.risk_blacklist),
            whitelist=frozenset(app_settings.risk_whitelist),
        ),
        token_safety=RpcTokenSafetyProvider(rpc=rpc),
    )

    storage: StorageGateway | None = None
    if storage_settings.backend == "redis":
        storage = StorageGateway(storage_settings, logger)
        recorder = ReceiptRecorder(
            logger=logger,
            store=storage,
            archive=storage if storage.archive_enabled else None,
        )
    else:
        recorder = ReceiptRecorder(logger=logger, store=InMemoryReceiptStore())

    signer: KeypairSigner | None = None
    if with_signer and app_settings.private_key.strip():
        signer = KeypairSigner.from_private_key(app_settings.private_key)

    log_event(
        logger,
        level="info",
        event="runtime_configured",
        message="Swap runtime configured",
        rpc_endpoints=len(app_settings.solana_rpc_urls),
        storage_backend=storage_settings.backend,
        firestore_archive=storage_settings.firestore_enabled and storage is not None,
        signer=signer.public_key if signer else None,
        default_profile=app_settings.default_execution_profile,
    )

    engine = ExecutionEngine(
        logger=logger,
        quote_provider=jupiter,
        risk_engine=risk_engine,
        recorder=recorder,
        submitter=submitter,
        signer=signer,
        fee_estimator=fee_estimator,
        quote_max_age_seconds=app_settings.quote_max_age_seconds,
        execution_timeout_seconds=app_settings.execution_timeout_seconds or None,
    )
    return SwapRuntime(
        engine=engine,
        jupiter=jupiter,
        rpc=rpc,
        fee_estimator=fee_estimator,
        risk_engine=risk_engine,
        storage=storage,
        signer=signer,
    )
