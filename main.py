from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Any

from dotenv import load_dotenv

from swap_engine.execution import (
    EXECUTION_PROFILES,
    InvalidSwapIntentError,
    ReceiptNotFoundError,
    ReceiptStateError,
    SwapIntent,
    get_profile,
)
from swap_engine.runtime import AppSettings, SwapRuntime, build_runtime, setup_logger
from swap_engine.storage import StorageSettings


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _add_intent_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input-mint", required=True)
    parser.add_argument("--output-mint", required=True)
    parser.add_argument("--amount", required=True, help="Amount in base units (lamports for SOL).")
    parser.add_argument("--slippage-bps", type=int, default=50)
    parser.add_argument("--exact-out", action="store_true")
    parser.add_argument("--protected", action="store_true", help="Block the swap when risk is RED.")
    parser.add_argument("--profile", choices=sorted(EXECUTION_PROFILES), default=None)
    parser.add_argument("--user", default="", help="User public key; defaults to the PRIVATE_KEY wallet.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Quote, risk-check and execute Solana token swaps through Jupiter.",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    quote = subcommands.add_parser("quote", help="Fetch a quote and score its risk without sending.")
    _add_intent_arguments(quote)

    execute = subcommands.add_parser("execute", help="Run the full execution state machine.")
    _add_intent_arguments(execute)
    execute.add_argument(
        "--unsigned",
        action="store_true",
        help="Return the unsigned transaction instead of signing with PRIVATE_KEY.",
    )

    receipt = subcommands.add_parser("receipt", help="Show a stored receipt.")
    receipt.add_argument("receipt_id")
    receipt.add_argument("--compare", action="store_true", help="Include expected vs actual output.")

    timeline = subcommands.add_parser("timeline", help="Show the ordered event timeline of a receipt.")
    timeline.add_argument("receipt_id")

    history = subcommands.add_parser("history", help="List a user's most recent receipts.")
    history.add_argument("--user", required=True)
    history.add_argument("--limit", type=int, default=20)

    fees = subcommands.add_parser("fees", help="Show the priority fee estimate for each profile.")
    fees.add_argument("--profile", choices=sorted(EXECUTION_PROFILES), default=None)

    return parser.parse_args(argv)


def _intent_from_args(args: argparse.Namespace, runtime: SwapRuntime, default_profile: str) -> SwapIntent:
    user = args.user or (runtime.signer.public_key if runtime.signer else "")
    return SwapIntent.from_payload(
        {
            "userPublicKey": user,
            "inputMint": args.input_mint,
            "outputMint": args.output_mint,
            "amount": args.amount,
            "slippageBps": args.slippage_bps,
            "exactOut": args.exact_out,
            "protectedMode": args.protected,
            "executionProfile": args.profile,
        },
        default_profile=default_profile,
    )


async def run_command(
    args: argparse.Namespace,
    *,
    runtime: SwapRuntime,
    app_settings: AppSettings,
) -> int:
    engine = runtime.engine

    if args.command == "quote":
        intent = _intent_from_args(args, runtime, app_settings.default_execution_profile)
        quote = await runtime.jupiter.quote(
            input_mint=intent.input_mint,
            output_mint=intent.output_mint,
            amount=intent.amount_in,
            slippage_bps=intent.slippage_bps,
            swap_mode=intent.swap_mode,
        )
        assessment = await runtime.risk_engine.score_swap(intent, quote)
        _print_json({"quote": quote.to_dict(), "risk": assessment.to_dict()})
        return 0

    if args.command == "execute":
        intent = _intent_from_args(args, runtime, app_settings.default_execution_profile)
        result = await engine.execute_swap(intent)
        _print_json(result.to_payload())
        return 0 if result.succeeded else 1

    if args.command == "receipt":
        receipt = await engine.get_receipt(args.receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(args.receipt_id)
        payload: dict[str, Any] = {"receipt": receipt.to_dict()}
        if args.compare:
            payload["comparison"] = (await engine.compare_receipt(args.receipt_id)).to_dict()
        _print_json(payload)
        return 0

    if args.command == "timeline":
        events = await engine.get_receipt_timeline(args.receipt_id)
        _print_json([event.to_dict() for event in events])
        return 0

    if args.command == "history":
        receipts = await engine.list_user_receipts(args.user, limit=args.limit)
        _print_json([receipt.to_dict() for receipt in receipts])
        return 0

    if args.command == "fees":
        names = [args.profile] if args.profile else sorted(EXECUTION_PROFILES)
        estimates = {}
        for name in names:
            estimate = await runtime.fee_estimator.estimate_priority_fee(get_profile(name))
            estimates[name] = estimate.to_dict()
        recommended = await runtime.fee_estimator.recommend_profile()
        _print_json({"estimates": estimates, "recommended_profile": recommended})
        return 0

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    app_settings = AppSettings.from_env()
    storage_settings = StorageSettings.from_env()
    logger = setup_logger(app_settings.log_level)

    if args.command in {"receipt", "timeline", "history"} and storage_settings.backend == "memory":
        logger.warning(
            "In-memory storage only sees receipts created by this process",
            extra={"event": "memory_storage_lookup", "command": args.command},
        )

    runtime = build_runtime(
        logger=logger,
        app_settings=app_settings,
        storage_settings=storage_settings,
        with_signer=not getattr(args, "unsigned", False),
    )

    loop = asyncio.get_running_loop()
    command_task: asyncio.Task[int] | None = None

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info(
            "Shutdown signal received",
            extra={"event": "shutdown_signal_received", "signal": sig.name},
        )
        if command_task is not None and not command_task.done():
            command_task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    try:
        await runtime.connect()
        command_task = asyncio.create_task(run_command(args, runtime=runtime, app_settings=app_settings))
        return await command_task
    except asyncio.CancelledError:
        logger.warning("Command cancelled", extra={"event": "command_cancelled", "command": args.command})
        return 130
    except (InvalidSwapIntentError, ValueError) as error:
        logger.error("Invalid request", extra={"event": "invalid_request", "error": str(error)})
        return 2
    except (ReceiptNotFoundError, ReceiptStateError) as error:
        logger.error("Receipt lookup failed", extra={"event": "receipt_error", "error": str(error)})
        return 1
    finally:
        await runtime.close(logger)
        logger.log(logging.INFO, "Shutdown completed", extra={"event": "shutdown_completed"})


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
