from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Protocol

from .errors import InvalidSwapIntentError


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or value == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SwapMode(str, Enum):
    EXACT_IN = "ExactIn"
    EXACT_OUT = "ExactOut"


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ReceiptStatus.PENDING


class RiskLevel(str, Enum):
    GREEN = "GREEN"
    AMBER = "AMBER"
    RED = "RED"

    @property
    def severity(self) -> int:
        return _RISK_SEVERITY[self]

    @classmethod
    def worst(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        worst = cls.GREEN
        for level in levels:
            if level.severity > worst.severity:
                worst = level
        return worst


_RISK_SEVERITY = {RiskLevel.GREEN: 0, RiskLevel.AMBER: 1, RiskLevel.RED: 2}


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    REQUOTE = "requote"
    FATAL = "fatal"


class EventType(str, Enum):
    QUOTE = "quote"
    REQUOTE = "requote"
    TX_BUILD = "tx_build"
    TX_SEND = "tx_send"
    TX_CONFIRM = "tx_confirm"
    RETRY = "retry"
    SUCCESS = "success"
    FAILURE = "failure"


class ExecutionState(str, Enum):
    QUOTING = "quoting"
    RISK_CHECK = "risk_check"
    BUILDING = "building"
    SENDING = "sending"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(slots=True, frozen=True)
class SwapIntent:
    user_address: str
    input_mint: str
    output_mint: str
    amount_in: int
    slippage_bps: int
    swap_mode: SwapMode = SwapMode.EXACT_IN
    protected_mode: bool = False
    execution_profile: str = "auto"

    def __post_init__(self) -> None:
        if not self.user_address:
            raise InvalidSwapIntentError("userPublicKey is required")
        if not self.input_mint or not self.output_mint:
            raise InvalidSwapIntentError("inputMint and outputMint are required")
        if self.input_mint == self.output_mint:
            raise InvalidSwapIntentError("inputMint and outputMint must differ")
        if self.amount_in <= 0:
            raise InvalidSwapIntentError("amount must be a positive integer in base units")
        if self.slippage_bps < 0:
            raise InvalidSwapIntentError("slippageBps must not be negative")

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        default_profile: str = "auto",
    ) -> "SwapIntent":
        raw_amount = str(payload.get("amount", "")).strip()
        if not raw_amount.isdigit():
            raise InvalidSwapIntentError(f"amount must be a base-unit integer string, got {raw_amount!r}")

        return cls(
            user_address=str(payload.get("userPublicKey") or "").strip(),
            input_mint=str(payload.get("inputMint") or "").strip(),
            output_mint=str(payload.get("outputMint") or "").strip(),
            amount_in=int(raw_amount),
            slippage_bps=to_int(payload.get("slippageBps"), 50),
            swap_mode=SwapMode.EXACT_OUT if to_bool(payload.get("exactOut"), False) else SwapMode.EXACT_IN,
            protected_mode=to_bool(payload.get("protectedMode"), False),
            execution_profile=str(payload.get("executionProfile") or default_profile).strip().lower(),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class RouteStep:
    amm_key: str
    label: str
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    fee_amount: int
    percent: int

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RouteStep":
        swap_info = payload.get("swapInfo") if isinstance(payload.get("swapInfo"), dict) else payload
        return cls(
            amm_key=str(swap_info.get("ammKey") or ""),
            label=str(swap_info.get("label") or ""),
            input_mint=str(swap_info.get("inputMint") or ""),
            output_mint=str(swap_info.get("outputMint") or ""),
            in_amount=to_int(swap_info.get("inAmount"), 0),
            out_amount=to_int(swap_info.get("outAmount"), 0),
            fee_amount=to_int(swap_info.get("feeAmount"), 0),
            percent=to_int(payload.get("percent"), 100),
        )


@dataclass(slots=True, frozen=True)
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    other_amount_threshold: int
    price_impact_pct: float
    slippage_bps: int
    route_plan: tuple[RouteStep, ...]
    fetched_at: float
    swap_mode: SwapMode = SwapMode.EXACT_IN
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def hop_count(self) -> int:
        return len(self.route_plan)

    def age_seconds(self, now: float | None = None) -> float:
        current = time.time() if now is None else now
        return max(0.0, current - self.fetched_at)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("raw", None)
        payload["swap_mode"] = self.swap_mode.value
        return payload


@dataclass(slots=True, frozen=True)
class ClassifiedError:
    category: ErrorCategory
    code: str
    message: str
    retryable: bool
    requires_requote: bool
    suggested_delay_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["category"] = self.category.value
        return payload


@dataclass(slots=True)
class RetryState:
    attempts: int = 0
    requotes: int = 0
    errors: list[ClassifiedError] = field(default_factory=list)
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)


@dataclass(slots=True, frozen=True)
class RetryDecision:
    should_retry: bool
    delay_ms: int | None = None
    reason: str | None = None


@dataclass(slots=True, frozen=True)
class RetryMetrics:
    total_attempts: int
    total_requotes: int
    total_time_ms: int
    final_status: str
    error_codes: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class RiskReason:
    factor: str
    level: RiskLevel
    code: str
    message: str
    value: float | None = None
    threshold: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["level"] = self.level.value
        return payload


@dataclass(slots=True, frozen=True)
class RiskAssessment:
    level: RiskLevel
    reasons: tuple[RiskReason, ...]
    blocked_in_protected_mode: bool
    requires_acknowledgement: bool
    quote_age_seconds: float

    @property
    def warnings(self) -> list[str]:
        return [reason.message for reason in self.reasons if reason.level is not RiskLevel.GREEN]

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "reasons": [reason.to_dict() for reason in self.reasons],
            "blocked_in_protected_mode": self.blocked_in_protected_mode,
            "requires_acknowledgement": self.requires_acknowledgement,
            "quote_age_seconds": round(self.quote_age_seconds, 3),
        }


@dataclass(slots=True, frozen=True)
class TokenSafetyInfo:
    mint: str
    has_freeze_authority: bool = False
    has_mint_authority: bool = False
    has_transfer_fee: bool = False
    age_days: float | None = None
    holder_count: int | None = None


@dataclass(slots=True, frozen=True)
class FeeEstimate:
    compute_unit_price: int
    compute_unit_limit: int | None
    tier: str
    congestion: str
    source: str
    sample_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class BuiltTransaction:
    transaction: str
    last_valid_block_height: int | None
    priority_fee_micro_lamports: int
    compute_unit_limit: int | None = None


@dataclass(slots=True, frozen=True)
class ConfirmationResult:
    status: ConfirmationStatus
    signature: str
    slot: int | None = None
    error: str | None = None
    actual_out_amount: int | None = None


@dataclass(slots=True, frozen=True)
class Receipt:
    receipt_id: str
    user_address: str
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    protected_mode: bool
    price_impact_pct: float
    status: ReceiptStatus
    timestamp: str
    execution_profile: str = "auto"
    risk_level: RiskLevel | None = None
    warnings: tuple[str, ...] = ()
    attempts: int = 0
    tx_signature: str | None = None
    error: str | None = None
    expected_out_amount: int | None = None
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["risk_level"] = self.risk_level.value if self.risk_level else None
        payload["warnings"] = list(self.warnings)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Receipt":
        risk_level = payload.get("risk_level")
        expected_out = payload.get("expected_out_amount")
        return cls(
            receipt_id=str(payload["receipt_id"]),
            user_address=str(payload.get("user_address", "")),
            input_mint=str(payload.get("input_mint", "")),
            output_mint=str(payload.get("output_mint", "")),
            in_amount=to_int(payload.get("in_amount"), 0),
            out_amount=to_int(payload.get("out_amount"), 0),
            slippage_bps=to_int(payload.get("slippage_bps"), 0),
            protected_mode=to_bool(payload.get("protected_mode"), False),
            price_impact_pct=to_float(payload.get("price_impact_pct"), 0.0),
            status=ReceiptStatus(str(payload.get("status", ReceiptStatus.PENDING.value))),
            timestamp=str(payload.get("timestamp", "")),
            execution_profile=str(payload.get("execution_profile", "auto")),
            risk_level=RiskLevel(str(risk_level)) if risk_level else None,
            warnings=tuple(str(item) for item in payload.get("warnings") or ()),
            attempts=to_int(payload.get("attempts"), 0),
            tx_signature=payload.get("tx_signature") or None,
            error=payload.get("error") or None,
            expected_out_amount=to_int(expected_out, 0) if expected_out is not None else None,
            completed_at=payload.get("completed_at") or None,
        )


@dataclass(slots=True, frozen=True)
class ExecutionEvent:
    receipt_id: str
    event_type: EventType
    timestamp: str
    metadata: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "receipt_id": self.receipt_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ExecutionEvent":
        metadata = payload.get("metadata")
        return cls(
            receipt_id=str(payload["receipt_id"]),
            event_type=EventType(str(payload["event_type"])),
            timestamp=str(payload.get("timestamp", "")),
            metadata=metadata if isinstance(metadata, dict) else {},
            sequence=to_int(payload.get("sequence"), 0),
        )


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    receipt_id: str
    status: ReceiptStatus
    risk_level: RiskLevel | None
    warnings: tuple[str, ...]
    attempts: int
    quote: Quote | None = None
    transaction: str | None = None
    last_valid_block_height: int | None = None
    tx_signature: str | None = None
    out_amount: int | None = None
    error: str | None = None
    metrics: RetryMetrics | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ReceiptStatus.SUCCESS

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "receiptId": self.receipt_id,
            "status": "success" if self.succeeded else "failed",
            "riskLevel": self.risk_level.value if self.risk_level else None,
            "warnings": list(self.warnings),
            "attempts": self.attempts,
        }
        if self.succeeded:
            payload["quote"] = (self.quote.raw or self.quote.to_dict()) if self.quote else None
            payload["lastValidBlockHeight"] = self.last_valid_block_height
            if self.transaction is not None:
                payload["transaction"] = self.transaction
            if self.tx_signature is not None:
                payload["txSignature"] = self.tx_signature
                payload["outAmount"] = str(self.out_amount) if self.out_amount is not None else None
        else:
            payload["error"] = self.error
        if self.metrics is not None:
            payload["metrics"] = self.metrics.to_dict()
        return payload


class QuoteProvider(Protocol):
    async def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        swap_mode: SwapMode = SwapMode.EXACT_IN,
    ) -> Quote:
        ...

    async def build_transaction(
        self,
        *,
        quote: Quote,
        user_public_key: str,
        fee: FeeEstimate | None = None,
    ) -> BuiltTransaction:
        ...


class TransactionSubmitter(Protocol):
    async def submit(self, signed_transaction: str) -> str:
        ...

    async def confirm(
        self,
        signature: str,
        *,
        last_valid_block_height: int | None = None,
    ) -> ConfirmationResult:
        ...

    async def get_signature_status(self, signature: str) -> ConfirmationResult | None:
        ...

    async def get_output_amount(self, signature: str, *, owner: str, mint: str) -> int | None:
        ...


class TransactionSigner(Protocol):
    async def sign(self, unsigned_transaction: str) -> str:
        ...


class PriorityFeeSource(Protocol):
    async def estimate_priority_fee(self, profile: Any) -> FeeEstimate:
        ...


class TokenSafetyProvider(Protocol):
    async def get_token_safety(self, mint: str) -> TokenSafetyInfo | None:
        ...
