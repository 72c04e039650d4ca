from .classifier import ClassificationRule, ErrorClassifier, classify
from .engine import BLOCKED_BY_PROTECTED_MODE, ExecutionEngine
from .errors import (
    AggregatorError,
    AggregatorRateLimitError,
    InvalidSwapIntentError,
    QuoteStaleError,
    ReceiptNotFoundError,
    ReceiptStateError,
    RpcMethodError,
    TransactionFailedError,
    TransactionPendingConfirmationError,
)
from .fees import FeeEstimator
from .jupiter import JupiterClient
from .profiles import AUTO, CHEAP, EXECUTION_PROFILES, FAST, ExecutionProfile, get_profile
from .receipts import ReceiptComparison, ReceiptRecorder
from .retry_policy import calculate_backoff_delay, should_retry
from .risk import RiskPolicy, RiskScoringEngine
from .rpc import SolanaRpcClient
from .signing import KeypairSigner
from .submitter import SolanaTransactionSubmitter
from .token_safety import RpcTokenSafetyProvider
from .types import (
    ClassifiedError,
    ErrorCategory,
    EventType,
    ExecutionEvent,
    ExecutionResult,
    Quote,
    Receipt,
    ReceiptStatus,
    RetryState,
    RiskAssessment,
    RiskLevel,
    SwapIntent,
    SwapMode,
)

__all__ = [
    "AUTO",
    "AggregatorError",
    "AggregatorRateLimitError",
    "BLOCKED_BY_PROTECTED_MODE",
    "CHEAP",
    "ClassificationRule",
    "ClassifiedError",
    "EXECUTION_PROFILES",
    "ErrorCategory",
    "ErrorClassifier",
    "EventType",
    "ExecutionEngine",
    "ExecutionEvent",
    "ExecutionProfile",
    "ExecutionResult",
    "FAST",
    "FeeEstimator",
    "InvalidSwapIntentError",
    "JupiterClient",
    "KeypairSigner",
    "Quote",
    "QuoteStaleError",
    "Receipt",
    "ReceiptComparison",
    "ReceiptNotFoundError",
    "ReceiptRecorder",
    "ReceiptStateError",
    "ReceiptStatus",
    "RetryState",
    "RiskAssessment",
    "RiskLevel",
    "RiskPolicy",
    "RiskScoringEngine",
    "RpcMethodError",
    "RpcTokenSafetyProvider",
    "SolanaRpcClient",
    "SolanaTransactionSubmitter",
    "SwapIntent",
    "SwapMode",
    "TransactionFailedError",
    "TransactionPendingConfirmationError",
    "calculate_backoff_delay",
    "classify",
    "get_profile",
    "should_retry",
]
