from __future__ import annotations

from typing import Any


class InvalidSwapIntentError(ValueError):
    pass


class AggregatorError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class AggregatorRateLimitError(AggregatorError):
    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message, status=429, code="RATE_LIMITED")
        self.retry_after_seconds = retry_after_seconds


class RpcMethodError(RuntimeError):
    def __init__(
        self,
        *,
        method: str,
        message: str,
        status: int | None = None,
        code: int | None = None,
        data: Any = None,
        endpoint: str | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status = status
        self.code = code
        self.data = data
        self.endpoint = endpoint
        self.retry_after_seconds = retry_after_seconds


class QuoteStaleError(RuntimeError):
    def __init__(self, message: str, *, age_seconds: float) -> None:
        super().__init__(message)
        self.age_seconds = age_seconds


class TransactionFailedError(RuntimeError):
    def __init__(self, message: str, *, signature: str | None = None, err: Any = None) -> None:
        super().__init__(message)
        self.signature = signature
        self.err = err


class TransactionPendingConfirmationError(RuntimeError):
    def __init__(self, message: str, *, signature: str) -> None:
        super().__init__(message)
        self.signature = signature


class ReceiptNotFoundError(LookupError):
    def __init__(self, receipt_id: str) -> None:
        super().__init__(f"Receipt not found: {receipt_id}")
        self.receipt_id = receipt_id


class ReceiptStateError(RuntimeError):
    def __init__(self, message: str, *, receipt_id: str, current_status: str) -> None:
        super().__init__(message)
        self.receipt_id = receipt_id
        self.current_status = current_status


def parse_retry_after_seconds(raw: str | None) -> float | None:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def error_message_from_payload(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message", "details"):
            message = payload.get(key)
            if isinstance(message, dict):
                return error_message_from_payload(message)
            if message:
                return str(message)
    return str(payload)
