"""Ordered, data-driven classification of execution errors.

Rules are evaluated top to bottom and the first match wins. Unmatched errors fall
through to a retryable ``UNKNOWN`` transient classification.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Callable

import aiohttp

from .errors import (
    AggregatorError,
    QuoteStaleError,
    TransactionPendingConfirmationError,
)
from .types import ClassifiedError, ErrorCategory

ErrorPredicate = Callable[[BaseException, str], bool]

# Jupiter program codes: 6001 SlippageToleranceExceeded, 6017 ExactOutAmountNotMatched.
SLIPPAGE_CUSTOM_CODES = frozenset({6001, 6017})

_CUSTOM_HEX_PATTERN = re.compile(r"custom program error:\s*0x([0-9a-f]+)", re.IGNORECASE)
_CUSTOM_DICT_PATTERN = re.compile(r"['\"]?custom['\"]?\s*[:=]\s*(\d+)", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class ClassificationRule:
    code: str
    category: ErrorCategory
    predicate: ErrorPredicate
    requires_requote: bool = False


def normalize_error_message(error: BaseException) -> str:
    message = str(error).strip()
    if not message:
        message = type(error).__name__
    return message.lower()


def extract_custom_program_error_code(message: str) -> int | None:
    matched_hex = _CUSTOM_HEX_PATTERN.search(message)
    if matched_hex:
        try:
            return int(matched_hex.group(1), 16)
        except ValueError:
            pass

    matched_dict = _CUSTOM_DICT_PATTERN.search(message)
    if matched_dict:
        try:
            return int(matched_dict.group(1))
        except ValueError:
            pass

    return None


def _error_status(error: BaseException) -> int | None:
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def _matches(pattern: str) -> ErrorPredicate:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda _error, message: compiled.search(message) is not None


def _is_instance(*types: type[BaseException]) -> ErrorPredicate:
    return lambda error, _message: isinstance(error, types)


def _any_of(*predicates: ErrorPredicate) -> ErrorPredicate:
    return lambda error, message: any(predicate(error, message) for predicate in predicates)


def _status_between(low: int, high: int) -> ErrorPredicate:
    def predicate(error: BaseException, _message: str) -> bool:
        status = _error_status(error)
        return status is not None and low <= status <= high

    return predicate


def _aggregator_code(*codes: str) -> ErrorPredicate:
    return lambda error, _message: isinstance(error, AggregatorError) and error.code in codes


def _client_error_status(error: BaseException, message: str) -> bool:
    if _aggregator_code("ROUTE_NOT_FOUND")(error, message):
        return False
    return _status_between(400, 403)(error, message)


def _slippage_program_code(_error: BaseException, message: str) -> bool:
    return extract_custom_program_error_code(message) in SLIPPAGE_CUSTOM_CODES


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    # transient: infrastructure blips, resend or rebuild
    ClassificationRule(
        "CONFIRMATION_TIMEOUT",
        ErrorCategory.TRANSIENT,
        _is_instance(TransactionPendingConfirmationError),
        requires_requote=True,
    ),
    ClassificationRule(
        "BLOCKHASH_EXPIRED",
        ErrorCategory.TRANSIENT,
        _matches(r"blockhash.*expired|block height exceeded"),
        requires_requote=True,
    ),
    ClassificationRule("BLOCKHASH_NOT_FOUND", ErrorCategory.TRANSIENT, _matches(r"blockhash not found")),
    ClassificationRule(
        "TIMEOUT",
        ErrorCategory.TRANSIENT,
        _any_of(
            _is_instance(asyncio.TimeoutError, aiohttp.ServerTimeoutError),
            _matches(r"timed? ?out|etimedout"),
        ),
    ),
    ClassificationRule(
        "CONNECTION_ERROR",
        ErrorCategory.TRANSIENT,
        _any_of(
            _is_instance(aiohttp.ClientConnectionError, ConnectionError),
            _matches(r"connection (refused|reset|error|closed)|econnreset|econnrefused|network error"),
        ),
    ),
    ClassificationRule("NODE_BEHIND", ErrorCategory.TRANSIENT, _matches(r"node is behind|slot.*behind")),
    ClassificationRule(
        "SERVICE_UNAVAILABLE",
        ErrorCategory.TRANSIENT,
        _any_of(
            _status_between(500, 599),
            _matches(r"\b(?:status|http|code)[\s=:]*50[0234]\b|service unavailable|bad gateway|internal server error"),
        ),
    ),
    ClassificationRule("TX_DROPPED", ErrorCategory.TRANSIENT, _matches(r"transaction.*dropped")),
    # rate limits honour upstream Retry-After hints
    ClassificationRule(
        "RATE_LIMITED",
        ErrorCategory.RATE_LIMIT,
        _any_of(
            _status_between(429, 429),
            _matches(r"\b(?:status|http|code)[\s=:]*429\b|rate.?limit|too many requests"),
        ),
    ),
    # program-level slippage failures need fresh pricing even though the program failed
    ClassificationRule(
        "SLIPPAGE_EXCEEDED",
        ErrorCategory.REQUOTE,
        _slippage_program_code,
        requires_requote=True,
    ),
    # fatal: the request can never succeed as given
    ClassificationRule(
        "INSUFFICIENT_FUNDS",
        ErrorCategory.FATAL,
        _matches(r"insufficient (funds|lamports|balance)|no record of a prior credit"),
    ),
    ClassificationRule("INVALID_ACCOUNT", ErrorCategory.FATAL, _matches(r"invalid.*account|account.*not.*found")),
    ClassificationRule("INVALID_MINT", ErrorCategory.FATAL, _matches(r"invalid.*mint")),
    ClassificationRule(
        "TOKEN_ACCOUNT_NOT_INITIALIZED",
        ErrorCategory.FATAL,
        _matches(r"token.*account.*not.*initialized"),
    ),
    ClassificationRule("OWNER_MISMATCH", ErrorCategory.FATAL, _matches(r"owner.*mismatch")),
    ClassificationRule(
        "SIGNATURE_FAILED",
        ErrorCategory.FATAL,
        _matches(r"signature.*verification.*failed|missing signature"),
    ),
    ClassificationRule(
        "INVALID_INSTRUCTION",
        ErrorCategory.FATAL,
        _matches(r"instruction.*error|invalid instruction|malformed|program.*failed|invalid.*param"),
    ),
    ClassificationRule(
        "INVALID_REQUEST",
        ErrorCategory.FATAL,
        _any_of(
            _aggregator_code("INVALID_REQUEST"),
            _client_error_status,
            _matches(r"unauthorized|forbidden|blacklisted"),
        ),
    ),
    # requote: pricing is no longer valid
    ClassificationRule(
        "QUOTE_STALE",
        ErrorCategory.REQUOTE,
        _any_of(_is_instance(QuoteStaleError), _matches(r"quote.*(stale|expired)")),
        requires_requote=True,
    ),
    ClassificationRule(
        "SLIPPAGE_EXCEEDED",
        ErrorCategory.REQUOTE,
        _matches(r"slippage.*exceeded|exact out amount not matched"),
        requires_requote=True,
    ),
    ClassificationRule("PRICE_MOVED", ErrorCategory.REQUOTE, _matches(r"price.*moved"), requires_requote=True),
    ClassificationRule(
        "ROUTE_EXPIRED",
        ErrorCategory.REQUOTE,
        _any_of(_aggregator_code("ROUTE_NOT_FOUND"), _matches(r"route.*expired|no routes? found")),
        requires_requote=True,
    ),
    ClassificationRule(
        "INSUFFICIENT_OUTPUT",
        ErrorCategory.REQUOTE,
        _matches(r"insufficient.*output|liquidity.*insufficient|insufficient liquidity"),
        requires_requote=True,
    ),
)


def _suggested_delay_ms(error: BaseException) -> int | None:
    retry_after_seconds = getattr(error, "retry_after_seconds", None)
    if isinstance(retry_after_seconds, (int, float)) and retry_after_seconds > 0:
        return int(retry_after_seconds * 1000)
    return None


class ErrorClassifier:
    def __init__(self, rules: tuple[ClassificationRule, ...] = DEFAULT_RULES) -> None:
        self._rules = rules

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def classify(self, error: BaseException) -> ClassifiedError:
        message = normalize_error_message(error)
        original_message = str(error) or type(error).__name__

        for rule in self._rules:
            if not rule.predicate(error, message):
                continue
            return ClassifiedError(
                category=rule.category,
                code=rule.code,
                message=original_message,
                retryable=rule.category is not ErrorCategory.FATAL,
                requires_requote=rule.requires_requote,
                suggested_delay_ms=(
                    _suggested_delay_ms(error) if rule.category is ErrorCategory.RATE_LIMIT else None
                ),
            )

        return ClassifiedError(
            category=ErrorCategory.TRANSIENT,
            code="UNKNOWN",
            message=original_message,
            retryable=True,
            requires_requote=False,
        )


_default_classifier = ErrorClassifier()


def classify(error: BaseException) -> ClassifiedError:
    return _default_classifier.classify(error)
