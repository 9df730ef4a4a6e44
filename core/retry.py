"""
Error Classifier & Retry Engine

Decides whether a failed exchange call is worth repeating and how long to wait
before repeating it.

State machine of one logical call:

    ATTEMPTING --success--> SUCCEEDED
        |
        +--failure, unclassified--------------------> FAILED_FINAL (reason = message)
        +--failure, transient, attempts <  max------> RETRYING -> sleep -> ATTEMPTING
        +--failure, transient, attempts >= max------> FAILED_FINAL (reason = prefix + message)

The attempt counter lives on the call's TimeProfile, so the number of attempts
and the phase timings survive every retry.

Classification is a first-match lookup in an ordered table of RetrySignature
entries. Each entry matches on exchange error codes / HTTP statuses and/or on
substrings of the lower-cased message and carries its own backoff:

    bad request            0.1s
    too many requests      1s fixed on every attempt
    getaddrinfo            2s
    socket hang up         2s + 1s per attempt
    unknown error          3s
    recv window            5s
    server / network       10s
    403 block              60s + 1s per attempt

Adapters put exchange-specific signatures (Binance -1015, Kucoin 429000, ...)
in front of the default table.

Usage:
    engine = RetryEngine(ErrorClassifier(extra_signatures=BINANCE_SIGNATURES))
    outcome = await engine.run(lambda: client.request("GET", "/api/v3/account", signed=True), profile)
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from core.config import settings
from core.exceptions import ConnectorError, ExchangeAPIError
from core.logging import get_logger, log_retry
from core.schemas import TimeProfile

logger = get_logger(__name__)

EXCHANGE_PROBLEMS = "Exchange connector | "


class RetryState(str, Enum):
    ATTEMPTING = "ATTEMPTING"
    RETRYING = "RETRYING"
    SUCCEEDED = "SUCCEEDED"
    FAILED_FINAL = "FAILED_FINAL"


# ============================================
# Failure normalization
# ============================================

@dataclass(frozen=True)
class Failure:
    """A failure reduced to what the classifier looks at."""

    code: Optional[str]
    status: Optional[str]
    message: str

    @property
    def lowered(self) -> str:
        return self.message.lower()


def _body_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        for key in ("msg", "message", "retMsg", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def normalize_failure(error: BaseException) -> Failure:
    """
    Extract ``(code, status, message)`` from any exception.

    Exchange-supplied body messages win over the exception text, matching what
    the exchange actually said.
    """
    code = getattr(error, "code", None)
    status = getattr(error, "status", None)
    message = _body_message(getattr(error, "body", None)) or str(error) or error.__class__.__name__
    return Failure(
        code=None if code is None else str(code),
        status=None if status is None else str(status),
        message=message,
    )


# ============================================
# Signatures
# ============================================

DelayFn = Callable[[Failure, int], float]


@dataclass(frozen=True)
class RetrySignature:
    """
    One transient error shape and its backoff.

    Attributes:
        name: Short cause used in log lines
        patterns: Lower-case substrings searched in the message
        codes: Exchange error codes or HTTP statuses (compared as strings)
        delay: Base backoff in seconds
        step: Extra seconds per attempt already made (linear growth)
        delay_fn: Computes the delay instead of ``delay``/``step`` when set
        final: Matching failures are surfaced at once (shadows later entries)
    """

    name: str
    patterns: Tuple[str, ...] = ()
    codes: Tuple[Union[int, str], ...] = ()
    delay: float = 1.0
    step: float = 0.0
    delay_fn: Optional[DelayFn] = field(default=None, compare=False)
    final: bool = False

    def matches(self, failure: Failure) -> bool:
        if self.codes:
            wanted = {str(code) for code in self.codes}
            if failure.code in wanted or failure.status in wanted:
                return True
        lowered = failure.lowered
        return any(pattern in lowered for pattern in self.patterns)

    def backoff(self, attempts: int, failure: Optional[Failure] = None) -> float:
        """Seconds to sleep after attempt number ``attempts`` failed."""
        if self.delay_fn is not None and failure is not None:
            return max(0.0, self.delay_fn(failure, attempts))
        return self.delay + max(attempts - 1, 0) * self.step


DEFAULT_SIGNATURES: Tuple[RetrySignature, ...] = (
    RetrySignature("rest api trading is not enabled", patterns=("rest api trading is not enabled",), delay=10),
    RetrySignature("cannot cancel order", patterns=("can not cancel order, please try again later",), delay=10),
    RetrySignature("unknown error", patterns=("unknown error",), delay=3),
    RetrySignature("request timestamp expired", patterns=("request timestamp expired",), delay=5),
    RetrySignature("recv window", patterns=("recv_window", "outside of the recvwindow"), delay=5),
    RetrySignature("too many visits", patterns=("too many visits",), codes=(429,), delay=1),
    RetrySignature("too many requests", patterns=("too many requests",), delay=1),
    RetrySignature("403 block", codes=(403,), delay=60, step=1),
    RetrySignature("gateway time-out", patterns=("gateway time-out", "gateway timeout"), delay=5),
    RetrySignature("bad request", patterns=("bad request",), delay=0.1),
    RetrySignature("socket hang up", patterns=("socket hang up",), delay=2, step=1),
    RetrySignature("internal system error", patterns=("internal system error",), delay=10),
    RetrySignature("server timeout", patterns=("server timeout", "timeout of 300000ms exceeded"), delay=10),
    RetrySignature("server error", patterns=("server error",), delay=10),
    RetrySignature("possible ip block", patterns=("possible ip block", "forbidden"), delay=10),
    RetrySignature("etimedout", patterns=("etimedout",), delay=10),
    RetrySignature("econnreset", patterns=("econnreset",), delay=10),
    RetrySignature("eai_again", patterns=("eai_again",), delay=10),
    RetrySignature(
        "tls",
        patterns=("client network socket disconnected before secure tls connection was established",),
        delay=10,
    ),
    RetrySignature("getaddrinfo", patterns=("getaddrinfo",), delay=2),
    RetrySignature("fetch failed", patterns=("fetch failed",), delay=5),
    RetrySignature("throttled", patterns=("throttled",), delay=10),
    RetrySignature("overloaded", patterns=("overloaded",), delay=10),
)


def transient_codes(name: str, codes: Iterable[Union[int, str]], delay: float = 1.0) -> RetrySignature:
    """Signature for an exchange's list of retryable error codes."""
    return RetrySignature(name, codes=tuple(codes), delay=delay)


class ErrorClassifier:
    """
    Maps a failure to the first matching RetrySignature.

    Args:
        extra_signatures: Exchange-specific entries checked before the defaults
        signatures: Replace the default table entirely
    """

    def __init__(
        self,
        extra_signatures: Sequence[RetrySignature] = (),
        signatures: Sequence[RetrySignature] = DEFAULT_SIGNATURES
    ):
        self.signatures: List[RetrySignature] = list(extra_signatures) + list(signatures)

    def classify(self, error: BaseException) -> Tuple[Failure, Optional[RetrySignature]]:
        failure = normalize_failure(error)
        # connector-side failures (bad config, unsupported call, queue timeout) are final
        if isinstance(error, ConnectorError) and not isinstance(error, ExchangeAPIError):
            return failure, None
        for signature in self.signatures:
            if signature.matches(failure):
                return failure, signature
        return failure, None


# ============================================
# Engine
# ============================================

@dataclass
class RetryDecision:
    state: RetryState
    delay: float = 0.0
    reason: Optional[str] = None
    signature: Optional[RetrySignature] = None


@dataclass
class RetryOutcome:
    """Terminal result of ``RetryEngine.run``."""

    state: RetryState
    value: Any = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RetryState.SUCCEEDED


class RetryEngine:
    """
    Runs an exchange call, repeating it while its failures are transient.

    Args:
        classifier: ErrorClassifier with the exchange's signature table
        max_retries: Attempt ceiling (MAX_RETRIES setting by default)
        sleep: Awaitable sleep taking seconds (injected in tests)
        connector: Name used in retry log lines
        prefix: Prepended to the reason once the attempts are exhausted
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        max_retries: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        connector: str = "Exchange",
        prefix: str = EXCHANGE_PROBLEMS
    ):
        self.classifier = classifier or ErrorClassifier()
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.sleep = sleep
        self.connector = connector
        self.prefix = prefix

    def decide(self, error: BaseException, attempts: int) -> RetryDecision:
        failure, signature = self.classifier.classify(error)
        if signature is None or signature.final:
            return RetryDecision(RetryState.FAILED_FINAL, reason=failure.message)
        if attempts >= self.max_retries:
            return RetryDecision(
                RetryState.FAILED_FINAL,
                reason=f"{self.prefix}{failure.message}",
                signature=signature,
            )
        return RetryDecision(
            RetryState.RETRYING,
            delay=signature.backoff(attempts, failure),
            signature=signature,
        )

    async def run(
        self,
        call: Callable[[], Awaitable[Any]],
        time_profile: TimeProfile,
        operation: Optional[str] = None,
        on_error: Optional[Callable[[BaseException], Awaitable[None]]] = None
    ) -> RetryOutcome:
        """
        Invoke ``call`` until it succeeds or fails for good.

        ``call`` is re-invoked unchanged on every retry. ``on_error`` sees every
        failure before it is classified (Binance uses it to record IP bans).
        Cancellation is never caught.
        """
        while True:
            try:
                value = await call()
                return RetryOutcome(RetryState.SUCCEEDED, value=value)
            except Exception as error:
                if on_error is not None:
                    await on_error(error)
                decision = self.decide(error, time_profile.attempts)
                if decision.state == RetryState.FAILED_FINAL:
                    if decision.signature is not None:
                        logger.error(
                            f"{self.connector} gave up after {time_profile.attempts} attempts"
                            f"{f' | {operation}' if operation else ''}: {decision.reason}"
                        )
                    return RetryOutcome(RetryState.FAILED_FINAL, reason=decision.reason, error=error)

                log_retry(self.connector, decision.signature.name, decision.delay, time_profile.attempts, operation)
                await self.sleep(decision.delay)
                time_profile.attempts += 1
