"""Log Writer - Ordered tier chain with retry on the primary tier.

A write walks the configured tiers in order and stops at the first one
that accepts the record. Only the first tier is retried, with
exponential backoff, and only for transient failures. The writer never
raises: the caller learns which tier holds the record, or that it was
dropped.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from tasklog.audit.schemas import LogEntry, TierResult
from tasklog.audit.store import LogStore, classify_store_error
from tasklog.common.constants import RetryConstants
from tasklog.common.exceptions import ConfigurationError, DuplicateEntryError, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule for the primary tier."""
    max_attempts: int = RetryConstants.MAX_ATTEMPTS
    initial_delay: float = RetryConstants.INITIAL_DELAY_SECONDS
    multiplier: float = RetryConstants.BACKOFF_MULTIPLIER
    max_total_delay: float = RetryConstants.MAX_TOTAL_DELAY_SECONDS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_total_delay < 0:
            raise ConfigurationError("Retry delays must not be negative")

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N (1-based): 0.1s, 0.2s, 0.4s ... by default."""
        return self.initial_delay * (self.multiplier ** (retry_number - 1))


@dataclass
class RetryOutcome:
    stored: Optional[LogEntry]
    attempts: int
    error: Optional[StoreError] = None
    cancelled: bool = False


class RetryingLogStore(LogStore):
    """Decorator that retries transient failures of the wrapped tier.

    Permanent errors are returned on the first attempt. The total time
    spent waiting never exceeds policy.max_total_delay.
    A duplicate-key rejection on a retry means an earlier attempt that
    reported failure was committed, so it counts as success.
    """

    def __init__(
        self,
        inner: LogStore,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self.sleep = sleep

    @property
    def tier(self) -> TierResult:
        return self.inner.tier

    def _wait(self, delay: float, cancel_event: Optional[threading.Event]) -> bool:
        """Sleep for delay; returns False when cancelled during the wait."""
        if cancel_event is not None:
            return not cancel_event.wait(delay)
        self.sleep(delay)
        return True

    def append_with_retry(
        self,
        entry: LogEntry,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetryOutcome:
        waited = 0.0
        attempts = 0
        last_error: Optional[StoreError] = None

        while attempts < self.policy.max_attempts:
            attempts += 1
            try:
                return RetryOutcome(stored=self.inner.append_entry(entry), attempts=attempts)
            except Exception as e:
                last_error = classify_store_error(e, tier=self.inner.name)

            if attempts > 1 and isinstance(last_error, DuplicateEntryError):
                logger.info(
                    f"Entry {entry.id} already stored on {self.inner.name} tier by an earlier attempt"
                )
                return RetryOutcome(stored=entry.model_copy(update={"tier": self.tier}), attempts=attempts)

            if not last_error.transient or attempts >= self.policy.max_attempts:
                break

            delay = min(self.policy.delay_for(attempts), self.policy.max_total_delay - waited)
            if delay <= 0:
                break
            if cancel_event is not None and cancel_event.is_set():
                return RetryOutcome(None, attempts, last_error, cancelled=True)

            logger.info(
                f"Transient failure on {self.inner.name} tier "
                f"(attempt {attempts}/{self.policy.max_attempts}), retrying in {delay:.2f}s: {last_error.message}"
            )
            if not self._wait(delay, cancel_event):
                return RetryOutcome(None, attempts, last_error, cancelled=True)
            waited += delay

        return RetryOutcome(None, attempts, last_error)

    def append_entry(self, entry: LogEntry) -> LogEntry:
        outcome = self.append_with_retry(entry)
        if outcome.stored is None:
            raise outcome.error
        return outcome.stored


@dataclass
class WriteReceipt:
    """What happened to one write; used for telemetry and tests."""
    tier: TierResult
    entry: Optional[LogEntry] = None
    attempts: int = 0
    latency_ms: float = 0.0
    cancelled: bool = False
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.tier != TierResult.DROPPED


class LogWriter:
    """Writes each entry to exactly one tier, escalating on failure.

    Example:
        writer = LogWriter([primary, secondary, file_store, process_store])
        tier = writer.write(entry)
    """

    def __init__(
        self,
        tiers: Sequence[LogStore],
        retry_policy: Optional[RetryPolicy] = None,
        metrics=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the writer.

        Args:
            tiers: Storage tiers in escalation order; the first is retried.
            retry_policy: Backoff schedule for the first tier.
            metrics: Optional MetricsCollector receiving one sample per write.
            sleep: Sleep function used between retries.

        Raises:
            ConfigurationError: If no tiers are given.
        """
        tiers = list(tiers or [])
        if not tiers:
            raise ConfigurationError("LogWriter requires at least one storage tier")
        for store in tiers:
            if not isinstance(store, LogStore):
                raise ConfigurationError(
                    f"Not a LogStore: {store!r}",
                    details={"type": type(store).__name__},
                )

        first = tiers[0]
        if not isinstance(first, RetryingLogStore):
            first = RetryingLogStore(first, retry_policy, sleep=sleep)
        self.tiers: List[LogStore] = [first] + tiers[1:]
        self.metrics = metrics

    @property
    def tier_names(self) -> Tuple[str, ...]:
        return tuple(store.name for store in self.tiers)

    def write(self, entry: LogEntry, cancel_event: Optional[threading.Event] = None) -> TierResult:
        """Persist entry to the first tier that accepts it. Never raises."""
        return self.write_with_receipt(entry, cancel_event).tier

    def write_with_receipt(
        self,
        entry: LogEntry,
        cancel_event: Optional[threading.Event] = None,
    ) -> WriteReceipt:
        started = time.monotonic()
        receipt = WriteReceipt(tier=TierResult.DROPPED)

        try:
            self._walk_tiers(entry, cancel_event, receipt)
        except Exception as e:
            # Bookkeeping faults must not reach the caller either
            logger.critical(f"Task log writer failed unexpectedly: {e}", exc_info=True)
            receipt.tier = TierResult.DROPPED

        receipt.latency_ms = (time.monotonic() - started) * 1000.0

        if receipt.tier == TierResult.DROPPED:
            logger.critical(
                f"Task log entry dropped, all tiers failed: "
                f"task_id={getattr(entry, 'task_id', None)} action={getattr(entry, 'action', None)} "
                f"errors={receipt.errors}"
            )
        elif receipt.tier != TierResult.PRIMARY:
            logger.warning(
                f"Task log entry stored in {receipt.tier.value} tier "
                f"(task_id={entry.task_id}, action={entry.action.value})"
            )

        self._record_metrics(receipt)
        return receipt

    def _walk_tiers(
        self,
        entry: LogEntry,
        cancel_event: Optional[threading.Event],
        receipt: WriteReceipt,
    ) -> None:
        # One id for every attempt and tier, so a retried put is idempotent
        if entry.id is None:
            entry = entry.model_copy(update={"id": uuid4().hex})
        original_error: Optional[str] = entry.original_error

        for index, store in enumerate(self.tiers):
            candidate = entry
            if index > 0 and original_error is not None:
                candidate = entry.model_copy(update={"original_error": original_error})

            try:
                if isinstance(store, RetryingLogStore):
                    outcome = store.append_with_retry(candidate, cancel_event)
                    receipt.attempts = outcome.attempts
                    receipt.cancelled = outcome.cancelled
                    if outcome.stored is None:
                        raise outcome.error
                    stored = outcome.stored
                else:
                    stored = store.append_entry(candidate)
            except Exception as e:
                error = classify_store_error(e, tier=store.name)
                receipt.errors[store.name] = error.message
                if original_error is None:
                    original_error = error.message
                logger.error(f"Task log write to {store.name} tier failed ({error.code}): {error.message}")
                continue

            receipt.tier = stored.tier or store.tier
            receipt.entry = stored
            return

    def _record_metrics(self, receipt: WriteReceipt) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.record_tier_write(
                tier=receipt.tier.value,
                attempts=receipt.attempts,
                latency_ms=receipt.latency_ms,
            )
        except Exception as e:
            logger.warning(f"Failed to record task log metrics: {e}")
