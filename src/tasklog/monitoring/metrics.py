"""Write-outcome metrics for the task log tier chain.

One LogWriter.write call produces one sample group: which tier absorbed
the entry, how many primary attempts it took and how long it ran. Points
are buffered and published to CloudWatch in batches by a background
thread, so a write never waits on CloudWatch.
"""

import atexit, logging, os, threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from tasklog.common.constants import MetricsConstants

logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    TIER_WRITE = "tier_write"
    FALLBACK_WRITE = "fallback_write"
    DROPPED_WRITE = "dropped_write"
    PRIMARY_ATTEMPTS = "primary_attempts"
    WRITE_LATENCY = "write_latency"


@dataclass
class MetricPoint:
    metric_name: str
    value: float
    unit: str = "None"
    dimensions: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_datum(self) -> Dict[str, Any]:
        """Shape expected by put_metric_data."""
        datum: Dict[str, Any] = {
            "MetricName": self.metric_name,
            "Value": self.value,
            "Unit": self.unit,
            "Timestamp": self.timestamp,
        }
        if self.dimensions:
            datum["Dimensions"] = [
                {"Name": name, "Value": str(value)} for name, value in self.dimensions.items()
            ]
        return datum


def _chunks(items: List[Dict[str, Any]], size: int) -> Iterator[List[Dict[str, Any]]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class MetricsCollector:
    """Buffers write-outcome points and publishes them to CloudWatch.

    Safe to share between writer threads; the buffer is swapped out under
    a lock before publishing. Publishing happens on the MetricsFlusher
    thread, woken when batch_size points are waiting or every
    flush_interval seconds.
    """

    DEFAULT_REGION = "us-east-1"
    DEFAULT_NAMESPACE = "TaskLog"

    # put_metric_data accepts at most 20 data points per call
    MAX_BATCH = 20

    def __init__(
        self,
        namespace: Optional[str] = None,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        batch_size: int = 20,
        flush_interval: float = MetricsConstants.FLUSH_INTERVAL_SECONDS,
        shutdown_timeout: float = MetricsConstants.SHUTDOWN_TIMEOUT_SECONDS,
    ):
        self.namespace = namespace or os.environ.get("TASKLOG_CLOUDWATCH_NAMESPACE", self.DEFAULT_NAMESPACE)
        self.region = region or os.environ.get("AWS_DEFAULT_REGION", self.DEFAULT_REGION)
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.shutdown_timeout = shutdown_timeout
        self.metric_buffer: List[MetricPoint] = []
        self._lock = threading.Lock()

        # Metrics are best effort: one short attempt per batch
        self.client_config = BotoConfig(
            retries={"max_attempts": 1, "mode": "standard"},
            connect_timeout=MetricsConstants.CONNECT_TIMEOUT_SECONDS,
            read_timeout=MetricsConstants.READ_TIMEOUT_SECONDS,
        )
        session = boto3.Session(profile_name=aws_profile) if aws_profile else boto3
        self.cloudwatch = session.client("cloudwatch", region_name=self.region, config=self.client_config)

        self._flush_requested = threading.Event()
        self._shutdown_event = threading.Event()
        self._flusher_thread: Optional[threading.Thread] = None
        self._start_flusher()

        atexit.register(self.shutdown)

        logger.info(f"Task log metrics publishing to CloudWatch namespace {self.namespace}")

    def _start_flusher(self) -> None:
        self._flusher_thread = threading.Thread(
            target=self._flusher_loop,
            name="MetricsFlusher",
            daemon=True,
        )
        self._flusher_thread.start()

    def _flusher_loop(self) -> None:
        while not self._shutdown_event.is_set():
            self._flush_requested.wait(timeout=self.flush_interval)
            self._flush_requested.clear()
            if self._shutdown_event.is_set():
                break
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Background metrics flush failed: {e}")

    def record_metric(self, metric: MetricPoint) -> None:
        """Buffer one point; a full batch wakes the flusher thread."""
        with self._lock:
            self.metric_buffer.append(metric)
            full = len(self.metric_buffer) >= self.batch_size
        if full:
            self._flush_requested.set()

    def _count(self, metric_type: MetricType, value: float = 1.0, **dimensions: str) -> None:
        self.record_metric(MetricPoint(metric_type.value, value, "Count", dimensions))

    def record_tier_write(self, tier: str, attempts: int, latency_ms: float) -> None:
        """Record the outcome of one LogWriter.write call.

        Args:
            tier: Tier that stored the entry, or "dropped"
            attempts: Attempts made against the primary tier
            latency_ms: Wall time of the whole write
        """
        self._count(MetricType.TIER_WRITE, tier=tier)
        if tier == "dropped":
            self._count(MetricType.DROPPED_WRITE)
        elif tier != "primary":
            self._count(MetricType.FALLBACK_WRITE, tier=tier)
        self._count(MetricType.PRIMARY_ATTEMPTS, float(attempts))
        self.record_metric(MetricPoint(MetricType.WRITE_LATENCY.value, latency_ms, "Milliseconds"))

    def flush(self) -> None:
        """Publish every buffered point.

        Raises:
            IOError: If CloudWatch rejects a batch; unsent points are dropped.
        """
        with self._lock:
            pending, self.metric_buffer = self.metric_buffer, []
        if not pending:
            return

        data = [point.to_datum() for point in pending]
        try:
            for batch in _chunks(data, self.MAX_BATCH):
                self.cloudwatch.put_metric_data(Namespace=self.namespace, MetricData=batch)
        except ClientError as e:
            logger.error(f"Dropping {len(pending)} task log metrics, CloudWatch rejected them: {e}")
            raise IOError(f"CloudWatch write failed: {e}") from e

        logger.debug(f"Published {len(pending)} task log metrics")

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the flusher thread and publish what is left.

        Args:
            timeout: Maximum time to wait for the flusher. Uses shutdown_timeout if None.
        """
        if self._shutdown_event.is_set():
            return

        timeout = timeout if timeout is not None else self.shutdown_timeout
        self._shutdown_event.set()
        self._flush_requested.set()

        if self._flusher_thread and self._flusher_thread.is_alive():
            self._flusher_thread.join(timeout=timeout)
            if self._flusher_thread.is_alive():
                logger.warning("Metrics flusher did not stop cleanly")

        try:
            self.flush()
        except IOError as e:
            logger.error(f"Final metrics flush failed: {e}")
