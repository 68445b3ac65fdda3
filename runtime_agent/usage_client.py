# runtime_agent/usage_client.py
"""Agent-side usage tracker: batches usage and reports it to the deployment service."""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class UsageTrackerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    api_base_url: str = "http://localhost:4000"
    deployment_id: Optional[str] = None
    # Owner of the deployment; lets the service attribute usage without a lookup
    user_id: Optional[str] = None
    api_key: Optional[str] = None

    usage_batch_size: int = 10
    usage_batch_interval_seconds: float = 60.0
    usage_max_queue_size: int = 100

    usage_request_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class UsageRecord:
    """Usage of one served request."""
    input_tokens: int
    output_tokens: int
    processing_time_ms: float
    is_error: bool = False


def aggregate_usage(batch: List[UsageRecord]) -> Dict[str, Any]:
    """One record-usage body for a batch: summed tokens, mean latency, any error."""
    if not batch:
        return {"inputTokens": 0, "outputTokens": 0, "latencyMs": 0.0, "isError": False}

    return {
        "inputTokens": sum(r.input_tokens for r in batch),
        "outputTokens": sum(r.output_tokens for r in batch),
        "latencyMs": sum(r.processing_time_ms for r in batch) / len(batch),
        "isError": any(r.is_error for r in batch),
    }


class UsageTracker:
    """
    Queues usage records and sends them in batches.

    A batch is sent when the queue reaches the batch size or when the
    flush interval elapses. A failed send puts the batch back at the
    front of the queue, capped at the max queue size (oldest records are
    dropped). Send failures are logged, never raised, so tracking cannot
    slow down or break request handling.
    """

    def __init__(
        self,
        settings: Optional[UsageTrackerSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or UsageTrackerSettings()
        self._session = session or requests.Session()

        self._queue: List[UsageRecord] = []
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()

        self._wakeup = threading.Event()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def start(self) -> None:
        """Start the background flush thread."""
        if self._thread and self._thread.is_alive():
            return

        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="usage-tracker", daemon=True)
        self._thread.start()
        logger.info(
            f"[usage] tracker started (batch size {self.settings.usage_batch_size}, "
            f"interval {self.settings.usage_batch_interval_seconds}s)"
        )

    def stop(self, flush: bool = True) -> None:
        """Stop the flush thread, sending whatever is queued first."""
        self._stopping.set()
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout=self.settings.usage_request_timeout_seconds + 1)
            self._thread = None
        if flush:
            self.flush()

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._wakeup.wait(self.settings.usage_batch_interval_seconds)
            self._wakeup.clear()
            if self._stopping.is_set():
                break
            self.flush()

    # -------------------------
    # TRACKING
    # -------------------------

    def track_usage(self, record: UsageRecord) -> None:
        with self._lock:
            self._queue.append(record)
            full = len(self._queue) >= self.settings.usage_batch_size

        if full:
            # Send on the flush thread, off the request path
            self._wakeup.set()

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    def flush(self) -> bool:
        """
        Send everything queued as one aggregated call.

        Returns:
            True if the batch was sent (or there was nothing to send)
        """
        if not self.settings.deployment_id:
            logger.warning("[usage] cannot send usage data: DEPLOYMENT_ID not set")
            return False

        with self._send_lock:
            with self._lock:
                batch = self._queue
                self._queue = []

            if not batch:
                return True

            try:
                self._send(aggregate_usage(batch))
                logger.debug(f"[usage] sent usage for {len(batch)} request(s)")
                return True
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status is not None and 400 <= status < 500 and status != 429:
                    # Resending the same body cannot succeed
                    logger.error(f"[usage] usage rejected with {status}; dropping {len(batch)} record(s)")
                    return False
                logger.error(f"[usage] error sending usage data: {e}")
                self._requeue(batch)
                return False
            except requests.RequestException as e:
                logger.error(f"[usage] error sending usage data: {e}")
                self._requeue(batch)
                return False

    def _send(self, body: Dict[str, Any]) -> None:
        if self.settings.user_id:
            body = {**body, "userId": self.settings.user_id}

        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"

        url = (
            f"{self.settings.api_base_url.rstrip('/')}"
            f"/api/deployments/{self.settings.deployment_id}/record-usage"
        )
        response = self._session.post(
            url,
            json=body,
            headers=headers,
            timeout=self.settings.usage_request_timeout_seconds,
        )
        response.raise_for_status()

    def _requeue(self, batch: List[UsageRecord]) -> None:
        limit = self.settings.usage_max_queue_size
        with self._lock:
            self._queue = batch + self._queue
            if len(self._queue) > limit:
                self._queue = self._queue[-limit:]
                logger.warning("[usage] usage queue truncated to prevent memory issues")
