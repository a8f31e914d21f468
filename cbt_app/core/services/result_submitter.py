"""Delivery of exam results to the school's webhook, with an offline queue.

The webhook (typically a spreadsheet script) is treated as an opaque sink:
a POST that does not raise counts as delivered, whatever the response says.
Results that exhaust their retries are queued on the device and replayed
later by `process_queue()`; nothing is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import socket
from threading import Lock, Thread, Timer
import time
from typing import Any, Callable
from uuid import uuid4

import httpx

from cbt_app.constants.exam_constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    PENDING_SUBMISSIONS_KEY,
    QUEUE_REPLAY_DELAY_SECONDS,
)
from cbt_app.constants.network_constants import (
    REACHABILITY_TIMEOUT_SECONDS,
    WEBHOOK_TIMEOUT_SECONDS,
)
from cbt_app.core.models import SubmissionOutcome, utc_now_iso
from cbt_app.core.services.activity_reporter import ActivityReporter
from cbt_app.core.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
Transport = Callable[[str, Payload], None]
ReachabilityCheck = Callable[[str], bool]


def generate_submission_id() -> str:
    """Practically unique on one device: millisecond clock plus random suffix."""
    return f"SUB-{int(time.time() * 1000)}-{uuid4().hex[:8].upper()}"


@dataclass(slots=True)
class SubmitterConfig:
    webhook_url: str | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS


@dataclass(slots=True)
class QueuedResult:
    """A result waiting for delivery, remembered with the webhook it was meant for."""

    submission_id: str | None
    webhook_url: str | None
    payload: Payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedResult":
        payload = data.get("payload")
        if not isinstance(payload, dict):
            # Entries written before the webhook was recorded are bare payloads.
            payload = data
        return cls(
            submission_id=payload.get("submissionId"),
            webhook_url=data.get("webhookUrl") or None,
            payload=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "submissionId": self.submission_id,
            "webhookUrl": self.webhook_url,
            "payload": self.payload,
        }


class OfflineQueue:
    """Pending results, stored as one JSON list and keyed by submissionId."""

    def __init__(self, storage: KeyValueStore, key: str = PENDING_SUBMISSIONS_KEY) -> None:
        self._storage = storage
        self._key = key
        self._lock = Lock()
        # Shared by every submitter on this queue so replays never overlap.
        self.replay_lock = Lock()

    def entries(self) -> list[QueuedResult]:
        with self._lock:
            return self._read()

    def add(self, payload: Payload, webhook_url: str | None) -> int:
        entry = QueuedResult(
            submission_id=payload.get("submissionId"),
            webhook_url=webhook_url,
            payload=payload,
        )
        with self._lock:
            queue = [item for item in self._read() if item.submission_id != entry.submission_id]
            queue.append(entry)
            self._write(queue)
            return len(queue)

    def remove(self, submission_id: str | None) -> int:
        with self._lock:
            queue = [item for item in self._read() if item.submission_id != submission_id]
            self._write(queue)
            return len(queue)

    def __len__(self) -> int:
        return len(self.entries())

    def _read(self) -> list[QueuedResult]:
        raw = self._storage.get(self._key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Pending submissions queue is unreadable; starting a new one")
            return []
        if not isinstance(data, list):
            return []
        return [QueuedResult.from_dict(item) for item in data if isinstance(item, dict)]

    def _write(self, queue: list[QueuedResult]) -> None:
        self._storage.set(self._key, json.dumps([item.to_dict() for item in queue]))


class OpaqueTransport:
    """POSTs the payload as text/plain JSON and never inspects the response."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS, follow_redirects=True)

    def __call__(self, url: str, payload: Payload) -> None:
        self._client.post(
            url,
            content=json.dumps(payload),
            headers={"Content-Type": "text/plain;charset=utf-8"},
        )

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    def close(self) -> None:
        self._client.close()


class HostReachability:
    """Cheap reachability check: can a TCP connection to the webhook host be opened?"""

    def __init__(self, timeout: float = REACHABILITY_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout

    def __call__(self, url: str) -> bool:
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            return False
        if not parsed.host:
            return False
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            with socket.create_connection((parsed.host, port), timeout=self._timeout):
                return True
        except OSError:
            return False


class ResultSubmitter:
    """Sends results with bounded retries and queues what could not be sent."""

    def __init__(
        self,
        config: SubmitterConfig,
        queue: OfflineQueue,
        *,
        transport: Transport | None = None,
        is_reachable: ReachabilityCheck | None = None,
        sleep: Callable[[float], None] = time.sleep,
        reporter: ActivityReporter | None = None,
    ) -> None:
        self._config = config
        self._queue = queue
        self._transport = transport or OpaqueTransport()
        self._is_reachable = is_reachable or HostReachability()
        self._sleep = sleep
        self._reporter = reporter

    @property
    def config(self) -> SubmitterConfig:
        return self._config

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def configure(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        if webhook_url:
            self._config.webhook_url = webhook_url
        if max_retries is not None:
            self._config.max_retries = max_retries
        if retry_delay is not None:
            self._config.retry_delay = retry_delay

    def submit(
        self,
        payload: Payload,
        is_retry: bool = False,
        webhook_url: str | None = None,
    ) -> SubmissionOutcome:
        """Deliver to `webhook_url`, or to the configured webhook when none is given."""
        submission_id = payload.get("submissionId")
        webhook_url = webhook_url or self._config.webhook_url
        if not webhook_url:
            return SubmissionOutcome(
                success=False,
                submission_id=submission_id,
                timestamp=utc_now_iso(),
                error="Webhook URL not configured. Results saved locally only.",
            )

        max_retries = max(1, self._config.max_retries)
        last_error: str | None = None
        for attempt in range(1, max_retries + 1):
            try:
                if not self._is_reachable(webhook_url):
                    raise ConnectionError("Network is unreachable")
                self._transport(webhook_url, payload)
            except (httpx.HTTPError, OSError) as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning("Submission attempt %d for %s failed: %s", attempt, submission_id, last_error)
                if attempt < max_retries:
                    self._sleep(self._config.retry_delay)
                continue
            logger.info("Result %s delivered on attempt %d", submission_id, attempt)
            return SubmissionOutcome(
                success=True,
                submission_id=submission_id,
                timestamp=utc_now_iso(),
                pending_count=self.pending_count,
            )

        pending: int | None = None
        if not is_retry:
            logger.info("Submission %s failed; adding to offline queue", submission_id)
            pending = self._queue.add(payload, webhook_url)
            self._report_status(pending)
        return SubmissionOutcome(
            success=False,
            submission_id=submission_id,
            timestamp=utc_now_iso(),
            error=f"Network error after {max_retries} attempts: {last_error or 'Unknown error'}",
            pending_count=pending,
        )

    def process_queue(self) -> int:
        """Replay every queued result once, in order, to the webhook it was meant for.

        Returns how many were delivered.
        """
        with self._queue.replay_lock:
            queue = self._queue.entries()
            if not queue:
                return 0
            logger.info("Processing %d pending submission(s)", len(queue))
            delivered = 0
            for entry in queue:
                outcome = self.submit(entry.payload, is_retry=True, webhook_url=entry.webhook_url)
                if outcome.success:
                    self._queue.remove(entry.submission_id)
                    delivered += 1
            self._report_status(self.pending_count)
            return delivered

    def submit_in_background(
        self,
        payload: Payload,
        on_complete: Callable[[SubmissionOutcome], None] | None = None,
    ) -> Thread:
        """Deliver on a daemon thread so the caller is never blocked by retries."""

        def run() -> None:
            try:
                outcome = self.submit(payload)
            except Exception:
                logger.exception("Unexpected error while submitting %s", payload.get("submissionId"))
                outcome = SubmissionOutcome(
                    success=False,
                    submission_id=payload.get("submissionId"),
                    timestamp=utc_now_iso(),
                    error="Unexpected submission error",
                )
            if on_complete is not None:
                on_complete(outcome)

        thread = Thread(target=run, name="ResultSubmitter", daemon=True)
        thread.start()
        return thread

    def schedule_queue_replay(self, delay: float = QUEUE_REPLAY_DELAY_SECONDS) -> Timer:
        """Replay the queue after `delay` seconds, giving connectivity time to settle."""
        timer = Timer(delay, self._replay_quietly)
        timer.daemon = True
        timer.start()
        return timer

    def _replay_quietly(self) -> None:
        try:
            self.process_queue()
        except Exception:
            logger.exception("Offline queue replay failed")

    def _report_status(self, pending: int) -> None:
        if self._reporter is not None:
            self._reporter.report_status(pending)
