"""Best-effort telemetry to the admin server (students today, pending syncs)."""

from __future__ import annotations

import logging
from threading import Thread
from typing import Any, Callable

import httpx

from cbt_app.constants.network_constants import (
    ACTIVITY_PATH,
    STATUS_PATH,
    TELEMETRY_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

Dispatcher = Callable[[Callable[[], None]], None]


def run_in_daemon_thread(task: Callable[[], None]) -> None:
    Thread(target=task, name="CbtTelemetry", daemon=True).start()


class ActivityReporter:
    """Posts activity and heartbeat events; failures never reach the exam flow."""

    def __init__(
        self,
        base_url: str | None,
        client: httpx.Client | None = None,
        dispatch: Dispatcher = run_in_daemon_thread,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._client = client or httpx.Client(timeout=TELEMETRY_TIMEOUT_SECONDS)
        self._dispatch = dispatch

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    def report_activity(self, student_name: str, subject: str) -> None:
        self._post(ACTIVITY_PATH, {"studentName": student_name, "subject": subject})

    def report_status(self, pending_syncs: int) -> None:
        self._post(STATUS_PATH, {"pendingSyncs": pending_syncs})

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, body: dict[str, Any]) -> None:
        if not self.enabled:
            return
        url = f"{self._base_url}{path}"

        def send() -> None:
            try:
                self._client.post(url, json=body)
            except httpx.HTTPError as exc:
                logger.debug("Telemetry to %s failed: %s", url, exc)

        self._dispatch(send)
