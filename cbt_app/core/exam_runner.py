"""Business logic shared between the runner API and the exam session services."""

from __future__ import annotations

import logging
import random
from threading import Lock, Timer
import time
from typing import Any, Callable

from cbt_app.constants.exam_constants import QUEUE_REPLAY_DELAY_SECONDS
from cbt_app.core.exam_catalog import ExamCatalog, ExamSummary
from cbt_app.core.models import StudentIdentity
from cbt_app.core.services.activity_reporter import ActivityReporter
from cbt_app.core.services.countdown import Countdown, CountdownFactory
from cbt_app.core.services.exam_session import ExamSession, SessionStateError, SessionStatus
from cbt_app.core.services.result_submitter import (
    OfflineQueue,
    OpaqueTransport,
    ReachabilityCheck,
    ResultSubmitter,
    SubmitterConfig,
    Transport,
)
from cbt_app.core.services.session_store import ResumeOffer, SessionStore, SnapshotCorruptedError
from cbt_app.core.services.storage import KeyValueStore
from cbt_app.core.services.visibility_source import BrowserReportedSource

logger = logging.getLogger(__name__)


class ExamRunner:
    """Facade for one student workstation: catalog, resume, the live session, and delivery."""

    def __init__(
        self,
        catalog: ExamCatalog,
        storage: KeyValueStore,
        *,
        reporter: ActivityReporter | None = None,
        default_webhook_url: str | None = None,
        transport: Transport | None = None,
        is_reachable: ReachabilityCheck | None = None,
        sleep: Callable[[float], None] = time.sleep,
        countdown_factory: CountdownFactory = Countdown,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        background_delivery: bool = True,
    ) -> None:
        self._lock = Lock()
        self._catalog = catalog
        self._store = SessionStore(storage)
        self._queue = OfflineQueue(storage)
        self._reporter = reporter
        self._default_webhook_url = default_webhook_url
        self._owns_transport = transport is None
        self._transport = transport or OpaqueTransport()
        self._is_reachable = is_reachable
        self._sleep = sleep
        self._countdown_factory = countdown_factory
        self._clock = clock
        self._rng = rng
        self._background_delivery = background_delivery

        self._session: ExamSession | None = None
        self._source: BrowserReportedSource | None = None

    # --- Catalog ---

    def list_exams(self, class_name: str | None = None) -> list[ExamSummary]:
        if class_name is None:
            return self._catalog.list_exams()
        return self._catalog.exams_for_class(class_name)

    def get_exam(self, exam_ref: str) -> dict[str, Any]:
        return self._catalog.load_exam(exam_ref)

    # --- Resume ---

    def get_resume_offer(self) -> ResumeOffer | None:
        with self._lock:
            if self._has_live_session():
                return None
            return self._store.load_for_resume_offer()

    def dismiss_resume_offer(self) -> None:
        with self._lock:
            if self._has_live_session():
                raise SessionStateError("An exam is in progress on this workstation.")
            self._store.clear()

    def resume_session(self) -> ExamSession:
        with self._lock:
            if self._has_live_session():
                raise SessionStateError("An exam is already in progress on this workstation.")
            offer = self._store.load_for_resume_offer()
            if offer is None:
                raise SessionStateError("There is no saved exam to resume.")
            try:
                state = self._store.resume(offer.snapshot)
            except SnapshotCorruptedError:
                logger.exception("Failed to resume saved exam; discarding it")
                self._store.clear()
                raise
            session = self._new_session()
            session.resume(state)
            return session

    # --- Live session ---

    def start_session(
        self,
        exam_ref: str,
        student: StudentIdentity,
        show_instructions: bool = False,
    ) -> ExamSession:
        with self._lock:
            if self._has_live_session():
                raise SessionStateError("An exam is already in progress on this workstation.")
            exam_data = self._catalog.load_exam(exam_ref)
            session = self._new_session()
            try:
                session.start(exam_data, student, show_instructions=show_instructions)
            except Exception:
                self._session = None
                self._source = None
                raise
        self._replay_pending()
        return session

    def get_session(self) -> ExamSession:
        with self._lock:
            if self._session is None:
                raise SessionStateError("No exam has been started on this workstation.")
            return self._session

    def get_source(self) -> BrowserReportedSource:
        with self._lock:
            if self._source is None:
                raise SessionStateError("No exam has been started on this workstation.")
            return self._source

    # --- Offline queue ---

    @property
    def pending_submissions(self) -> int:
        return len(self._queue)

    def process_pending(self, webhook_url: str | None = None) -> int:
        return self._make_submitter(webhook_url).process_queue()

    def schedule_pending_replay(self, delay: float = QUEUE_REPLAY_DELAY_SECONDS) -> Timer | None:
        """Replay queued results after `delay`; each goes to the webhook it was meant for."""
        if not self._queue.entries():
            return None
        return self._make_submitter(None).schedule_queue_replay(delay)

    def close(self) -> None:
        """Release the shared HTTP client, if this runner created it."""
        if self._owns_transport and isinstance(self._transport, OpaqueTransport):
            self._transport.close()

    # --- Helpers ---

    def _replay_pending(self) -> None:
        if not self._queue.entries():
            return
        if self._background_delivery:
            self.schedule_pending_replay(0)
        else:
            self._make_submitter(None).process_queue()

    def _has_live_session(self) -> bool:
        return self._session is not None and self._session.status in (
            SessionStatus.INSTRUCTIONS,
            SessionStatus.IN_PROGRESS,
            SessionStatus.SUBMITTING,
        )

    def _new_session(self) -> ExamSession:
        self._source = BrowserReportedSource()
        self._session = ExamSession(
            self._store,
            self._make_submitter,
            self._source,
            reporter=self._reporter,
            rng=self._rng,
            countdown_factory=self._countdown_factory,
            clock=self._clock,
            background_delivery=self._background_delivery,
        )
        return self._session

    def _make_submitter(self, webhook_url: str | None) -> ResultSubmitter:
        return ResultSubmitter(
            SubmitterConfig(webhook_url=webhook_url or self._default_webhook_url),
            self._queue,
            transport=self._transport,
            is_reachable=self._is_reachable,
            sleep=self._sleep,
            reporter=self._reporter,
        )
