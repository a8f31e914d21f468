from __future__ import annotations

import json

import pytest

from cbt_app.constants.exam_constants import ACTIVE_SESSION_KEY
from cbt_app.core.exam_catalog import ExamCatalog, ExamNotFoundError
from cbt_app.core.exam_runner import ExamRunner
from cbt_app.core.models import StudentIdentity
from cbt_app.core.services.exam_session import SessionStateError, SessionStatus
from cbt_app.core.services.result_submitter import OpaqueTransport
from cbt_app.core.services.session_store import SnapshotCorruptedError
from conftest import FakeTransport, ManualCountdown, make_exam

STUDENT = StudentIdentity(name="Ada Obi", seat_number="12", class_name="JSS1")


@pytest.fixture
def published(exams_dir):
    (exams_dir / "MATH-JSS1-T1.json").write_text(json.dumps(make_exam()), encoding="utf-8")
    return exams_dir


def test_start_and_submit(runner, published, transport):
    session = runner.start_session("MATH-JSS1-T1", STUDENT)
    assert runner.get_session() is session
    assert runner.get_source() is not None

    session.submit()

    assert session.status is SessionStatus.SUBMITTED
    assert transport.calls[0][0] == "https://hooks.example.test/results"


def test_only_one_live_session(runner, published):
    runner.start_session("MATH-JSS1-T1", STUDENT)
    with pytest.raises(SessionStateError):
        runner.start_session("MATH-JSS1-T1", STUDENT)


def test_new_session_after_submission(runner, published):
    first = runner.start_session("MATH-JSS1-T1", STUDENT)
    first_source = runner.get_source()
    first.submit()

    second = runner.start_session("MATH-JSS1-T1", StudentIdentity(name="Bola"))

    assert second is not first
    assert runner.get_source() is not first_source


def test_failed_start_leaves_no_session(runner, published):
    with pytest.raises(ValueError):
        runner.start_session("MATH-JSS1-T1", StudentIdentity(name=""))
    with pytest.raises(SessionStateError):
        runner.get_session()


def test_unknown_exam(runner, published):
    with pytest.raises(ExamNotFoundError):
        runner.start_session("NOPE", STUDENT)


def test_resume_offer_and_resume(runner, published, memory_store):
    session = runner.start_session("MATH-JSS1-T1", STUDENT)
    session.select_option(1, "B")

    # Simulate a reload: a fresh runner over the same device storage.
    reloaded = ExamRunner(
        ExamCatalog(published),
        memory_store,
        default_webhook_url="https://hooks.example.test/results",
        transport=lambda url, payload: None,
        is_reachable=lambda url: True,
        sleep=lambda seconds: None,
        countdown_factory=ManualCountdown,
        background_delivery=False,
    )
    offer = reloaded.get_resume_offer()
    assert offer.label == "Ada Obi - Mathematics"

    resumed = reloaded.resume_session()
    assert resumed.state.answers == {"1": "B"}
    assert resumed.status is SessionStatus.IN_PROGRESS
    assert reloaded.get_resume_offer() is None


def test_dismissing_the_offer_clears_the_snapshot(runner, memory_store):
    memory_store.set(ACTIVE_SESSION_KEY, json.dumps({"student": {"name": "Ada"}, "exam": {"examId": "X"}, "timeLeft": 10}))
    assert runner.get_resume_offer() is not None

    runner.dismiss_resume_offer()

    assert runner.get_resume_offer() is None
    assert memory_store.get(ACTIVE_SESSION_KEY) is None


def test_corrupted_snapshot_is_discarded_on_resume(runner, memory_store):
    memory_store.set(ACTIVE_SESSION_KEY, json.dumps({"student": {"name": "Ada"}, "exam": {"examId": "X"}}))

    with pytest.raises(SnapshotCorruptedError):
        runner.resume_session()

    assert memory_store.get(ACTIVE_SESSION_KEY) is None


def test_resume_without_snapshot(runner):
    with pytest.raises(SessionStateError):
        runner.resume_session()


def test_class_filtered_listing(runner, published):
    assert [exam.exam_id for exam in runner.list_exams("JSS1")] == ["MATH-JSS1-T1"]
    assert runner.list_exams("SS2") == []
    assert len(runner.list_exams()) == 1


def test_pending_submissions_are_replayed(runner, published, transport):
    transport.failures = 3
    session = runner.start_session("MATH-JSS1-T1", STUDENT)
    session.submit()
    assert runner.pending_submissions == 1

    delivered = runner.process_pending()

    assert delivered == 1
    assert runner.pending_submissions == 0


def test_new_session_start_drains_the_queue(runner, published, transport):
    transport.failures = 3
    first = runner.start_session("MATH-JSS1-T1", STUDENT)
    first.submit()
    assert runner.pending_submissions == 1

    runner.start_session("MATH-JSS1-T1", StudentIdentity(name="Bola"))

    assert runner.pending_submissions == 0
    url, payload = transport.calls[-1]
    assert url == "https://hooks.example.test/results"
    assert payload["submissionId"] == first.result.submission_id


def test_queue_replays_to_the_exam_webhook_without_a_default(exams_dir, memory_store, sleep):
    exam_hook = "https://exam.example.test/hook"
    (exams_dir / "MATH-JSS1-T1.json").write_text(json.dumps(make_exam(webhookUrl=exam_hook)), encoding="utf-8")
    transport = FakeTransport(failures=3)
    runner = ExamRunner(
        ExamCatalog(exams_dir),
        memory_store,
        transport=transport,
        is_reachable=lambda url: True,
        sleep=sleep,
        countdown_factory=ManualCountdown,
        background_delivery=False,
    )
    runner.start_session("MATH-JSS1-T1", STUDENT).submit()
    assert runner.pending_submissions == 1

    timer = runner.schedule_pending_replay(delay=60)
    assert timer is not None
    timer.cancel()

    assert runner.process_pending() == 1
    assert transport.calls[-1][0] == exam_hook
    assert runner.schedule_pending_replay(delay=60) is None


def test_sessions_share_one_transport_that_close_releases(published, memory_store, sleep):
    runner = ExamRunner(
        ExamCatalog(published),
        memory_store,
        default_webhook_url="https://hooks.example.test/results",
        is_reachable=lambda url: False,
        sleep=sleep,
        countdown_factory=ManualCountdown,
        background_delivery=False,
    )
    first = runner.start_session("MATH-JSS1-T1", STUDENT)
    first.submit()
    second = runner.start_session("MATH-JSS1-T1", StudentIdentity(name="Bola"))

    shared = first.submitter.transport
    assert isinstance(shared, OpaqueTransport)
    assert second.submitter.transport is shared
    assert shared.closed is False

    runner.close()

    assert shared.closed is True
