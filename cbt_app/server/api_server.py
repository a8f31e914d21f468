"""FastAPI server exposing the exam runner to the student's browser page."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel
import uvicorn

from cbt_app.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from cbt_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from cbt_app.core.exam_catalog import ExamCatalogError, ExamNotFoundError
from cbt_app.core.exam_runner import ExamRunner
from cbt_app.core.exam_validator import ExamValidationError
from cbt_app.core.markdown_math_renderer import renderer
from cbt_app.core.models import StudentIdentity, SubmissionType
from cbt_app.core.services.exam_session import ExamSession, SessionStateError, SessionStatus
from cbt_app.core.services.session_store import SnapshotCorruptedError
from cbt_app.core.services.visibility_source import BrowserReportedSource


class StartPayload(BaseModel):
    """Payload schema for the login form that starts an exam."""

    exam_id: str
    name: str
    seat_number: str = ""
    class_name: str = ""
    show_instructions: bool = False


class NavigatePayload(BaseModel):
    index: int


class AnswerPayload(BaseModel):
    """Payload schema for a selected option."""

    question_id: str | int
    option: str


class SignalPayload(BaseModel):
    """Raw browser events forwarded by the page."""

    signal: Literal["visibility", "blur", "fullscreen"]
    hidden: bool | None = None
    fullscreen: bool | None = None


class FullscreenAckPayload(BaseModel):
    granted: bool


def _get_runner_dependency(runner: ExamRunner):
    def dependency() -> ExamRunner:
        return runner

    return dependency


def _session_or_409(runner: ExamRunner) -> ExamSession:
    try:
        return runner.get_session()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _session_view(session: ExamSession, source: BrowserReportedSource) -> dict[str, object]:
    state = session.state
    if state is None:
        return {"status": session.status.value}
    exam = state.exam
    question = session.current_question()
    monitor = session.monitor
    warning = session.last_warning

    question_view: dict[str, object] | None = None
    if question is not None:
        question_view = {
            "question_id": question.question_id,
            "html": renderer.render_fragment(question.text),
            "marks": question.marks,
            "options": [
                {"key": key, "html": renderer.render_inline(question.options[key])}
                for key in question.option_keys()
            ],
            "selected": state.answers.get(question.answer_key),
        }

    return {
        "status": session.status.value,
        "exam": {
            "exam_id": exam.exam_id,
            "title": exam.metadata.title,
            "subject": exam.metadata.subject,
            "class": exam.metadata.class_name,
            "instructions": exam.metadata.instructions,
        },
        "student": state.student.to_dict(),
        "current_index": state.current_index,
        "total_questions": len(exam.questions),
        "question": question_view,
        "answered_ids": [q.question_id for q in exam.questions if state.answers.get(q.answer_key)],
        "answered_count": session.answered_count(),
        "unanswered_count": session.unanswered_count(),
        "time_left": state.time_left,
        "violations": session.violation_count(),
        "violation_threshold": monitor.violation_threshold if monitor else exam.settings.violation_threshold,
        "warning": {"title": warning[0], "message": warning[1]} if warning else None,
        "fullscreen_requested": source.fullscreen_requested,
    }


def _result_view(session: ExamSession) -> dict[str, object]:
    result = session.result
    state = session.state
    if result is None or state is None:
        raise HTTPException(status_code=409, detail="The exam has not been submitted yet.")
    outcome = session.last_outcome
    view: dict[str, object] = {
        "submission_id": result.submission_id,
        "submission_type": result.submission_type.value,
        "student": state.student.name,
        "subject": state.exam.metadata.subject,
        "delivered": outcome.success if outcome else None,
        "show_results": state.exam.settings.show_results,
    }
    if state.exam.settings.show_results:
        view["scoring"] = result.scoring.to_dict()
    else:
        view["message"] = "Your exam has been submitted successfully."
    return view


def create_api_app(runner: ExamRunner) -> FastAPI:
    """Create a FastAPI application wired to the provided exam runner."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    runner_dep = _get_runner_dependency(runner)

    @app.get("/api/health")
    def health(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        return {"status": "ok", "pending_submissions": manager.pending_submissions}

    @app.get("/api/exams")
    def list_exams(
        class_name: str | None = None,
        manager: ExamRunner = Depends(runner_dep),
    ) -> dict[str, object]:
        return {"exams": [exam.to_dict() for exam in manager.list_exams(class_name)]}

    @app.get("/api/exams/{exam_id}")
    def get_exam(exam_id: str, manager: ExamRunner = Depends(runner_dep)) -> dict[str, Any]:
        try:
            return manager.get_exam(exam_id)
        except ExamNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ExamCatalogError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.get("/api/session/resume")
    def get_resume_offer(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        offer = manager.get_resume_offer()
        if offer is None:
            return {"available": False}
        return {
            "available": True,
            "student_name": offer.student_name,
            "subject": offer.subject,
            "label": offer.label,
        }

    @app.post("/api/session/resume")
    def resume_session(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        try:
            session = manager.resume_session()
        except SnapshotCorruptedError as exc:
            raise HTTPException(
                status_code=409,
                detail="Failed to resume exam. Data might be corrupted. Starting new.",
            ) from exc
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_view(session, manager.get_source())

    @app.delete("/api/session/resume", status_code=204)
    def dismiss_resume(manager: ExamRunner = Depends(runner_dep)) -> None:
        try:
            manager.dismiss_resume_offer()
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.post("/api/session/start", status_code=201)
    def start_session(payload: StartPayload, manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        student = StudentIdentity(
            name=payload.name.strip(),
            seat_number=payload.seat_number.strip(),
            class_name=payload.class_name.strip(),
        )
        try:
            session = manager.start_session(
                payload.exam_id, student, show_instructions=payload.show_instructions
            )
        except ExamValidationError as exc:
            raise HTTPException(
                status_code=422,
                detail={"message": str(exc), "errors": [error.to_dict() for error in exc.errors]},
            ) from exc
        except ExamNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ExamCatalogError as exc:
            raise HTTPException(status_code=422, detail=f"Failed to load exam: {exc}") from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_view(session, manager.get_source())

    @app.post("/api/session/begin")
    def begin_session(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        session = _session_or_409(manager)
        try:
            session.begin()
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_view(session, manager.get_source())

    @app.get("/api/session")
    def get_session(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        session = _session_or_409(manager)
        return _session_view(session, manager.get_source())

    @app.post("/api/session/navigate")
    def navigate(payload: NavigatePayload, manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        session = _session_or_409(manager)
        session.go_to(payload.index)
        return _session_view(session, manager.get_source())

    @app.post("/api/session/answer")
    def answer(payload: AnswerPayload, manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        session = _session_or_409(manager)
        try:
            recorded = session.select_option(payload.question_id, payload.option)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        view = _session_view(session, manager.get_source())
        view["recorded"] = recorded
        return view

    @app.post("/api/session/signals")
    def report_signal(payload: SignalPayload, manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        session = _session_or_409(manager)
        source = manager.get_source()
        if payload.signal == "visibility":
            if payload.hidden is None:
                raise HTTPException(status_code=422, detail="'hidden' is required for visibility signals.")
            hidden = payload.hidden
            session.relay_signal(lambda: source.report_visibility(hidden))
        elif payload.signal == "blur":
            session.relay_signal(source.report_blur)
        else:
            if payload.fullscreen is None:
                raise HTTPException(status_code=422, detail="'fullscreen' is required for fullscreen signals.")
            fullscreen = payload.fullscreen
            session.relay_signal(lambda: source.report_fullscreen(fullscreen))
        return _session_view(session, source)

    @app.post("/api/session/fullscreen-ack")
    def acknowledge_fullscreen(
        payload: FullscreenAckPayload,
        manager: ExamRunner = Depends(runner_dep),
    ) -> dict[str, object]:
        session = _session_or_409(manager)
        source = manager.get_source()
        session.relay_signal(lambda: source.acknowledge_fullscreen_request(payload.granted))
        return _session_view(session, source)

    @app.post("/api/session/submit")
    def submit(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        session = _session_or_409(manager)
        if session.status is not SessionStatus.SUBMITTED:
            try:
                session.submit(is_auto=False, submission_type=SubmissionType.MANUAL)
            except SessionStateError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _result_view(session)

    @app.get("/api/session/result")
    def get_result(manager: ExamRunner = Depends(runner_dep)) -> dict[str, object]:
        return _result_view(_session_or_409(manager))

    return app


def run_api_server(
    runner: ExamRunner,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the runner API until interrupted."""
    app = create_api_app(runner)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()
