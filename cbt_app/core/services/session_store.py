"""Persistence of the active exam session so a reload can resume it."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any

from cbt_app.constants.exam_constants import ACTIVE_SESSION_KEY, RESULT_BACKUP_KEY_PREFIX
from cbt_app.core.models import SessionState
from cbt_app.core.services.storage import KeyValueStore

logger = logging.getLogger(__name__)


class SnapshotCorruptedError(Exception):
    """Raised when a stored snapshot cannot be turned back into a session."""


@dataclass(slots=True)
class ResumeOffer:
    """Enough of a saved session to ask the student whether to resume it."""

    student_name: str
    subject: str
    snapshot: dict[str, Any]

    @property
    def label(self) -> str:
        return f"{self.student_name} - {self.subject}"


class SessionStore:
    """Single-slot snapshot storage; a new exam overwrites the previous one."""

    def __init__(self, storage: KeyValueStore, key: str = ACTIVE_SESSION_KEY) -> None:
        self._storage = storage
        self._key = key

    def save(self, state: SessionState | None) -> bool:
        """Write the snapshot. Returns False when there is nothing to save."""
        if state is None or state.submitted:
            return False
        self._storage.set(self._key, json.dumps(state.to_snapshot()))
        return True

    def clear(self) -> None:
        self._storage.remove(self._key)

    def has_snapshot(self) -> bool:
        return self._storage.get(self._key) is not None

    def load_for_resume_offer(self) -> ResumeOffer | None:
        raw = self._storage.get(self._key)
        if raw is None:
            return None
        try:
            snapshot = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Saved session is not valid JSON; discarding it")
            self.clear()
            return None

        if not _is_resumable(snapshot):
            logger.warning("Found incomplete or corrupted session; discarding it")
            self.clear()
            return None

        metadata = snapshot["exam"].get("metadata")
        subject = metadata.get("subject") if isinstance(metadata, dict) else None
        return ResumeOffer(
            student_name=snapshot["student"]["name"],
            subject=subject or "Unknown Subject",
            snapshot=snapshot,
        )

    def resume(self, snapshot: dict[str, Any]) -> SessionState:
        """Rebuild the session exactly as saved; the stored paper is authoritative."""
        if not _is_resumable(snapshot):
            raise SnapshotCorruptedError("Snapshot is missing the exam id or student name.")
        try:
            state = SessionState.from_snapshot(snapshot)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SnapshotCorruptedError(f"Snapshot could not be restored: {exc}") from exc
        if not state.exam.questions:
            raise SnapshotCorruptedError("Snapshot does not contain a question paper.")
        if not 0 <= state.current_index < len(state.exam.questions):
            raise SnapshotCorruptedError(
                f"Snapshot points at question {state.current_index + 1} of a "
                f"{len(state.exam.questions)}-question paper."
            )
        return state

    def save_result_backup(self, payload: dict[str, Any]) -> str:
        """Keep a copy of an undelivered result for later recovery by an operator."""
        key = f"{RESULT_BACKUP_KEY_PREFIX}{payload.get('submissionId')}"
        self._storage.set(key, json.dumps(payload))
        logger.info("Result saved locally under %s", key)
        return key

    def result_backups(self) -> list[str]:
        return self._storage.keys(RESULT_BACKUP_KEY_PREFIX)


def _is_resumable(snapshot: object) -> bool:
    if not isinstance(snapshot, dict):
        return False
    exam = snapshot.get("exam")
    student = snapshot.get("student")
    if not isinstance(exam, dict) or not exam.get("examId"):
        return False
    if not isinstance(student, dict):
        return False
    name = student.get("name")
    return isinstance(name, str) and bool(name.strip())
