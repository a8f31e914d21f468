"""Filesystem catalog of exam definition files.

Each exam lives in its own ``<examId>.json`` file inside the exams directory,
the same layout the admin panel writes. The catalog reads the directory on
every call so newly published exams show up without restarting the runner.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ExamCatalogError(Exception):
    """Raised when an exam file exists but cannot be read."""


class ExamNotFoundError(ExamCatalogError):
    """Raised when no exam matches the requested identifier."""


@dataclass(slots=True)
class ExamSummary:
    """Manifest entry shown in the exam picker."""

    exam_id: str
    title: str
    subject: str
    class_name: str
    active: bool
    filename: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.exam_id,
            "title": self.title,
            "subject": self.subject,
            "class": self.class_name,
            "active": self.active,
            "filename": self.filename,
        }


class ExamCatalog:
    """Lists and loads exam definitions from a directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory.resolve()

    def list_exams(self) -> list[ExamSummary]:
        if not self._directory.is_dir():
            logger.warning("Exam directory %s does not exist", self._directory)
            return []
        summaries: list[ExamSummary] = []
        for path in sorted(self._directory.glob("*.json")):
            try:
                data = _read_json(path)
            except ExamCatalogError as exc:
                logger.warning("Skipping %s: %s", path.name, exc)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping %s: not an exam object", path.name)
                continue
            summaries.append(_summarize(path, data))
        return summaries

    def exams_for_class(self, class_name: str) -> list[ExamSummary]:
        """Active exams for one class; an empty class name selects nothing."""
        wanted = class_name.strip()
        if not wanted:
            return []
        return [exam for exam in self.list_exams() if exam.active and exam.class_name.strip() == wanted]

    def load_exam(self, exam_ref: str) -> dict[str, Any]:
        """Load raw exam JSON by id or by filename (``<id>.json``)."""
        path = self._resolve(exam_ref)
        data = _read_json(path)
        if not isinstance(data, dict):
            raise ExamCatalogError(f"{path.name} does not contain an exam object.")
        return data

    def _resolve(self, exam_ref: str) -> Path:
        name = exam_ref.strip()
        if not name:
            raise ExamNotFoundError("No exam specified.")
        filename = name if name.endswith(".json") else f"{name}.json"
        candidate = (self._directory / filename).resolve()
        if candidate.parent != self._directory:
            raise ExamNotFoundError(f"Exam '{exam_ref}' not found.")
        if candidate.is_file():
            return candidate
        # Fall back to matching the examId recorded inside the files.
        for summary in self.list_exams():
            if summary.exam_id == name:
                return self._directory / summary.filename
        raise ExamNotFoundError(f"Exam '{exam_ref}' not found.")


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ExamCatalogError(f"{path.name} is not valid JSON ({exc.msg}).") from exc
    except OSError as exc:
        raise ExamCatalogError(f"{path.name} could not be read.") from exc


def _summarize(path: Path, data: dict[str, Any]) -> ExamSummary:
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return ExamSummary(
        exam_id=str(data.get("examId") or path.stem),
        title=str(metadata.get("title") or path.stem),
        subject=str(metadata.get("subject") or ""),
        class_name=str(metadata.get("class") or ""),
        active=data.get("active") is not False,
        filename=path.name,
    )
