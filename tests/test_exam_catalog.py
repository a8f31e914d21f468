from __future__ import annotations

import json

import pytest

from cbt_app.core.exam_catalog import ExamCatalog, ExamCatalogError, ExamNotFoundError
from conftest import make_exam


def _write(directory, filename, data):
    path = directory / filename
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


def test_manifest_lists_every_readable_exam(exams_dir):
    _write(exams_dir, "MATH-JSS1-T1.json", make_exam())
    inactive = make_exam(exam_id="ENG-JSS2-T1")
    inactive["metadata"]["class"] = "JSS2"
    inactive["active"] = False
    _write(exams_dir, "ENG-JSS2-T1.json", inactive)
    _write(exams_dir, "broken.json", "{nope")

    exams = ExamCatalog(exams_dir).list_exams()

    assert [exam.to_dict() for exam in exams] == [
        {"id": "ENG-JSS2-T1", "title": "First Term Mathematics", "subject": "Mathematics", "class": "JSS2", "active": False, "filename": "ENG-JSS2-T1.json"},
        {"id": "MATH-JSS1-T1", "title": "First Term Mathematics", "subject": "Mathematics", "class": "JSS1", "active": True, "filename": "MATH-JSS1-T1.json"},
    ]


def test_missing_directory_lists_nothing(tmp_path):
    assert ExamCatalog(tmp_path / "absent").list_exams() == []


def test_exams_for_class_only_returns_active_matches(exams_dir):
    _write(exams_dir, "a.json", make_exam(exam_id="A"))
    hidden = make_exam(exam_id="B")
    hidden["active"] = False
    _write(exams_dir, "b.json", hidden)
    catalog = ExamCatalog(exams_dir)

    assert [exam.exam_id for exam in catalog.exams_for_class("JSS1")] == ["A"]
    assert catalog.exams_for_class("SS3") == []
    assert catalog.exams_for_class("") == []


def test_load_by_id_or_filename(exams_dir):
    _write(exams_dir, "MATH-JSS1-T1.json", make_exam())
    catalog = ExamCatalog(exams_dir)
    assert catalog.load_exam("MATH-JSS1-T1")["examId"] == "MATH-JSS1-T1"
    assert catalog.load_exam("MATH-JSS1-T1.json")["examId"] == "MATH-JSS1-T1"


def test_load_falls_back_to_exam_id_inside_files(exams_dir):
    _write(exams_dir, "first-term-maths.json", make_exam())
    assert ExamCatalog(exams_dir).load_exam("MATH-JSS1-T1")["metadata"]["subject"] == "Mathematics"


@pytest.mark.parametrize("ref", ["missing", "", "../secrets", "../exams/../x.json"])
def test_unknown_exam_is_not_found(exams_dir, ref):
    with pytest.raises(ExamNotFoundError):
        ExamCatalog(exams_dir).load_exam(ref)


def test_unreadable_exam_raises_catalog_error(exams_dir):
    _write(exams_dir, "broken.json", "{nope")
    with pytest.raises(ExamCatalogError) as excinfo:
        ExamCatalog(exams_dir).load_exam("broken")
    assert not isinstance(excinfo.value, ExamNotFoundError)
