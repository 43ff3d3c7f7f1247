"""
Import and export adapters

Marks CSV and attainment report CSV for a single course, and the full JSON
backup of the store. Imports go through the store's normal operations, so
they follow the same keyed-replace rules as interactive edits.
"""

import csv
import io
import json
import math
from typing import Dict, List, Optional, Union

from pydantic import ValidationError

from app_logger import get_logger
from grading import calculate_grade, outcome_attainment, round_half_up
from schemas import Backup, Course, GradingScale, StudentMark

logger = get_logger("transfer")

ID_COLUMNS = ("Student ID", "ID")
NAME_COLUMNS = ("Student Name", "Name")


class TransferError(Exception):
    pass


def _first(row: Dict[str, str], columns) -> str:
    for column in columns:
        value = (row.get(column) or "").strip()
        if value:
            return value
    return ""


def _mark(value: Optional[str]) -> float:
    try:
        mark = float((value or "").strip() or 0)
    except ValueError:
        return 0.0
    return mark if math.isfinite(mark) else 0.0


def parse_marks_csv(text: str, course: Course) -> List[StudentMark]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise TransferError("CSV file is empty")
    headers = [h.strip() for h in reader.fieldnames]
    reader.fieldnames = headers
    if not any(column in headers for column in ID_COLUMNS):
        raise TransferError("CSV needs a 'Student ID' or 'ID' column")

    rows = []
    for line, row in enumerate(reader, start=2):
        student_id = _first(row, ID_COLUMNS)
        if not student_id:
            logger.warning("Skipping marks row %d without a student id", line)
            continue
        marks = {}
        for outcome in course.outcomes:
            value = row.get(outcome.code)
            if value is None:
                value = row.get(f"CO{outcome.code[-1:]}")
            marks[outcome.id] = _mark(value)
        rows.append(StudentMark(student_id=student_id, student_name=_first(row, NAME_COLUMNS), marks=marks))
    return rows


def import_marks_csv(store, course_id: str, text: str) -> int:
    course = store.get_course(course_id)
    if course is None:
        raise TransferError(f"Unknown course {course_id}")
    rows = parse_marks_csv(text, course)
    store.replace_marks(course_id, rows)
    logger.info("Imported marks for %d students into %s", len(rows), course.code)
    return len(rows)


def _write_csv(header, rows) -> str:
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return out.getvalue()


def export_marks_csv(store, course: Course, scale: Optional[GradingScale]) -> str:
    header = ["Student ID", "Student Name", *[o.code for o in course.outcomes], "Average", "Grade"]
    rows = []
    for mark, name in store.roster(course.id):
        result = calculate_grade(mark.marks, course, scale)
        rows.append(
            [
                mark.student_id,
                name,
                *[_format(mark.marks.get(o.id, 0)) for o in course.outcomes],
                _format(result.average),
                result.grade,
            ]
        )
    return _write_csv(header, rows)


def export_attainment_csv(course: Course) -> str:
    header = ["CO", "Description", "Attained", "Total", "Attainment %", "Target %", "Status"]
    rows = [
        [
            row.code,
            row.description or "-",
            row.attained,
            row.students,
            round_half_up(row.percentage),
            _format(row.target),
            "Met" if round_half_up(row.percentage) >= row.target else "Not Met",
        ]
        for row in outcome_attainment(course)
    ]
    return _write_csv(header, rows)


def _format(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def export_backup(store) -> Backup:
    snapshot = store.snapshot()
    return Backup(**{name: getattr(snapshot, name) for name in type(snapshot).model_fields})


def import_backup(store, data: Union[str, bytes, Dict]) -> Dict[str, int]:
    """Re-add every record of a backup document in one transaction.

    Raises TransferError for malformed documents; the store is unchanged
    in that case.
    """
    try:
        if isinstance(data, (str, bytes)):
            data = json.loads(data)
        if not isinstance(data, dict):
            raise TransferError("Backup must be a JSON object")
        backup = Backup.model_validate({k: v for k, v in data.items() if v is not None})
    except (ValueError, RecursionError, ValidationError) as e:
        raise TransferError(f"Invalid backup file: {e}") from e

    with store.transaction():
        for course in backup.courses:
            store.add_course(course)
        for student in backup.students:
            store.add_student(student)
        for record in backup.attendance:
            store.add_attendance(record)
        for scale in backup.grading_scales:
            store.add_grading_scale(scale)
        for grade in backup.student_grades:
            store.add_student_grade(grade)
        if data.get("settings") is not None:
            store.update_settings(**backup.settings.model_dump())

    imported = {
        "courses": len(backup.courses),
        "students": len(backup.students),
        "attendance": len(backup.attendance),
        "gradingScales": len(backup.grading_scales),
        "studentGrades": len(backup.student_grades),
    }
    logger.info("Imported backup from %s: %s", backup.export_date.isoformat(), imported)
    return imported
