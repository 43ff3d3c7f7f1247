"""
Academic record store

Single source of truth for courses, students, attendance, grading scales,
student grades and settings. Collections are keyed by their natural key so
a second add for the same key replaces the first row in place:

    courses, students, grading scales   -> id
    attendance                          -> (student_id, course_id, date)
    student grades                      -> (student_id, course_id)

A course's roster (its StudentMark rows) is the canonical enrollment;
``Student.enrolled_courses`` is kept in sync from it. The canonical student
name is ``Student.name``; roster name snapshots are refreshed on rename.

Every mutation writes the whole snapshot to the backend before returning,
unless it runs inside ``transaction()``, which writes once on exit and
restores the in-memory state if the block raises.
"""

import copy
import functools
import json
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from app_logger import get_logger
from config import Config
from schemas import (
    AttendanceRecord,
    Course,
    GradingScale,
    Settings,
    Snapshot,
    Student,
    StudentGrade,
    StudentMark,
)

logger = get_logger("store")

STATUS_CYCLE = ("present", "absent", "leave")

AttendanceKey = Tuple[str, str, str]
GradeKey = Tuple[str, str]


def _merge(model, fields):
    """Return a re-validated copy of ``model`` with ``fields`` applied."""
    return type(model).model_validate({**model.model_dump(), **fields})


def mutation(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            result = method(self, *args, **kwargs)
            self._commit()
            return result

    return wrapper


class RecordStore:
    def __init__(self, backend, key: str = Config.STORE_KEY):
        self.backend = backend
        self.key = key
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False
        self._reset()

    def _reset(self):
        self._courses: Dict[str, Course] = {}
        self._students: Dict[str, Student] = {}
        self._attendance: Dict[AttendanceKey, AttendanceRecord] = {}
        self._grading_scales: Dict[str, GradingScale] = {}
        self._student_grades: Dict[GradeKey, StudentGrade] = {}
        self.settings = Settings()

    # Persistence

    def _commit(self):
        if self._depth:
            self._dirty = True
        else:
            self.save_to_storage()

    def _capture(self):
        return copy.deepcopy(
            (
                self._courses,
                self._students,
                self._attendance,
                self._grading_scales,
                self._student_grades,
                self.settings,
            )
        )

    def _restore(self, state):
        (
            self._courses,
            self._students,
            self._attendance,
            self._grading_scales,
            self._student_grades,
            self.settings,
        ) = state

    @contextmanager
    def transaction(self):
        """Group mutations into one write; roll back in memory on error."""
        with self._lock:
            saved = self._capture()
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._restore(saved)
                if self._depth == 1:
                    self._dirty = False
                logger.warning("Transaction rolled back")
                raise
            finally:
                self._depth -= 1
            if self._depth == 0 and self._dirty:
                self._dirty = False
                self.save_to_storage()

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                courses=list(self._courses.values()),
                settings=self.settings,
                students=list(self._students.values()),
                attendance=list(self._attendance.values()),
                grading_scales=list(self._grading_scales.values()),
                student_grades=list(self._student_grades.values()),
            )

    def save_to_storage(self) -> None:
        blob = self.snapshot().model_dump_json(by_alias=True).encode("utf-8")
        self.backend.set(self.key, blob)
        logger.debug("Saved snapshot %s (%d bytes)", self.key, len(blob))

    def load_from_storage(self) -> bool:
        """Replace in-memory state with the stored snapshot.

        Returns False and keeps the current state when nothing is stored or
        the stored blob cannot be parsed. Never raises for bad data.
        """
        blob = self.backend.get(self.key)
        if blob is None:
            logger.info("No stored snapshot under %s", self.key)
            return False
        try:
            data = json.loads(blob)
            if not isinstance(data, dict):
                raise ValueError("snapshot is not a JSON object")
            # null top-level keys fall back to defaults like missing ones
            snapshot = Snapshot.model_validate({k: v for k, v in data.items() if v is not None})
        except (ValueError, TypeError, RecursionError):
            logger.exception("Failed to load store from %s", self.key)
            return False

        with self._lock:
            self._apply(snapshot)
        logger.info(
            "Loaded %d courses, %d students, %d attendance records",
            len(self._courses),
            len(self._students),
            len(self._attendance),
        )
        return True

    def _apply(self, snapshot: Snapshot):
        self._reset()
        for course in snapshot.courses:
            self._courses[course.id] = course
        for student in snapshot.students:
            self._students[student.id] = student
        for record in snapshot.attendance:
            self._attendance[(record.student_id, record.course_id, record.date)] = record
        for scale in snapshot.grading_scales:
            self._grading_scales[scale.id] = scale
        for grade in snapshot.student_grades:
            self._student_grades[(grade.student_id, grade.course_id)] = grade
        self.settings = snapshot.settings

    @mutation
    def clear(self):
        self._reset()

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "courses": len(self._courses),
                "students": len(self._students),
                "attendance": len(self._attendance),
                "gradingScales": len(self._grading_scales),
                "studentGrades": len(self._student_grades),
            }

    # Courses

    @mutation
    def add_course(self, course: Course):
        self._courses[course.id] = course

    @mutation
    def update_course(self, course_id: str, **fields):
        course = self._courses.get(course_id)
        if course is None:
            logger.debug("update_course: unknown course %s", course_id)
            return
        fields.pop("id", None)
        previous = {m.student_id for m in course.students}
        self._courses[course_id] = _merge(course, fields)
        if "students" in fields:
            self._sync_enrollment(course_id, previous)

    @mutation
    def delete_course(self, course_id: str):
        course = self._courses.pop(course_id, None)
        if course is None:
            logger.debug("delete_course: unknown course %s", course_id)
            return
        self._attendance = {k: r for k, r in self._attendance.items() if r.course_id != course_id}
        self._student_grades = {k: g for k, g in self._student_grades.items() if g.course_id != course_id}
        for student_id in list(self._students):
            self._unlink(student_id, course_id)

    def get_course(self, course_id: str) -> Optional[Course]:
        return self._courses.get(course_id)

    def list_courses(self) -> List[Course]:
        with self._lock:
            return list(self._courses.values())

    # Enrollment and marks

    def _link(self, student_id: str, course_id: str):
        student = self._students.get(student_id)
        if student is not None and course_id not in student.enrolled_courses:
            self._students[student_id] = student.model_copy(
                update={"enrolled_courses": student.enrolled_courses + [course_id]}
            )

    def _unlink(self, student_id: str, course_id: str):
        student = self._students.get(student_id)
        if student is not None and course_id in student.enrolled_courses:
            self._students[student_id] = student.model_copy(
                update={"enrolled_courses": [c for c in student.enrolled_courses if c != course_id]}
            )

    def _sync_enrollment(self, course_id: str, previous: Iterable[str]):
        current = {m.student_id for m in self._courses[course_id].students}
        for student_id in set(previous) - current:
            self._unlink(student_id, course_id)
        for student_id in current:
            self._link(student_id, course_id)

    def _name_for(self, student_id: str, fallback: Optional[str] = None) -> str:
        student = self._students.get(student_id)
        if student is not None:
            return student.name
        return fallback or student_id

    @mutation
    def enroll_students(self, course_id: str, student_ids: Iterable[str]):
        course = self._courses.get(course_id)
        if course is None:
            logger.debug("enroll_students: unknown course %s", course_id)
            return
        existing = {m.student_id for m in course.students}
        added = []
        for student_id in student_ids:
            if student_id in existing:
                continue
            existing.add(student_id)
            added.append(StudentMark(student_id=student_id, student_name=self._name_for(student_id)))
        if not added:
            return
        self._courses[course_id] = course.model_copy(update={"students": course.students + added})
        for mark in added:
            self._link(mark.student_id, course_id)

    @mutation
    def unenroll_students(self, course_id: str, student_ids: Iterable[str]):
        course = self._courses.get(course_id)
        if course is None:
            logger.debug("unenroll_students: unknown course %s", course_id)
            return
        remove = set(student_ids)
        kept = [m for m in course.students if m.student_id not in remove]
        self._courses[course_id] = course.model_copy(update={"students": kept})
        for student_id in remove:
            self._unlink(student_id, course_id)

    @mutation
    def record_marks(
        self,
        course_id: str,
        student_id: str,
        marks: Mapping[str, float],
        student_name: Optional[str] = None,
    ):
        """Set one student's marks, enrolling them if needed."""
        course = self._courses.get(course_id)
        if course is None:
            logger.debug("record_marks: unknown course %s", course_id)
            return
        rows = list(course.students)
        index = next((i for i, m in enumerate(rows) if m.student_id == student_id), None)
        if student_name is None and index is not None:
            student_name = rows[index].student_name
        mark = StudentMark(
            student_id=student_id,
            student_name=self._name_for(student_id, student_name),
            marks=dict(marks),
        )
        if index is None:
            rows.append(mark)
        else:
            rows[index] = mark
        self._courses[course_id] = course.model_copy(update={"students": rows})
        self._link(student_id, course_id)

    @mutation
    def replace_marks(self, course_id: str, rows: Iterable[StudentMark]):
        """Replace the whole roster of a course (marks import)."""
        course = self._courses.get(course_id)
        if course is None:
            logger.debug("replace_marks: unknown course %s", course_id)
            return
        previous = {m.student_id for m in course.students}
        by_id: Dict[str, StudentMark] = {}
        for row in rows:
            by_id[row.student_id] = row.model_copy(
                update={"student_name": self._name_for(row.student_id, row.student_name)}
            )
        self._courses[course_id] = course.model_copy(update={"students": list(by_id.values())})
        self._sync_enrollment(course_id, previous)

    def roster(self, course_id: str) -> List[Tuple[StudentMark, str]]:
        """Enrolled rows of a course paired with the resolved student name."""
        with self._lock:
            course = self._courses.get(course_id)
            if course is None:
                return []
            return [(m, self._name_for(m.student_id, m.student_name)) for m in course.students]

    def student_name(self, student_id: str, fallback: str = "") -> str:
        student = self._students.get(student_id)
        return student.name if student is not None else fallback

    # Students

    @mutation
    def add_student(self, student: Student):
        # enrolled_courses is derived from the course rosters
        enrolled = [c.id for c in self._courses.values() if any(m.student_id == student.id for m in c.students)]
        self._students[student.id] = student.model_copy(update={"enrolled_courses": enrolled})
        if enrolled:
            self._refresh_names(student.id)

    @mutation
    def update_student(self, student_id: str, **fields):
        student = self._students.get(student_id)
        if student is None:
            logger.debug("update_student: unknown student %s", student_id)
            return
        fields.pop("id", None)
        if fields.pop("enrolled_courses", None) is not None:
            logger.debug("update_student: ignoring enrolled_courses, use enroll_students")
        updated = _merge(student, fields)
        self._students[student_id] = updated
        if updated.name != student.name:
            self._refresh_names(student_id)

    def _refresh_names(self, student_id: str):
        name = self._students[student_id].name
        for course_id, course in list(self._courses.items()):
            if any(m.student_id == student_id and m.student_name != name for m in course.students):
                rows = [
                    m.model_copy(update={"student_name": name}) if m.student_id == student_id else m
                    for m in course.students
                ]
                self._courses[course_id] = course.model_copy(update={"students": rows})

    @mutation
    def delete_student(self, student_id: str):
        if self._students.pop(student_id, None) is None:
            logger.debug("delete_student: unknown student %s", student_id)
            return
        self._attendance = {k: r for k, r in self._attendance.items() if r.student_id != student_id}
        self._student_grades = {k: g for k, g in self._student_grades.items() if g.student_id != student_id}
        for course_id, course in list(self._courses.items()):
            if any(m.student_id == student_id for m in course.students):
                rows = [m for m in course.students if m.student_id != student_id]
                self._courses[course_id] = course.model_copy(update={"students": rows})

    def get_student(self, student_id: str) -> Optional[Student]:
        return self._students.get(student_id)

    def list_students(self) -> List[Student]:
        with self._lock:
            return list(self._students.values())

    # Attendance

    @mutation
    def add_attendance(self, record: AttendanceRecord):
        self._attendance[(record.student_id, record.course_id, record.date)] = record

    def get_attendance(self, course_id: str, student_id: Optional[str] = None) -> List[AttendanceRecord]:
        with self._lock:
            return [
                r
                for r in self._attendance.values()
                if r.course_id == course_id and (student_id is None or r.student_id == student_id)
            ]

    def get_student_attendance(self, student_id: str) -> List[AttendanceRecord]:
        with self._lock:
            return [r for r in self._attendance.values() if r.student_id == student_id]

    def get_attendance_map(self, course_id: str, date: str) -> Dict[str, str]:
        with self._lock:
            return {
                r.student_id: r.status
                for r in self._attendance.values()
                if r.course_id == course_id and r.date == date
            }

    @mutation
    def set_attendance_for(self, course_id: str, date: str, statuses: Mapping[str, str]):
        """Replace every record of (course_id, date) with ``statuses``."""
        fresh = [
            AttendanceRecord(student_id=student_id, course_id=course_id, date=date, status=status)
            for student_id, status in statuses.items()
        ]
        self._attendance = {
            k: r for k, r in self._attendance.items() if not (r.course_id == course_id and r.date == date)
        }
        for record in fresh:
            self._attendance[(record.student_id, course_id, date)] = record

    @mutation
    def toggle_attendance(self, student_id: str, course_id: str, date: str) -> str:
        key = (student_id, course_id, date)
        current = self._attendance.get(key)
        if current is None:
            self._attendance[key] = AttendanceRecord(
                student_id=student_id, course_id=course_id, date=date, status="present"
            )
            return "present"
        status = STATUS_CYCLE[(STATUS_CYCLE.index(current.status) + 1) % len(STATUS_CYCLE)]
        self._attendance[key] = current.model_copy(update={"status": status})
        return status

    # Grading scales

    @mutation
    def add_grading_scale(self, scale: GradingScale):
        self._grading_scales[scale.id] = scale

    @mutation
    def update_grading_scale(self, scale_id: str, **fields):
        scale = self._grading_scales.get(scale_id)
        if scale is None:
            logger.debug("update_grading_scale: unknown scale %s", scale_id)
            return
        fields.pop("id", None)
        self._grading_scales[scale_id] = _merge(scale, fields)

    @mutation
    def delete_grading_scale(self, scale_id: str):
        self._grading_scales.pop(scale_id, None)

    def get_grading_scale(self, scale_id: str) -> Optional[GradingScale]:
        return self._grading_scales.get(scale_id)

    def list_grading_scales(self) -> List[GradingScale]:
        with self._lock:
            return list(self._grading_scales.values())

    # Student grades

    @mutation
    def add_student_grade(self, grade: StudentGrade):
        self._student_grades[(grade.student_id, grade.course_id)] = grade

    @mutation
    def update_student_grade(self, student_id: str, course_id: str, **fields):
        key = (student_id, course_id)
        grade = self._student_grades.get(key)
        if grade is None:
            logger.debug("update_student_grade: no grade for %s in %s", student_id, course_id)
            return
        fields.pop("student_id", None)
        fields.pop("course_id", None)
        self._student_grades[key] = _merge(grade, fields)

    def get_student_grade(self, student_id: str, course_id: str) -> Optional[StudentGrade]:
        return self._student_grades.get((student_id, course_id))

    def list_student_grades(
        self, course_id: Optional[str] = None, student_id: Optional[str] = None
    ) -> List[StudentGrade]:
        with self._lock:
            return [
                g
                for g in self._student_grades.values()
                if (course_id is None or g.course_id == course_id)
                and (student_id is None or g.student_id == student_id)
            ]

    # Settings

    @mutation
    def update_settings(self, **fields):
        self.settings = _merge(self.settings, fields)
