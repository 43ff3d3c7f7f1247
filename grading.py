"""
Grade and attainment computations

These run on top of the store: grades are derived from a course's marks and
a grading scale and written back as StudentGrade rows only when a caller
asks for it.
"""

import math
from typing import List, Mapping, NamedTuple, Optional, Sequence, Tuple

from app_logger import get_logger
from schemas import Course, CourseOutcome, GradingScale, Settings, StudentGrade

logger = get_logger("grading")

ACHIEVED = "Achieved"
BELOW_TARGET = "Below Target"
NO_GRADE = "N/A"
DEFAULT_OUTCOME_COUNT = 6


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up, as report percentages are shown."""
    return math.floor(value + 0.5)


class GradeResult(NamedTuple):
    total: float
    average: float
    grade: str
    gpa: float


class OutcomeAttainment(NamedTuple):
    outcome_id: str
    code: str
    description: str
    target: float
    students: int
    attained: int
    percentage: float
    status: str


def default_outcomes(target: float = 70) -> List[CourseOutcome]:
    return [
        CourseOutcome(id=f"co{i}", code=f"CO{i}", description="", target=target)
        for i in range(1, DEFAULT_OUTCOME_COUNT + 1)
    ]


def average_mark(marks: Mapping[str, float], outcomes: Sequence[CourseOutcome]) -> float:
    if not outcomes:
        return 0.0
    return sum(marks.get(o.id, 0) for o in outcomes) / len(outcomes)


def lookup_grade(scale: GradingScale, average: float) -> Tuple[str, float]:
    for band in scale.grades:
        if band.min_marks <= average <= band.max_marks:
            return band.grade, band.points
    return NO_GRADE, 0.0


def calculate_grade(
    marks: Mapping[str, float], course: Optional[Course], scale: Optional[GradingScale]
) -> GradeResult:
    if course is None or scale is None:
        return GradeResult(0, 0, NO_GRADE, 0)
    total = sum(marks.get(o.id, 0) for o in course.outcomes)
    average = average_mark(marks, course.outcomes)
    grade, gpa = lookup_grade(scale, average)
    return GradeResult(total, round(average, 2), grade, gpa)


def grade_student(store, course_id: str, student_id: str, scale_id: str) -> Optional[StudentGrade]:
    """Recompute and store one student's grade; keeps existing remarks."""
    course = store.get_course(course_id)
    scale = store.get_grading_scale(scale_id)
    if course is None or scale is None:
        logger.debug("grade_student: missing course %s or scale %s", course_id, scale_id)
        return None
    row = next((m for m in course.students if m.student_id == student_id), None)
    if row is None:
        return None

    result = calculate_grade(row.marks, course, scale)
    existing = store.get_student_grade(student_id, course_id)
    grade = StudentGrade(
        student_id=student_id,
        course_id=course_id,
        total_marks=result.average,
        grade=result.grade,
        gpa=result.gpa,
        remarks=existing.remarks if existing else "",
    )
    store.add_student_grade(grade)
    return grade


def grade_course(store, course_id: str, scale_id: str) -> List[StudentGrade]:
    course = store.get_course(course_id)
    if course is None or store.get_grading_scale(scale_id) is None:
        return []
    with store.transaction():
        grades = [grade_student(store, course_id, m.student_id, scale_id) for m in course.students]
    logger.info("Graded %d students in course %s", len(grades), course.code)
    return [g for g in grades if g is not None]


def outcome_attainment(course: Course) -> List[OutcomeAttainment]:
    enrolled = len(course.students)
    results = []
    for outcome in course.outcomes:
        attained = sum(1 for m in course.students if m.marks.get(outcome.id, 0) >= outcome.target)
        percentage = attained / enrolled * 100 if enrolled else 0.0
        results.append(
            OutcomeAttainment(
                outcome_id=outcome.id,
                code=outcome.code,
                description=outcome.description,
                target=outcome.target,
                students=enrolled,
                attained=attained,
                percentage=percentage,
                status=ACHIEVED if percentage >= outcome.target else BELOW_TARGET,
            )
        )
    return results


def overall_attainment(course: Course) -> float:
    rows = outcome_attainment(course)
    if not rows:
        return 0.0
    return round_half_up(sum(r.percentage for r in rows) / len(rows))


def total_weightage(course: Course) -> float:
    return sum(a.weightage for a in course.assessments)


def weightage_complete(course: Course) -> bool:
    # Assessment weightages are expected to add up to 100 but never enforced
    return abs(total_weightage(course) - 100) < 1e-9


def final_percentage(cie: float, see: float, settings: Settings) -> float:
    """Combine CIE and SEE percentages using the configured weightages."""
    return cie * settings.cie_weightage / 100 + see * settings.see_weightage / 100
