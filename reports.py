"""
Read-only statistics for the dashboard, analytics and performance views.
"""

from typing import Dict, Iterable, List, Optional

from grading import outcome_attainment, round_half_up
from schemas import AttendanceRecord

LOW_ATTENDANCE_PERCENT = 75
LOW_GPA = 2.0


def attendance_summary(records: Iterable[AttendanceRecord]) -> Dict:
    counts = {"present": 0, "absent": 0, "leave": 0}
    for record in records:
        counts[record.status] += 1
    total = sum(counts.values())
    percentage: Optional[float] = round(counts["present"] / total * 100, 1) if total else None
    return {**counts, "total": total, "percentage": percentage}


def course_attendance(store, course_id: str) -> List[Dict]:
    records = store.get_attendance(course_id)
    stats = []
    for mark, name in store.roster(course_id):
        summary = attendance_summary(r for r in records if r.student_id == mark.student_id)
        stats.append({"studentId": mark.student_id, "name": name, **summary})
    return stats


def grade_distribution(store, course_id: str) -> List[Dict]:
    counts: Dict[str, int] = {}
    for grade in store.list_student_grades(course_id=course_id):
        counts[grade.grade] = counts.get(grade.grade, 0) + 1
    return [{"grade": grade, "count": count} for grade, count in counts.items()]


def student_performance(store, student_id: str) -> Optional[Dict]:
    student = store.get_student(student_id)
    if student is None:
        return None

    records = store.get_student_attendance(student_id)
    attendance = []
    for course in store.list_courses():
        summary = attendance_summary(r for r in records if r.course_id == course.id)
        attendance.append({"courseId": course.id, "courseCode": course.code, "courseName": course.name, **summary})

    grades = store.list_student_grades(student_id=student_id)
    gpas = [g.gpa for g in grades]
    return {
        "student": student,
        "attendance": attendance,
        "grades": grades,
        "totalCourses": len(grades),
        "averageGpa": round(sum(gpas) / len(gpas), 2) if gpas else 0,
        "highestGpa": max(gpas) if gpas else 0,
        "lowestGpa": min(gpas) if gpas else 0,
    }


def average_attainment(courses) -> float:
    """Mean over courses of each course's mean outcome attainment."""
    courses = list(courses)
    if not courses:
        return 0
    total = 0.0
    for course in courses:
        rows = outcome_attainment(course)
        total += sum(r.percentage for r in rows) / len(rows) if rows else 0
    return round_half_up(total / len(courses))


def alerts(store) -> List[Dict]:
    found = []
    for student in store.list_students():
        summary = attendance_summary(store.get_student_attendance(student.id))
        if summary["total"] and summary["percentage"] < LOW_ATTENDANCE_PERCENT:
            found.append(
                {
                    "type": "attendance",
                    "severity": "warning",
                    "studentId": student.id,
                    "message": f"{student.name} has low attendance ({summary['percentage']:.1f}%)",
                }
            )
    for grade in store.list_student_grades():
        student = store.get_student(grade.student_id)
        if student is not None and grade.gpa < LOW_GPA:
            found.append(
                {
                    "type": "performance",
                    "severity": "critical",
                    "studentId": student.id,
                    "message": f"{student.name} has low GPA ({grade.gpa:.2f}) in a course",
                }
            )
    return found


def dashboard(store) -> Dict:
    courses = store.list_courses()
    return {
        "totalCourses": len(courses),
        "totalStudents": len(store.list_students()),
        "averageAttainment": average_attainment(courses),
        "counts": store.counts(),
        "alerts": alerts(store),
    }
