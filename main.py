from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic.alias_generators import to_camel

import grading
import reports
import transfer
from app_logger import get_logger, setup_logging
from config import Config
from database import get_backend
from schemas import (
    AttendanceRecord,
    AttendanceStatus,
    Course,
    CourseCreate,
    CourseUpdate,
    EnrollmentBody,
    GradingScale,
    GradingScaleCreate,
    GradingScaleUpdate,
    MarksBody,
    SettingsUpdate,
    Student,
    StudentCreate,
    StudentGrade,
    StudentGradeUpdate,
    StudentUpdate,
    ToggleBody,
)
from store import RecordStore

setup_logging()
logger = get_logger("api")

app = FastAPI(title="Autom8 Academic Records API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[Config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_store: Optional[RecordStore] = None


def get_store() -> RecordStore:
    global _store
    if _store is None:
        _store = RecordStore(get_backend(), Config.STORE_KEY)
        _store.load_from_storage()
    return _store


# Helpers

def require_course(store: RecordStore, course_id: str) -> Course:
    course = store.get_course(course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def require_student(store: RecordStore, student_id: str) -> Student:
    student = store.get_student(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


def require_scale(store: RecordStore, scale_id: str) -> GradingScale:
    scale = store.get_grading_scale(scale_id)
    if not scale:
        raise HTTPException(status_code=404, detail="Grading scale not found")
    return scale


def csv_response(text: str, filename: str) -> Response:
    return Response(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def attainment_rows(course: Course):
    return [{to_camel(k): v for k, v in row._asdict().items()} for row in grading.outcome_attainment(course)]


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@app.get("/")
def read_root():
    return {"message": "Autom8 Academic Records API"}


@app.get("/health")
def health(store: RecordStore = Depends(get_store)):
    return {
        "status": "ok",
        "backend": type(store.backend).__name__,
        "counts": store.counts(),
        "time": datetime.now(timezone.utc).isoformat(),
    }


# Courses
@app.post("/courses", response_model=Course)
def create_course(payload: CourseCreate, store: RecordStore = Depends(get_store)):
    outcomes = payload.outcomes
    if outcomes is None:
        outcomes = grading.default_outcomes(store.settings.target_percentage)
    course = Course(
        id=payload.id,
        code=payload.code,
        name=payload.name,
        semester=payload.semester,
        outcomes=outcomes,
        assessments=payload.assessments,
    )
    store.add_course(course)
    return course


@app.get("/courses")
def list_courses(store: RecordStore = Depends(get_store)):
    return store.list_courses()


@app.get("/courses/{course_id}", response_model=Course)
def get_course(course_id: str, store: RecordStore = Depends(get_store)):
    return require_course(store, course_id)


@app.patch("/courses/{course_id}", response_model=Course)
def update_course(course_id: str, payload: CourseUpdate, store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    store.update_course(course_id, **payload.model_dump(exclude_unset=True, exclude_none=True))
    return store.get_course(course_id)


@app.delete("/courses/{course_id}")
def delete_course(course_id: str, store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    store.delete_course(course_id)
    return {"message": "Course deleted"}


# Enrollment and marks
@app.post("/courses/{course_id}/enroll", response_model=Course)
def enroll_students(course_id: str, body: EnrollmentBody, store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    store.enroll_students(course_id, body.student_ids)
    return store.get_course(course_id)


@app.post("/courses/{course_id}/unenroll", response_model=Course)
def unenroll_students(course_id: str, body: EnrollmentBody, store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    store.unenroll_students(course_id, body.student_ids)
    return store.get_course(course_id)


@app.get("/courses/{course_id}/roster")
def course_roster(course_id: str, store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    return [
        {"studentId": mark.student_id, "name": name, "marks": mark.marks}
        for mark, name in store.roster(course_id)
    ]


@app.put("/courses/{course_id}/marks/{student_id}")
def record_marks(course_id: str, student_id: str, body: MarksBody, store: RecordStore = Depends(get_store)):
    course = require_course(store, course_id)
    unknown = set(body.marks) - {o.id for o in course.outcomes}
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown outcomes: {', '.join(sorted(unknown))}")
    scale = require_scale(store, body.grading_scale_id) if body.grading_scale_id else None

    with store.transaction():
        store.record_marks(course_id, student_id, body.marks, body.student_name)
        grade = grading.grade_student(store, course_id, student_id, scale.id) if scale else None

    result = grading.calculate_grade(body.marks, store.get_course(course_id), scale)
    return {"studentId": student_id, "average": result.average, "grade": result.grade, "gpa": result.gpa,
            "saved": grade is not None}


@app.post("/courses/{course_id}/marks/import")
def import_marks(course_id: str, file: UploadFile = File(...), store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    raw = file.file.read()
    try:
        count = transfer.import_marks_csv(store, course_id, raw.decode("utf-8"))
    except (transfer.TransferError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=f"Error importing file: {e}")
    return {"message": f"Successfully imported {count} students", "count": count}


@app.get("/courses/{course_id}/marks/export")
def export_marks(course_id: str, scale_id: Optional[str] = None, store: RecordStore = Depends(get_store)):
    course = require_course(store, course_id)
    scale = require_scale(store, scale_id) if scale_id else None
    if not course.students:
        raise HTTPException(status_code=400, detail="No students to export")
    return csv_response(transfer.export_marks_csv(store, course, scale), f"{course.code}_marks_{today()}.csv")


@app.post("/courses/{course_id}/grades")
def grade_course(course_id: str, scale_id: str, store: RecordStore = Depends(get_store)):
    require_course(store, course_id)
    require_scale(store, scale_id)
    return grading.grade_course(store, course_id, scale_id)


@app.get("/courses/{course_id}/attainment")
def course_attainment(course_id: str, store: RecordStore = Depends(get_store)):
    course = require_course(store, course_id)
    return {
        "outcomes": attainment_rows(course),
        "overall": grading.overall_attainment(course),
        "totalWeightage": grading.total_weightage(course),
        "weightageComplete": grading.weightage_complete(course),
    }


@app.get("/courses/{course_id}/attainment/export")
def export_attainment(course_id: str, store: RecordStore = Depends(get_store)):
    course = require_course(store, course_id)
    return csv_response(transfer.export_attainment_csv(course), f"{course.code}_attainment_report_{today()}.csv")


@app.get("/courses/{course_id}/analytics")
def course_analytics(course_id: str, store: RecordStore = Depends(get_store)):
    course = require_course(store, course_id)
    return {
        "attendance": reports.course_attendance(store, course_id),
        "gradeDistribution": reports.grade_distribution(store, course_id),
        "attainment": attainment_rows(course),
        "gpa": [{"studentId": g.student_id, "gpa": g.gpa} for g in store.list_student_grades(course_id=course_id)],
    }


# Students
@app.post("/students", response_model=Student)
def create_student(payload: StudentCreate, store: RecordStore = Depends(get_store)):
    store.add_student(Student(**payload.model_dump()))
    return store.get_student(payload.id)


@app.get("/students")
def list_students(store: RecordStore = Depends(get_store)):
    return store.list_students()


@app.get("/students/{student_id}", response_model=Student)
def get_student(student_id: str, store: RecordStore = Depends(get_store)):
    return require_student(store, student_id)


@app.patch("/students/{student_id}", response_model=Student)
def update_student(student_id: str, payload: StudentUpdate, store: RecordStore = Depends(get_store)):
    require_student(store, student_id)
    store.update_student(student_id, **payload.model_dump(exclude_unset=True, exclude_none=True))
    return store.get_student(student_id)


@app.delete("/students/{student_id}")
def delete_student(student_id: str, store: RecordStore = Depends(get_store)):
    require_student(store, student_id)
    store.delete_student(student_id)
    return {"message": "Student deleted"}


@app.get("/students/{student_id}/performance")
def student_performance(student_id: str, store: RecordStore = Depends(get_store)):
    require_student(store, student_id)
    return reports.student_performance(store, student_id)


# Attendance
@app.post("/attendance", response_model=AttendanceRecord)
def add_attendance(record: AttendanceRecord, store: RecordStore = Depends(get_store)):
    store.add_attendance(record)
    return record


@app.post("/attendance/toggle")
def toggle_attendance(body: ToggleBody, store: RecordStore = Depends(get_store)):
    status = store.toggle_attendance(body.student_id, body.course_id, body.date)
    return {"studentId": body.student_id, "courseId": body.course_id, "date": body.date, "status": status}


@app.get("/attendance/{course_id}")
def list_attendance(course_id: str, student_id: Optional[str] = None, store: RecordStore = Depends(get_store)):
    return store.get_attendance(course_id, student_id)


@app.get("/attendance/{course_id}/{date}")
def attendance_map(course_id: str, date: str, store: RecordStore = Depends(get_store)):
    return store.get_attendance_map(course_id, date)


@app.put("/attendance/{course_id}/{date}")
def set_attendance(
    course_id: str, date: str, statuses: Dict[str, AttendanceStatus], store: RecordStore = Depends(get_store)
):
    store.set_attendance_for(course_id, date, statuses)
    return store.get_attendance_map(course_id, date)


# Grading scales
@app.post("/grading-scales", response_model=GradingScale)
def create_grading_scale(payload: GradingScaleCreate, store: RecordStore = Depends(get_store)):
    scale = GradingScale(**payload.model_dump())
    store.add_grading_scale(scale)
    return scale


@app.get("/grading-scales")
def list_grading_scales(store: RecordStore = Depends(get_store)):
    return store.list_grading_scales()


@app.patch("/grading-scales/{scale_id}", response_model=GradingScale)
def update_grading_scale(scale_id: str, payload: GradingScaleUpdate, store: RecordStore = Depends(get_store)):
    require_scale(store, scale_id)
    store.update_grading_scale(scale_id, **payload.model_dump(exclude_unset=True, exclude_none=True))
    return store.get_grading_scale(scale_id)


@app.delete("/grading-scales/{scale_id}")
def delete_grading_scale(scale_id: str, store: RecordStore = Depends(get_store)):
    require_scale(store, scale_id)
    store.delete_grading_scale(scale_id)
    return {"message": "Grading scale deleted"}


# Student grades
@app.post("/grades", response_model=StudentGrade)
def add_grade(grade: StudentGrade, store: RecordStore = Depends(get_store)):
    store.add_student_grade(grade)
    return grade


@app.get("/grades")
def list_grades(
    course_id: Optional[str] = None, student_id: Optional[str] = None, store: RecordStore = Depends(get_store)
):
    return store.list_student_grades(course_id=course_id, student_id=student_id)


@app.patch("/grades/{student_id}/{course_id}", response_model=StudentGrade)
def update_grade(
    student_id: str, course_id: str, payload: StudentGradeUpdate, store: RecordStore = Depends(get_store)
):
    if store.get_student_grade(student_id, course_id) is None:
        raise HTTPException(status_code=404, detail="Grade not found")
    store.update_student_grade(student_id, course_id, **payload.model_dump(exclude_unset=True, exclude_none=True))
    return store.get_student_grade(student_id, course_id)


# Settings
@app.get("/settings")
def get_settings(store: RecordStore = Depends(get_store)):
    return store.settings


@app.patch("/settings")
def update_settings(payload: SettingsUpdate, store: RecordStore = Depends(get_store)):
    store.update_settings(**payload.model_dump(exclude_unset=True, exclude_none=True))
    return store.settings


# Backup
@app.get("/backup")
def export_backup(store: RecordStore = Depends(get_store)):
    backup = transfer.export_backup(store)
    return Response(
        content=backup.model_dump_json(by_alias=True, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="autom8_backup_{today()}.json"'},
    )


@app.post("/backup")
def import_backup(file: UploadFile = File(...), store: RecordStore = Depends(get_store)):
    raw = file.file.read()
    try:
        imported = transfer.import_backup(store, raw)
    except transfer.TransferError as e:
        raise HTTPException(status_code=400, detail=f"Error importing data: {e}")
    return {"message": "Data imported successfully", "imported": imported}


@app.delete("/data")
def clear_data(store: RecordStore = Depends(get_store)):
    store.clear()
    logger.warning("All data cleared")
    return {"message": "All data cleared"}


# Dashboard
@app.get("/dashboard")
def dashboard(store: RecordStore = Depends(get_store)):
    return reports.dashboard(store)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
