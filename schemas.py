"""
Data model for the academic record store

Each Pydantic model is one entity kept by the store. Attributes are
snake_case in Python and serialize to the camelCase keys of the persisted
snapshot (studentId, minMarks, gradingScales, ...). Both spellings are
accepted on input.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AssessmentType = Literal["IAE1", "IAE2", "Assignment"]
AttendanceStatus = Literal["present", "absent", "leave"]


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


class CourseOutcome(Entity):
    id: str
    code: str = Field(..., description="Outcome code e.g., CO1")
    description: str = ""
    target: float = Field(70, ge=0, le=100, description="Target attainment percentage")


class Assessment(Entity):
    id: str
    name: str
    type: AssessmentType
    weightage: float = Field(0, ge=0, le=100)


class StudentMark(Entity):
    student_id: str
    student_name: str = Field("", description="Name snapshot, refreshed when the student is renamed")
    marks: Dict[str, float] = Field(default_factory=dict, description="outcome id -> mark (0-100)")


class Course(Entity):
    id: str
    code: str = Field(..., description="Course code e.g., CS101")
    name: str
    semester: int = Field(1, ge=1)
    outcomes: List[CourseOutcome] = Field(default_factory=list)
    assessments: List[Assessment] = Field(default_factory=list)
    students: List[StudentMark] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class Student(Entity):
    id: str
    roll_number: str
    name: str
    email: str = ""
    phone: str = ""
    enrolled_courses: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class AttendanceRecord(Entity):
    student_id: str
    course_id: str
    date: str = Field(..., description="Calendar day, compared as an exact string")
    status: AttendanceStatus = "present"


class GradeBand(Entity):
    grade: str
    min_marks: float
    max_marks: float
    points: float = 0.0


class GradingScale(Entity):
    id: str
    name: str
    grades: List[GradeBand] = Field(default_factory=list)


class StudentGrade(Entity):
    student_id: str
    course_id: str
    total_marks: float = 0
    grade: str = "N/A"
    gpa: float = 0
    remarks: str = ""


class Settings(Entity):
    target_percentage: float = Field(70, ge=0, le=100)
    cie_weightage: float = Field(40, ge=0, le=100)
    see_weightage: float = Field(60, ge=0, le=100)


class Snapshot(Entity):
    courses: List[Course] = Field(default_factory=list)
    settings: Settings = Field(default_factory=Settings)
    students: List[Student] = Field(default_factory=list)
    attendance: List[AttendanceRecord] = Field(default_factory=list)
    grading_scales: List[GradingScale] = Field(default_factory=list)
    student_grades: List[StudentGrade] = Field(default_factory=list)


class Backup(Snapshot):
    export_date: datetime = Field(default_factory=utcnow)


# Request bodies

class CourseCreate(Entity):
    id: str = Field(default_factory=new_id)
    code: str
    name: str
    semester: int = Field(1, ge=1)
    outcomes: Optional[List[CourseOutcome]] = None
    assessments: List[Assessment] = Field(default_factory=list)


class CourseUpdate(Entity):
    code: Optional[str] = None
    name: Optional[str] = None
    semester: Optional[int] = Field(None, ge=1)
    outcomes: Optional[List[CourseOutcome]] = None
    assessments: Optional[List[Assessment]] = None


class StudentCreate(Entity):
    id: str = Field(default_factory=new_id)
    roll_number: str
    name: str
    email: str = ""
    phone: str = ""


class StudentUpdate(Entity):
    roll_number: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class EnrollmentBody(Entity):
    student_ids: List[str]


class MarksBody(Entity):
    marks: Dict[str, float] = Field(default_factory=dict)
    student_name: Optional[str] = None
    grading_scale_id: Optional[str] = None


class ToggleBody(Entity):
    student_id: str
    course_id: str
    date: str


class GradingScaleCreate(Entity):
    id: str = Field(default_factory=new_id)
    name: str
    grades: List[GradeBand] = Field(default_factory=list)


class GradingScaleUpdate(Entity):
    name: Optional[str] = None
    grades: Optional[List[GradeBand]] = None


class StudentGradeUpdate(Entity):
    total_marks: Optional[float] = None
    grade: Optional[str] = None
    gpa: Optional[float] = None
    remarks: Optional[str] = None


class SettingsUpdate(Entity):
    target_percentage: Optional[float] = Field(None, ge=0, le=100)
    cie_weightage: Optional[float] = Field(None, ge=0, le=100)
    see_weightage: Optional[float] = Field(None, ge=0, le=100)
