import json

import pytest

import transfer
from schemas import Course, CourseOutcome, Student, StudentMark
from store import RecordStore


MARKS_CSV = """Student ID,Student Name,CO1,CO2
s1,Ada L,85,abc
ext-7,Visiting Student,40,
,Nameless,10,10
"""


def test_parse_marks_csv(course):
    rows = transfer.parse_marks_csv(MARKS_CSV, course)
    assert [r.student_id for r in rows] == ["s1", "ext-7"]
    assert rows[0].marks == {"co1": 85, "co2": 0}
    assert rows[1].student_name == "Visiting Student"


def test_parse_marks_csv_alternate_headers(course):
    rows = transfer.parse_marks_csv("ID , Name,CO1\nr9,Bob,77\n", course)
    assert rows[0].student_id == "r9"
    assert rows[0].student_name == "Bob"
    assert rows[0].marks == {"co1": 77, "co2": 0}


def test_parse_marks_csv_falls_back_to_last_character(course):
    renamed = course.model_copy(update={"outcomes": [course.outcomes[0].model_copy(update={"code": "OUT1"})]})
    rows = transfer.parse_marks_csv("ID,CO1\nx,64\n", renamed)
    assert rows[0].marks == {"co1": 64}


def test_parse_marks_csv_rejects_bad_files(course):
    with pytest.raises(transfer.TransferError):
        transfer.parse_marks_csv("", course)
    with pytest.raises(transfer.TransferError):
        transfer.parse_marks_csv("Name,CO1\nAda,50\n", course)


def test_import_marks_replaces_roster(seeded):
    seeded.enroll_students("c1", ["s2"])
    assert transfer.import_marks_csv(seeded, "c1", MARKS_CSV) == 2
    roster = seeded.roster("c1")
    assert [(m.student_id, name) for m, name in roster] == [("s1", "Ada"), ("ext-7", "Visiting Student")]
    assert seeded.get_student("s2").enrolled_courses == []
    assert seeded.get_student("s1").enrolled_courses == ["c1"]


def test_import_marks_unknown_course(store):
    with pytest.raises(transfer.TransferError):
        transfer.import_marks_csv(store, "nope", MARKS_CSV)


def test_export_marks_csv(seeded, scale):
    seeded.record_marks("c1", "s1", {"co1": 95, "co2": 90})
    seeded.record_marks("c1", "s2", {"co1": 20.5})
    text = transfer.export_marks_csv(seeded, seeded.get_course("c1"), scale)
    lines = text.splitlines()
    assert lines[0] == '"Student ID","Student Name","CO1","CO2","Average","Grade"'
    assert lines[1] == '"s1","Ada","95","90","92.5","A+"'
    assert lines[2] == '"s2","Grace","20.5","0","10.25","F"'


def test_export_attainment_csv(seeded):
    seeded.record_marks("c1", "s1", {"co1": 95, "co2": 50})
    seeded.record_marks("c1", "s2", {"co1": 60, "co2": 65})
    lines = transfer.export_attainment_csv(seeded.get_course("c1")).splitlines()
    assert lines[0] == '"CO","Description","Attained","Total","Attainment %","Target %","Status"'
    assert lines[1] == '"CO1","-","1","2","50","70","Not Met"'
    assert lines[2] == '"CO2","-","1","2","50","60","Not Met"'


def test_backup_round_trip_into_empty_store(seeded, backend):
    seeded.enroll_students("c1", ["s1"])
    seeded.toggle_attendance("s1", "c1", "2024-02-01")
    backup = transfer.export_backup(seeded)
    document = backup.model_dump_json(by_alias=True)
    assert "exportDate" in json.loads(document)

    from store import RecordStore
    from database import MemoryBackend

    target = RecordStore(MemoryBackend())
    imported = transfer.import_backup(target, document)
    assert imported["courses"] == 1
    assert imported["students"] == 2
    assert target.snapshot() == seeded.snapshot()


def test_repeated_backup_import_does_not_duplicate(seeded):
    document = transfer.export_backup(seeded).model_dump_json(by_alias=True)
    transfer.import_backup(seeded, document)
    transfer.import_backup(seeded, document)
    assert seeded.counts()["students"] == 2
    assert seeded.counts()["courses"] == 1


def test_malformed_backup_leaves_store_unchanged(seeded):
    before = seeded.snapshot()
    with pytest.raises(transfer.TransferError):
        transfer.import_backup(seeded, "{broken")
    with pytest.raises(transfer.TransferError):
        transfer.import_backup(seeded, "[1, 2]")
    with pytest.raises(transfer.TransferError):
        transfer.import_backup(seeded, {"students": [{"id": "x"}]})
    assert seeded.snapshot() == before


def test_backup_import_accepts_partial_documents(store):
    transfer.import_backup(store, {"students": [{"id": "s5", "rollNumber": "R5", "name": "Ken"}]})
    assert store.get_student("s5") == Student(
        id="s5", roll_number="R5", name="Ken", created_at=store.get_student("s5").created_at
    )
    assert store.settings.target_percentage == 70


def test_import_non_finite_marks_as_zero(seeded, backend):
    text = "Student ID,Student Name,CO1,CO2\ns1,Ada,NaN,50\ns2,Grace,1e999,-inf\n"
    transfer.import_marks_csv(seeded, "c1", text)
    rows = {m.student_id: m.marks for m in seeded.get_course("c1").students}
    assert rows == {"s1": {"co1": 0, "co2": 50}, "s2": {"co1": 0, "co2": 0}}

    fresh = RecordStore(backend, "autom8-store")
    assert fresh.load_from_storage() is True
    assert fresh.snapshot() == seeded.snapshot()


def test_export_attainment_csv_rounds_half_up(store):
    store.add_course(
        Course(
            id="c9",
            code="CS900",
            name="Seminar",
            outcomes=[CourseOutcome(id="o1", code="CO1", target=13)],
            students=[StudentMark(student_id=f"s{i}", marks={"o1": 90 if i == 0 else 0}) for i in range(8)],
        )
    )
    lines = transfer.export_attainment_csv(store.get_course("c9")).splitlines()
    assert lines[1] == '"CO1","-","1","8","13","13","Met"'
