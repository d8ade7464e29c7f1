import pytest

from school_backend.core.exceptions import BatchRejectedError, BusinessRuleError
from school_backend.models.section import SectionRoster
from school_backend.services import rostering


def _entries(db, section_id=None):
    query = db.query(SectionRoster)
    if section_id is not None:
        query = query.filter(SectionRoster.section_id == section_id)
    return query.all()


def test_roster_students_creates_one_entry_per_student(db, make_student, make_section) -> None:
    section = make_section('2024-01', '7')
    students = [make_student(f's{index}@school.edu') for index in range(3)]

    entries = rostering.roster_students(db, section, [student.id for student in students])

    assert len(entries) == 3
    assert {entry.section_id for entry in entries} == {section.id}
    assert {entry.student_user_id for entry in _entries(db)} == {student.id for student in students}


def test_roster_students_rejects_duplicates_as_a_group(db, make_student, make_section) -> None:
    section = make_section('2024-01', '7')
    student = make_student('dup@school.edu')

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.roster_students(db, section, [student.id, student.id])

    assert exception_info.value.buckets['duplicateIds'] == [student.id]
    assert _entries(db) == []


def test_roster_students_reports_every_bucket_and_writes_nothing(
    db, make_student, make_staff, make_section, roster
) -> None:
    section = make_section('2024-01', '7')
    other_section = make_section('2024-02', '7')
    good = make_student('good@school.edu', grade=7)
    wrong_grade = make_student('eighth@school.edu', grade=8)
    rostered = make_student('taken@school.edu', grade=7)
    teacher = make_staff('coach@school.edu')
    roster(rostered, other_section)

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.roster_students(
            db,
            section,
            [good.id, wrong_grade.id, rostered.id, teacher.id, 9999, good.id],
        )

    buckets = exception_info.value.buckets
    assert buckets['duplicateIds'] == [good.id]
    assert buckets['notExistingStudents'] == [teacher.id, 9999]
    assert buckets['incorrectGradeLevel'] == [wrong_grade.id]
    assert buckets['alreadyRosteredStudents'] == [rostered.id]
    assert _entries(db, section.id) == []


def test_student_in_one_section_cannot_be_rostered_into_another(
    db, make_student, make_section, roster
) -> None:
    section_a = make_section('2024-01', '7')
    section_b = make_section('2024-02', '7')
    student = make_student('moving@school.edu')
    roster(student, section_a)

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.roster_students(db, section_b, [student.id])

    assert exception_info.value.buckets['alreadyRosteredStudents'] == [student.id]
    assert len(_entries(db)) == 1


def test_transfer_moves_student_to_destination(db, make_student, make_section, roster) -> None:
    section_a = make_section('2024-01', '7')
    section_b = make_section('2024-02', '7')
    student = make_student('transfer@school.edu')
    roster(student, section_a)

    entries = rostering.transfer_students(db, section_a, section_b, [student.id])

    assert [entry.student_user_id for entry in entries] == [student.id]
    assert _entries(db, section_a.id) == []
    assert [entry.student_user_id for entry in _entries(db, section_b.id)] == [student.id]


def test_transfer_rejects_students_not_in_source_section(db, make_student, make_section, roster) -> None:
    section_a = make_section('2024-01', '7')
    section_b = make_section('2024-02', '7')
    section_c = make_section('2024-03', '7')
    in_a = make_student('in-a@school.edu')
    in_c = make_student('in-c@school.edu')
    roster(in_a, section_a)
    roster(in_c, section_c)

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.transfer_students(db, section_a, section_b, [in_a.id, in_c.id])

    assert exception_info.value.buckets['notRosteredInFromSection'] == [in_c.id]
    assert [entry.student_user_id for entry in _entries(db, section_a.id)] == [in_a.id]
    assert _entries(db, section_b.id) == []


def test_transfer_requires_active_destination(db, make_student, make_section, roster) -> None:
    section_a = make_section('2024-01', '7')
    inactive = make_section('2024-02', '7', is_active=False)
    student = make_student('blocked@school.edu')
    roster(student, section_a)

    with pytest.raises(BusinessRuleError) as exception_info:
        rostering.transfer_students(db, section_a, inactive, [student.id])

    assert exception_info.value.detail == 'Destination section is not active'


def test_transfer_rejects_wrong_grade_for_destination(db, make_student, make_section, roster) -> None:
    section_a = make_section('2024-01', '7')
    eighth = make_section('2024-02', '8')
    student = make_student('seventh@school.edu', grade=7)
    roster(student, section_a)

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.transfer_students(db, section_a, eighth, [student.id])

    assert exception_info.value.buckets['incorrectGradeLevel'] == [student.id]


def test_unroster_skips_unmatched_ids(db, make_student, make_section, roster) -> None:
    section = make_section('2024-01', '7')
    rostered = make_student('here@school.edu')
    elsewhere = make_student('elsewhere@school.edu')
    roster(rostered, section)

    result = rostering.unroster_students(db, section, [rostered.id, elsewhere.id, 4242])

    assert [entry.student_user_id for entry in result.unrostered] == [rostered.id]
    assert result.skipped_student_user_ids == [elsewhere.id, 4242]
    assert _entries(db) == []


def test_roster_rows_from_csv(db, make_student, make_section) -> None:
    section = make_section('2024-01', '7')
    first = make_student('first@school.edu')
    second = make_student('second@school.edu')

    entries = rostering.roster_students_from_rows(
        db,
        section,
        [
            {'email': 'First@School.edu', 'sectionCode': '2024-01'},
            {'email': 'second@school.edu', 'sectionCode': '2024-01'},
        ],
    )

    assert {entry.student_user_id for entry in entries} == {first.id, second.id}


def test_roster_rows_reports_bad_rows(db, make_student, make_section) -> None:
    section = make_section('2024-01', '7')
    make_section('2024-02', '7')
    make_student('ok@school.edu')
    make_student('other@school.edu')
    missing = {'email': '', 'sectionCode': '2024-01'}
    unknown_section = {'email': 'ok@school.edu', 'sectionCode': '9999-99'}
    other_section = {'email': 'other@school.edu', 'sectionCode': '2024-02'}
    unknown_student = {'email': 'ghost@school.edu', 'sectionCode': '2024-01'}

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.roster_students_from_rows(db, section, [missing, unknown_section, other_section, unknown_student])

    buckets = exception_info.value.buckets
    assert buckets['missingEmailSectionCode'] == [missing]
    assert buckets['notExistingSections'] == [unknown_section]
    assert buckets['mismatchedSections'] == [other_section]
    assert buckets['notExistingStudents'] == [unknown_student]
    assert _entries(db) == []


def test_transfer_rejects_duplicate_ids_and_keeps_roster(db, make_student, make_section, roster) -> None:
    section_a = make_section('2024-01', '7')
    section_b = make_section('2024-02', '7')
    student = make_student('twice@school.edu')
    roster(student, section_a)

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.transfer_students(db, section_a, section_b, [student.id, student.id])

    assert exception_info.value.buckets['duplicateIds'] == [student.id]
    assert [entry.student_user_id for entry in _entries(db, section_a.id)] == [student.id]
    assert _entries(db, section_b.id) == []


def test_transfer_requires_different_sections(db, make_student, make_section, roster) -> None:
    section = make_section('2024-01', '7')
    student = make_student('stay@school.edu')
    roster(student, section)

    with pytest.raises(BusinessRuleError) as exception_info:
        rostering.transfer_students(db, section, section, [student.id])

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Source and destination sections must be different'


def test_roster_rows_reports_grade_duplicate_and_rostered_rows(
    db, make_student, make_section, roster
) -> None:
    section = make_section('2024-01', '7')
    other_section = make_section('2024-02', '7')
    make_student('good@school.edu', grade=7)
    make_student('eighth@school.edu', grade=8)
    taken = make_student('taken@school.edu', grade=7)
    roster(taken, other_section)
    good_row = {'email': 'good@school.edu', 'sectionCode': '2024-01'}
    repeated_row = {'email': 'GOOD@school.edu', 'sectionCode': '2024-01'}
    wrong_grade_row = {'email': 'eighth@school.edu', 'sectionCode': '2024-01'}
    rostered_row = {'email': 'taken@school.edu', 'sectionCode': '2024-01'}

    with pytest.raises(BatchRejectedError) as exception_info:
        rostering.roster_students_from_rows(db, section, [good_row, repeated_row, wrong_grade_row, rostered_row])

    buckets = exception_info.value.buckets
    assert buckets['duplicateIds'] == [repeated_row]
    assert buckets['incorrectGradeLevel'] == [wrong_grade_row]
    assert buckets['alreadyRosteredStudents'] == [rostered_row]
    assert _entries(db, section.id) == []
