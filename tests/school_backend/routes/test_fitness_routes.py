import pytest
from pydantic import ValidationError

from school_backend.models.fitness import PerformanceType, StudentAssignedPerformanceTest
from school_backend.routes.fitness_routes import CreateAnthroRequest


@pytest.fixture
def mile_run(db):
    performance_type = PerformanceType(name='Mile Run', unit='seconds')
    db.add(performance_type)
    db.commit()
    db.refresh(performance_type)
    return performance_type


def test_anthro_request_requires_a_measurement() -> None:
    with pytest.raises(ValidationError):
        CreateAnthroRequest(teacherUserId=1, studentUserId=2, dateRecorded='2025-09-15')

    with pytest.raises(ValidationError):
        CreateAnthroRequest(teacherUserId=1, studentUserId=2, dateRecorded='2025-09-15', height=-3)


def test_record_and_list_anthro(client, make_staff, make_student) -> None:
    teacher = make_staff('coach@school.edu')
    student = make_student('kid@school.edu')

    created = client.post(
        '/api/fitness-metrics/anthro',
        json={
            'teacherUserId': teacher.id,
            'studentUserId': student.id,
            'dateRecorded': '2025-09-15',
            'height': 150.5,
            'weight': 42.0,
        },
    )
    listed = client.get(f'/api/fitness-metrics/anthro/student/{student.id}')

    assert created.status_code == 201
    assert created.json()['height'] == 150.5
    assert [record['id'] for record in listed.json()] == [created.json()['id']]


def test_record_anthro_requires_existing_teacher(client, make_student) -> None:
    student = make_student('kid@school.edu')
    other_student = make_student('not-a-teacher@school.edu')

    response = client.post(
        '/api/fitness-metrics/anthro',
        json={
            'teacherUserId': other_student.id,
            'studentUserId': student.id,
            'dateRecorded': '2025-09-15',
            'height': 150.5,
        },
    )

    assert response.status_code == 404
    assert response.json()['error'] == f'Teacher with ID {other_student.id} not found'


def test_delete_anthro(client, make_staff, make_student) -> None:
    teacher = make_staff('coach@school.edu')
    student = make_student('kid@school.edu')
    created = client.post(
        '/api/fitness-metrics/anthro',
        json={'teacherUserId': teacher.id, 'studentUserId': student.id, 'dateRecorded': '2025-09-15', 'weight': 40},
    ).json()

    assert client.delete(f"/api/fitness-metrics/anthro/{created['id']}").status_code == 200
    assert client.delete(f"/api/fitness-metrics/anthro/{created['id']}").status_code == 404


def test_performance_types_are_unique(client) -> None:
    first = client.post('/api/fitness-metrics/performance-types', json={'name': 'Push Ups', 'unit': 'reps'})
    second = client.post('/api/fitness-metrics/performance-types', json={'name': 'Push Ups'})

    assert first.status_code == 201
    assert second.status_code == 409
    assert [item['name'] for item in client.get('/api/fitness-metrics/performance-types').json()] == ['Push Ups']


def test_record_performance_grade(client, make_staff, make_student, mile_run) -> None:
    teacher = make_staff('coach@school.edu')
    student = make_student('kid@school.edu')

    response = client.post(
        '/api/fitness-metrics/performance-grades',
        json={
            'performanceTypeId': mile_run.id,
            'teacherUserId': teacher.id,
            'studentUserId': student.id,
            'dateTaken': '2025-10-01',
            'grade': 540,
        },
    )
    grades = client.get(f'/api/fitness-metrics/performance-grades/student/{student.id}').json()

    assert response.status_code == 201
    assert [grade['grade'] for grade in grades] == [540.0]


def test_assign_tests_is_all_or_nothing(client, db, make_staff, make_student, mile_run) -> None:
    teacher = make_staff('coach@school.edu')
    first = make_student('first@school.edu')
    second = make_student('second@school.edu')

    assigned = client.post(
        '/api/fitness-metrics/assigned-tests',
        json={'performanceTypeId': mile_run.id, 'teacherUserId': teacher.id, 'studentUserIds': [first.id]},
    )
    rejected = client.post(
        '/api/fitness-metrics/assigned-tests',
        json={'performanceTypeId': mile_run.id, 'teacherUserId': teacher.id, 'studentUserIds': [second.id, first.id]},
    )

    assert assigned.status_code == 201
    assert rejected.status_code == 400
    assert rejected.json()['alreadyAssignedStudents'] == [first.id]
    assert db.query(StudentAssignedPerformanceTest).count() == 1

    listed = client.get(f'/api/fitness-metrics/assigned-tests/student/{first.id}').json()
    assert [test['performanceTypeId'] for test in listed] == [mile_run.id]
