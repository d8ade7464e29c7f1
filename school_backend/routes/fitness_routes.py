import logging
from datetime import date

from fastapi import APIRouter, Depends, status
from pydantic import field_validator, model_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from school_backend.core.exceptions import ConflictError, NotFoundError
from school_backend.core.schemas import CamelModel, MessageResponse, StudentUserIdsRequest
from school_backend.database import get_db, transaction
from school_backend.models.fitness import (
    PerformanceType,
    StudentAnthro,
    StudentAssignedPerformanceTest,
    StudentPerformanceGrade,
)
from school_backend.models.user import User
from school_backend.services.guards import (
    get_performance_type_or_404,
    get_student_or_404,
    get_teacher_or_404,
)
from school_backend.services.rostering import DUPLICATE_IDS, NOT_EXISTING_STUDENTS, BatchClassification

router = APIRouter(tags=['fitness-metrics'])
logger = logging.getLogger(__name__)

ALREADY_ASSIGNED_STUDENTS = 'alreadyAssignedStudents'
ASSIGNMENT_BUCKETS = (DUPLICATE_IDS, NOT_EXISTING_STUDENTS, ALREADY_ASSIGNED_STUDENTS)


class CreateAnthroRequest(CamelModel):
    teacher_user_id: int
    student_user_id: int
    date_recorded: date
    height: float | None = None
    weight: float | None = None

    @field_validator('height', 'weight')
    @classmethod
    def validate_positive(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError('Measurements must be greater than zero')
        return value

    @model_validator(mode='after')
    def require_measurement(self):
        if self.height is None and self.weight is None:
            raise ValueError('At least one of height or weight is required')
        return self


class AnthroResponse(CamelModel):
    id: int
    teacher_user_id: int
    student_user_id: int
    date_recorded: date
    height: float | None = None
    weight: float | None = None


class CreatePerformanceTypeRequest(CamelModel):
    name: str
    unit: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Performance type name is required')
        return normalized


class PerformanceTypeResponse(CamelModel):
    id: int
    name: str
    unit: str | None = None


class CreatePerformanceGradeRequest(CamelModel):
    performance_type_id: int
    teacher_user_id: int
    student_user_id: int
    date_taken: date
    grade: float


class PerformanceGradeResponse(CamelModel):
    id: int
    performance_type_id: int
    teacher_user_id: int
    student_user_id: int
    date_taken: date
    grade: float


class AssignPerformanceTestRequest(StudentUserIdsRequest):
    performance_type_id: int
    teacher_user_id: int
    date_assigned: date | None = None


class AssignedTestResponse(CamelModel):
    id: int
    performance_type_id: int
    teacher_user_id: int
    student_user_id: int
    date_assigned: date | None = None


def classify_test_assignments(
    db: Session,
    performance_type_id: int,
    student_user_ids: list[int],
) -> BatchClassification:
    result = BatchClassification(ASSIGNMENT_BUCKETS)
    seen: set[int] = set()

    for student_user_id in student_user_ids:
        if student_user_id in seen:
            result.reject(DUPLICATE_IDS, student_user_id)
            continue
        seen.add(student_user_id)

        student = db.query(User).filter(User.id == student_user_id).first()
        if student is None or student.user_type != 'student':
            result.reject(NOT_EXISTING_STUDENTS, student_user_id)
            continue

        existing = db.query(StudentAssignedPerformanceTest.id).filter(
            StudentAssignedPerformanceTest.performance_type_id == performance_type_id,
            StudentAssignedPerformanceTest.student_user_id == student_user_id,
        ).first()
        if existing:
            result.reject(ALREADY_ASSIGNED_STUDENTS, student_user_id)
            continue

        result.accepted.append(student)

    return result


@router.post('/fitness-metrics/anthro', response_model=AnthroResponse, status_code=status.HTTP_201_CREATED)
def record_anthro(data: CreateAnthroRequest, db: Session = Depends(get_db)):
    get_teacher_or_404(db, data.teacher_user_id)
    get_student_or_404(db, data.student_user_id)

    anthro = StudentAnthro(**data.model_dump())
    with transaction(db):
        db.add(anthro)

    db.refresh(anthro)
    return anthro


@router.get('/fitness-metrics/anthro/student/{student_user_id}', response_model=list[AnthroResponse])
def list_student_anthros(student_user_id: int, db: Session = Depends(get_db)):
    get_student_or_404(db, student_user_id)

    return db.query(StudentAnthro).filter(
        StudentAnthro.student_user_id == student_user_id,
    ).order_by(StudentAnthro.date_recorded.asc(), StudentAnthro.id.asc()).all()


@router.delete('/fitness-metrics/anthro/{anthro_id}', response_model=MessageResponse)
def delete_anthro(anthro_id: int, db: Session = Depends(get_db)):
    anthro = db.query(StudentAnthro).filter(StudentAnthro.id == anthro_id).first()
    if anthro is None:
        raise NotFoundError('Anthro record not found')

    with transaction(db):
        db.delete(anthro)

    return MessageResponse(message=f'Anthro record with ID {anthro_id} deleted successfully')


@router.get('/fitness-metrics/performance-types', response_model=list[PerformanceTypeResponse])
def list_performance_types(db: Session = Depends(get_db)):
    return db.query(PerformanceType).order_by(PerformanceType.id.asc()).all()


@router.post(
    '/fitness-metrics/performance-types',
    response_model=PerformanceTypeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_performance_type(data: CreatePerformanceTypeRequest, db: Session = Depends(get_db)):
    if db.query(PerformanceType.id).filter(PerformanceType.name == data.name).first():
        raise ConflictError(f'Performance type {data.name} already exists')

    performance_type = PerformanceType(name=data.name, unit=data.unit)
    try:
        with transaction(db):
            db.add(performance_type)
    except IntegrityError as exc:
        raise ConflictError(f'Performance type {data.name} already exists') from exc

    db.refresh(performance_type)
    return performance_type


@router.post(
    '/fitness-metrics/performance-grades',
    response_model=PerformanceGradeResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_performance_grade(data: CreatePerformanceGradeRequest, db: Session = Depends(get_db)):
    get_performance_type_or_404(db, data.performance_type_id)
    get_teacher_or_404(db, data.teacher_user_id)
    get_student_or_404(db, data.student_user_id)

    grade = StudentPerformanceGrade(**data.model_dump())
    with transaction(db):
        db.add(grade)

    db.refresh(grade)
    return grade


@router.get(
    '/fitness-metrics/performance-grades/student/{student_user_id}',
    response_model=list[PerformanceGradeResponse],
)
def list_student_performance_grades(student_user_id: int, db: Session = Depends(get_db)):
    get_student_or_404(db, student_user_id)

    return db.query(StudentPerformanceGrade).filter(
        StudentPerformanceGrade.student_user_id == student_user_id,
    ).order_by(StudentPerformanceGrade.date_taken.asc(), StudentPerformanceGrade.id.asc()).all()


@router.post(
    '/fitness-metrics/assigned-tests',
    response_model=list[AssignedTestResponse],
    status_code=status.HTTP_201_CREATED,
)
def assign_performance_test(data: AssignPerformanceTestRequest, db: Session = Depends(get_db)):
    get_performance_type_or_404(db, data.performance_type_id)
    get_teacher_or_404(db, data.teacher_user_id)

    with transaction(db):
        classification = classify_test_assignments(db, data.performance_type_id, data.student_user_ids)
        classification.raise_if_rejected(detail='Some tests could not be assigned')

        assignments = [
            StudentAssignedPerformanceTest(
                performance_type_id=data.performance_type_id,
                teacher_user_id=data.teacher_user_id,
                student_user_id=student.id,
                date_assigned=data.date_assigned or date.today(),
            )
            for student in classification.accepted
        ]
        db.add_all(assignments)
        db.flush()

    logger.info(
        'Assigned performance type %s to %d student(s)',
        data.performance_type_id,
        len(assignments),
    )
    return assignments


@router.get(
    '/fitness-metrics/assigned-tests/student/{student_user_id}',
    response_model=list[AssignedTestResponse],
)
def list_student_assigned_tests(student_user_id: int, db: Session = Depends(get_db)):
    get_student_or_404(db, student_user_id)

    return db.query(StudentAssignedPerformanceTest).filter(
        StudentAssignedPerformanceTest.student_user_id == student_user_id,
    ).order_by(StudentAssignedPerformanceTest.id.asc()).all()
