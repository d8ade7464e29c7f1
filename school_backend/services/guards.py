"""Existence and state checks shared by the route modules.

Each guard resolves one entity (or counts something) and either returns it
so the handler can reuse it, or raises a typed error that the central
handler turns into a 404/409/400 response. The ``*_or_404`` functions
double as FastAPI dependencies keyed by path parameter.
"""

import logging

from fastapi import Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from school_backend.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from school_backend.database import get_db
from school_backend.models.fitness import PerformanceType
from school_backend.models.section import Section, SectionRoster
from school_backend.models.user import User

logger = logging.getLogger(__name__)

STAFF_USER_TYPES = ('teacher', 'admin')


def get_section_or_404(section_id: int, db: Session = Depends(get_db)) -> Section:
    section = db.query(Section).filter(Section.id == section_id).first()
    if section is None:
        logger.info('Section with ID %s not found.', section_id)
        raise NotFoundError('Section not found')
    return section


def get_user_or_404(user_id: int, db: Session = Depends(get_db)) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError(f'User with ID {user_id} not found')
    return user


def get_student_or_404(db: Session, student_user_id: int) -> User:
    student = db.query(User).filter(User.id == student_user_id).first()
    if student is None or student.user_type != 'student':
        raise NotFoundError(f'Student with ID {student_user_id} not found')
    return student


def get_teacher_or_404(db: Session, teacher_user_id: int) -> User:
    """Resolve the staff member recording a metric; admins count as teachers here."""
    teacher = db.query(User).filter(User.id == teacher_user_id).first()
    if teacher is None or teacher.user_type not in STAFF_USER_TYPES:
        raise NotFoundError(f'Teacher with ID {teacher_user_id} not found')
    return teacher


def count_rostered_students(db: Session, section_id: int) -> int:
    return db.query(func.count(SectionRoster.id)).filter(SectionRoster.section_id == section_id).scalar() or 0


def ensure_section_has_no_roster(db: Session, section: Section, action: str) -> None:
    rostered = count_rostered_students(db, section.id)
    if rostered > 0:
        logger.info('Section %s has %d rostered students and cannot be %s.', section.id, rostered, action)
        raise BusinessRuleError(
            f'Section has rostered students and cannot be {action}.',
            rosteredStudentsCount=rostered,
        )


def ensure_section_code_available(db: Session, section_code: str, exclude_section_id: int | None = None) -> None:
    query = db.query(Section.id).filter(Section.section_code == section_code)
    if exclude_section_id is not None:
        query = query.filter(Section.id != exclude_section_id)
    if query.first() is not None:
        raise ConflictError(f'Section code {section_code} already exists')


def ensure_email_available(db: Session, email: str, exclude_user_id: int | None = None) -> None:
    query = db.query(User.id).filter(User.email == email)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first() is not None:
        raise ConflictError(f'Email {email} is already registered')


def get_roster_entry(db: Session, student_user_id: int) -> SectionRoster | None:
    return db.query(SectionRoster).filter(SectionRoster.student_user_id == student_user_id).first()


def ensure_user_not_rostered(db: Session, user: User, action: str) -> None:
    if user.user_type != 'student':
        return
    entry = get_roster_entry(db, user.id)
    if entry is not None:
        raise BusinessRuleError(
            f'Student is rostered in a section and cannot be {action}. Unroster the student first.',
            sectionId=entry.section_id,
        )


def get_performance_type_or_404(db: Session, performance_type_id: int) -> PerformanceType:
    performance_type = db.query(PerformanceType).filter(PerformanceType.id == performance_type_id).first()
    if performance_type is None:
        raise NotFoundError(f'Performance type with ID {performance_type_id} not found')
    return performance_type
