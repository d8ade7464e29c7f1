import logging
import re
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, File, UploadFile, status
from pydantic import StrictBool, field_validator, model_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from school_backend.auth.passwords import hash_password
from school_backend.core.exceptions import BusinessRuleError, ConflictError
from school_backend.core.schemas import CamelModel, MessageResponse
from school_backend.database import get_db, transaction
from school_backend.models.user import AdminDetail, StudentDetail, TeacherDetail, User
from school_backend.services.csv_ingest import parse_csv, read_upload
from school_backend.services.grade_levels import get_grade_level
from school_backend.services.guards import (
    ensure_email_available,
    ensure_user_not_rostered,
    get_roster_entry,
    get_user_or_404,
)

router = APIRouter(tags=['users'])
logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 4
MAX_PASSWORD_LENGTH = 128
MIN_NAME_LENGTH = 2
USER_CSV_COLUMNS = ('email', 'password', 'firstName', 'lastName', 'birthDate', 'userType')

UserType = Literal['student', 'teacher', 'admin']


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError('Must be a valid email address')
    return normalized


def _check_password(value: str) -> str:
    if not MIN_PASSWORD_LENGTH <= len(value) <= MAX_PASSWORD_LENGTH:
        raise ValueError(
            f'Password must be at least {MIN_PASSWORD_LENGTH} and at most {MAX_PASSWORD_LENGTH} characters'
        )
    return value


def _check_name(value: str, label: str) -> str:
    normalized = value.strip()
    if len(normalized) < MIN_NAME_LENGTH:
        raise ValueError(f'{label} must be at least {MIN_NAME_LENGTH} characters long')
    return normalized


class StudentDetailsRequest(CamelModel):
    grad_year: int


class StaffDetailsRequest(CamelModel):
    years_exp: int | None = None
    bio: str | None = None


class UpdateStudentDetailsRequest(CamelModel):
    grad_year: int | None = None


class CreateUserRequest(CamelModel):
    email: str
    password: str
    first_name: str
    last_name: str
    birth_date: date
    gender_identity: str | None = None
    pronouns: str | None = None
    user_type: UserType
    photo_url: str | None = None
    is_archived: bool = False
    student_details: StudentDetailsRequest | None = None
    teacher_details: StaffDetailsRequest | None = None
    admin_details: StaffDetailsRequest | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password(value)

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        return _check_name(value, 'First name')

    @field_validator('last_name')
    @classmethod
    def validate_last_name(cls, value: str) -> str:
        return _check_name(value, 'Last name')

    @model_validator(mode='after')
    def require_student_details(self):
        if self.user_type == 'student' and self.student_details is None:
            raise ValueError('Student details are required for userType student')
        return self


class UpdateUserRequest(CamelModel):
    email: str | None = None
    password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    birth_date: date | None = None
    gender_identity: str | None = None
    pronouns: str | None = None
    user_type: UserType | None = None
    photo_url: str | None = None
    is_archived: StrictBool | None = None
    student_details: UpdateStudentDetailsRequest | None = None
    teacher_details: StaffDetailsRequest | None = None
    admin_details: StaffDetailsRequest | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str | None) -> str | None:
        return None if value is None else _check_password(value)

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str | None) -> str | None:
        return None if value is None else _check_name(value, 'First name')

    @field_validator('last_name')
    @classmethod
    def validate_last_name(cls, value: str | None) -> str | None:
        return None if value is None else _check_name(value, 'Last name')


class StudentDetailsResponse(CamelModel):
    grad_year: int
    grade_level: str | None = None
    section_id: int | None = None


class StaffDetailsResponse(CamelModel):
    years_exp: int | None = None
    bio: str | None = None


class UserResponse(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    birth_date: date
    gender_identity: str | None = None
    pronouns: str | None = None
    user_type: str
    photo_url: str | None = None
    is_archived: bool
    date_archived: date | None = None
    student_details: StudentDetailsResponse | None = None
    teacher_details: StaffDetailsResponse | None = None
    admin_details: StaffDetailsResponse | None = None


def build_user_response(user: User, db: Session) -> UserResponse:
    student_details = None
    if user.student_details is not None:
        entry = get_roster_entry(db, user.id)
        student_details = StudentDetailsResponse(
            grad_year=user.student_details.grad_year,
            grade_level=get_grade_level(user),
            section_id=entry.section_id if entry else None,
        )

    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        birth_date=user.birth_date,
        gender_identity=user.gender_identity,
        pronouns=user.pronouns,
        user_type=user.user_type,
        photo_url=user.photo_url,
        is_archived=user.is_archived,
        date_archived=user.date_archived,
        student_details=student_details,
        teacher_details=StaffDetailsResponse.model_validate(user.teacher_details) if user.teacher_details else None,
        admin_details=StaffDetailsResponse.model_validate(user.admin_details) if user.admin_details else None,
    )


def _users_query(db: Session):
    return db.query(User).options(
        selectinload(User.student_details),
        selectinload(User.teacher_details),
        selectinload(User.admin_details),
    )


def get_users(db: Session, user_types: tuple[str, ...] | None = None, archived: bool | None = None) -> list[User]:
    query = _users_query(db)
    if user_types:
        query = query.filter(User.user_type.in_(user_types))
    if archived is not None:
        query = query.filter(User.is_archived.is_(archived))
    return query.order_by(User.id.asc()).all()


def _apply_details(user: User, user_type: str, data) -> None:
    if user_type == 'student' and data.student_details is not None:
        if data.student_details.grad_year is not None:
            if user.student_details is None:
                user.student_details = StudentDetail(grad_year=data.student_details.grad_year)
            else:
                user.student_details.grad_year = data.student_details.grad_year
    elif user_type == 'teacher' and data.teacher_details is not None:
        if user.teacher_details is None:
            user.teacher_details = TeacherDetail()
        for key, value in data.teacher_details.model_dump(exclude_unset=True).items():
            setattr(user.teacher_details, key, value)
    elif user_type == 'admin' and data.admin_details is not None:
        if user.admin_details is None:
            user.admin_details = AdminDetail()
        for key, value in data.admin_details.model_dump(exclude_unset=True).items():
            setattr(user.admin_details, key, value)


def create_user(db: Session, data: CreateUserRequest) -> User:
    """Stage a new user and its role detail record on ``db`` without committing."""
    user = User(
        email=data.email,
        hashed_password=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        birth_date=data.birth_date,
        gender_identity=data.gender_identity,
        pronouns=data.pronouns,
        user_type=data.user_type,
        photo_url=data.photo_url,
        is_archived=data.is_archived,
        date_archived=date.today() if data.is_archived else None,
    )
    _apply_details(user, data.user_type, data)
    if data.user_type == 'teacher' and user.teacher_details is None:
        user.teacher_details = TeacherDetail()
    elif data.user_type == 'admin' and user.admin_details is None:
        user.admin_details = AdminDetail()

    db.add(user)
    return user


def update_user(user: User, data: UpdateUserRequest) -> None:
    changes = data.model_dump(
        exclude_unset=True,
        exclude={'password', 'student_details', 'teacher_details', 'admin_details'},
    )

    new_type = changes.get('user_type') or user.user_type
    if new_type == 'student' and user.student_details is None and (
        data.student_details is None or data.student_details.grad_year is None
    ):
        raise BusinessRuleError('Student details are required for userType student')

    if data.password:
        user.hashed_password = hash_password(data.password)

    if 'is_archived' in changes and changes['is_archived'] is not None:
        archived = changes.pop('is_archived')
        if archived and not user.is_archived:
            user.date_archived = date.today()
        elif not archived:
            user.date_archived = None
        user.is_archived = archived

    for key in ('email', 'first_name', 'last_name', 'birth_date', 'user_type'):
        if changes.get(key) is not None:
            setattr(user, key, changes[key])
    for key in ('gender_identity', 'pronouns', 'photo_url'):
        if key in changes:
            setattr(user, key, changes[key])

    if new_type != 'student':
        user.student_details = None
    if new_type != 'teacher':
        user.teacher_details = None
    elif user.teacher_details is None:
        user.teacher_details = TeacherDetail()
    if new_type != 'admin':
        user.admin_details = None
    elif user.admin_details is None:
        user.admin_details = AdminDetail()

    _apply_details(user, new_type, data)


def parse_user_row(row: dict) -> CreateUserRequest:
    """Map one CSV row to a registration request.

    The flat ``gradYear``/``yearsExp``/``bio`` columns become the detail
    object matching the row's ``userType``.
    """
    values = {key: value for key, value in row.items() if value not in (None, '')}
    grad_year = values.pop('gradYear', None)
    staff_details = {key: values.pop(key) for key in ('yearsExp', 'bio') if key in values}

    user_type = values.get('userType')
    if user_type == 'student' and grad_year is not None:
        values['studentDetails'] = {'gradYear': grad_year}
    elif user_type == 'teacher' and staff_details:
        values['teacherDetails'] = staff_details
    elif user_type == 'admin' and staff_details:
        values['adminDetails'] = staff_details

    return CreateUserRequest.model_validate(values)


def _list_response(users: list[User], db: Session) -> list[UserResponse]:
    return [build_user_response(user, db) for user in users]


@router.post('/users/register', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(data: CreateUserRequest, db: Session = Depends(get_db)):
    ensure_email_available(db, data.email)

    try:
        with transaction(db):
            user = create_user(db, data)
    except IntegrityError as exc:
        raise ConflictError(f'Email {data.email} is already registered') from exc

    db.refresh(user)
    logger.info('Registered %s user %s', user.user_type, user.id)
    return build_user_response(user, db)


@router.post(
    '/users/register-upload-csv',
    response_model=list[UserResponse],
    status_code=status.HTTP_201_CREATED,
)
def register_users_from_csv(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = read_upload(file)
    parsed = parse_csv(content, parse_user_row, required_columns=USER_CSV_COLUMNS)

    seen_emails: set[str] = set()
    duplicate_emails: list[str] = []
    existing_emails: list[str] = []
    for row in parsed.rows:
        if row.email in seen_emails:
            duplicate_emails.append(row.email)
            continue
        seen_emails.add(row.email)
        if db.query(User.id).filter(User.email == row.email).first():
            existing_emails.append(row.email)

    if parsed.rejected or duplicate_emails or existing_emails:
        raise BusinessRuleError(
            'Some users could not be registered',
            invalidRows=parsed.rejected,
            duplicateEmails=duplicate_emails,
            existingEmails=existing_emails,
        )

    try:
        with transaction(db):
            users = [create_user(db, row) for row in parsed.rows]
    except IntegrityError as exc:
        raise ConflictError('One or more emails are already registered') from exc

    logger.info('Registered %d user(s) from CSV upload', len(users))
    return _list_response(users, db)


@router.get('/users', response_model=list[UserResponse])
def list_users(db: Session = Depends(get_db)):
    return _list_response(get_users(db), db)


@router.get('/users/active', response_model=list[UserResponse])
def list_active_users(db: Session = Depends(get_db)):
    return _list_response(get_users(db, archived=False), db)


@router.get('/users/archived', response_model=list[UserResponse])
def list_archived_users(db: Session = Depends(get_db)):
    return _list_response(get_users(db, archived=True), db)


@router.get('/users/admin', response_model=list[UserResponse])
def list_admins(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('admin',)), db)


@router.get('/users/admin/active', response_model=list[UserResponse])
def list_active_admins(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('admin',), archived=False), db)


@router.get('/users/student', response_model=list[UserResponse])
def list_students(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('student',)), db)


@router.get('/users/student/active', response_model=list[UserResponse])
def list_active_students(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('student',), archived=False), db)


@router.get('/users/teacher', response_model=list[UserResponse])
def list_teachers(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('teacher',)), db)


@router.get('/users/teacher/active', response_model=list[UserResponse])
def list_active_teachers(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('teacher',), archived=False), db)


@router.get('/users/teacher-admin/active', response_model=list[UserResponse])
def list_active_teachers_and_admins(db: Session = Depends(get_db)):
    return _list_response(get_users(db, ('teacher', 'admin'), archived=False), db)


@router.get('/users/{user_id}', response_model=UserResponse)
def get_user(user: User = Depends(get_user_or_404), db: Session = Depends(get_db)):
    return build_user_response(user, db)


@router.patch('/users/{user_id}', response_model=UserResponse)
def patch_user(
    data: UpdateUserRequest,
    user: User = Depends(get_user_or_404),
    db: Session = Depends(get_db),
):
    if data.email is not None and data.email != user.email:
        ensure_email_available(db, data.email, exclude_user_id=user.id)

    if data.is_archived and not user.is_archived:
        ensure_user_not_rostered(db, user, 'archived')

    if data.user_type is not None and data.user_type != user.user_type:
        ensure_user_not_rostered(db, user, 'given another user type')

    try:
        with transaction(db):
            update_user(user, data)
    except IntegrityError as exc:
        raise ConflictError('Email is already registered') from exc

    db.refresh(user)
    logger.info('Updated user %s', user.id)
    return build_user_response(user, db)


@router.delete('/users/{user_id}', response_model=MessageResponse)
def delete_user(user: User = Depends(get_user_or_404), db: Session = Depends(get_db)):
    ensure_user_not_rostered(db, user, 'deleted')

    user_id = user.id
    with transaction(db):
        db.delete(user)

    logger.info('Deleted user %s', user_id)
    return MessageResponse(message='User successfully deleted')
