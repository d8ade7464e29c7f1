import logging
import re

from fastapi import APIRouter, Depends, File, UploadFile, status
from pydantic import StrictBool, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from school_backend.core.exceptions import BusinessRuleError, ConflictError
from school_backend.core.schemas import CamelModel, MessageResponse, StudentUserIdsRequest
from school_backend.database import get_db, transaction
from school_backend.models.section import GRADE_LEVELS, Section
from school_backend.services import rostering
from school_backend.services.csv_ingest import parse_csv, read_upload
from school_backend.services.guards import (
    ensure_section_code_available,
    ensure_section_has_no_roster,
    get_section_or_404,
)

router = APIRouter(tags=['sections'])
logger = logging.getLogger(__name__)

SECTION_CODE_PATTERN = re.compile(r'^\d{4}-\d{2}$')
SECTION_CSV_COLUMNS = ('sectionCode', 'gradeLevel')
ROSTER_CSV_COLUMNS = ('email', 'sectionCode')


def _validate_section_code(value: str) -> str:
    normalized = value.strip()
    if not SECTION_CODE_PATTERN.match(normalized):
        raise ValueError(
            'Section code must be 7 characters in length and in the format "nnnn-nn" where n is a number'
        )
    return normalized


def _validate_grade_level(value: str) -> str:
    normalized = str(value).strip()
    if normalized not in GRADE_LEVELS:
        raise ValueError('Grade level must be either "6", "7", "8", "9", or "10-11-12"')
    return normalized


class CreateSectionRequest(CamelModel):
    section_code: str
    grade_level: str
    is_active: bool = True

    @field_validator('section_code')
    @classmethod
    def validate_section_code(cls, value: str) -> str:
        return _validate_section_code(value)

    @field_validator('grade_level', mode='before')
    @classmethod
    def validate_grade_level(cls, value) -> str:
        return _validate_grade_level(value)


class UpdateSectionRequest(CamelModel):
    section_code: str | None = None
    grade_level: str | None = None
    is_active: StrictBool | None = None

    @field_validator('section_code')
    @classmethod
    def validate_section_code(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_section_code(value)

    @field_validator('grade_level', mode='before')
    @classmethod
    def validate_grade_level(cls, value) -> str | None:
        if value is None:
            return None
        return _validate_grade_level(value)


class SectionResponse(CamelModel):
    id: int
    section_code: str
    grade_level: str
    is_active: bool


class RosteredStudentResponse(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    grad_year: int | None = None


class SectionDetailResponse(SectionResponse):
    rostered_students_count: int
    roster: list[RosteredStudentResponse]


class RosterEntryResponse(CamelModel):
    id: int
    student_user_id: int
    section_id: int


class RosterStudentsResponse(CamelModel):
    rostered_students: list[RosterEntryResponse]
    message: str


class CsvRosterResponse(CamelModel):
    success: str
    new_roster_entries: list[RosterEntryResponse]


class UnrosterStudentsResponse(CamelModel):
    unrostered_students: list[RosterEntryResponse]
    skipped_student_user_ids: list[int]
    message: str


class TransferStudentsRequest(StudentUserIdsRequest):
    from_section_id: int
    to_section_id: int


class TransferStudentsResponse(CamelModel):
    transferred_students: list[RosterEntryResponse]
    message: str


def build_section_detail(section: Section) -> SectionDetailResponse:
    roster = []
    for entry in section.roster:
        student = entry.student
        details = student.student_details
        roster.append(
            RosteredStudentResponse(
                id=student.id,
                email=student.email,
                first_name=student.first_name,
                last_name=student.last_name,
                grad_year=details.grad_year if details else None,
            )
        )

    return SectionDetailResponse(
        id=section.id,
        section_code=section.section_code,
        grade_level=section.grade_level,
        is_active=section.is_active,
        rostered_students_count=len(roster),
        roster=roster,
    )


def parse_section_row(row: dict) -> CreateSectionRequest:
    values = {key: value for key, value in row.items() if value not in (None, '')}
    return CreateSectionRequest.model_validate(values)


def _roster_row(row: dict) -> dict:
    return {'email': row.get('email'), 'sectionCode': row.get('sectionCode')}


@router.post('/sections', response_model=SectionResponse, status_code=status.HTTP_201_CREATED)
def create_section(data: CreateSectionRequest, db: Session = Depends(get_db)):
    ensure_section_code_available(db, data.section_code)

    section = Section(
        section_code=data.section_code,
        grade_level=data.grade_level,
        is_active=data.is_active,
    )
    try:
        with transaction(db):
            db.add(section)
    except IntegrityError as exc:
        raise ConflictError(f'Section code {data.section_code} already exists') from exc

    db.refresh(section)
    logger.info('Created section %s (%s)', section.id, section.section_code)
    return section


@router.get('/sections', response_model=list[SectionResponse])
def list_sections(db: Session = Depends(get_db)):
    return db.query(Section).order_by(Section.id.asc()).all()


@router.get('/sections/active', response_model=list[SectionResponse])
def list_active_sections(db: Session = Depends(get_db)):
    return db.query(Section).filter(Section.is_active.is_(True)).order_by(Section.id.asc()).all()


@router.post('/sections/upload-csv', response_model=list[SectionResponse], status_code=status.HTTP_201_CREATED)
def upload_sections_csv(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = read_upload(file)
    parsed = parse_csv(content, parse_section_row, required_columns=SECTION_CSV_COLUMNS)

    seen_codes: set[str] = set()
    duplicate_codes: list[str] = []
    existing_codes: list[str] = []
    for row in parsed.rows:
        if row.section_code in seen_codes:
            duplicate_codes.append(row.section_code)
            continue
        seen_codes.add(row.section_code)
        if db.query(Section.id).filter(Section.section_code == row.section_code).first():
            existing_codes.append(row.section_code)

    if parsed.rejected or duplicate_codes or existing_codes:
        raise BusinessRuleError(
            'Some sections could not be created',
            invalidRows=parsed.rejected,
            duplicateSectionCodes=duplicate_codes,
            existingSectionCodes=existing_codes,
        )

    sections = [
        Section(section_code=row.section_code, grade_level=row.grade_level, is_active=row.is_active)
        for row in parsed.rows
    ]
    try:
        with transaction(db):
            db.add_all(sections)
    except IntegrityError as exc:
        raise ConflictError('One or more section codes already exist') from exc

    logger.info('Created %d section(s) from CSV upload', len(sections))
    return sections


@router.post('/sections/transfer-students', response_model=TransferStudentsResponse)
def transfer_students(data: TransferStudentsRequest, db: Session = Depends(get_db)):
    from_section = get_section_or_404(data.from_section_id, db)
    to_section = get_section_or_404(data.to_section_id, db)

    entries = rostering.transfer_students(db, from_section, to_section, data.student_user_ids)

    return TransferStudentsResponse(
        transferred_students=[RosterEntryResponse.model_validate(entry) for entry in entries],
        message=f'{len(entries)} student(s) transferred',
    )


@router.get('/sections/{section_id}', response_model=SectionDetailResponse)
def get_section(section: Section = Depends(get_section_or_404)):
    return build_section_detail(section)


@router.patch('/sections/{section_id}', response_model=SectionResponse)
def update_section(
    data: UpdateSectionRequest,
    section: Section = Depends(get_section_or_404),
    db: Session = Depends(get_db),
):
    changes = {key: value for key, value in data.model_dump(exclude_unset=True).items() if value is not None}

    if 'section_code' in changes and changes['section_code'] != section.section_code:
        ensure_section_code_available(db, changes['section_code'], exclude_section_id=section.id)

    if section.is_active and changes.get('is_active') is False:
        ensure_section_has_no_roster(db, section, 'deactivated')

    if 'grade_level' in changes and changes['grade_level'] != section.grade_level:
        ensure_section_has_no_roster(db, section, 'moved to another grade level')

    try:
        with transaction(db):
            for key, value in changes.items():
                setattr(section, key, value)
    except IntegrityError as exc:
        raise ConflictError('Section code already exists') from exc

    db.refresh(section)
    logger.info('Updated section %s: %s', section.id, sorted(changes))
    return section


@router.delete('/sections/{section_id}', response_model=MessageResponse)
def delete_section(section: Section = Depends(get_section_or_404), db: Session = Depends(get_db)):
    section_id = section.id
    ensure_section_has_no_roster(db, section, 'deleted')

    with transaction(db):
        db.delete(section)

    logger.info('Deleted section %s', section_id)
    return MessageResponse(message=f'Section with ID {section_id} deleted successfully')


@router.post('/sections/{section_id}/roster-students', response_model=RosterStudentsResponse)
def roster_students(
    data: StudentUserIdsRequest,
    section: Section = Depends(get_section_or_404),
    db: Session = Depends(get_db),
):
    entries = rostering.roster_students(db, section, data.student_user_ids)

    return RosterStudentsResponse(
        rostered_students=[RosterEntryResponse.model_validate(entry) for entry in entries],
        message=f'{len(entries)} student(s) added to the roster',
    )


@router.post(
    '/sections/{section_id}/roster-students-upload-csv',
    response_model=CsvRosterResponse,
    status_code=status.HTTP_201_CREATED,
)
def roster_students_from_csv(
    file: UploadFile = File(...),
    section: Section = Depends(get_section_or_404),
    db: Session = Depends(get_db),
):
    content = read_upload(file)
    parsed = parse_csv(content, _roster_row, required_columns=ROSTER_CSV_COLUMNS)

    entries = rostering.roster_students_from_rows(
        db,
        section,
        parsed.rows,
        malformed_rows=[rejected['row'] for rejected in parsed.rejected],
    )

    return CsvRosterResponse(
        success='File uploaded and processed successfully',
        new_roster_entries=[RosterEntryResponse.model_validate(entry) for entry in entries],
    )


@router.delete('/sections/{section_id}/unroster-students', response_model=UnrosterStudentsResponse)
def unroster_students(
    data: StudentUserIdsRequest,
    section: Section = Depends(get_section_or_404),
    db: Session = Depends(get_db),
):
    result = rostering.unroster_students(db, section, data.student_user_ids)

    return UnrosterStudentsResponse(
        unrostered_students=[RosterEntryResponse.model_validate(entry) for entry in result.unrostered],
        skipped_student_user_ids=result.skipped_student_user_ids,
        message=f'{len(result.unrostered)} student(s) removed from the roster',
    )

