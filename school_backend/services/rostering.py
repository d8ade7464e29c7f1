"""Batch rostering of students into sections.

Roster, CSV roster and transfer requests are all-or-nothing. Every input is
classified in a single pass into either the accepted list or one named
rejection bucket. Any non-empty bucket aborts the whole batch, and the
transaction rolls back. Unroster is the one exception: identifiers without
a matching roster entry are skipped rather than rejected.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session, joinedload

from school_backend.core.exceptions import BatchRejectedError, BusinessRuleError
from school_backend.database import transaction
from school_backend.models.section import Section, SectionRoster
from school_backend.models.user import User
from school_backend.services.grade_levels import grade_level_matches
from school_backend.services.guards import get_roster_entry

logger = logging.getLogger(__name__)

DUPLICATE_IDS = 'duplicateIds'
NOT_EXISTING_STUDENTS = 'notExistingStudents'
INCORRECT_GRADE_LEVEL = 'incorrectGradeLevel'
ALREADY_ROSTERED_STUDENTS = 'alreadyRosteredStudents'
MISSING_EMAIL_SECTION_CODE = 'missingEmailSectionCode'
NOT_EXISTING_SECTIONS = 'notExistingSections'
MISMATCHED_SECTIONS = 'mismatchedSections'
NOT_ROSTERED_IN_FROM_SECTION = 'notRosteredInFromSection'

ROSTER_BUCKETS = (DUPLICATE_IDS, NOT_EXISTING_STUDENTS, INCORRECT_GRADE_LEVEL, ALREADY_ROSTERED_STUDENTS)
CSV_ROSTER_BUCKETS = (MISSING_EMAIL_SECTION_CODE, NOT_EXISTING_SECTIONS, MISMATCHED_SECTIONS) + ROSTER_BUCKETS
TRANSFER_BUCKETS = (DUPLICATE_IDS, NOT_EXISTING_STUDENTS, NOT_ROSTERED_IN_FROM_SECTION, INCORRECT_GRADE_LEVEL)


@dataclass
class BatchClassification:
    """Outcome of one classification pass over a batch."""
    bucket_names: tuple[str, ...]
    accepted: list[Any] = field(default_factory=list)
    buckets: dict[str, list] = field(init=False)

    def __post_init__(self) -> None:
        self.buckets = {name: [] for name in self.bucket_names}

    def reject(self, bucket: str, item: Any) -> None:
        self.buckets[bucket].append(item)

    @property
    def has_rejections(self) -> bool:
        return any(self.buckets.values())

    def raise_if_rejected(self, detail: str = 'Some students could not be rostered') -> None:
        if self.has_rejections:
            logger.info(
                'Rejecting batch: %s',
                {name: len(items) for name, items in self.buckets.items() if items},
            )
            raise BatchRejectedError(self.buckets, detail=detail)


def _load_user(db: Session, *criteria) -> User | None:
    return (
        db.query(User)
        .options(joinedload(User.student_details))
        .filter(*criteria)
        .first()
    )


def _is_student(user: User | None) -> bool:
    return user is not None and user.user_type == 'student'


def classify_roster_batch(db: Session, section: Section, student_user_ids: list[int]) -> BatchClassification:
    """Sort ``student_user_ids`` into accepted students and rejection buckets.

    Checks run in order and stop at the first failing rule for an id:
    duplicate within the batch, unknown or non-student user, grade level
    not matching the section, already rostered anywhere.
    """
    result = BatchClassification(ROSTER_BUCKETS)
    seen: set[int] = set()

    for student_user_id in student_user_ids:
        if student_user_id in seen:
            result.reject(DUPLICATE_IDS, student_user_id)
            continue
        seen.add(student_user_id)

        student = _load_user(db, User.id == student_user_id)
        if not _is_student(student):
            logger.debug('Student with ID %s not found or not a student.', student_user_id)
            result.reject(NOT_EXISTING_STUDENTS, student_user_id)
            continue

        if not grade_level_matches(student, section):
            logger.debug("Student %s grade level does not match section %s.", student_user_id, section.id)
            result.reject(INCORRECT_GRADE_LEVEL, student_user_id)
            continue

        if get_roster_entry(db, student_user_id) is not None:
            logger.debug('Student with ID %s is already rostered in a section.', student_user_id)
            result.reject(ALREADY_ROSTERED_STUDENTS, student_user_id)
            continue

        result.accepted.append(student)

    return result


def _create_entries(db: Session, section_id: int, students: list[User]) -> list[SectionRoster]:
    entries = [SectionRoster(student_user_id=student.id, section_id=section_id) for student in students]
    db.add_all(entries)
    db.flush()
    return entries


def roster_students(db: Session, section: Section, student_user_ids: list[int]) -> list[SectionRoster]:
    """Roster every id into ``section`` or none of them."""
    with transaction(db):
        classification = classify_roster_batch(db, section, student_user_ids)
        classification.raise_if_rejected()
        entries = _create_entries(db, section.id, classification.accepted)

    logger.info('%d student(s) added to the roster of section %s', len(entries), section.id)
    return entries


def classify_csv_roster_rows(db: Session, section: Section, rows: list[dict]) -> BatchClassification:
    """Classify ``{email, sectionCode}`` rows from a roster upload.

    Every row has to name ``section`` by its code; the remaining rules are the
    same as for a roster request by id, with email standing in for the id.
    Rejected rows are reported as they were uploaded.
    """
    result = BatchClassification(CSV_ROSTER_BUCKETS)
    seen: set[str] = set()
    section_ids_by_code: dict[str, int | None] = {}

    for row in rows:
        email = (row.get('email') or '').strip().lower()
        section_code = (row.get('sectionCode') or '').strip()

        if not email or not section_code:
            result.reject(MISSING_EMAIL_SECTION_CODE, row)
            continue

        if email in seen:
            result.reject(DUPLICATE_IDS, row)
            continue
        seen.add(email)

        student = _load_user(db, User.email == email)
        if not _is_student(student):
            logger.debug('Student with email %s not found or not a student.', email)
            result.reject(NOT_EXISTING_STUDENTS, row)
            continue

        if section_code not in section_ids_by_code:
            row_section = db.query(Section.id).filter(Section.section_code == section_code).first()
            section_ids_by_code[section_code] = row_section.id if row_section else None
        row_section_id = section_ids_by_code[section_code]

        if row_section_id is None:
            logger.debug('Section with code %s not found.', section_code)
            result.reject(NOT_EXISTING_SECTIONS, row)
            continue
        if row_section_id != section.id:
            result.reject(MISMATCHED_SECTIONS, row)
            continue

        if not grade_level_matches(student, section):
            result.reject(INCORRECT_GRADE_LEVEL, row)
            continue

        if get_roster_entry(db, student.id) is not None:
            result.reject(ALREADY_ROSTERED_STUDENTS, row)
            continue

        result.accepted.append(student)

    return result


def roster_students_from_rows(
    db: Session,
    section: Section,
    rows: list[dict],
    malformed_rows: list[dict] | None = None,
) -> list[SectionRoster]:
    """Roster students listed by email in an uploaded CSV.

    ``malformed_rows`` are rows the CSV reader could not map at all; they
    are reported alongside rows missing an email or section code.
    """
    with transaction(db):
        classification = classify_csv_roster_rows(db, section, rows)
        for malformed in malformed_rows or ():
            classification.reject(MISSING_EMAIL_SECTION_CODE, malformed)
        classification.raise_if_rejected()
        entries = _create_entries(db, section.id, classification.accepted)

    logger.info('%d student(s) rostered into section %s from CSV', len(entries), section.id)
    return entries


def classify_transfer_batch(
    db: Session,
    from_section: Section,
    to_section: Section,
    student_user_ids: list[int],
) -> BatchClassification:
    """Rules in order: duplicate, not a student, not rostered in ``from_section``, wrong grade for ``to_section``."""
    result = BatchClassification(TRANSFER_BUCKETS)
    seen: set[int] = set()

    for student_user_id in student_user_ids:
        if student_user_id in seen:
            result.reject(DUPLICATE_IDS, student_user_id)
            continue
        seen.add(student_user_id)

        student = _load_user(db, User.id == student_user_id)
        if not _is_student(student):
            result.reject(NOT_EXISTING_STUDENTS, student_user_id)
            continue

        entry = (
            db.query(SectionRoster)
            .filter(
                SectionRoster.student_user_id == student_user_id,
                SectionRoster.section_id == from_section.id,
            )
            .first()
        )
        if entry is None:
            result.reject(NOT_ROSTERED_IN_FROM_SECTION, student_user_id)
            continue

        if not grade_level_matches(student, to_section):
            result.reject(INCORRECT_GRADE_LEVEL, student_user_id)
            continue

        result.accepted.append(entry)

    return result


def transfer_students(
    db: Session,
    from_section: Section,
    to_section: Section,
    student_user_ids: list[int],
) -> list[SectionRoster]:
    """Move students from one section to another, all or nothing.

    Each accepted student's current roster entry is deleted and a new one is
    created in ``to_section`` inside the same transaction.
    """
    if from_section.id == to_section.id:
        raise BusinessRuleError('Source and destination sections must be different')
    if not to_section.is_active:
        raise BusinessRuleError('Destination section is not active')

    with transaction(db):
        classification = classify_transfer_batch(db, from_section, to_section, student_user_ids)
        classification.raise_if_rejected(detail='Some students could not be transferred')

        new_entries = []
        for old_entry in classification.accepted:
            student_user_id = old_entry.student_user_id
            db.delete(old_entry)
            db.flush()
            new_entry = SectionRoster(student_user_id=student_user_id, section_id=to_section.id)
            db.add(new_entry)
            new_entries.append(new_entry)
        db.flush()

    logger.info(
        '%d student(s) transferred from section %s to section %s',
        len(new_entries),
        from_section.id,
        to_section.id,
    )
    return new_entries


@dataclass(frozen=True)
class RemovedRosterEntry:
    """Copy of a roster entry taken before it was deleted."""
    id: int
    student_user_id: int
    section_id: int


@dataclass
class UnrosterResult:
    unrostered: list[RemovedRosterEntry] = field(default_factory=list)
    skipped_student_user_ids: list[int] = field(default_factory=list)


def unroster_students(db: Session, section: Section, student_user_ids: list[int]) -> UnrosterResult:
    """Remove the given students from ``section``.

    Ids that are not students, or not rostered in this section, are skipped
    and returned in ``skipped_student_user_ids`` instead of failing the batch.
    """
    result = UnrosterResult()
    seen: set[int] = set()

    with transaction(db):
        for student_user_id in student_user_ids:
            if student_user_id in seen:
                continue
            seen.add(student_user_id)

            entry = (
                db.query(SectionRoster)
                .join(User, User.id == SectionRoster.student_user_id)
                .filter(
                    SectionRoster.student_user_id == student_user_id,
                    SectionRoster.section_id == section.id,
                    User.user_type == 'student',
                )
                .first()
            )
            if entry is None:
                logger.debug('Student with ID %s is not rostered to section %s.', student_user_id, section.id)
                result.skipped_student_user_ids.append(student_user_id)
                continue

            result.unrostered.append(
                RemovedRosterEntry(id=entry.id, student_user_id=entry.student_user_id, section_id=entry.section_id)
            )
            db.delete(entry)
        db.flush()

    logger.info('%d student(s) removed from the roster of section %s', len(result.unrostered), section.id)
    return result
