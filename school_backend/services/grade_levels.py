"""Derive a student's grade level from their graduation year.

Sections are tagged with a grade-level category (``'6'`` through ``'9'``
and the combined high-school category ``'10-11-12'``). Students only store
a graduation year, so their category is computed against the academic year
in progress.
"""

from datetime import date

from school_backend.core import config
from school_backend.models.section import GRADE_LEVELS, Section
from school_backend.models.user import User

FINAL_GRADE = 12
HIGH_SCHOOL_GRADES = (10, 11, 12)
HIGH_SCHOOL_CATEGORY = '10-11-12'


def academic_year_end(today: date | None = None) -> int:
    """Return the calendar year in which the current academic year ends."""
    today = today or date.today()
    if today.month >= config.ACADEMIC_YEAR_START_MONTH:
        return today.year + 1
    return today.year


def grade_for_grad_year(grad_year: int, today: date | None = None) -> int:
    return FINAL_GRADE - (grad_year - academic_year_end(today))


def grad_year_for_grade(grade: int, today: date | None = None) -> int:
    return academic_year_end(today) + (FINAL_GRADE - grade)


def grade_level_category(grade: int) -> str | None:
    if grade in HIGH_SCHOOL_GRADES:
        return HIGH_SCHOOL_CATEGORY
    category = str(grade)
    if category in GRADE_LEVELS:
        return category
    return None


def get_grade_level(student: User, today: date | None = None) -> str | None:
    """Return the student's grade-level category, or None when it has none."""
    details = student.student_details
    if details is None or details.grad_year is None:
        return None
    return grade_level_category(grade_for_grad_year(details.grad_year, today))


def grade_level_matches(student: User, section: Section, today: date | None = None) -> bool:
    grade_level = get_grade_level(student, today)
    return grade_level is not None and grade_level == section.grade_level
