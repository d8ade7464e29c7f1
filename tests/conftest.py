import os
from datetime import date

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('BCRYPT_ROUNDS', '4')

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from school_backend.database import Base, build_engine, get_db  # noqa: E402
from school_backend.main import app  # noqa: E402
from school_backend.models.section import Section, SectionRoster  # noqa: E402
from school_backend.models.user import AdminDetail, StudentDetail, TeacherDetail, User  # noqa: E402
from school_backend.services.grade_levels import grad_year_for_grade  # noqa: E402


@pytest.fixture
def db():
    engine = build_engine('sqlite://', poolclass=StaticPool)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_student(db):
    def _make_student(email: str, grade: int = 7, archived: bool = False) -> User:
        student = User(
            email=email,
            hashed_password='not-a-real-hash',
            first_name='Stu',
            last_name='Dent',
            birth_date=date(2012, 3, 4),
            user_type='student',
            is_archived=archived,
            student_details=StudentDetail(grad_year=grad_year_for_grade(grade)),
        )
        db.add(student)
        db.commit()
        db.refresh(student)
        return student

    return _make_student


@pytest.fixture
def make_staff(db):
    def _make_staff(email: str, user_type: str = 'teacher') -> User:
        staff = User(
            email=email,
            hashed_password='not-a-real-hash',
            first_name='Tea',
            last_name='Cher',
            birth_date=date(1985, 6, 7),
            user_type=user_type,
        )
        if user_type == 'teacher':
            staff.teacher_details = TeacherDetail(years_exp=5, bio='Coach')
        else:
            staff.admin_details = AdminDetail(years_exp=10)
        db.add(staff)
        db.commit()
        db.refresh(staff)
        return staff

    return _make_staff


@pytest.fixture
def make_section(db):
    def _make_section(section_code: str, grade_level: str = '7', is_active: bool = True) -> Section:
        section = Section(section_code=section_code, grade_level=grade_level, is_active=is_active)
        db.add(section)
        db.commit()
        db.refresh(section)
        return section

    return _make_section


@pytest.fixture
def roster(db):
    def _roster(student: User, section: Section) -> SectionRoster:
        entry = SectionRoster(student_user_id=student.id, section_id=section.id)
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    return _roster
